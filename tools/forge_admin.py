"""
ForgeSR - Admin Tool
=====================
Command line access to the scale validator and the persisted upscale history.

    forge-admin validate --plan pro --quality photo --width 2000 --height 1500 --scale 10
    forge-admin history list --sort expiry
    forge-admin history cleanup --force
    forge-admin history delete ID [ID ...]
    forge-admin history clear
"""

import argparse
import json
from pathlib import Path
from typing import List, Optional

from core.config import ForgeConfig
from core.history import HistoryCache, HistoryFilter, HistorySort
from core.log_setup import setup_logging
from core.plans import PlanTier, QualityPreset, allowed_scales, describe_plans
from core.storage import JsonFileStore
from core.validator import Rejected, ScaleConstraintValidator, SegmentRequired


def _load_config(args: argparse.Namespace) -> ForgeConfig:
    config = ForgeConfig.from_env()
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    return config


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def _open_history(config: ForgeConfig) -> HistoryCache:
    return HistoryCache(JsonFileStore(config.store_path), config)


# === Commands ===

def cmd_validate(args: argparse.Namespace, config: ForgeConfig) -> int:
    plan = PlanTier(args.plan)
    preset = QualityPreset(args.quality)
    validator = ScaleConstraintValidator(config)
    verdict = validator.validate(plan, preset, args.width, args.height, args.scale)

    print(f"Plan:     {plan.value} ({preset.value})")
    print(f"Allowed:  {', '.join(f'{s}x' for s in allowed_scales(plan, preset))}")
    print(f"Verdict:  {verdict.kind}")
    print(f"Output:   {verdict.output_width}×{verdict.output_height}")
    print(f"Message:  {verdict.message}")
    if isinstance(verdict, Rejected) and verdict.suggested_scale:
        print(f"Suggest:  {verdict.suggested_scale}x")
    elif isinstance(verdict, SegmentRequired):
        print(f"Segments: {verdict.plan.segments} ({verdict.plan.grid}×{verdict.plan.grid}, "
              f"{verdict.plan.segment_width}×{verdict.plan.segment_height} each)")

    best = validator.max_allowed_scale(plan, preset, args.width, args.height)
    print(f"Max:      {f'{best}x' if best else 'none'}")
    return 1 if isinstance(verdict, Rejected) else 0


def cmd_plans(args: argparse.Namespace, config: ForgeConfig) -> int:
    print(json.dumps(describe_plans(), indent=2))
    return 0


def cmd_config(args: argparse.Namespace, config: ForgeConfig) -> int:
    print(json.dumps(config.as_dict(), indent=2))
    return 0


def cmd_history_list(args: argparse.Namespace, config: ForgeConfig) -> int:
    history = _open_history(config)
    view = history.query(HistoryFilter(args.type, args.expiring_within), HistorySort(args.sort))

    print("=" * 70)
    print(f"History: {len(view)} of {history.size()} item(s) "
          f"(retention {history.retention_days}d, max {history.max_items})")
    print("=" * 70)
    for item in view:
        print(f"{item.id}  {item.timestamp:%Y-%m-%d %H:%M}  {item.scale:>2}x  {item.image_type:<6} "
              f"{view.days_until_expiry(item):>3}d  {item.filename}")
    return 0


def cmd_history_cleanup(args: argparse.Namespace, config: ForgeConfig) -> int:
    history = _open_history(config)
    result = history.cleanup(force=args.force)
    if result is None:
        last = history.last_cleanup_at()
        print(f"[History] Cleanup skipped; last pass at {last:%Y-%m-%d %H:%M} UTC (use --force)")
        return 0
    print(f"[History] Removed {result.removed_count} item(s): "
          f"{len(result.expired)} expired, {len(result.overflow)} over the limit")
    print(f"[History] {history.size()} item(s) remain")
    return 0


def cmd_history_delete(args: argparse.Namespace, config: ForgeConfig) -> int:
    history = _open_history(config)
    removed = history.delete(args.ids)
    print(f"[History] Deleted {removed} item(s)")
    return 0


def cmd_history_clear(args: argparse.Namespace, config: ForgeConfig) -> int:
    history = _open_history(config)
    removed = history.clear_all()
    print(f"[History] Cleared {removed} item(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forge-admin", description="ForgeSR administration")
    parser.add_argument("--data-dir", help="Data directory (default: FORGE_DATA_DIR or ~/.local/share/forgesr)")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="cmd", required=True)

    validate_p = sub.add_parser("validate", help="Check a scale request against the plan and size limits")
    validate_p.add_argument("--plan", choices=[p.value for p in PlanTier], default=PlanTier.BASIC.value)
    validate_p.add_argument("--quality", choices=[q.value for q in QualityPreset], default=QualityPreset.PHOTO.value)
    validate_p.add_argument("--width", type=_positive_int, required=True)
    validate_p.add_argument("--height", type=_positive_int, required=True)
    validate_p.add_argument("--scale", type=_positive_int, required=True)
    validate_p.set_defaults(func=cmd_validate)

    sub.add_parser("plans", help="Print the plan table").set_defaults(func=cmd_plans)
    sub.add_parser("config", help="Print the effective configuration").set_defaults(func=cmd_config)

    history_p = sub.add_parser("history", help="Inspect or prune the upscale history")
    history_sub = history_p.add_subparsers(dest="history_cmd", required=True)

    list_p = history_sub.add_parser("list")
    list_p.add_argument("--type", default="all", help="Quality preset to show (default: all)")
    list_p.add_argument("--sort", choices=[s.value for s in HistorySort], default=HistorySort.NEWEST.value)
    list_p.add_argument("--expiring-within", type=int, default=None, metavar="DAYS")
    list_p.set_defaults(func=cmd_history_list)

    cleanup_p = history_sub.add_parser("cleanup")
    cleanup_p.add_argument("--force", action="store_true", help="Ignore the cleanup interval")
    cleanup_p.set_defaults(func=cmd_history_cleanup)

    delete_p = history_sub.add_parser("delete")
    delete_p.add_argument("ids", nargs="+")
    delete_p.set_defaults(func=cmd_history_delete)

    history_sub.add_parser("clear").set_defaults(func=cmd_history_clear)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = _load_config(args)
    setup_logging("DEBUG" if args.verbose else "WARNING")
    return args.func(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
