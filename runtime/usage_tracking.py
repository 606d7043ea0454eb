"""
ForgeSR - Usage Tracking
=========================
Monthly upscale counters per user.

The job queue calls increment_upscale_counts() exactly once per completed
job and then re-reads the stats to refresh the remaining quota.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from loguru import logger

from core.plans import DEFAULT_PLAN, PlanTier, monthly_quota
from core.storage import USAGE_KEY, KeyValueStore


@dataclass(frozen=True)
class UsageStats:
    user_id: str
    used_this_month: int
    monthly_limit: int
    usage_percentage: int
    days_until_reset: int

    @property
    def remaining(self) -> int:
        return max(0, self.monthly_limit - self.used_this_month)


@dataclass(frozen=True)
class UpscaleEligibility:
    can_upscale: bool
    remaining_upscales: int
    reason: Optional[str] = None


class UsageTracker(Protocol):
    """External usage-tracking collaborator."""

    async def increment_upscale_counts(self, user_id: str) -> None:
        ...

    async def get_user_usage_stats(self, user_id: str) -> UsageStats:
        ...


def _month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def _days_until_reset(now: datetime) -> int:
    if now.month == 12:
        reset = now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    else:
        reset = now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return max(0, math.ceil((reset - now).total_seconds() / 86400))


class LocalUsageTracker:
    """
    Usage counters kept in the key/value store.

    Counts reset when the calendar month changes. The monthly limit comes
    from the user's plan unless overridden with set_monthly_limit().
    """

    def __init__(
        self,
        store: KeyValueStore,
        plan_for_user: Optional[Callable[[str], PlanTier]] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.plan_for_user = plan_for_user or (lambda user_id: DEFAULT_PLAN)
        self.now = now or (lambda: datetime.now(timezone.utc))

    def _load(self) -> Dict[str, dict]:
        raw = self.store.get(USAGE_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[Usage] Discarding unreadable usage data: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, dict]) -> None:
        self.store.set(USAGE_KEY, json.dumps(data))

    def _entry(self, data: Dict[str, dict], user_id: str) -> dict:
        month = _month_key(self.now())
        entry = data.get(user_id) or {}
        if entry.get("month") != month:
            entry = {"month": month, "count": 0, "limit": entry.get("limit")}
            data[user_id] = entry
        return entry

    def set_monthly_limit(self, user_id: str, limit: Optional[int]) -> None:
        data = self._load()
        self._entry(data, user_id)["limit"] = limit
        self._save(data)

    async def increment_upscale_counts(self, user_id: str) -> None:
        data = self._load()
        entry = self._entry(data, user_id)
        entry["count"] += 1
        self._save(data)
        logger.debug(f"[Usage] {user_id}: {entry['count']} upscales this month")

    async def get_user_usage_stats(self, user_id: str) -> UsageStats:
        data = self._load()
        entry = self._entry(data, user_id)
        used = int(entry.get("count", 0))
        limit = entry.get("limit")
        if limit is None:
            limit = monthly_quota(self.plan_for_user(user_id))
        return UsageStats(
            user_id=user_id,
            used_this_month=used,
            monthly_limit=int(limit),
            usage_percentage=round(used / limit * 100) if limit > 0 else 0,
            days_until_reset=_days_until_reset(self.now()),
        )


async def check_user_can_upscale(tracker: UsageTracker, user_id: str) -> UpscaleEligibility:
    """Quota gate evaluated before a job is created."""
    stats = await tracker.get_user_usage_stats(user_id)
    if stats.remaining <= 0:
        return UpscaleEligibility(False, 0, "Monthly upscale limit reached")
    return UpscaleEligibility(True, stats.remaining)
