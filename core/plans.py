"""
ForgeSR - Plan Registry
========================
Single source of truth for plan tiers, quality presets and the scale
factors each of them allows.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class PlanTier(str, Enum):
    """Subscription tiers."""
    BASIC = "basic"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"
    MEGA = "mega"


class QualityPreset(str, Enum):
    """Processing profiles."""
    PHOTO = "photo"
    ART = "art"
    ANIME = "anime"
    TEXT = "text"


PLANS = {
    PlanTier.BASIC: {
        "label": "Basic",
        "scales": (2, 4, 8),
        "monthly_upscales": 100,
    },
    PlanTier.STARTER: {
        "label": "Starter",
        "scales": (2, 4, 8),
        "monthly_upscales": 250,
    },
    PlanTier.PRO: {
        "label": "Pro",
        "scales": (2, 4, 8, 10),
        "monthly_upscales": 500,
    },
    PlanTier.ENTERPRISE: {
        "label": "Enterprise",
        "scales": (2, 4, 8, 10, 16),
        "monthly_upscales": 1250,
    },
    PlanTier.MEGA: {
        "label": "Mega",
        "scales": (2, 4, 8, 10, 16, 32),
        "monthly_upscales": 2750,
    },
}

QUALITY_PRESETS = {
    QualityPreset.PHOTO: {"label": "Photos", "model": "photo-real-esrgan", "max_scale": None},
    QualityPreset.ART: {"label": "Art & Illustrations", "model": "art-swinir", "max_scale": None},
    QualityPreset.ANIME: {"label": "Anime & Cartoons", "model": "anime-real-esrgan", "max_scale": 8},
    QualityPreset.TEXT: {"label": "Text & Documents", "model": "art-swinir", "max_scale": None},
}

DEFAULT_PLAN = PlanTier.BASIC

# Highest tier first; a quota at or above the threshold implies the tier.
QUOTA_THRESHOLDS = (
    (2750, PlanTier.MEGA),
    (1250, PlanTier.ENTERPRISE),
    (500, PlanTier.PRO),
)


def coerce_plan(value: Any) -> PlanTier:
    """Parse a plan name (case and whitespace insensitive). Raises ValueError."""
    if isinstance(value, PlanTier):
        return value
    return PlanTier(str(value).strip().lower())


def coerce_preset(value: Any) -> QualityPreset:
    """Parse a quality preset name. Raises ValueError."""
    if isinstance(value, QualityPreset):
        return value
    return QualityPreset(str(value).strip().lower())


def allowed_scales(plan: PlanTier, preset: QualityPreset) -> Tuple[int, ...]:
    """Plan scales filtered by the preset's own cap, in ascending order."""
    scales = PLANS[coerce_plan(plan)]["scales"]
    cap = QUALITY_PRESETS[coerce_preset(preset)]["max_scale"]
    if cap is None:
        return scales
    return tuple(s for s in scales if s <= cap)


def max_scale(plan: PlanTier, preset: QualityPreset) -> int:
    return max(allowed_scales(plan, preset))


def monthly_quota(plan: PlanTier) -> int:
    return PLANS[coerce_plan(plan)]["monthly_upscales"]


def infer_plan_from_quota(monthly_limit: Optional[int]) -> PlanTier:
    """Map a numeric monthly quota to the tier that grants it."""
    if not monthly_limit:
        return DEFAULT_PLAN
    for threshold, tier in QUOTA_THRESHOLDS:
        if monthly_limit >= threshold:
            return tier
    return DEFAULT_PLAN


def _named_tier(profile: Mapping[str, Any]) -> Optional[PlanTier]:
    tiers = profile.get("subscription_tiers") or {}
    candidates = (
        tiers.get("name") if isinstance(tiers, Mapping) else None,
        profile.get("subscription_tier"),
        profile.get("subscriptionTier"),
    )
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return coerce_plan(candidate)
        except ValueError:
            continue
    return None


def resolve_plan_tier(profile: Optional[Mapping[str, Any]]) -> PlanTier:
    """
    Resolve the effective plan tier for a user profile.

    Precedence, first match wins:
        1. a known named tier on the profile
           (subscription_tiers.name, subscription_tier, subscriptionTier)
        2. inference from monthly_upscales_limit
        3. DEFAULT_PLAN

    Args:
        profile: User profile mapping (may be None or partial)

    Returns:
        Resolved plan tier (never None)
    """
    if not profile:
        return DEFAULT_PLAN

    named = _named_tier(profile)
    if named is not None:
        return named

    limit = profile.get("monthly_upscales_limit")
    if isinstance(limit, (int, float)) and not isinstance(limit, bool):
        return infer_plan_from_quota(int(limit))

    return DEFAULT_PLAN


def describe_plans() -> Dict[str, Dict[str, Any]]:
    """Plan table in a JSON-friendly shape, including per-preset scale lists."""
    return {
        plan.value: {
            "label": info["label"],
            "monthly_upscales": info["monthly_upscales"],
            "scales": {preset.value: list(allowed_scales(plan, preset)) for preset in QualityPreset},
        }
        for plan, info in PLANS.items()
    }
