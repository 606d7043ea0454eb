import pytest

from core.plans import (
    DEFAULT_PLAN, PlanTier, QualityPreset, allowed_scales, coerce_plan,
    describe_plans, infer_plan_from_quota, max_scale, monthly_quota, resolve_plan_tier
)


def test_plan_scales_are_nested():
    tiers = list(PlanTier)
    for lower, higher in zip(tiers, tiers[1:]):
        assert set(allowed_scales(lower, QualityPreset.PHOTO)) <= set(allowed_scales(higher, QualityPreset.PHOTO))


def test_anime_cap_applies_to_every_plan():
    for plan in PlanTier:
        assert max_scale(plan, QualityPreset.ANIME) <= 8


def test_monthly_quotas():
    assert monthly_quota(PlanTier.BASIC) == 100
    assert monthly_quota(PlanTier.MEGA) == 2750


@pytest.mark.parametrize("limit,expected", [
    (None, PlanTier.BASIC),
    (0, PlanTier.BASIC),
    (100, PlanTier.BASIC),
    (500, PlanTier.PRO),
    (1000, PlanTier.PRO),
    (1250, PlanTier.ENTERPRISE),
    (5000, PlanTier.MEGA),
])
def test_infer_plan_from_quota(limit, expected):
    assert infer_plan_from_quota(limit) is expected


def test_named_tier_wins_over_quota():
    profile = {"subscription_tiers": {"name": "Enterprise"}, "monthly_upscales_limit": 100}
    assert resolve_plan_tier(profile) is PlanTier.ENTERPRISE


def test_resolution_precedence_order():
    assert resolve_plan_tier({"subscription_tier": "pro", "subscriptionTier": "mega"}) is PlanTier.PRO
    assert resolve_plan_tier({"subscriptionTier": "mega"}) is PlanTier.MEGA


def test_unknown_named_tier_falls_through_to_quota():
    profile = {"subscription_tier": "platinum", "monthly_upscales_limit": 2750}
    assert resolve_plan_tier(profile) is PlanTier.MEGA


def test_missing_profile_uses_default():
    assert resolve_plan_tier(None) is DEFAULT_PLAN
    assert resolve_plan_tier({}) is DEFAULT_PLAN
    assert resolve_plan_tier({"monthly_upscales_limit": "lots"}) is DEFAULT_PLAN


def test_coerce_plan_rejects_unknown_names():
    with pytest.raises(ValueError):
        coerce_plan("platinum")


def test_describe_plans_lists_per_preset_scales():
    table = describe_plans()
    assert table["mega"]["scales"]["photo"] == [2, 4, 8, 10, 16, 32]
    assert table["mega"]["scales"]["anime"] == [2, 4, 8]
    assert table["basic"]["monthly_upscales"] == 100
