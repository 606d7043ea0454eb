from datetime import datetime, timezone

from core.plans import PlanTier
from runtime.usage_tracking import LocalUsageTracker, check_user_can_upscale

from .conftest import FakeClock


async def test_counts_accumulate_within_a_month(store):
    tracker = LocalUsageTracker(store, now=FakeClock(datetime(2026, 3, 10, tzinfo=timezone.utc)))

    await tracker.increment_upscale_counts("alice")
    await tracker.increment_upscale_counts("alice")
    stats = await tracker.get_user_usage_stats("alice")

    assert stats.used_this_month == 2
    assert stats.monthly_limit == 100
    assert stats.remaining == 98
    assert stats.usage_percentage == 2
    assert stats.days_until_reset == 22


async def test_counts_reset_with_the_month(store):
    clock = FakeClock(datetime(2026, 12, 31, 23, 0, tzinfo=timezone.utc))
    tracker = LocalUsageTracker(store, now=clock)
    await tracker.increment_upscale_counts("alice")

    clock.advance(hours=2)
    stats = await tracker.get_user_usage_stats("alice")

    assert stats.used_this_month == 0


async def test_limit_follows_the_users_plan(store):
    tracker = LocalUsageTracker(store, plan_for_user=lambda user_id: PlanTier.MEGA)
    stats = await tracker.get_user_usage_stats("bob")
    assert stats.monthly_limit == 2750


async def test_quota_gate(store):
    tracker = LocalUsageTracker(store)
    tracker.set_monthly_limit("carol", 1)

    assert (await check_user_can_upscale(tracker, "carol")).can_upscale

    await tracker.increment_upscale_counts("carol")
    eligibility = await check_user_can_upscale(tracker, "carol")

    assert not eligibility.can_upscale
    assert eligibility.remaining_upscales == 0
    assert "limit" in eligibility.reason
