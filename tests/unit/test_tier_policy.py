from datetime import UTC, datetime, timedelta

from src.domain.entities.profile import ProfileEntity
from src.domain.services import tier_policy as tp


def make_profile(**kwargs) -> ProfileEntity:
    return ProfileEntity(id="u1", email="u1@example.com", **kwargs)


def test_legacy_premium_is_monthly():
    assert tp.normalize_tier("premium") == tp.PREMIUM_MONTHLY
    assert tp.normalize_tier("PREMIUM_YEARLY") == tp.PREMIUM_YEARLY
    assert tp.normalize_tier(None) == tp.FREE
    assert tp.normalize_tier("gold") == tp.FREE


def test_is_premium():
    assert tp.is_premium("premium")
    assert tp.is_premium(tp.PREMIUM_YEARLY)
    assert not tp.is_premium(tp.FREE)


def test_plan_and_billing_cycle_mapping():
    assert tp.tier_for_plan("yearly") == tp.PREMIUM_YEARLY
    assert tp.tier_for_plan("monthly") == tp.PREMIUM_MONTHLY
    assert tp.tier_for_plan(None) == tp.PREMIUM_MONTHLY
    assert tp.billing_cycle_for_tier(tp.PREMIUM_YEARLY) == "yearly"
    assert tp.billing_cycle_for_tier("premium") == "monthly"
    assert tp.billing_cycle_for_tier(tp.FREE) == "free"


def test_free_meals_scheduled_for_deletion_after_14_days():
    created = datetime(2024, 3, 1, 12, tzinfo=UTC)
    assert tp.scheduled_deletion_date(created, tp.FREE) == created + timedelta(days=14)
    assert tp.scheduled_deletion_date(created, tp.PREMIUM_MONTHLY) is None


def test_days_left_rounds_up_and_never_negative():
    now = datetime(2024, 3, 1, tzinfo=UTC)
    assert tp.days_left(now + timedelta(days=2, hours=1), now) == 3
    assert tp.days_left(now - timedelta(days=1), now) == 0
    assert tp.days_left(None, now) is None


def test_storage_quota_counts_files_per_month():
    assert tp.storage_quota(10, tp.FREE)["can_upload"]
    full = tp.storage_quota(50, tp.FREE)
    assert not full["can_upload"]
    assert full["files_limit"] == 50
    assert tp.storage_quota(50, tp.PREMIUM_MONTHLY)["can_upload"]


def test_share_counter_resets_with_month():
    now = datetime(2024, 5, 10, tzinfo=UTC)
    used_this_month = make_profile(monthly_shares_used=3, share_reset_date=datetime(2024, 5, 2, tzinfo=UTC))
    used_last_month = make_profile(monthly_shares_used=3, share_reset_date=datetime(2024, 4, 28, tzinfo=UTC))

    assert tp.shares_remaining(used_this_month, now) == 0
    assert not tp.can_share_publicly(used_this_month, now)
    assert tp.shares_remaining(used_last_month, now) == 3
    assert tp.can_share_publicly(used_last_month, now)


def test_premium_shares_unlimited():
    prof = make_profile(subscription_tier=tp.PREMIUM_YEARLY, monthly_shares_used=99)
    assert tp.shares_remaining(prof, datetime.now(UTC)) is None
    assert tp.can_share_publicly(prof, datetime.now(UTC))


def test_features_differ_by_tier():
    assert "14-day meal storage" in tp.features_for(tp.FREE)
    assert "Unlimited meal storage" in tp.features_for("premium")
