"""Tests for the tier policy."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from circdesk.members.schemas import MemberSnapshot, SubscriptionStatus, SubscriptionTier
from circdesk.policy import TierPolicy, effective_tier, entitlement_for
from conftest import make_config

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def snapshot(tier, status=SubscriptionStatus.ACTIVE, days_left=10):
    return MemberSnapshot(
        id="m-1",
        tier=tier,
        status=status,
        end_date=NOW + timedelta(days=days_left) if days_left is not None else None,
    )


class TestEffectiveTier:
    """Tests for effective_tier."""

    def test_unknown_member_is_free(self):
        """Test a missing member resolves to free."""
        assert effective_tier(None, NOW) == SubscriptionTier.FREE

    def test_free(self):
        """Test free members stay free."""
        assert effective_tier(snapshot(SubscriptionTier.FREE, days_left=None), NOW) == SubscriptionTier.FREE

    @pytest.mark.parametrize("tier", [SubscriptionTier.MONTHLY, SubscriptionTier.YEARLY])
    def test_active_paid(self, tier):
        """Test active paid subscriptions keep their tier."""
        assert effective_tier(snapshot(tier), NOW) == tier

    def test_active_past_end_date(self):
        """Test an active subscription past its end date counts as free."""
        member = snapshot(SubscriptionTier.MONTHLY, days_left=-1)
        assert effective_tier(member, NOW) == SubscriptionTier.FREE

    def test_cancelled_before_end_date(self):
        """Test cancelled subscriptions stay premium until end_date."""
        member = snapshot(SubscriptionTier.YEARLY, SubscriptionStatus.CANCELLED, days_left=3)
        assert effective_tier(member, NOW) == SubscriptionTier.YEARLY

    def test_cancelled_after_end_date(self):
        """Test cancelled subscriptions revert after end_date."""
        member = snapshot(SubscriptionTier.YEARLY, SubscriptionStatus.CANCELLED, days_left=-3)
        assert effective_tier(member, NOW) == SubscriptionTier.FREE

    def test_cancelled_without_end_date(self):
        """Test a cancelled subscription with no end date is free."""
        member = snapshot(SubscriptionTier.MONTHLY, SubscriptionStatus.CANCELLED, days_left=None)
        assert effective_tier(member, NOW) == SubscriptionTier.FREE

    def test_expired(self):
        """Test expired subscriptions are free."""
        member = snapshot(SubscriptionTier.MONTHLY, SubscriptionStatus.EXPIRED)
        assert effective_tier(member, NOW) == SubscriptionTier.FREE

    def test_unrecognised_values(self):
        """Test garbage tier or status falls back to free."""

        class Row:
            tier = "platinum"
            status = "active"
            end_date = None

        assert effective_tier(Row(), NOW) == SubscriptionTier.FREE

    def test_stored_string_end_date(self):
        """Test ORM rows with ISO string end dates are understood."""

        class Row:
            tier = "monthly"
            status = "active"
            end_date = "2025-06-05T00:00:00.000000+00:00"

        assert effective_tier(Row(), NOW) == SubscriptionTier.MONTHLY


class TestEntitlement:
    """Tests for entitlement numbers."""

    def test_free(self):
        """Test free tier numbers."""
        entitlement = entitlement_for(None, NOW)

        assert entitlement.tier == SubscriptionTier.FREE
        assert entitlement.max_concurrent_loans == 1
        assert entitlement.loan_duration_days == 7
        assert entitlement.daily_fine_rate == Decimal("30.00")
        assert entitlement.can_reserve is False
        assert entitlement.is_premium is False

    def test_premium(self):
        """Test monthly tier numbers."""
        entitlement = entitlement_for(snapshot(SubscriptionTier.MONTHLY), NOW)

        assert entitlement.max_concurrent_loans == 4
        assert entitlement.loan_duration_days == 20
        assert entitlement.daily_fine_rate == Decimal("15.00")
        assert entitlement.can_reserve is True

    def test_yearly_same_as_monthly_by_default(self):
        """Test yearly members get the premium rate without a discount."""
        yearly = entitlement_for(snapshot(SubscriptionTier.YEARLY), NOW)
        monthly = entitlement_for(snapshot(SubscriptionTier.MONTHLY), NOW)

        assert yearly.daily_fine_rate == monthly.daily_fine_rate

    def test_yearly_discount(self):
        """Test the configured yearly discount applies to the fine rate."""
        policy = TierPolicy.from_config(make_config(yearly_fine_discount_percent=Decimal("20")))

        yearly = policy.entitlement_for(snapshot(SubscriptionTier.YEARLY), NOW)
        monthly = policy.entitlement_for(snapshot(SubscriptionTier.MONTHLY), NOW)

        assert yearly.daily_fine_rate == Decimal("12.00")
        assert monthly.daily_fine_rate == Decimal("15.00")

    def test_from_config(self):
        """Test policy numbers come from configuration."""
        policy = TierPolicy.from_config(make_config(free_max_loans=2, free_loan_days=14))

        entitlement = policy.for_tier(SubscriptionTier.FREE)

        assert entitlement.max_concurrent_loans == 2
        assert entitlement.loan_duration_days == 14
