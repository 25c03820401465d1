"""Tier policy: subscription tier to borrowing entitlement.

Pure lookup with no side effects. Anything missing or inconsistent in
the subscription data resolves to the free tier, the more restrictive
policy.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from ..config import Config
from ..members.schemas import SubscriptionStatus, SubscriptionTier
from ..utils import from_iso, to_money, utcnow


@dataclass(frozen=True)
class Entitlement:
    """What a member may do under their effective tier."""

    tier: SubscriptionTier
    max_concurrent_loans: int
    loan_duration_days: int
    daily_fine_rate: Decimal
    can_reserve: bool

    @property
    def is_premium(self) -> bool:
        return self.tier != SubscriptionTier.FREE


def _coerce_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        return from_iso(str(value))
    except ValueError:
        return None


def effective_tier(member: Any, now: Optional[datetime] = None) -> SubscriptionTier:
    """Resolve the tier a member is entitled to at ``now``.

    Args:
        member: Any object with ``tier``, ``status`` and ``end_date``
            attributes (ORM row or MemberSnapshot). None means free.
        now: Point in time to evaluate (default: current time)

    Returns:
        MONTHLY or YEARLY while premium applies, otherwise FREE
    """
    if member is None:
        return SubscriptionTier.FREE

    now = now or utcnow()
    tier = _coerce_enum(SubscriptionTier, getattr(member, "tier", None))
    status = _coerce_enum(SubscriptionStatus, getattr(member, "status", None))
    end_date = _coerce_datetime(getattr(member, "end_date", None))

    if tier in (None, SubscriptionTier.FREE) or status is None:
        return SubscriptionTier.FREE

    if status == SubscriptionStatus.ACTIVE:
        # A lapsed end date on an "active" record is a stale snapshot.
        if end_date is not None and now > end_date:
            return SubscriptionTier.FREE
        return tier

    if status == SubscriptionStatus.CANCELLED:
        if end_date is not None and now <= end_date:
            return tier
        return SubscriptionTier.FREE

    return SubscriptionTier.FREE


@dataclass(frozen=True)
class TierPolicy:
    """Configurable numbers behind each tier."""

    free_max_loans: int = 1
    free_loan_days: int = 7
    free_daily_fine: Decimal = Decimal("30")
    premium_max_loans: int = 4
    premium_loan_days: int = 20
    premium_daily_fine: Decimal = Decimal("15")
    yearly_fine_discount_percent: Decimal = Decimal("0")

    @classmethod
    def from_config(cls, config: Config) -> "TierPolicy":
        return cls(
            free_max_loans=config.free_max_loans,
            free_loan_days=config.free_loan_days,
            free_daily_fine=config.free_daily_fine,
            premium_max_loans=config.premium_max_loans,
            premium_loan_days=config.premium_loan_days,
            premium_daily_fine=config.premium_daily_fine,
            yearly_fine_discount_percent=config.yearly_fine_discount_percent,
        )

    def for_tier(self, tier: SubscriptionTier) -> Entitlement:
        """Entitlement for an already-resolved tier."""
        if tier == SubscriptionTier.FREE:
            return Entitlement(
                tier=tier,
                max_concurrent_loans=self.free_max_loans,
                loan_duration_days=self.free_loan_days,
                daily_fine_rate=to_money(self.free_daily_fine),
                can_reserve=False,
            )

        rate = self.premium_daily_fine
        if tier == SubscriptionTier.YEARLY and self.yearly_fine_discount_percent:
            rate = rate * (Decimal("100") - self.yearly_fine_discount_percent) / Decimal("100")

        return Entitlement(
            tier=tier,
            max_concurrent_loans=self.premium_max_loans,
            loan_duration_days=self.premium_loan_days,
            daily_fine_rate=to_money(rate),
            can_reserve=True,
        )

    def entitlement_for(self, member: Any, now: Optional[datetime] = None) -> Entitlement:
        """Entitlement of ``member`` at ``now``."""
        return self.for_tier(effective_tier(member, now))


DEFAULT_POLICY = TierPolicy()


def entitlement_for(
    member: Any,
    now: Optional[datetime] = None,
    policy: Optional[TierPolicy] = None,
) -> Entitlement:
    """Entitlement of ``member`` under ``policy`` (default numbers if omitted).

    Example:
        >>> entitlement_for(None).max_concurrent_loans
        1
    """
    return (policy or DEFAULT_POLICY).entitlement_for(member, now)
