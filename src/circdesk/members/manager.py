"""Member snapshot manager.

Writes come from the subscription sync (provider pushes or payment
callbacks); the circulation modules only read.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.sqlite import Database, get_db
from ..errors import MemberNotFoundError
from ..utils import from_iso, to_iso, utcnow
from .models import Member
from .schemas import MemberSnapshot, SubscriptionStatus, SubscriptionTier

logger = logging.getLogger(__name__)

PLAN_PERIODS = {
    SubscriptionTier.MONTHLY: timedelta(days=30),
    SubscriptionTier.YEARLY: timedelta(days=365),
}


class MemberManager:
    """Manages the local member/subscription snapshot."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize member manager.

        Args:
            db: Database instance
            clock: Source of the current time
        """
        self.db = db or get_db()
        self.clock = clock or utcnow

    def upsert(self, data: MemberSnapshot, session: Optional[Session] = None) -> Member:
        """Create or replace a member snapshot.

        Args:
            data: Snapshot from the subscription provider

        Returns:
            Stored member
        """
        with self.db.session_scope(session) as s:
            member = s.get(Member, data.id)
            if member is None:
                member = Member(id=data.id)
                s.add(member)
            if data.name is not None:
                member.name = data.name
            member.tier = data.tier.value
            member.status = data.status.value
            member.end_date = to_iso(data.end_date) if data.end_date else None
            s.flush()
            return member

    def get(self, member_id: str, session: Optional[Session] = None) -> Optional[Member]:
        """Get a member by ID."""
        with self.db.session_scope(session) as s:
            return s.get(Member, member_id)

    def require(self, member_id: str, session: Optional[Session] = None) -> Member:
        """Get a member by ID or raise MemberNotFoundError."""
        member = self.get(member_id, session=session)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def list_members(self) -> list[Member]:
        """List all known members."""
        with self.db.get_session() as session:
            stmt = select(Member).order_by(Member.id)
            return list(session.execute(stmt).scalars().all())

    def activate_subscription(
        self,
        member_id: str,
        plan: SubscriptionTier,
        session: Optional[Session] = None,
    ) -> Member:
        """Extend a paid subscription by one billing period.

        A renewal that arrives before the current period ends stacks on
        top of it; otherwise the period starts now.
        """
        if plan not in PLAN_PERIODS:
            raise ValueError(f"Not a paid plan: {plan}")

        with self.db.session_scope(session) as s:
            member = self.require(member_id, session=s)
            now = self.clock()
            current_end = from_iso(member.end_date)
            start = current_end if current_end and current_end > now else now

            member.tier = plan.value
            member.status = SubscriptionStatus.ACTIVE.value
            member.end_date = to_iso(start + PLAN_PERIODS[plan])
            s.flush()
            logger.info("Subscription %s active for member %s until %s", plan.value, member_id, member.end_date)
            return member

    def cancel_subscription(self, member_id: str, session: Optional[Session] = None) -> Member:
        """Cancel at period end. Premium entitlement lasts until end_date."""
        with self.db.session_scope(session) as s:
            member = self.require(member_id, session=s)
            member.status = SubscriptionStatus.CANCELLED.value
            s.flush()
            return member

    def expire_subscription(self, member_id: str, session: Optional[Session] = None) -> Member:
        """Mark the subscription expired (provider deleted it)."""
        with self.db.session_scope(session) as s:
            member = self.require(member_id, session=s)
            member.status = SubscriptionStatus.EXPIRED.value
            s.flush()
            return member
