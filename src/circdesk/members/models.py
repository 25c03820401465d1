"""SQLAlchemy model for the local member snapshot.

Members are owned by the external identity/subscription service. This
table is the eventually-consistent copy the circulation rules read.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin
from .schemas import SubscriptionStatus, SubscriptionTier


class Member(TimestampMixin, Base):
    """Member model - subscription state for entitlement checks."""

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    tier: Mapped[str] = mapped_column(String(20), default=SubscriptionTier.FREE.value)
    status: Mapped[str] = mapped_column(String(20), default=SubscriptionStatus.ACTIVE.value)
    end_date: Mapped[Optional[str]] = mapped_column(String(32))  # ISO datetime

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, tier={self.tier}, status={self.status})>"
