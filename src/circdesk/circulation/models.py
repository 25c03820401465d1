"""SQLAlchemy model for loans."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin, generate_uuid
from ..utils import days_overdue, from_iso
from .schemas import LoanStatus


class Loan(TimestampMixin, Base):
    """Loan model - one copy of a title borrowed by one member."""

    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    title_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("titles.id"),
        nullable=False,
        index=True,
    )
    member_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("members.id"),
        nullable=False,
        index=True,
    )

    # Status: active or returned (overdue is derived)
    status: Mapped[str] = mapped_column(String(20), default=LoanStatus.ACTIVE.value, index=True)

    # Dates
    issued_at: Mapped[str] = mapped_column(String(32), nullable=False)
    due_at: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    returned_at: Mapped[Optional[str]] = mapped_column(String(32))
    returned_by: Mapped[Optional[str]] = mapped_column(String(64))

    renewal_count: Mapped[int] = mapped_column(Integer, default=0)

    # Fine rate of the member's tier when the loan was issued
    daily_fine_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Set when the loan came from a reservation hand-off
    reservation_id: Mapped[Optional[str]] = mapped_column(String(36))

    # Optimistic lock serializing renew/return on the same loan
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, title_id={self.title_id}, member_id={self.member_id}, status={self.status})>"

    @property
    def is_open(self) -> bool:
        """Not yet returned."""
        return self.status == LoanStatus.ACTIVE.value

    @property
    def due_datetime(self) -> datetime:
        return from_iso(self.due_at)

    def is_overdue_at(self, now: datetime) -> bool:
        return self.is_open and now > self.due_datetime

    def days_overdue_at(self, now: datetime) -> int:
        """Days overdue (0 if not overdue)."""
        if not self.is_open:
            return 0
        return days_overdue(self.due_datetime, now)

    def status_at(self, now: datetime) -> LoanStatus:
        """Status as shown to users, with OVERDUE derived from the due date."""
        if self.is_overdue_at(now):
            return LoanStatus.OVERDUE
        return LoanStatus(self.status)
