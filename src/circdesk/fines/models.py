"""SQLAlchemy model for overdue fines."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin, generate_uuid
from .schemas import FineStatus


class Fine(TimestampMixin, Base):
    """Fine model - one monetary penalty per overdue loan."""

    __tablename__ = "fines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # unique: a loan generates at most one fine
    loan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("loans.id"),
        nullable=False,
        unique=True,
    )
    member_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("members.id"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=FineStatus.PENDING.value, index=True)

    # Dates
    issued_at: Mapped[str] = mapped_column(String(32), nullable=False)
    paid_at: Mapped[Optional[str]] = mapped_column(String(32))
    waived_at: Mapped[Optional[str]] = mapped_column(String(32))

    # Settlement
    payment_id: Mapped[Optional[str]] = mapped_column(String(36))
    waive_reason: Mapped[Optional[str]] = mapped_column(Text)
    waived_by: Mapped[Optional[str]] = mapped_column(String(64))

    def __repr__(self) -> str:
        return f"<Fine(id={self.id}, loan_id={self.loan_id}, amount={self.amount}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        return self.status == FineStatus.PENDING.value
