"""SQLAlchemy model for payments."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin, generate_uuid
from .schemas import PaymentKind, PaymentStatus


class Payment(TimestampMixin, Base):
    """Payment model - one collection request sent to the processor."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    kind: Mapped[str] = mapped_column(String(20), default=PaymentKind.FINE.value)

    member_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("members.id"),
        nullable=False,
        index=True,
    )
    fine_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("fines.id"),
        index=True,
    )
    # Subscription plan being bought (monthly or yearly)
    plan: Mapped[Optional[str]] = mapped_column(String(20))

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, index=True)

    processor_reference: Mapped[Optional[str]] = mapped_column(String(100))
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500))

    requested_at: Mapped[str] = mapped_column(String(32), nullable=False)
    completed_at: Mapped[Optional[str]] = mapped_column(String(32))

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, kind={self.kind}, amount={self.amount}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value
