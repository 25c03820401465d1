"""SQLAlchemy model for reservations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin, generate_uuid
from ..utils import from_iso
from .schemas import OPEN_STATUSES, ReservationStatus


class Reservation(TimestampMixin, Base):
    """Reservation model - a member's place in a title's hold queue."""

    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_queue", "title_id", "status", "requested_at", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    title_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("titles.id"),
        nullable=False,
    )
    member_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("members.id"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(20), default=ReservationStatus.PENDING.value)

    requested_at: Mapped[str] = mapped_column(String(32), nullable=False)
    ready_at: Mapped[Optional[str]] = mapped_column(String(32))
    expires_at: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    closed_at: Mapped[Optional[str]] = mapped_column(String(32))

    loan_id: Mapped[Optional[str]] = mapped_column(String(36))
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(64))

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, title_id={self.title_id}, member_id={self.member_id}, status={self.status})>"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_ready(self) -> bool:
        return self.status == ReservationStatus.READY.value

    @property
    def expires_datetime(self) -> Optional[datetime]:
        return from_iso(self.expires_at)

    def is_expired_at(self, now: datetime) -> bool:
        """Ready hold whose pickup window has passed."""
        return self.is_ready and self.expires_at is not None and now > self.expires_datetime
