"""SQLAlchemy model for member notifications."""

from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, generate_uuid, now_iso


class Notification(Base):
    """Notification model - a message queued for a member's feed."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    member_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Related records
    title_id: Mapped[Optional[str]] = mapped_column(String(36))
    loan_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    reservation_id: Mapped[Optional[str]] = mapped_column(String(36))
    fine_id: Mapped[Optional[str]] = mapped_column(String(36))
    payment_id: Mapped[Optional[str]] = mapped_column(String(36))

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, member_id={self.member_id}, kind={self.kind})>"
