"""SQLAlchemy model for title copy counters."""

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, TimestampMixin, generate_uuid


class Title(TimestampMixin, Base):
    """Title model - a catalog work and its fungible copy counter.

    ``available_copies`` is only ever changed through InventoryLedger's
    conditional updates.
    """

    __tablename__ = "titles"
    __table_args__ = (
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_titles_available_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Soft deactivation; titles referenced by loans are never deleted
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<Title(id={self.id}, name='{self.name}', "
            f"available={self.available_copies}/{self.total_copies})>"
        )

    @property
    def outstanding_copies(self) -> int:
        """Copies on loan or held for a reservation."""
        return self.total_copies - self.available_copies
