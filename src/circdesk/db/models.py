"""Declarative base and column helpers shared by every circdesk table.

Timestamps are stored as ISO-8601 strings in UTC with fixed precision
(see ``utils.to_iso``) so they compare correctly as text in SQL.
"""

from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..utils import to_iso, utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def now_iso() -> str:
    """Current UTC time in storage format."""
    return to_iso(utcnow())


class TimestampMixin:
    """created_at / updated_at bookkeeping columns."""

    created_at: Mapped[str] = mapped_column(String(32), default=now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=now_iso, onupdate=now_iso)
