"""Database module for local SQLite storage."""

from .models import Base, TimestampMixin, generate_uuid
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "Database",
    "get_db",
    "reset_db",
]
