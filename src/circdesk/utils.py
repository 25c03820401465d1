"""Time and money helpers shared by the circulation modules."""

import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

CENTS = Decimal("0.01")
ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime for storage.

    Naive datetimes are taken to be UTC. The output always carries
    microseconds and a +00:00 offset so stored values sort
    lexicographically in time order.

    Example:
        >>> to_iso(datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        '2025-01-02T03:04:05.000000+00:00'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_overdue(due_at: datetime, now: datetime) -> int:
    """Whole days past due, rounding any partial day up.

    Example:
        >>> due = datetime(2025, 1, 1, tzinfo=timezone.utc)
        >>> days_overdue(due, due + timedelta(days=2, hours=1))
        3
        >>> days_overdue(due, due)
        0
    """
    if now <= due_at:
        return 0
    return math.ceil((now - due_at) / ONE_DAY)


def to_money(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Round a monetary value to cents."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def short_id(value: str) -> str:
    """First block of an id, for display."""
    return value[:8]
