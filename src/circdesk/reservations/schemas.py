"""Pydantic schemas for reservations."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ReservationStatus(str, Enum):
    """Reservation lifecycle.

    pending -> ready -> fulfilled, with expired and cancelled as the
    other terminal states.
    """

    PENDING = "pending"
    READY = "ready"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


OPEN_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.READY.value)


class ReservationResponse(BaseModel):
    """Schema for reservation responses."""

    id: str
    title_id: str
    member_id: str
    status: ReservationStatus
    requested_at: str
    ready_at: Optional[str]
    expires_at: Optional[str]
    closed_at: Optional[str]
    loan_id: Optional[str]

    model_config = {"from_attributes": True}
