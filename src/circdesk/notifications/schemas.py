"""Pydantic schemas for member notifications."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationKind(str, Enum):
    """What a notification is about."""

    RESERVATION_READY = "reservation_ready"
    RESERVATION_EXPIRED = "reservation_expired"
    FINE_ISSUED = "fine_issued"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    LOAN_DUE_SOON = "loan_due_soon"


class NotificationResponse(BaseModel):
    """Schema for notification responses."""

    id: str
    member_id: str
    kind: NotificationKind
    message: str
    title_id: Optional[str]
    loan_id: Optional[str]
    reservation_id: Optional[str]
    fine_id: Optional[str]
    payment_id: Optional[str]
    is_read: bool
    created_at: str

    model_config = {"from_attributes": True}
