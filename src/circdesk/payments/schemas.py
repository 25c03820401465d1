"""Pydantic schemas for payments."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PaymentStatus(str, Enum):
    """Payment status as reported by the processor."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentKind(str, Enum):
    """What a payment pays for."""

    FINE = "fine"
    SUBSCRIPTION = "subscription"


class PaymentResponse(BaseModel):
    """Schema for payment responses."""

    id: str
    kind: PaymentKind
    member_id: str
    fine_id: Optional[str]
    plan: Optional[str]
    amount: Decimal
    status: PaymentStatus
    processor_reference: Optional[str]
    failure_reason: Optional[str]
    requested_at: str
    completed_at: Optional[str]

    model_config = {"from_attributes": True}
