"""Pydantic schemas for fines."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class FineStatus(str, Enum):
    """Status of a fine."""

    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class FineResponse(BaseModel):
    """Schema for fine responses."""

    id: str
    loan_id: str
    member_id: str
    amount: Decimal
    days_overdue: int
    status: FineStatus
    issued_at: str
    paid_at: Optional[str]
    payment_id: Optional[str]
    waived_at: Optional[str]
    waive_reason: Optional[str]

    model_config = {"from_attributes": True}


class MemberFineSummary(BaseModel):
    """Pending fines of one member."""

    member_id: str
    pending_balance: Decimal
    fines: list[FineResponse]
