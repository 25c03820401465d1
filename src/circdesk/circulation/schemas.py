"""Pydantic schemas for loans."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class LoanStatus(str, Enum):
    """Stored status of a loan.

    Overdue is not stored: an ACTIVE loan past its due date is reported
    as OVERDUE by ``Loan.status_at``.
    """

    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: str
    title_id: str
    member_id: str
    status: LoanStatus
    issued_at: str
    due_at: str
    returned_at: Optional[str]
    returned_by: Optional[str]
    renewal_count: int
    daily_fine_rate: Decimal
    reservation_id: Optional[str]

    model_config = {"from_attributes": True}


class OverdueLoan(BaseModel):
    """An unreturned loan past its due date."""

    loan_id: str
    title_id: str
    member_id: str
    due_at: str
    days_overdue: int
    accrued_fine: Decimal  # what the fine would be if returned now


class OverdueReport(BaseModel):
    """Report of overdue loans."""

    loans: list[OverdueLoan]
    total_overdue: int
    oldest_overdue_days: int
    total_accrued: Decimal
