"""Circulation engine.

Provides functionality for:
- Borrowing with tier-based admission control
- Renewals with a ceiling and no renewal of overdue items
- Returns with fine assessment and reservation hand-off
- Overdue and due-soon reports
"""

from .engine import CirculationEngine, ReturnResult
from .models import Loan
from .schemas import LoanResponse, LoanStatus, OverdueLoan, OverdueReport

__all__ = [
    "CirculationEngine",
    "ReturnResult",
    "Loan",
    "LoanResponse",
    "LoanStatus",
    "OverdueLoan",
    "OverdueReport",
]
