"""Fine ledger.

Provides functionality for:
- Issuing one fine per overdue return
- Idempotent settlement from payment callbacks
- Waivers and pending balances
"""

from .manager import FineLedger
from .models import Fine
from .schemas import FineResponse, FineStatus, MemberFineSummary

__all__ = [
    "FineLedger",
    "Fine",
    "FineResponse",
    "FineStatus",
    "MemberFineSummary",
]
