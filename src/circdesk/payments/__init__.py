"""Payments.

Provides functionality for:
- Collection requests for fines and subscriptions
- Idempotent processor callbacks
- A cash desk processor for in-person payments
"""

from .manager import PaymentManager
from .models import Payment
from .processor import CashDeskProcessor, PaymentProcessor
from .schemas import PaymentKind, PaymentResponse, PaymentStatus

__all__ = [
    "PaymentManager",
    "Payment",
    "PaymentProcessor",
    "CashDeskProcessor",
    "PaymentKind",
    "PaymentResponse",
    "PaymentStatus",
]
