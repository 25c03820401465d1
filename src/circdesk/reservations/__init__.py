"""Reservation queue.

Provides functionality for:
- FIFO reservations per title for premium members
- Copy holds with a pickup window
- Conversion of holds into loans
- Expiry sweeps, in-process or on a background thread
"""

from .manager import ReservationQueue, SweepResult
from .models import Reservation
from .schemas import ReservationResponse, ReservationStatus
from .sweeper import ExpirySweeper

__all__ = [
    "ReservationQueue",
    "SweepResult",
    "ExpirySweeper",
    "Reservation",
    "ReservationResponse",
    "ReservationStatus",
]
