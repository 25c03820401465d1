"""Title inventory ledger.

Provides functionality for:
- Atomic acquire/release of copies
- Stock adjustments that never strand an outstanding copy
- Availability projections
"""

from .manager import InventoryLedger
from .models import Title
from .schemas import TitleAvailability, TitleCreate

__all__ = [
    "InventoryLedger",
    "Title",
    "TitleAvailability",
    "TitleCreate",
]
