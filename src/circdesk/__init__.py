"""circdesk - circulation and entitlement engine for a lending library.

Covers copy inventory, loans, renewals, returns, reservation queues,
overdue fines and the payment callback that settles them.
"""

__version__ = "0.1.0"

from .desk import CirculationDesk

__all__ = ["CirculationDesk", "__version__"]
