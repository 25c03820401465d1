"""Payment processor bridge.

The processor only starts a collection. Its outcome arrives later
through ``PaymentManager.on_payment_result``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal

from ..utils import short_id

logger = logging.getLogger(__name__)


class PaymentProcessor(ABC):
    """External payment processor."""

    @abstractmethod
    def request_collection(self, amount: Decimal, reference: str) -> str:
        """Start collecting ``amount`` for the payment ``reference``.

        Returns:
            The processor's own reference for the collection
        """


@dataclass
class CashDeskProcessor(PaymentProcessor):
    """Cash taken at the circulation desk.

    Staff confirm the collection with ``circdesk payment confirm``.
    """

    requests: list[tuple[Decimal, str]] = field(default_factory=list)

    def request_collection(self, amount: Decimal, reference: str) -> str:
        self.requests.append((amount, reference))
        logger.info("Collect %s at the desk for payment %s", amount, reference)
        return f"desk-{short_id(reference)}"
