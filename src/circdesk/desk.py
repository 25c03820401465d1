"""Circulation desk: one object wiring every component together."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from .circulation.engine import CirculationEngine, ReturnResult
from .circulation.models import Loan
from .config import Config, get_config
from .db.sqlite import Database, get_db
from .fines.manager import FineLedger
from .fines.models import Fine
from .inventory.manager import InventoryLedger
from .inventory.models import Title
from .inventory.schemas import TitleAvailability, TitleCreate
from .members.manager import MemberManager
from .notifications.manager import NotificationManager
from .notifications.models import Notification
from .payments.manager import PaymentManager
from .payments.models import Payment
from .payments.processor import PaymentProcessor
from .payments.schemas import PaymentStatus
from .policy.tiers import TierPolicy
from .reservations.manager import ReservationQueue, SweepResult
from .reservations.models import Reservation
from .reservations.sweeper import ExpirySweeper
from .utils import utcnow

logger = logging.getLogger(__name__)


class CirculationDesk:
    """Entry point for the circulation operations.

    All components share one database, one configuration and one clock.

    Example:
        >>> desk = CirculationDesk(Database(":memory:"))
        >>> desk.members.upsert(MemberSnapshot(id="m-1"))
        >>> title = desk.add_title("Dune", copies=1)
        >>> loan = desk.borrow("m-1", title.id)
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        processor: Optional[PaymentProcessor] = None,
    ):
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or utcnow
        self.db.create_tables()

        self.policy = TierPolicy.from_config(self.config)
        self.members = MemberManager(self.db, clock=self.clock)
        self.inventory = InventoryLedger(self.db, clock=self.clock)
        self.notifications = NotificationManager(self.db, clock=self.clock)
        self.fines = FineLedger(
            self.db,
            config=self.config,
            clock=self.clock,
            notifications=self.notifications,
        )
        self.engine = CirculationEngine(
            self.db,
            config=self.config,
            clock=self.clock,
            policy=self.policy,
            members=self.members,
            inventory=self.inventory,
            fines=self.fines,
            notifications=self.notifications,
        )
        self.reservations = ReservationQueue(self.engine, self.db, config=self.config, clock=self.clock)
        self.engine.promoter = self.reservations.promote_all
        self.payments = PaymentManager(
            self.db,
            fines=self.fines,
            members=self.members,
            notifications=self.notifications,
            processor=processor,
            clock=self.clock,
        )

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def add_title(self, name: str, copies: int = 1) -> Title:
        return self.inventory.add_title(TitleCreate(name=name, total_copies=copies))

    def adjust_stock(self, title_id: str, new_total: int) -> Title:
        """Set a title's copy count. New copies go to waiting members first."""
        with self.db.get_session() as session:
            before = self.inventory.require_title(title_id, session=session).total_copies
            title = self.inventory.adjust_total(title_id, new_total, session=session)
            if new_total > before:
                self.reservations.promote_all(title_id, session=session)
                title = self.inventory.require_title(title_id, session=session)
            return title

    def get_title_availability(self, title_id: str) -> TitleAvailability:
        return self.inventory.availability(title_id)

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    def borrow(self, member_id: str, title_id: str) -> Loan:
        return self.engine.borrow(member_id, title_id)

    def renew(self, loan_id: str) -> Loan:
        return self.engine.renew(loan_id)

    def return_loan(self, loan_id: str, returned_by: Optional[str] = None) -> ReturnResult:
        return self.engine.return_loan(loan_id, returned_by=returned_by)

    def get_member_loans(self, member_id: str, include_returned: bool = False) -> list[Loan]:
        return self.engine.get_member_loans(member_id, include_returned=include_returned)

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    def reserve(self, member_id: str, title_id: str) -> Reservation:
        return self.reservations.reserve(member_id, title_id)

    def convert_to_loan(self, reservation_id: str, member_id: Optional[str] = None) -> Loan:
        return self.reservations.convert_to_loan(reservation_id, member_id=member_id)

    def cancel_reservation(self, reservation_id: str, cancelled_by: Optional[str] = None) -> Reservation:
        return self.reservations.cancel(reservation_id, cancelled_by=cancelled_by)

    def expire_stale(self) -> SweepResult:
        return self.reservations.expire_stale()

    def send_due_reminders(self, days: Optional[int] = None) -> list[Notification]:
        if days is None:
            days = self.config.due_reminder_days
        return self.engine.send_due_reminders(days)

    def sweeper(self, interval: Optional[float] = None) -> ExpirySweeper:
        """Background sweeper for this desk (not started)."""
        return ExpirySweeper(self.reservations, interval=interval)

    # -------------------------------------------------------------------------
    # Fines and payments
    # -------------------------------------------------------------------------

    def get_pending_fines(self, member_id: str) -> list[Fine]:
        return self.fines.get_pending_fines(member_id)

    def pending_balance(self, member_id: str) -> Decimal:
        return self.fines.pending_balance(member_id)

    def waive_fine(self, fine_id: str, reason: str, waived_by: Optional[str] = None) -> Fine:
        return self.fines.waive(fine_id, reason, waived_by=waived_by)

    def request_fine_payment(self, fine_id: str) -> Payment:
        return self.payments.request_fine_payment(fine_id)

    def on_payment_result(
        self,
        payment_id: str,
        status: Union[PaymentStatus, str],
        failure_reason: Optional[str] = None,
    ) -> Payment:
        return self.payments.on_payment_result(payment_id, status, failure_reason=failure_reason)
