"""Payment manager: collection requests and processor callbacks."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.sqlite import Database, get_db
from ..errors import FineStateError, PaymentNotFoundError, PaymentStateError
from ..fines.manager import FineLedger
from ..fines.schemas import FineStatus
from ..members.manager import PLAN_PERIODS, MemberManager
from ..members.schemas import SubscriptionTier
from ..notifications.manager import NotificationManager
from ..notifications.schemas import NotificationKind
from ..utils import to_iso, to_money, utcnow
from .models import Payment
from .processor import CashDeskProcessor, PaymentProcessor
from .schemas import PaymentKind, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentManager:
    """Sends collection requests and applies their results."""

    def __init__(
        self,
        db: Optional[Database] = None,
        fines: Optional[FineLedger] = None,
        members: Optional[MemberManager] = None,
        notifications: Optional[NotificationManager] = None,
        processor: Optional[PaymentProcessor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize payment manager.

        Args:
            db: Database instance
            fines: Fine ledger settled by completed fine payments
            members: Member snapshots extended by subscription payments
            notifications: Feed for payment notifications
            processor: External processor (cash desk if omitted)
            clock: Source of the current time
        """
        self.db = db or get_db()
        self.clock = clock or utcnow
        self.notifications = notifications or NotificationManager(self.db, clock=self.clock)
        self.fines = fines or FineLedger(self.db, clock=self.clock, notifications=self.notifications)
        self.members = members or MemberManager(self.db, clock=self.clock)
        self.processor = processor or CashDeskProcessor()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def request_fine_payment(self, fine_id: str) -> Payment:
        """Ask the processor to collect a pending fine.

        A pending payment already open for the fine is reused rather
        than charging twice.

        Raises:
            FineStateError: the fine is paid or waived
            FineNotFoundError: unknown fine
        """
        with self.db.get_session() as session:
            fine = self.fines.require_fine(fine_id, session=session)
            if fine.status != FineStatus.PENDING.value:
                raise FineStateError(f"Fine {fine_id} is {fine.status}, nothing to collect")

            payment = session.execute(
                select(Payment).where(
                    Payment.fine_id == fine_id,
                    Payment.status == PaymentStatus.PENDING.value,
                ).order_by(Payment.requested_at).limit(1)
            ).scalar_one_or_none()

            if payment is None:
                payment = Payment(
                    kind=PaymentKind.FINE.value,
                    member_id=fine.member_id,
                    fine_id=fine_id,
                    amount=fine.amount,
                    status=PaymentStatus.PENDING.value,
                    requested_at=to_iso(self.clock()),
                )
                session.add(payment)
                session.flush()
                logger.info("Payment %s requested for fine %s (%s)", payment.id, fine_id, payment.amount)
            elif payment.processor_reference:
                return payment

        return self._send_to_processor(payment)

    def request_subscription_payment(
        self,
        member_id: str,
        plan: Union[SubscriptionTier, str],
        amount: Union[Decimal, int, str],
    ) -> Payment:
        """Ask the processor to collect a subscription charge.

        Raises:
            ValueError: plan is not a paid plan or amount is not positive
            MemberNotFoundError: unknown member
        """
        plan = SubscriptionTier(plan)
        if plan not in PLAN_PERIODS:
            raise ValueError(f"Not a paid plan: {plan.value}")
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Amount must be positive")

        with self.db.get_session() as session:
            self.members.require(member_id, session=session)
            payment = Payment(
                kind=PaymentKind.SUBSCRIPTION.value,
                member_id=member_id,
                plan=plan.value,
                amount=amount,
                status=PaymentStatus.PENDING.value,
                requested_at=to_iso(self.clock()),
            )
            session.add(payment)
            session.flush()
            logger.info("Payment %s requested for %s plan of member %s", payment.id, plan.value, member_id)

        return self._send_to_processor(payment)

    def _send_to_processor(self, payment: Payment) -> Payment:
        # Outside any transaction: the processor may be slow or remote
        reference = self.processor.request_collection(payment.amount, payment.id)

        with self.db.get_session() as session:
            payment = self._require(session, payment.id)
            if payment.processor_reference is None:
                payment.processor_reference = reference
            return payment

    # -------------------------------------------------------------------------
    # Callback
    # -------------------------------------------------------------------------

    def on_payment_result(
        self,
        payment_id: str,
        status: Union[PaymentStatus, str],
        failure_reason: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Payment:
        """Apply the processor's verdict on a payment.

        Safe to call more than once for the same result. A completed
        payment stays completed; a failed one can still complete later.

        Raises:
            PaymentStateError: status is not a final status
            PaymentNotFoundError: unknown payment
        """
        status = PaymentStatus(status)
        if status == PaymentStatus.PENDING:
            raise PaymentStateError("Payment result must be completed or failed")

        with self.db.session_scope(session) as s:
            payment = self._require(s, payment_id)

            if payment.status == PaymentStatus.COMPLETED.value:
                if status == PaymentStatus.FAILED:
                    logger.warning("Ignoring failure for completed payment %s", payment_id)
                return payment

            if status == PaymentStatus.FAILED:
                if payment.status != PaymentStatus.FAILED.value:
                    self._fail(s, payment, failure_reason)
                return payment

            if payment.kind == PaymentKind.FINE.value:
                self._apply_fine_payment(s, payment)
            else:
                self.members.activate_subscription(
                    payment.member_id,
                    SubscriptionTier(payment.plan),
                    session=s,
                )

            payment.status = PaymentStatus.COMPLETED.value
            payment.completed_at = to_iso(self.clock())
            s.flush()

            self.notifications.notify(
                payment.member_id,
                NotificationKind.PAYMENT_RECEIVED,
                f"Payment of {payment.amount} received. Thank you!",
                session=s,
                fine_id=payment.fine_id,
                payment_id=payment.id,
            )
            logger.info("Payment %s completed", payment_id)
            return payment

    def _apply_fine_payment(self, session: Session, payment: Payment) -> None:
        fine = self.fines.require_fine(payment.fine_id, session=session)

        if fine.status == FineStatus.WAIVED.value:
            logger.warning("Payment %s completed for waived fine %s; refund required", payment.id, fine.id)
            payment.failure_reason = "Fine was waived before payment completed; refund required"
            return

        if fine.status == FineStatus.PAID.value and fine.payment_id != payment.id:
            logger.warning(
                "Payment %s completed for fine %s already settled by %s; refund required",
                payment.id,
                fine.id,
                fine.payment_id,
            )
            payment.failure_reason = "Fine already settled by another payment; refund required"
            return

        self.fines.settle(fine.id, payment.id, session=session)

    def _fail(self, session: Session, payment: Payment, failure_reason: Optional[str]) -> None:
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = failure_reason
        session.flush()

        self.notifications.notify(
            payment.member_id,
            NotificationKind.PAYMENT_FAILED,
            f"Payment of {payment.amount} failed" + (f": {failure_reason}" if failure_reason else "."),
            session=session,
            fine_id=payment.fine_id,
            payment_id=payment.id,
        )
        logger.info("Payment %s failed: %s", payment.id, failure_reason)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        with self.db.get_session() as session:
            return session.get(Payment, payment_id)

    def list_payments(
        self,
        member_id: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
    ) -> list[Payment]:
        """List payments, newest first."""
        with self.db.get_session() as session:
            stmt = select(Payment)
            if member_id:
                stmt = stmt.where(Payment.member_id == member_id)
            if status:
                stmt = stmt.where(Payment.status == status.value)
            stmt = stmt.order_by(Payment.requested_at.desc(), Payment.id)
            return list(session.execute(stmt).scalars().all())

    def _require(self, session: Session, payment_id: str) -> Payment:
        payment = session.get(Payment, payment_id, populate_existing=True)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment
