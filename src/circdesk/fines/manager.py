"""Fine ledger: accrual and settlement of overdue penalties."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import Config, get_config
from ..db.sqlite import Database, get_db
from ..errors import FineNotFoundError, FineStateError
from ..notifications.manager import NotificationManager
from ..notifications.schemas import NotificationKind
from ..utils import days_overdue, from_iso, to_iso, to_money, utcnow
from .models import Fine
from .schemas import FineResponse, FineStatus, MemberFineSummary

logger = logging.getLogger(__name__)


class FineLedger:
    """Creates, settles and waives fines."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        notifications: Optional[NotificationManager] = None,
    ):
        """Initialize fine ledger.

        Args:
            db: Database instance
            config: Grace period and cap come from here
            clock: Source of the current time
            notifications: Feed that receives fine_issued messages
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or utcnow
        self.notifications = notifications or NotificationManager(self.db, clock=self.clock)

    # -------------------------------------------------------------------------
    # Accrual
    # -------------------------------------------------------------------------

    def calculate(self, due_at: datetime, returned_at: datetime, daily_rate: Decimal) -> tuple[int, Decimal]:
        """Days overdue and amount owed for a return at ``returned_at``.

        Partial days round up. Returns within the grace period owe
        nothing; the cap, when configured, limits the amount.

        Returns:
            (days_overdue, amount)
        """
        days = days_overdue(due_at, returned_at)
        if days <= self.config.fine_grace_days:
            return days, Decimal("0.00")

        amount = to_money(Decimal(days) * daily_rate)
        if self.config.fine_cap is not None:
            amount = min(amount, to_money(self.config.fine_cap))
        return days, amount

    def assess(self, session: Session, loan, returned_at: datetime) -> Optional[Fine]:
        """Create the fine for a returned loan, if it is owed.

        Runs inside the return transaction. Calling it again for the same
        loan returns the existing fine instead of creating a second one.

        Args:
            session: The return's session
            loan: Loan being returned (uses its due date and issue-time rate)
            returned_at: Return timestamp

        Returns:
            The loan's fine, or None when returned on time
        """
        existing = session.execute(
            select(Fine).where(Fine.loan_id == loan.id)
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        days, amount = self.calculate(from_iso(loan.due_at), returned_at, loan.daily_fine_rate)
        if amount <= 0:
            return None

        fine = Fine(
            loan_id=loan.id,
            member_id=loan.member_id,
            amount=amount,
            days_overdue=days,
            status=FineStatus.PENDING.value,
            issued_at=to_iso(returned_at),
        )
        session.add(fine)
        session.flush()

        self.notifications.notify(
            loan.member_id,
            NotificationKind.FINE_ISSUED,
            f"A fine of {amount} was issued for returning a book {days} day(s) late.",
            session=session,
            title_id=loan.title_id,
            loan_id=loan.id,
            fine_id=fine.id,
        )
        logger.info("Fine %s of %s issued on loan %s (%d days overdue)", fine.id, amount, loan.id, days)
        return fine

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def settle(self, fine_id: str, payment_id: str, session: Optional[Session] = None) -> Fine:
        """Mark a fine paid after the processor confirmed payment.

        Settling a fine that is already paid is a no-op.

        Raises:
            FineStateError: the fine was waived
            FineNotFoundError: unknown fine
        """
        with self.db.session_scope(session) as s:
            fine = self._require(s, fine_id)

            if fine.status == FineStatus.PAID.value:
                if fine.payment_id != payment_id:
                    logger.warning(
                        "Fine %s already settled by payment %s; ignoring payment %s",
                        fine_id,
                        fine.payment_id,
                        payment_id,
                    )
                return fine

            if fine.status == FineStatus.WAIVED.value:
                raise FineStateError(f"Fine {fine_id} was waived and cannot be paid")

            fine.status = FineStatus.PAID.value
            fine.paid_at = to_iso(self.clock())
            fine.payment_id = payment_id
            s.flush()
            logger.info("Fine %s settled by payment %s", fine_id, payment_id)
            return fine

    def waive(
        self,
        fine_id: str,
        reason: str,
        waived_by: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Fine:
        """Administrative override. Waived fines stay waived.

        Raises:
            FineStateError: the fine was already paid
            FineNotFoundError: unknown fine
        """
        with self.db.session_scope(session) as s:
            fine = self._require(s, fine_id)

            if fine.status == FineStatus.WAIVED.value:
                return fine
            if fine.status == FineStatus.PAID.value:
                raise FineStateError(f"Fine {fine_id} is already paid")

            fine.status = FineStatus.WAIVED.value
            fine.waived_at = to_iso(self.clock())
            fine.waive_reason = reason
            fine.waived_by = waived_by
            s.flush()
            logger.info("Fine %s waived: %s", fine_id, reason)
            return fine

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def pending_balance(self, member_id: str, session: Optional[Session] = None) -> Decimal:
        """Sum of the member's pending fines."""
        with self.db.session_scope(session) as s:
            total = s.execute(
                select(func.coalesce(func.sum(Fine.amount), 0)).where(
                    Fine.member_id == member_id,
                    Fine.status == FineStatus.PENDING.value,
                )
            ).scalar()
            return to_money(total)

    def member_summary(self, member_id: str) -> MemberFineSummary:
        fines = self.get_pending_fines(member_id)
        return MemberFineSummary(
            member_id=member_id,
            pending_balance=to_money(sum((f.amount for f in fines), Decimal("0"))),
            fines=[FineResponse.model_validate(f) for f in fines],
        )

    def get_fine(self, fine_id: str, session: Optional[Session] = None) -> Optional[Fine]:
        with self.db.session_scope(session) as s:
            return s.get(Fine, fine_id)

    def require_fine(self, fine_id: str, session: Optional[Session] = None) -> Fine:
        with self.db.session_scope(session) as s:
            return self._require(s, fine_id)

    def get_fine_for_loan(self, loan_id: str) -> Optional[Fine]:
        with self.db.get_session() as session:
            return session.execute(
                select(Fine).where(Fine.loan_id == loan_id)
            ).scalar_one_or_none()

    def get_pending_fines(self, member_id: str) -> list[Fine]:
        """Member's pending fines, oldest first."""
        return self.list_fines(member_id=member_id, status=FineStatus.PENDING)

    def list_fines(
        self,
        member_id: Optional[str] = None,
        status: Optional[FineStatus] = None,
    ) -> list[Fine]:
        """List fines with optional filters."""
        with self.db.get_session() as session:
            stmt = select(Fine)
            if member_id:
                stmt = stmt.where(Fine.member_id == member_id)
            if status:
                stmt = stmt.where(Fine.status == status.value)
            stmt = stmt.order_by(Fine.issued_at, Fine.id)
            return list(session.execute(stmt).scalars().all())

    def _require(self, session: Session, fine_id: str) -> Fine:
        fine = session.get(Fine, fine_id, populate_existing=True)
        if fine is None:
            raise FineNotFoundError(fine_id)
        return fine
