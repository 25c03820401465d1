"""Circulation engine: borrow, renew and return.

Borrow flows tier policy -> admission checks -> inventory acquire ->
loan record, all in one transaction. Return flows loan update ->
inventory release -> fine assessment, then hands the freed copy to the
reservation queue once the transaction has committed.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import Config, get_config
from ..db.sqlite import Database, get_db
from ..errors import (
    AlreadyBorrowedError,
    AlreadyOverdueError,
    AlreadyReturnedError,
    BookUnavailableError,
    BorrowLimitExceededError,
    CirculationError,
    LoanConflictError,
    LoanNotFoundError,
    NoCopiesAvailableError,
    OutstandingFinesError,
    RenewalLimitReachedError,
)
from ..fines.manager import FineLedger
from ..fines.models import Fine
from ..inventory.manager import InventoryLedger
from ..inventory.models import Title
from ..members.manager import MemberManager
from ..notifications.manager import NotificationManager
from ..notifications.models import Notification
from ..notifications.schemas import NotificationKind
from ..policy.tiers import Entitlement, TierPolicy
from ..utils import ONE_DAY, to_iso, to_money, utcnow
from .models import Loan
from .schemas import LoanStatus, OverdueLoan, OverdueReport

logger = logging.getLogger(__name__)


@dataclass
class ReturnResult:
    """Outcome of a return."""

    loan: Loan
    fine: Optional[Fine] = None

    @property
    def was_late(self) -> bool:
        return self.fine is not None


class CirculationEngine:
    """Orchestrates borrowing, renewals and returns."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        policy: Optional[TierPolicy] = None,
        members: Optional[MemberManager] = None,
        inventory: Optional[InventoryLedger] = None,
        fines: Optional[FineLedger] = None,
        notifications: Optional[NotificationManager] = None,
    ):
        """Initialize circulation engine.

        Args:
            db: Database instance
            config: Policy configuration
            clock: Source of the current time
            policy: Tier policy (built from config if omitted)
            members: Member snapshot reader
            inventory: Inventory ledger
            fines: Fine ledger
            notifications: Notification feed
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or utcnow
        self.policy = policy or TierPolicy.from_config(self.config)
        self.members = members or MemberManager(self.db, clock=self.clock)
        self.inventory = inventory or InventoryLedger(self.db, clock=self.clock)
        self.notifications = notifications or NotificationManager(self.db, clock=self.clock)
        self.fines = fines or FineLedger(
            self.db,
            config=self.config,
            clock=self.clock,
            notifications=self.notifications,
        )

        # Called with a title id after a return frees a copy
        self.promoter: Optional[Callable[[str], object]] = None

    # -------------------------------------------------------------------------
    # Entitlement and admission
    # -------------------------------------------------------------------------

    def entitlement(self, member_id: str, session: Optional[Session] = None) -> Entitlement:
        """Current entitlement of a member."""
        member = self.members.require(member_id, session=session)
        return self.policy.entitlement_for(member, self.clock())

    def count_open_loans(self, session: Session, member_id: str) -> int:
        return session.execute(
            select(func.count()).select_from(Loan).where(
                Loan.member_id == member_id,
                Loan.status == LoanStatus.ACTIVE.value,
            )
        ).scalar() or 0

    def has_open_loan(self, session: Session, member_id: str, title_id: str) -> bool:
        return session.execute(
            select(Loan.id).where(
                Loan.member_id == member_id,
                Loan.title_id == title_id,
                Loan.status == LoanStatus.ACTIVE.value,
            ).limit(1)
        ).first() is not None

    def check_admission(
        self,
        session: Session,
        member_id: str,
        entitlement: Entitlement,
        title_id: Optional[str] = None,
    ) -> None:
        """Raise if the member may not take out another loan.

        Raises:
            BorrowLimitExceededError: at the tier's concurrent loan limit
            OutstandingFinesError: pending fines above the threshold
            AlreadyBorrowedError: member already has this title
        """
        if self.count_open_loans(session, member_id) >= entitlement.max_concurrent_loans:
            raise BorrowLimitExceededError(entitlement.max_concurrent_loans)

        balance = self.fines.pending_balance(member_id, session=session)
        if balance > self.config.fine_block_threshold:
            raise OutstandingFinesError(balance, to_money(self.config.fine_block_threshold))

        if title_id and self.has_open_loan(session, member_id, title_id):
            raise AlreadyBorrowedError(member_id, title_id)

    def issue_loan(
        self,
        session: Session,
        member_id: str,
        title_id: str,
        entitlement: Entitlement,
        now: datetime,
        reservation_id: Optional[str] = None,
    ) -> Loan:
        """Write the loan record for a copy the caller already holds."""
        loan = Loan(
            title_id=title_id,
            member_id=member_id,
            status=LoanStatus.ACTIVE.value,
            issued_at=to_iso(now),
            due_at=to_iso(now + timedelta(days=entitlement.loan_duration_days)),
            renewal_count=0,
            daily_fine_rate=entitlement.daily_fine_rate,
            reservation_id=reservation_id,
        )
        session.add(loan)
        session.flush()
        return loan

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def borrow(self, member_id: str, title_id: str, session: Optional[Session] = None) -> Loan:
        """Lend a copy of a title to a member.

        Args:
            member_id: Borrowing member
            title_id: Title to borrow

        Returns:
            The new active loan

        Raises:
            BorrowLimitExceededError, OutstandingFinesError,
            AlreadyBorrowedError, BookUnavailableError,
            MemberNotFoundError, TitleNotFoundError
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            member = self.members.require(member_id, session=s)
            entitlement = self.policy.entitlement_for(member, now)
            self.check_admission(s, member_id, entitlement, title_id=title_id)

            # The copy and the loan commit together: if writing the loan
            # fails, rolling back the savepoint puts the copy back.
            try:
                with s.begin_nested():
                    self.inventory.try_acquire(title_id, session=s)
                    loan = self.issue_loan(s, member_id, title_id, entitlement, now)
            except NoCopiesAvailableError as e:
                raise BookUnavailableError(title_id) from e

            logger.info(
                "Loan %s: member %s borrowed title %s, due %s",
                loan.id,
                member_id,
                title_id,
                loan.due_at,
            )
            return loan

    def renew(self, loan_id: str, session: Optional[Session] = None) -> Loan:
        """Extend a loan from now by the member's current loan duration.

        Raises:
            AlreadyReturnedError: loan is closed
            AlreadyOverdueError: loan is past due
            RenewalLimitReachedError: renewed the maximum number of times
            LoanConflictError: loan changed concurrently
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            loan = self._require_loan(s, loan_id)

            if not loan.is_open:
                raise AlreadyReturnedError(loan_id)
            if loan.is_overdue_at(now):
                raise AlreadyOverdueError(loan_id)
            if loan.renewal_count >= self.config.max_renewals:
                raise RenewalLimitReachedError(loan_id, self.config.max_renewals)

            member = self.members.require(loan.member_id, session=s)
            entitlement = self.policy.entitlement_for(member, now)

            loan.due_at = to_iso(now + timedelta(days=entitlement.loan_duration_days))
            loan.renewal_count += 1
            self._flush_loan(s, loan_id)

            logger.info("Loan %s renewed (%d), due %s", loan_id, loan.renewal_count, loan.due_at)
            return loan

    def return_loan(
        self,
        loan_id: str,
        returned_by: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> ReturnResult:
        """Check a copy back in.

        Releases the copy, issues a fine when the return is late, and
        then offers the copy to the title's reservation queue. When the
        caller supplies ``session``, promotion is left to the caller
        because the release is not committed yet.

        Raises:
            AlreadyReturnedError: loan is already closed
            LoanConflictError: loan changed concurrently
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            loan = self._require_loan(s, loan_id)

            if not loan.is_open:
                raise AlreadyReturnedError(loan_id)

            loan.status = LoanStatus.RETURNED.value
            loan.returned_at = to_iso(now)
            loan.returned_by = returned_by
            self._flush_loan(s, loan_id)

            self.inventory.release(loan.title_id, session=s)
            fine = self.fines.assess(s, loan, now)

            logger.info("Loan %s returned%s", loan_id, f" with fine {fine.id}" if fine else "")
            result = ReturnResult(loan=loan, fine=fine)

        if session is None:
            self._promote_after_release(loan.title_id)
        return result

    def _promote_after_release(self, title_id: str) -> None:
        """Hand a freed copy to the next waiter.

        The return is already committed here. If promotion fails the copy
        simply stays available and the next reservation sweep promotes it.
        """
        if self.promoter is None:
            return
        try:
            self.promoter(title_id)
        except (CirculationError, SQLAlchemyError):
            logger.exception("Promotion for title %s failed; deferring to the reservation sweep", title_id)

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------

    def send_due_reminders(self, days: int = 3, session: Optional[Session] = None) -> list[Notification]:
        """Remind members of loans falling due within ``days`` days.

        A loan gets at most one reminder per UTC calendar day, so this is
        safe to call from every sweep.
        """
        now = self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        sent = []

        with self.db.session_scope(session) as s:
            rows = s.execute(
                select(Loan, Title.name)
                .join(Title, Title.id == Loan.title_id)
                .where(
                    Loan.status == LoanStatus.ACTIVE.value,
                    Loan.due_at > to_iso(now),
                    Loan.due_at <= to_iso(now + timedelta(days=days)),
                )
                .order_by(Loan.due_at, Loan.id)
            ).all()

            for loan, name in rows:
                if self.notifications.sent_since(NotificationKind.LOAN_DUE_SOON, day_start, loan.id, session=s):
                    continue
                remaining = math.ceil((loan.due_datetime - now) / ONE_DAY)
                sent.append(
                    self.notifications.notify(
                        loan.member_id,
                        NotificationKind.LOAN_DUE_SOON,
                        f'Your borrowed book "{name}" is due in {remaining} day(s). '
                        "Please return it on time to avoid late fees.",
                        session=s,
                        title_id=loan.title_id,
                        loan_id=loan.id,
                    )
                )

        if sent:
            logger.info("Sent %d due reminder(s)", len(sent))
        return sent

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        with self.db.get_session() as session:
            return session.get(Loan, loan_id)

    def require_loan(self, loan_id: str) -> Loan:
        with self.db.get_session() as session:
            return self._require_loan(session, loan_id)

    def get_member_loans(self, member_id: str, include_returned: bool = False) -> list[Loan]:
        """Member's loans, most recent first."""
        with self.db.get_session() as session:
            stmt = select(Loan).where(Loan.member_id == member_id)
            if not include_returned:
                stmt = stmt.where(Loan.status == LoanStatus.ACTIVE.value)
            stmt = stmt.order_by(Loan.issued_at.desc(), Loan.id)
            return list(session.execute(stmt).scalars().all())

    def list_loans(
        self,
        title_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
    ) -> list[Loan]:
        """List loans with optional filters.

        Filtering by OVERDUE selects active loans past their due date.
        """
        with self.db.get_session() as session:
            stmt = select(Loan)
            if title_id:
                stmt = stmt.where(Loan.title_id == title_id)
            if status == LoanStatus.OVERDUE:
                stmt = stmt.where(
                    Loan.status == LoanStatus.ACTIVE.value,
                    Loan.due_at < to_iso(self.clock()),
                )
            elif status:
                stmt = stmt.where(Loan.status == status.value)
            stmt = stmt.order_by(Loan.issued_at.desc(), Loan.id)
            return list(session.execute(stmt).scalars().all())

    def get_overdue_loans(self) -> OverdueReport:
        """Unreturned loans past due, with the fine each would accrue now."""
        now = self.clock()
        summaries = []
        oldest_days = 0
        total_accrued = Decimal("0.00")

        for loan in self.list_loans(status=LoanStatus.OVERDUE):
            days, accrued = self.fines.calculate(loan.due_datetime, now, loan.daily_fine_rate)
            summaries.append(
                OverdueLoan(
                    loan_id=loan.id,
                    title_id=loan.title_id,
                    member_id=loan.member_id,
                    due_at=loan.due_at,
                    days_overdue=days,
                    accrued_fine=accrued,
                )
            )
            oldest_days = max(oldest_days, days)
            total_accrued += accrued

        summaries.sort(key=lambda s: s.days_overdue, reverse=True)
        return OverdueReport(
            loans=summaries,
            total_overdue=len(summaries),
            oldest_overdue_days=oldest_days,
            total_accrued=to_money(total_accrued),
        )

    def get_loans_due_soon(self, days: int = 3) -> list[Loan]:
        """Active loans falling due within ``days`` days."""
        now = self.clock()
        with self.db.get_session() as session:
            stmt = select(Loan).where(
                Loan.status == LoanStatus.ACTIVE.value,
                Loan.due_at >= to_iso(now),
                Loan.due_at <= to_iso(now + timedelta(days=days)),
            ).order_by(Loan.due_at)
            return list(session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_loan(self, session: Session, loan_id: str) -> Loan:
        loan = session.get(Loan, loan_id, populate_existing=True)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def _flush_loan(self, session: Session, loan_id: str) -> None:
        # A failed flush rolls the session back; loan attributes are unreadable after it
        try:
            session.flush()
        except StaleDataError as e:
            raise LoanConflictError(loan_id) from e
