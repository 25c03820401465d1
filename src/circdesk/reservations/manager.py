"""Reservation queue: FIFO holds per title.

A pending reservation waits for a copy. Promotion takes a copy from the
inventory ledger and holds it for the member for the pickup window; the
hold then becomes a loan, expires, or is cancelled.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..circulation.engine import CirculationEngine
from ..circulation.models import Loan
from ..config import Config
from ..db.sqlite import Database
from ..errors import (
    AlreadyBorrowedError,
    AlreadyReservedError,
    BookUnavailableError,
    NoCopiesAvailableError,
    NotEligibleError,
    ReservationExpiredError,
    ReservationNotFoundError,
    ReservationStateError,
    TitleAvailableError,
)
from ..inventory.models import Title
from ..notifications.schemas import NotificationKind
from ..utils import to_iso
from .models import Reservation
from .schemas import OPEN_STATUSES, ReservationStatus

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """What one expiry sweep did."""

    expired: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.expired or self.promoted)


class ReservationQueue:
    """Manages reservations and copy holds."""

    def __init__(
        self,
        engine: CirculationEngine,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize reservation queue.

        Args:
            engine: Circulation engine (shares its ledgers and policy)
            db: Database instance
            config: Hold window comes from here
            clock: Source of the current time
        """
        self.engine = engine
        self.db = db or engine.db
        self.config = config or engine.config
        self.clock = clock or engine.clock
        self.inventory = engine.inventory
        self.notifications = engine.notifications

    @property
    def hold_window(self) -> timedelta:
        return timedelta(hours=self.config.hold_window_hours)

    # -------------------------------------------------------------------------
    # Reserve
    # -------------------------------------------------------------------------

    def reserve(self, member_id: str, title_id: str, session: Optional[Session] = None) -> Reservation:
        """Join the queue for a title that has no free copy.

        Raises:
            NotEligibleError: member's tier cannot reserve
            AlreadyReservedError: member already waits for or holds this title
            AlreadyBorrowedError: member has this title on loan
            BookUnavailableError: title is withdrawn from lending
            TitleAvailableError: a copy is free, borrow it instead
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            member = self.engine.members.require(member_id, session=s)
            if not self.engine.policy.entitlement_for(member, now).can_reserve:
                raise NotEligibleError(member_id)

            title = self.inventory.require_title(title_id, session=s)
            if not title.is_active:
                raise BookUnavailableError(title_id)

            existing = s.execute(
                select(Reservation.id).where(
                    Reservation.member_id == member_id,
                    Reservation.title_id == title_id,
                    Reservation.status.in_(OPEN_STATUSES),
                ).limit(1)
            ).first()
            if existing is not None:
                raise AlreadyReservedError(member_id, title_id)

            if self.engine.has_open_loan(s, member_id, title_id):
                raise AlreadyBorrowedError(member_id, title_id)

            if title.available_copies > 0:
                raise TitleAvailableError(title_id)

            reservation = Reservation(
                title_id=title_id,
                member_id=member_id,
                status=ReservationStatus.PENDING.value,
                requested_at=to_iso(now),
            )
            s.add(reservation)
            s.flush()
            logger.info("Reservation %s: member %s queued for title %s", reservation.id, member_id, title_id)
            return self._require(s, reservation.id)

    # -------------------------------------------------------------------------
    # Promotion
    # -------------------------------------------------------------------------

    def promote_next(self, title_id: str, session: Optional[Session] = None) -> Optional[Reservation]:
        """Hold a free copy for the earliest pending reservation.

        Returns:
            The promoted reservation, or None when no copy or no waiter
        """
        with self.db.session_scope(session) as s:
            return self._promote_one(s, title_id)

    def promote_all(self, title_id: str, session: Optional[Session] = None) -> list[Reservation]:
        """Promote waiters until copies or waiters run out."""
        promoted = []
        with self.db.session_scope(session) as s:
            while True:
                reservation = self._promote_one(s, title_id)
                if reservation is None:
                    break
                promoted.append(reservation)
        return promoted

    def _next_pending(self, session: Session, title_id: str) -> Optional[Reservation]:
        return session.execute(
            select(Reservation)
            .where(
                Reservation.title_id == title_id,
                Reservation.status == ReservationStatus.PENDING.value,
            )
            .order_by(Reservation.requested_at, Reservation.id)
            .limit(1)
        ).scalar_one_or_none()

    def _promote_one(self, session: Session, title_id: str) -> Optional[Reservation]:
        now = self.clock()

        while True:
            candidate = self._next_pending(session, title_id)
            if candidate is None:
                return None

            # Claim the reservation, then the copy. No copy rolls the
            # claim back with the savepoint.
            try:
                with session.begin_nested():
                    claimed = session.execute(
                        update(Reservation)
                        .where(
                            Reservation.id == candidate.id,
                            Reservation.status == ReservationStatus.PENDING.value,
                        )
                        .values(
                            status=ReservationStatus.READY.value,
                            ready_at=to_iso(now),
                            expires_at=to_iso(now + self.hold_window),
                            updated_at=to_iso(now),
                        )
                        .execution_options(synchronize_session=False)
                    ).rowcount == 1
                    if claimed:
                        self.inventory.try_acquire(title_id, session=session)
            except NoCopiesAvailableError:
                return None

            if claimed:
                break

        reservation = self._require(session, candidate.id)
        self.notifications.notify(
            reservation.member_id,
            NotificationKind.RESERVATION_READY,
            f"Your reserved book is ready for pickup until {reservation.expires_at}.",
            session=session,
            title_id=title_id,
            reservation_id=reservation.id,
        )
        logger.info(
            "Reservation %s ready for member %s, expires %s",
            reservation.id,
            reservation.member_id,
            reservation.expires_at,
        )
        return reservation

    # -------------------------------------------------------------------------
    # Conversion and cancellation
    # -------------------------------------------------------------------------

    def convert_to_loan(
        self,
        reservation_id: str,
        member_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Loan:
        """Turn a ready hold into a loan using the held copy.

        Converting a fulfilled reservation again returns its loan. A hold
        found past its window is expired (and its copy passed on) before
        ReservationExpiredError is raised.

        Args:
            reservation_id: Ready reservation
            member_id: When given, must own the reservation

        Raises:
            ReservationExpiredError: the hold window has passed
            ReservationStateError: not ready, or not the member's reservation
            BorrowLimitExceededError, OutstandingFinesError, AlreadyBorrowedError
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            reservation = self._require(s, reservation_id)

            if member_id is not None and reservation.member_id != member_id:
                raise ReservationStateError(f"Reservation {reservation_id} belongs to another member")

            if reservation.status == ReservationStatus.FULFILLED.value:
                return s.get(Loan, reservation.loan_id)
            if reservation.status == ReservationStatus.EXPIRED.value:
                raise ReservationExpiredError(reservation_id)
            if reservation.status != ReservationStatus.READY.value:
                raise ReservationStateError(
                    f"Reservation {reservation_id} is {reservation.status}, not ready for pickup"
                )

            if not reservation.is_expired_at(now):
                return self._fulfil(s, reservation, now)

            # Commit the expiry before reporting it
            self._expire_hold(s, reservation, now)
            self.promote_all(reservation.title_id, session=s)

        raise ReservationExpiredError(reservation_id)

    def _fulfil(self, session: Session, reservation: Reservation, now: datetime) -> Loan:
        member = self.engine.members.require(reservation.member_id, session=session)
        entitlement = self.engine.policy.entitlement_for(member, now)
        self.engine.check_admission(session, reservation.member_id, entitlement, title_id=reservation.title_id)

        loan = self.engine.issue_loan(
            session,
            reservation.member_id,
            reservation.title_id,
            entitlement,
            now,
            reservation_id=reservation.id,
        )
        reservation.status = ReservationStatus.FULFILLED.value
        reservation.closed_at = to_iso(now)
        reservation.loan_id = loan.id
        session.flush()

        logger.info("Reservation %s converted to loan %s", reservation.id, loan.id)
        return loan

    def cancel(
        self,
        reservation_id: str,
        cancelled_by: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Reservation:
        """Withdraw a reservation. A held copy goes to the next waiter.

        Raises:
            ReservationStateError: reservation is fulfilled or expired
        """
        now = self.clock()
        with self.db.session_scope(session) as s:
            reservation = self._require(s, reservation_id)

            if reservation.status == ReservationStatus.CANCELLED.value:
                return reservation
            if not reservation.is_open:
                raise ReservationStateError(f"Reservation {reservation_id} is already {reservation.status}")

            was_ready = reservation.is_ready
            reservation.status = ReservationStatus.CANCELLED.value
            reservation.closed_at = to_iso(now)
            reservation.cancelled_by = cancelled_by
            s.flush()

            if was_ready:
                self.inventory.release(reservation.title_id, session=s)
                self.promote_all(reservation.title_id, session=s)

            logger.info("Reservation %s cancelled", reservation_id)
            return reservation

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def _expire_hold(self, session: Session, reservation: Reservation, now: datetime) -> None:
        reservation.status = ReservationStatus.EXPIRED.value
        reservation.closed_at = to_iso(now)
        session.flush()

        self.inventory.release(reservation.title_id, session=session)
        self.notifications.notify(
            reservation.member_id,
            NotificationKind.RESERVATION_EXPIRED,
            "Your reservation expired before the book was collected.",
            session=session,
            title_id=reservation.title_id,
            reservation_id=reservation.id,
        )
        logger.info("Reservation %s expired", reservation.id)

    def expire_stale(self, session: Optional[Session] = None) -> SweepResult:
        """Expire holds past their window and hand out free copies.

        Besides the titles whose holds expired, every title that has a
        free copy and a pending waiter is promoted, which picks up copies
        whose post-return promotion did not run.
        """
        now = self.clock()
        result = SweepResult()

        with self.db.session_scope(session) as s:
            stale = s.execute(
                select(Reservation)
                .where(
                    Reservation.status == ReservationStatus.READY.value,
                    Reservation.expires_at < to_iso(now),
                )
                .order_by(Reservation.expires_at, Reservation.id)
            ).scalars().all()

            titles = set()
            for reservation in stale:
                self._expire_hold(s, reservation, now)
                result.expired.append(reservation.id)
                titles.add(reservation.title_id)

            waiting = s.execute(
                select(Reservation.title_id)
                .join(Title, Title.id == Reservation.title_id)
                .where(
                    Reservation.status == ReservationStatus.PENDING.value,
                    Title.available_copies > 0,
                    Title.is_active.is_(True),
                )
                .distinct()
            ).scalars().all()
            titles.update(waiting)

            for title_id in sorted(titles):
                result.promoted.extend(r.id for r in self.promote_all(title_id, session=s))

        if result.changed:
            logger.info("Sweep expired %d hold(s), promoted %d", len(result.expired), len(result.promoted))
        return result

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self.db.get_session() as session:
            return session.get(Reservation, reservation_id)

    def require_reservation(self, reservation_id: str) -> Reservation:
        with self.db.get_session() as session:
            return self._require(session, reservation_id)

    def queue(self, title_id: str) -> list[Reservation]:
        """Open reservations for a title in service order (holds first)."""
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.title_id == title_id,
                    Reservation.status.in_(OPEN_STATUSES),
                )
                .order_by(Reservation.requested_at, Reservation.id)
            )
            reservations = list(session.execute(stmt).scalars().all())
        return sorted(reservations, key=lambda r: not r.is_ready)

    def queue_position(self, reservation_id: str) -> Optional[int]:
        """1-based place among pending reservations, None if not pending."""
        with self.db.get_session() as session:
            reservation = self._require(session, reservation_id)
            if reservation.status != ReservationStatus.PENDING.value:
                return None
            ahead = session.execute(
                select(Reservation.id).where(
                    Reservation.title_id == reservation.title_id,
                    Reservation.status == ReservationStatus.PENDING.value,
                    (Reservation.requested_at < reservation.requested_at)
                    | (
                        (Reservation.requested_at == reservation.requested_at)
                        & (Reservation.id < reservation.id)
                    ),
                )
            ).all()
            return len(ahead) + 1

    def get_member_reservations(self, member_id: str, active_only: bool = True) -> list[Reservation]:
        """Member's reservations, most recent first."""
        with self.db.get_session() as session:
            stmt = select(Reservation).where(Reservation.member_id == member_id)
            if active_only:
                stmt = stmt.where(Reservation.status.in_(OPEN_STATUSES))
            stmt = stmt.order_by(Reservation.requested_at.desc(), Reservation.id)
            return list(session.execute(stmt).scalars().all())

    def _require(self, session: Session, reservation_id: str) -> Reservation:
        reservation = session.get(Reservation, reservation_id, populate_existing=True)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation
