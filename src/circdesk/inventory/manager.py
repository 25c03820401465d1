"""Inventory ledger: the single source of truth for free copies.

Counter changes are single conditional UPDATE statements, never a read
followed by a write in Python. Callers pass their session in so the
counter change commits or rolls back together with the loan or
reservation it pays for.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.sqlite import Database, get_db
from ..errors import (
    InvalidCountError,
    InventoryInvariantError,
    NoCopiesAvailableError,
    TitleNotFoundError,
)
from ..utils import to_iso, utcnow
from .models import Title
from .schemas import TitleAvailability, TitleCreate

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Tracks total and available copies per title."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize inventory ledger.

        Args:
            db: Database instance
            clock: Source of the current time
        """
        self.db = db or get_db()
        self.clock = clock or utcnow

    # -------------------------------------------------------------------------
    # Catalog entries
    # -------------------------------------------------------------------------

    def add_title(self, data: TitleCreate, session: Optional[Session] = None) -> Title:
        """Add a title with all copies available."""
        with self.db.session_scope(session) as s:
            title = Title(
                name=data.name,
                total_copies=data.total_copies,
                available_copies=data.total_copies,
            )
            s.add(title)
            s.flush()
            logger.info("Added title %s (%s) with %d copies", title.id, title.name, title.total_copies)
            return title

    def get_title(self, title_id: str, session: Optional[Session] = None) -> Optional[Title]:
        """Get a title by ID, reloading its counters from the database."""
        with self.db.session_scope(session) as s:
            return s.get(Title, title_id, populate_existing=True)

    def require_title(self, title_id: str, session: Optional[Session] = None) -> Title:
        """Get a title by ID or raise TitleNotFoundError."""
        title = self.get_title(title_id, session=session)
        if title is None:
            raise TitleNotFoundError(title_id)
        return title

    def list_titles(self, active_only: bool = False) -> list[Title]:
        """List titles ordered by name."""
        with self.db.get_session() as session:
            stmt = select(Title).order_by(Title.name)
            if active_only:
                stmt = stmt.where(Title.is_active.is_(True))
            return list(session.execute(stmt).scalars().all())

    def deactivate(self, title_id: str, session: Optional[Session] = None) -> Title:
        """Withdraw a title from lending. Open loans can still be returned."""
        return self._set_active(title_id, False, session)

    def reactivate(self, title_id: str, session: Optional[Session] = None) -> Title:
        """Put a deactivated title back into circulation."""
        return self._set_active(title_id, True, session)

    def _set_active(self, title_id: str, active: bool, session: Optional[Session]) -> Title:
        with self.db.session_scope(session) as s:
            title = self.require_title(title_id, session=s)
            title.is_active = active
            s.flush()
            return title

    # -------------------------------------------------------------------------
    # Counter operations
    # -------------------------------------------------------------------------

    def try_acquire(self, title_id: str, session: Optional[Session] = None) -> None:
        """Take one copy if any is free (compare-and-decrement).

        Raises:
            NoCopiesAvailableError: available is 0 or the title is inactive
            TitleNotFoundError: unknown title
        """
        with self.db.session_scope(session) as s:
            stmt = (
                update(Title)
                .where(
                    Title.id == title_id,
                    Title.available_copies > 0,
                    Title.is_active.is_(True),
                )
                .values(
                    available_copies=Title.available_copies - 1,
                    updated_at=to_iso(self.clock()),
                )
                .execution_options(synchronize_session=False)
            )
            if s.execute(stmt).rowcount == 1:
                return

            if s.get(Title, title_id) is None:
                raise TitleNotFoundError(title_id)
            raise NoCopiesAvailableError(title_id)

    def release(self, title_id: str, session: Optional[Session] = None) -> None:
        """Give one copy back, never exceeding the total.

        Raises:
            InventoryInvariantError: every copy is already available
            TitleNotFoundError: unknown title
        """
        with self.db.session_scope(session) as s:
            stmt = (
                update(Title)
                .where(
                    Title.id == title_id,
                    Title.available_copies < Title.total_copies,
                )
                .values(
                    available_copies=Title.available_copies + 1,
                    updated_at=to_iso(self.clock()),
                )
                .execution_options(synchronize_session=False)
            )
            if s.execute(stmt).rowcount == 1:
                return

            if s.get(Title, title_id) is None:
                raise TitleNotFoundError(title_id)
            logger.error("Release would push available above total for title %s", title_id)
            raise InventoryInvariantError(title_id, "release with every copy already available")

    def adjust_total(
        self,
        title_id: str,
        new_total: int,
        session: Optional[Session] = None,
    ) -> Title:
        """Change the number of copies owned.

        ``available`` moves by the same delta as ``total``, and the update
        only applies when the new total still covers every copy on loan or
        held for a reservation.

        Raises:
            InvalidCountError: new_total is negative or below outstanding copies
            TitleNotFoundError: unknown title
        """
        with self.db.session_scope(session) as s:
            if new_total < 0:
                title = self.require_title(title_id, session=s)
                raise InvalidCountError(title_id, new_total, title.outstanding_copies)

            stmt = (
                update(Title)
                .where(
                    Title.id == title_id,
                    (Title.total_copies - Title.available_copies) <= new_total,
                )
                .values(
                    available_copies=Title.available_copies + (new_total - Title.total_copies),
                    total_copies=new_total,
                    updated_at=to_iso(self.clock()),
                )
                .execution_options(synchronize_session=False)
            )
            matched = s.execute(stmt).rowcount == 1

            title = self.require_title(title_id, session=s)
            if not matched:
                raise InvalidCountError(title_id, new_total, title.outstanding_copies)

            logger.info(
                "Title %s stock set to %d (%d available)",
                title_id,
                title.total_copies,
                title.available_copies,
            )
            return title

    # -------------------------------------------------------------------------
    # Projections
    # -------------------------------------------------------------------------

    def availability(self, title_id: str, session: Optional[Session] = None) -> TitleAvailability:
        """Copy counts for a title, including loans and holds against it."""
        from ..circulation.models import Loan
        from ..circulation.schemas import LoanStatus
        from ..reservations.models import Reservation
        from ..reservations.schemas import ReservationStatus

        with self.db.session_scope(session) as s:
            title = self.require_title(title_id, session=s)

            on_loan = s.execute(
                select(func.count()).select_from(Loan).where(
                    Loan.title_id == title_id,
                    Loan.status == LoanStatus.ACTIVE.value,
                )
            ).scalar() or 0

            held = s.execute(
                select(func.count()).select_from(Reservation).where(
                    Reservation.title_id == title_id,
                    Reservation.status == ReservationStatus.READY.value,
                )
            ).scalar() or 0

            return TitleAvailability(
                title_id=title.id,
                name=title.name,
                total=title.total_copies,
                available=title.available_copies,
                on_loan=on_loan,
                held=held,
                is_active=title.is_active,
            )

    def check_conservation(self, title_id: str, session: Optional[Session] = None) -> bool:
        """available + open loans + ready holds == total."""
        return self.availability(title_id, session=session).is_balanced
