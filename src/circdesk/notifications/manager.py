"""Notification manager for the member feed."""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.sqlite import Database, get_db
from ..errors import NotificationNotFoundError
from ..utils import to_iso, utcnow
from .models import Notification
from .schemas import NotificationKind


class NotificationManager:
    """Records and reads member notifications."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db or get_db()
        self.clock = clock or utcnow

    def notify(
        self,
        member_id: str,
        kind: NotificationKind,
        message: str,
        session: Optional[Session] = None,
        title_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        reservation_id: Optional[str] = None,
        fine_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Notification:
        """Queue a notification.

        Pass the session of the operation that triggered it so the
        notification only exists if that operation commits.
        """
        with self.db.session_scope(session) as s:
            notification = Notification(
                member_id=member_id,
                kind=kind.value,
                message=message,
                title_id=title_id,
                loan_id=loan_id,
                reservation_id=reservation_id,
                fine_id=fine_id,
                payment_id=payment_id,
                created_at=to_iso(self.clock()),
            )
            s.add(notification)
            s.flush()
            return notification

    def sent_since(
        self,
        kind: NotificationKind,
        since: datetime,
        loan_id: str,
        session: Optional[Session] = None,
    ) -> bool:
        """Whether a notification of this kind about the loan went out at or after ``since``."""
        with self.db.session_scope(session) as s:
            return s.execute(
                select(Notification.id).where(
                    Notification.kind == kind.value,
                    Notification.loan_id == loan_id,
                    Notification.created_at >= to_iso(since),
                ).limit(1)
            ).first() is not None

    def list_for_member(self, member_id: str, unread_only: bool = False) -> list[Notification]:
        """Member's notifications, newest first."""
        with self.db.get_session() as session:
            stmt = select(Notification).where(Notification.member_id == member_id)
            if unread_only:
                stmt = stmt.where(Notification.is_read.is_(False))
            stmt = stmt.order_by(Notification.created_at.desc(), Notification.id)
            return list(session.execute(stmt).scalars().all())

    def unread_count(self, member_id: str) -> int:
        with self.db.get_session() as session:
            return session.execute(
                select(func.count()).select_from(Notification).where(
                    Notification.member_id == member_id,
                    Notification.is_read.is_(False),
                )
            ).scalar() or 0

    def mark_read(self, notification_id: str) -> Notification:
        with self.db.get_session() as session:
            notification = session.get(Notification, notification_id)
            if notification is None:
                raise NotificationNotFoundError(notification_id)
            notification.is_read = True
            return notification

    def mark_all_read(self, member_id: str) -> int:
        """Mark every unread notification read. Returns how many changed."""
        with self.db.get_session() as session:
            result = session.execute(
                update(Notification)
                .where(
                    Notification.member_id == member_id,
                    Notification.is_read.is_(False),
                )
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
