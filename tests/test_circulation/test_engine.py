"""Tests for CirculationEngine."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from circdesk.circulation import LoanStatus
from circdesk.circulation.models import Loan
from circdesk.desk import CirculationDesk
from circdesk.errors import (
    AlreadyBorrowedError,
    AlreadyOverdueError,
    AlreadyReturnedError,
    BookUnavailableError,
    BorrowLimitExceededError,
    LoanConflictError,
    LoanNotFoundError,
    MemberNotFoundError,
    OutstandingFinesError,
    RenewalLimitReachedError,
    TitleNotFoundError,
)
from circdesk.members.schemas import SubscriptionTier
from circdesk.notifications.schemas import NotificationKind
from circdesk.utils import from_iso
from conftest import add_member, make_config


class TestBorrow:
    """Tests for borrowing."""

    def test_borrow(self, desk, clock, free_member, title_id):
        """Test a loan is issued with the free tier's terms."""
        loan = desk.borrow(free_member, title_id)

        assert loan.status == LoanStatus.ACTIVE.value
        assert loan.member_id == free_member
        assert from_iso(loan.issued_at) == clock.now
        assert from_iso(loan.due_at) == clock.now + timedelta(days=7)
        assert loan.renewal_count == 0
        assert loan.daily_fine_rate == Decimal("30.00")
        assert desk.inventory.require_title(title_id).available_copies == 0

    def test_premium_terms(self, desk, clock, premium_member, title_id):
        """Test premium members get the longer loan period."""
        loan = desk.borrow(premium_member, title_id)

        assert from_iso(loan.due_at) == clock.now + timedelta(days=20)
        assert loan.daily_fine_rate == Decimal("15.00")

    def test_free_limit(self, desk, free_member, title_ids):
        """Test free members hold one loan at a time."""
        desk.borrow(free_member, title_ids[0])

        with pytest.raises(BorrowLimitExceededError) as exc_info:
            desk.borrow(free_member, title_ids[1])

        assert exc_info.value.limit == 1
        assert desk.inventory.require_title(title_ids[1]).available_copies == 2

    def test_premium_limit(self, desk, premium_member):
        """Test premium members hold up to four loans."""
        titles = [desk.add_title(f"Volume {i}", copies=1).id for i in range(5)]
        for title in titles[:4]:
            desk.borrow(premium_member, title)

        with pytest.raises(BorrowLimitExceededError):
            desk.borrow(premium_member, titles[4])

    def test_returned_loans_do_not_count(self, desk, free_member, title_ids):
        """Test the limit counts open loans only."""
        loan = desk.borrow(free_member, title_ids[0])
        desk.return_loan(loan.id)

        desk.borrow(free_member, title_ids[1])

    def test_unavailable(self, desk, free_member, premium_member, title_id):
        """Test borrowing the last copy twice."""
        desk.borrow(free_member, title_id)

        with pytest.raises(BookUnavailableError):
            desk.borrow(premium_member, title_id)

        assert desk.get_member_loans(premium_member) == []
        assert desk.inventory.require_title(title_id).available_copies == 0

    def test_already_borrowed(self, desk, premium_member, title_ids):
        """Test a member cannot take a second copy of the same title."""
        desk.borrow(premium_member, title_ids[0])

        with pytest.raises(AlreadyBorrowedError):
            desk.borrow(premium_member, title_ids[0])
        assert desk.inventory.require_title(title_ids[0]).available_copies == 1

    def test_outstanding_fines_block(self, desk, clock, free_member, title_ids):
        """Test any pending fine blocks borrowing by default."""
        loan = desk.borrow(free_member, title_ids[0])
        clock.advance(days=8)
        desk.return_loan(loan.id)

        with pytest.raises(OutstandingFinesError) as exc_info:
            desk.borrow(free_member, title_ids[1])

        assert exc_info.value.balance == Decimal("30.00")

    def test_fine_threshold(self, db, clock, title_ids):
        """Test balances up to the configured threshold are tolerated."""
        from circdesk.desk import CirculationDesk
        from conftest import make_config

        desk = CirculationDesk(db, config=make_config(fine_block_threshold=Decimal("50")), clock=clock)
        add_member(desk, "dave")
        loan = desk.borrow("dave", title_ids[0])
        clock.advance(days=8)
        desk.return_loan(loan.id)

        desk.borrow("dave", title_ids[1])

    def test_unknown_member(self, desk, title_id):
        """Test members must exist."""
        with pytest.raises(MemberNotFoundError):
            desk.borrow("nobody", title_id)

    def test_unknown_title(self, desk, free_member):
        """Test titles must exist."""
        with pytest.raises(TitleNotFoundError):
            desk.borrow(free_member, "missing")

    def test_withdrawn_title(self, desk, free_member, title_id):
        """Test withdrawn titles cannot be borrowed."""
        desk.inventory.deactivate(title_id)

        with pytest.raises(BookUnavailableError):
            desk.borrow(free_member, title_id)

    def test_copy_released_when_loan_write_fails(self, desk, free_member, title_id, monkeypatch):
        """Test a failure after taking the copy puts it back."""

        def broken_issue(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(desk.engine, "issue_loan", broken_issue)

        with pytest.raises(RuntimeError):
            desk.borrow(free_member, title_id)

        assert desk.inventory.require_title(title_id).available_copies == 1
        assert desk.inventory.check_conservation(title_id)


class TestRenew:
    """Tests for renewals."""

    def test_renew(self, desk, clock, free_member, title_id):
        """Test the due date restarts from now."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=5)

        renewed = desk.renew(loan.id)

        assert renewed.renewal_count == 1
        assert from_iso(renewed.due_at) == clock.now + timedelta(days=7)

    def test_renewal_limit(self, desk, clock, free_member, title_id):
        """Test the third renewal is refused."""
        loan = desk.borrow(free_member, title_id)
        desk.renew(loan.id)
        desk.renew(loan.id)

        with pytest.raises(RenewalLimitReachedError) as exc_info:
            desk.renew(loan.id)

        assert exc_info.value.limit == 2
        assert desk.engine.require_loan(loan.id).renewal_count == 2

    def test_overdue_cannot_renew(self, desk, clock, free_member, title_id):
        """Test overdue loans must be returned first."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=7, seconds=1)

        with pytest.raises(AlreadyOverdueError):
            desk.renew(loan.id)

    def test_overdue_checked_before_limit(self, desk, clock, free_member, title_id):
        """Test an overdue loan at the limit reports overdue."""
        loan = desk.borrow(free_member, title_id)
        desk.renew(loan.id)
        desk.renew(loan.id)
        clock.advance(days=8)

        with pytest.raises(AlreadyOverdueError):
            desk.renew(loan.id)

    def test_returned_cannot_renew(self, desk, free_member, title_id):
        """Test returned loans cannot be renewed."""
        loan = desk.borrow(free_member, title_id)
        desk.return_loan(loan.id)

        with pytest.raises(AlreadyReturnedError):
            desk.renew(loan.id)

    def test_uses_current_tier_duration(self, desk, clock, free_member, title_id):
        """Test a member who upgraded renews on premium terms."""
        loan = desk.borrow(free_member, title_id)
        desk.members.activate_subscription(free_member, SubscriptionTier.MONTHLY)

        renewed = desk.renew(loan.id)

        assert from_iso(renewed.due_at) == clock.now + timedelta(days=20)
        assert renewed.daily_fine_rate == Decimal("30.00")

    def test_unknown_loan(self, desk):
        """Test renewing an unknown loan."""
        with pytest.raises(LoanNotFoundError):
            desk.renew("missing")


class TestReturn:
    """Tests for returns."""

    def test_on_time(self, desk, clock, free_member, title_id):
        """Test an on-time return issues no fine."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=7)

        result = desk.return_loan(loan.id, returned_by="desk-1")

        assert result.fine is None
        assert result.was_late is False
        assert result.loan.status == LoanStatus.RETURNED.value
        assert from_iso(result.loan.returned_at) == clock.now
        assert result.loan.returned_by == "desk-1"
        assert desk.inventory.require_title(title_id).available_copies == 1

    def test_late(self, desk, clock, free_member, title_id):
        """Test three days late at 30 a day."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=10)

        result = desk.return_loan(loan.id)

        assert result.fine is not None
        assert result.fine.days_overdue == 3
        assert result.fine.amount == Decimal("90.00")
        assert result.fine.status == "pending"

    def test_partial_day_rounds_up(self, desk, clock, free_member, title_id):
        """Test one hour into the third day counts as three days."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=9, hours=1)

        result = desk.return_loan(loan.id)

        assert result.fine.days_overdue == 3

    def test_rate_fixed_at_issue(self, desk, clock, premium_member, title_id):
        """Test a lapsed subscription still pays the premium rate."""
        loan = desk.borrow(premium_member, title_id)
        desk.members.expire_subscription(premium_member)
        clock.advance(days=22)

        result = desk.return_loan(loan.id)

        assert result.fine.amount == Decimal("30.00")  # 2 days at 15

    def test_double_return(self, desk, free_member, title_id):
        """Test returning twice fails and does not release twice."""
        loan = desk.borrow(free_member, title_id)
        desk.return_loan(loan.id)

        with pytest.raises(AlreadyReturnedError):
            desk.return_loan(loan.id)

        assert desk.inventory.require_title(title_id).available_copies == 1

    def test_overdue_status_is_derived(self, desk, clock, free_member, title_id):
        """Test loans read as overdue without a stored change."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=8)

        stored = desk.engine.require_loan(loan.id)

        assert stored.status == LoanStatus.ACTIVE.value
        assert stored.status_at(clock.now) == LoanStatus.OVERDUE
        assert stored.days_overdue_at(clock.now) == 1


class TestOptimisticLock:
    """Tests for concurrent modification of one loan."""

    def test_stale_version(self, desk, free_member, title_id):
        """Test a write against a stale version is a conflict."""
        loan_id = desk.borrow(free_member, title_id).id

        with pytest.raises(LoanConflictError):
            with desk.db.get_session() as session:
                loan = session.get(Loan, loan_id)
                session.execute(
                    text("UPDATE loans SET version = version + 1 WHERE id = :id"),
                    {"id": loan_id},
                )
                loan.renewal_count += 1
                desk.engine._flush_loan(session, loan_id)

        assert desk.engine.require_loan(loan_id).renewal_count == 0

    def test_renew_races_another_writer(self, desk, monkeypatch, free_member, title_id):
        """Test a renewal that loses a race reports a conflict and changes nothing."""
        loan = desk.borrow(free_member, title_id)
        require_member = desk.engine.members.require

        def require_after_concurrent_write(member_id, session=None):
            session.execute(
                text("UPDATE loans SET version = version + 1 WHERE id = :id"),
                {"id": loan.id},
            )
            return require_member(member_id, session=session)

        monkeypatch.setattr(desk.engine.members, "require", require_after_concurrent_write)

        with pytest.raises(LoanConflictError) as exc_info:
            desk.renew(loan.id)

        assert exc_info.value.loan_id == loan.id
        monkeypatch.undo()
        stored = desk.engine.require_loan(loan.id)
        assert stored.renewal_count == 0
        assert stored.due_at == loan.due_at


class TestDueReminders:
    """Tests for due-date reminders."""

    def test_reminder_for_loan_due_soon(self, desk, clock, free_member, title_id):
        """Test a loan inside the window gets one reminder naming the book."""
        loan = desk.borrow(free_member, title_id)
        clock.advance(days=5)

        sent = desk.send_due_reminders()

        assert len(sent) == 1
        assert sent[0].kind == NotificationKind.LOAN_DUE_SOON.value
        assert sent[0].loan_id == loan.id
        assert sent[0].member_id == free_member
        assert '"Dune" is due in 2 day(s)' in sent[0].message

    def test_no_reminder_outside_window(self, desk, clock, free_member, title_id):
        """Test loans due later, returned or overdue are skipped."""
        loan = desk.borrow(free_member, title_id)

        assert desk.send_due_reminders() == []

        clock.advance(days=8)
        assert desk.send_due_reminders() == []

        desk.return_loan(loan.id)
        assert desk.send_due_reminders() == []

    def test_once_per_day(self, desk, clock, free_member, title_id):
        """Test repeated sweeps on one day do not repeat the reminder."""
        desk.borrow(free_member, title_id)
        clock.advance(days=5)
        desk.send_due_reminders()

        clock.advance(hours=6)
        assert desk.send_due_reminders() == []

        clock.advance(hours=18)
        again = desk.send_due_reminders()
        assert len(again) == 1
        assert "due in 1 day(s)" in again[0].message

    def test_days_from_config(self, db, clock):
        """Test the look-ahead defaults to the configured number of days."""
        desk = CirculationDesk(db, config=make_config(due_reminder_days=1), clock=clock)
        add_member(desk, "gil")
        desk.borrow("gil", desk.add_title("Walden", copies=1).id)

        clock.advance(days=5)
        assert desk.send_due_reminders() == []

        clock.advance(days=1)
        assert len(desk.send_due_reminders()) == 1


class TestQueries:
    """Tests for loan listings and reports."""

    def test_member_loans(self, desk, premium_member, title_ids):
        """Test open loans are listed and returned ones hidden."""
        first = desk.borrow(premium_member, title_ids[0])
        desk.borrow(premium_member, title_ids[1])
        desk.return_loan(first.id)

        assert len(desk.get_member_loans(premium_member)) == 1
        assert len(desk.get_member_loans(premium_member, include_returned=True)) == 2

    def test_overdue_report(self, desk, clock, free_member, premium_member, title_ids):
        """Test overdue loans with their accrued fines."""
        desk.borrow(free_member, title_ids[0])
        desk.borrow(premium_member, title_ids[1])
        clock.advance(days=9)

        report = desk.engine.get_overdue_loans()

        assert report.total_overdue == 1
        assert report.oldest_overdue_days == 2
        assert report.loans[0].member_id == free_member
        assert report.loans[0].accrued_fine == Decimal("60.00")
        assert report.total_accrued == Decimal("60.00")

    def test_overdue_filter(self, desk, clock, free_member, title_id):
        """Test listing by the derived overdue status."""
        desk.borrow(free_member, title_id)
        assert desk.engine.list_loans(status=LoanStatus.OVERDUE) == []

        clock.advance(days=8)
        assert len(desk.engine.list_loans(status=LoanStatus.OVERDUE)) == 1

    def test_due_soon(self, desk, clock, free_member, premium_member, title_ids):
        """Test loans due within the window."""
        soon = desk.borrow(free_member, title_ids[0])
        desk.borrow(premium_member, title_ids[1])
        clock.advance(days=5)

        loans = desk.engine.get_loans_due_soon(days=3)

        assert [loan.id for loan in loans] == [soon.id]
