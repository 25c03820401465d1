"""Tests for InventoryLedger."""

import pytest
from pydantic import ValidationError

from circdesk.errors import (
    InvalidCountError,
    InventoryInvariantError,
    NoCopiesAvailableError,
    TitleNotFoundError,
)
from circdesk.inventory import InventoryLedger, TitleCreate


@pytest.fixture
def ledger(db, clock):
    """Create an InventoryLedger with test database."""
    return InventoryLedger(db, clock=clock)


@pytest.fixture
def title(ledger):
    return ledger.add_title(TitleCreate(name="Middlemarch", total_copies=2))


class TestTitles:
    """Tests for catalog entries."""

    def test_add_title(self, ledger):
        """Test new titles start with every copy available."""
        title = ledger.add_title(TitleCreate(name="Persuasion", total_copies=3))

        assert title.id is not None
        assert title.total_copies == 3
        assert title.available_copies == 3
        assert title.is_active is True

    def test_add_title_negative_copies(self):
        """Test negative copy counts are rejected on input."""
        with pytest.raises(ValidationError):
            TitleCreate(name="Nothing", total_copies=-1)

    def test_require_missing(self, ledger):
        """Test unknown titles raise."""
        with pytest.raises(TitleNotFoundError):
            ledger.require_title("missing")

    def test_list_active_only(self, ledger, title):
        """Test withdrawn titles are filtered out."""
        other = ledger.add_title(TitleCreate(name="Adam Bede", total_copies=1))
        ledger.deactivate(other.id)

        assert [t.id for t in ledger.list_titles()] == [other.id, title.id]
        assert [t.id for t in ledger.list_titles(active_only=True)] == [title.id]

    def test_reactivate(self, ledger, title):
        """Test a withdrawn title can be lent again."""
        ledger.deactivate(title.id)
        ledger.reactivate(title.id)

        ledger.try_acquire(title.id)
        assert ledger.require_title(title.id).available_copies == 1


class TestAcquireRelease:
    """Tests for counter operations."""

    def test_acquire_decrements(self, ledger, title):
        """Test one copy is taken."""
        ledger.try_acquire(title.id)
        assert ledger.require_title(title.id).available_copies == 1

    def test_acquire_until_empty(self, ledger, title):
        """Test acquiring past zero fails without going negative."""
        ledger.try_acquire(title.id)
        ledger.try_acquire(title.id)

        with pytest.raises(NoCopiesAvailableError):
            ledger.try_acquire(title.id)
        assert ledger.require_title(title.id).available_copies == 0

    def test_acquire_unknown_title(self, ledger):
        """Test acquiring an unknown title."""
        with pytest.raises(TitleNotFoundError):
            ledger.try_acquire("missing")

    def test_acquire_inactive_title(self, ledger, title):
        """Test withdrawn titles have no copies to give."""
        ledger.deactivate(title.id)

        with pytest.raises(NoCopiesAvailableError):
            ledger.try_acquire(title.id)

    def test_release_increments(self, ledger, title):
        """Test a released copy becomes available."""
        ledger.try_acquire(title.id)
        ledger.release(title.id)

        assert ledger.require_title(title.id).available_copies == 2

    def test_release_never_exceeds_total(self, ledger, title):
        """Test releasing with every copy home is an invariant violation."""
        with pytest.raises(InventoryInvariantError):
            ledger.release(title.id)
        assert ledger.require_title(title.id).available_copies == 2

    def test_release_unknown_title(self, ledger):
        """Test releasing an unknown title."""
        with pytest.raises(TitleNotFoundError):
            ledger.release("missing")


class TestAdjustTotal:
    """Tests for stock management."""

    def test_grow(self, ledger, title):
        """Test new copies are immediately available."""
        ledger.try_acquire(title.id)

        updated = ledger.adjust_total(title.id, 5)

        assert updated.total_copies == 5
        assert updated.available_copies == 4

    def test_shrink_to_outstanding(self, ledger, title):
        """Test shrinking down to the number of copies out."""
        ledger.try_acquire(title.id)

        updated = ledger.adjust_total(title.id, 1)

        assert updated.total_copies == 1
        assert updated.available_copies == 0

    def test_shrink_below_outstanding(self, ledger, title):
        """Test shrinking below copies out is rejected."""
        ledger.try_acquire(title.id)
        ledger.try_acquire(title.id)

        with pytest.raises(InvalidCountError) as exc_info:
            ledger.adjust_total(title.id, 1)

        assert exc_info.value.outstanding == 2
        unchanged = ledger.require_title(title.id)
        assert unchanged.total_copies == 2
        assert unchanged.available_copies == 0

    def test_negative_total(self, ledger, title):
        """Test negative totals are rejected."""
        with pytest.raises(InvalidCountError):
            ledger.adjust_total(title.id, -1)

    def test_zero_total(self, ledger, title):
        """Test a title can be stocked down to nothing."""
        updated = ledger.adjust_total(title.id, 0)

        assert updated.total_copies == 0
        assert updated.available_copies == 0

    def test_unknown_title(self, ledger):
        """Test adjusting an unknown title."""
        with pytest.raises(TitleNotFoundError):
            ledger.adjust_total("missing", 3)


class TestAvailability:
    """Tests for the availability projection."""

    def test_counts(self, desk, title_id, free_member, premium_member):
        """Test loans and holds are counted against the title."""
        desk.adjust_stock(title_id, 3)
        desk.borrow(free_member, title_id)
        desk.borrow(premium_member, title_id)

        availability = desk.get_title_availability(title_id)

        assert availability.total == 3
        assert availability.available == 1
        assert availability.on_loan == 2
        assert availability.held == 0
        assert availability.is_balanced

    def test_conservation(self, desk, title_id):
        """Test a fresh title balances."""
        assert desk.inventory.check_conservation(title_id)
