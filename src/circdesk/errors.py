"""Exception hierarchy for circulation operations.

Errors fall into four families that callers treat differently:

- AdmissionError: the member is not allowed to do this right now
  (limit reached, not eligible, unpaid fines). Show to the user as is.
- AvailabilityError: expected outcome that usually leads to an
  alternate flow, e.g. offering a reservation when no copy is free.
- StateError: the caller acted on a stale view (already returned,
  already overdue, ...). Report as a conflict and refetch.
- InvariantError: internal bookkeeping would be corrupted. Fatal for
  the operation; the transaction is rolled back.
"""

from decimal import Decimal
from typing import Optional


class CirculationError(Exception):
    """Base exception for all circulation errors."""

    pass


# ----------------------------------------------------------------------------
# Lookup
# ----------------------------------------------------------------------------


class NotFoundError(CirculationError):
    """Raised when a referenced record does not exist."""

    entity = "Record"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"{self.entity} not found: {record_id}")


class TitleNotFoundError(NotFoundError):
    entity = "Title"


class MemberNotFoundError(NotFoundError):
    entity = "Member"


class LoanNotFoundError(NotFoundError):
    entity = "Loan"


class ReservationNotFoundError(NotFoundError):
    entity = "Reservation"


class FineNotFoundError(NotFoundError):
    entity = "Fine"


class PaymentNotFoundError(NotFoundError):
    entity = "Payment"


class NotificationNotFoundError(NotFoundError):
    entity = "Notification"


# ----------------------------------------------------------------------------
# Admission
# ----------------------------------------------------------------------------


class AdmissionError(CirculationError):
    """The member's entitlement does not allow the operation."""

    pass


class BorrowLimitExceededError(AdmissionError):
    """Member already holds the maximum number of concurrent loans."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Borrowing limit reached. You can borrow up to {limit} book(s) at a time."
        )


class NotEligibleError(AdmissionError):
    """Member's tier does not include reservations."""

    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__("Reservations are available to premium members only.")


class OutstandingFinesError(AdmissionError):
    """Pending fines exceed the borrowing threshold."""

    def __init__(self, balance: Decimal, threshold: Decimal):
        self.balance = balance
        self.threshold = threshold
        super().__init__(
            f"Outstanding fines of {balance} exceed the allowed {threshold}. "
            "Please settle them before borrowing."
        )


# ----------------------------------------------------------------------------
# Availability
# ----------------------------------------------------------------------------


class AvailabilityError(CirculationError):
    """Expected, non-fatal outcome; often leads to an alternate flow."""

    pass


class NoCopiesAvailableError(AvailabilityError):
    """Inventory-level signal that no copy could be acquired."""

    def __init__(self, title_id: str):
        self.title_id = title_id
        super().__init__(f"No copies available for title {title_id}")


class BookUnavailableError(AvailabilityError):
    """Borrow failed because no copy is free. The title can be reserved."""

    def __init__(self, title_id: str):
        self.title_id = title_id
        super().__init__("No available copies of this book")


class TitleAvailableError(AvailabilityError):
    """Reserve refused because a copy is on the shelf. Borrow it instead."""

    def __init__(self, title_id: str):
        self.title_id = title_id
        super().__init__("This book is currently available. You can borrow it directly.")


class ReservationExpiredError(AvailabilityError):
    """The hold window of a ready reservation has passed."""

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} has expired")


# ----------------------------------------------------------------------------
# State conflicts
# ----------------------------------------------------------------------------


class StateError(CirculationError):
    """Operation conflicts with the current state of a record."""

    pass


class AlreadyReturnedError(StateError):
    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} has already been returned")


class AlreadyOverdueError(StateError):
    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__("Cannot renew an overdue book. Please return it first.")


class RenewalLimitReachedError(StateError):
    def __init__(self, loan_id: str, limit: int):
        self.loan_id = loan_id
        self.limit = limit
        super().__init__(f"Maximum renewal limit reached ({limit} renewals)")


class AlreadyReservedError(StateError):
    def __init__(self, member_id: str, title_id: str):
        self.member_id = member_id
        self.title_id = title_id
        super().__init__("You already have an active reservation for this book")


class AlreadyBorrowedError(StateError):
    def __init__(self, member_id: str, title_id: str):
        self.member_id = member_id
        self.title_id = title_id
        super().__init__("You already have this book borrowed")


class ReservationStateError(StateError):
    """Reservation is not in a state that allows the operation."""

    pass


class FineStateError(StateError):
    """Fine is not in a state that allows the operation."""

    pass


class PaymentStateError(StateError):
    """Payment callback or request does not fit the payment's state."""

    pass


class LoanConflictError(StateError):
    """Another operation changed the loan concurrently."""

    def __init__(self, loan_id: Optional[str] = None):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} was modified concurrently; reload and retry")


# ----------------------------------------------------------------------------
# Validation and invariants
# ----------------------------------------------------------------------------


class InvalidCountError(CirculationError):
    """Stock adjustment would drop below copies currently out."""

    def __init__(self, title_id: str, requested: int, outstanding: int):
        self.title_id = title_id
        self.requested = requested
        self.outstanding = outstanding
        super().__init__(
            f"Cannot set total copies to {requested}: "
            f"{outstanding} copies are on loan or held"
        )


class InvariantError(CirculationError):
    """Internal bookkeeping invariant would be violated."""

    pass


class InventoryInvariantError(InvariantError):
    """A copy counter would leave the range 0 <= available <= total."""

    def __init__(self, title_id: str, detail: str):
        self.title_id = title_id
        super().__init__(f"Inventory invariant violated for title {title_id}: {detail}")
