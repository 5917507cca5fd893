"""
Status vocabularies shared by the persistence layer and the pydantic models.

The string values are the wire vocabulary other collaborators (UI, sync,
notification workers) read from stored documents, so they must never be
renamed.
"""

from enum import Enum


class ItemStatus(str, Enum):
    """Shelf status of one physical copy."""

    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"
    LOST = "lost"


class LoanStatus(str, Enum):
    """Lifecycle of a loan; ``returned`` is terminal."""

    ISSUED = "issued"
    OVERDUE = "overdue"
    RETURNED = "returned"


class ReservationStatus(str, Enum):
    """Position of a reservation in the per-title waiting queue."""

    WAITING = "waiting"
    NOTIFIED = "notified"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"


class BorrowRequestStatus(str, Enum):
    """Librarian approval workflow; everything but ``pending`` is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class MemberRole(str, Enum):
    """Closed set of account roles used for every authorization check."""

    MEMBER = "member"
    LIBRARIAN = "librarian"
    CANCELLED = "cancelled"


OPEN_LOAN_STATUSES = (LoanStatus.ISSUED, LoanStatus.OVERDUE)
ACTIVE_RESERVATION_STATUSES = (ReservationStatus.WAITING, ReservationStatus.NOTIFIED)
