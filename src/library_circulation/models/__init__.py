"""
Library circulation models.

Pydantic read models for every entity the circulation engine persists, plus
the shared status vocabularies:

- Title, Item: catalog records and their physical copies
- Member: library accounts with roles and borrow limits
- Loan, Reservation, BorrowRequest: circulation records
"""

from .circulation import BorrowRequest, Loan, Reservation
from .inventory import Item, Title
from .member import Member
from .status import (
    ACTIVE_RESERVATION_STATUSES,
    OPEN_LOAN_STATUSES,
    BorrowRequestStatus,
    ItemStatus,
    LoanStatus,
    MemberRole,
    ReservationStatus,
)

__all__ = [
    "ACTIVE_RESERVATION_STATUSES",
    "OPEN_LOAN_STATUSES",
    "BorrowRequest",
    "BorrowRequestStatus",
    "Item",
    "ItemStatus",
    "Loan",
    "LoanStatus",
    "Member",
    "MemberRole",
    "Reservation",
    "ReservationStatus",
    "Title",
]
