"""
Database package for the library circulation engine.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- Session-bound ledgers, one per circulation concern
- The circulation coordinator, the only place transactions are committed
"""

from .borrow_request_repository import BorrowRequestWorkflow
from .circulation_coordinator import (
    CirculationContext,
    CirculationCoordinator,
    ReturnOutcome,
    get_coordinator,
    reset_coordinator,
    set_coordinator,
)
from .inventory_repository import InventoryLedger
from .loan_repository import LoanLedger
from .member_repository import MemberRegistry
from .repository import (
    BaseLedger,
    BorrowLimitExceededError,
    CirculationError,
    ConflictError,
    DuplicateBarcodeError,
    DuplicateError,
    DuplicateRequestError,
    DuplicateReservationError,
    InvalidRequestError,
    InvalidTransitionError,
    ItemInUseError,
    ItemNotAvailableError,
    LoanNotActiveError,
    NoItemsAvailableError,
    NoOutstandingFineError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    RenewalLimitExceededError,
    RepositoryException,
    RequestNotPendingError,
    UnauthorizedError,
)
from .reservation_repository import ReservationQueue
from .schema import Base
from .session import DatabaseManager, get_db_manager, reset_db_manager

__all__ = [
    "Base",
    "BaseLedger",
    "BorrowLimitExceededError",
    "BorrowRequestWorkflow",
    "CirculationContext",
    "CirculationCoordinator",
    "CirculationError",
    "ConflictError",
    "DatabaseManager",
    "DuplicateBarcodeError",
    "DuplicateError",
    "DuplicateRequestError",
    "DuplicateReservationError",
    "InvalidRequestError",
    "InvalidTransitionError",
    "InventoryLedger",
    "ItemInUseError",
    "ItemNotAvailableError",
    "LoanLedger",
    "LoanNotActiveError",
    "MemberRegistry",
    "NoItemsAvailableError",
    "NoOutstandingFineError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "RenewalLimitExceededError",
    "RepositoryException",
    "RequestNotPendingError",
    "ReservationQueue",
    "ReturnOutcome",
    "UnauthorizedError",
    "get_coordinator",
    "get_db_manager",
    "reset_coordinator",
    "reset_db_manager",
    "set_coordinator",
]
