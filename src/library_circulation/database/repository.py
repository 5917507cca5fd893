"""
Ledger base classes and the circulation error vocabulary.

The ledgers follow the repository pattern: each one owns the rows of one part
of the circulation engine and returns pydantic models to its callers. Unlike
a classic repository they never commit. A ledger is bound to the session of
one coordinator transaction, so a composite command (approve a request, issue
the loan, consume the item) succeeds or fails as a whole.

Every domain rule violation is raised as a ``CirculationError`` subclass whose
``kind`` is the stable error name callers render and match on.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..collaborators import CirculationEvent, Clock, SystemClock
from ..config import CirculationConfig, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

# Raised when another transaction touched the same rows; the coordinator retries these
TRANSIENT_ERRORS = (StaleDataError, IntegrityError, OperationalError)


class RepositoryException(Exception):
    """Base exception for repository operations."""


class CirculationError(RepositoryException):
    """A circulation rule was violated; nothing was written."""

    kind = "CirculationError"

    def render(self) -> str:
        """``<kind>: <message>`` as shown to API callers."""
        return f"{self.kind}: {self}"


class NotFoundError(CirculationError):
    """Raised when an entity is not found."""

    kind = "NotFound"


class InvalidTransitionError(CirculationError):
    """Requested status change is not in the allowed graph."""

    kind = "InvalidTransition"


class DuplicateError(CirculationError):
    """Raised when attempting to create a duplicate entity."""

    kind = "Duplicate"


class DuplicateBarcodeError(DuplicateError):
    kind = "DuplicateBarcode"


class DuplicateReservationError(DuplicateError):
    kind = "DuplicateReservation"


class DuplicateRequestError(DuplicateError):
    kind = "DuplicateRequest"


class ItemInUseError(CirculationError):
    kind = "ItemInUse"


class ItemNotAvailableError(CirculationError):
    kind = "ItemNotAvailable"


class NoItemsAvailableError(CirculationError):
    kind = "NoItemsAvailable"


class BorrowLimitExceededError(CirculationError):
    kind = "BorrowLimitExceeded"


class RenewalLimitExceededError(CirculationError):
    kind = "RenewalLimitExceeded"


class LoanNotActiveError(CirculationError):
    kind = "LoanNotActive"


class NoOutstandingFineError(CirculationError):
    kind = "NoOutstandingFine"


class RequestNotPendingError(CirculationError):
    kind = "RequestNotPending"


class InvalidRequestError(CirculationError):
    """Malformed command input, such as a rejection without a reason."""

    kind = "InvalidRequest"


class UnauthorizedError(CirculationError):
    """The acting member lacks the role, or the ownership, the action needs."""

    kind = "Unauthorized"


class ConflictError(CirculationError):
    """Store contention persisted through every retry attempt."""

    kind = "Conflict"


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


def new_id(prefix: str) -> str:
    """Generate an id such as ``loan_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid4().hex[:12]}"


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query with uniform error reporting.

    Contention errors (``TRANSIENT_ERRORS``, which autoflush can raise from
    any query) propagate unchanged so the coordinator can retry the
    transaction; any other database failure is reported as a
    ``RepositoryException``.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Error message for the caller
    """
    try:
        return query_func(session)
    except TRANSIENT_ERRORS:
        raise
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise RepositoryException(f"{error_msg}: Database query failed") from e


class BaseLedger:
    """
    Shared plumbing for the session-bound ledgers.

    A ledger holds the session of the current transaction, the injected clock,
    the circulation policy, and the list notifications are queued on. Queued
    events are delivered by the coordinator only after the commit succeeds.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CirculationConfig | None = None,
        events: list[CirculationEvent] | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or get_config()
        self.events = events if events is not None else []

    def now(self) -> datetime:
        return self.clock.now()

    def _get(self, model_class: type, entity_id: str, label: str) -> Any:
        """Load one row by id or raise ``NotFoundError``."""
        row = safe_query(
            self.session,
            lambda s: s.get(model_class, entity_id),
            f"Failed to get {label}",
        )
        if row is None:
            raise NotFoundError(f"{label} {entity_id} not found")
        return row

    def _all(self, query, error_msg: str) -> list:
        return list(safe_query(self.session, lambda s: s.execute(query).scalars().all(), error_msg))

    def _first(self, query, error_msg: str):
        return safe_query(self.session, lambda s: s.execute(query).scalars().first(), error_msg)

    def _scalar(self, query, error_msg: str):
        return safe_query(self.session, lambda s: s.execute(query).scalar(), error_msg)

    def _paginate(
        self,
        query,
        pagination: PaginationParams,
        to_model: Callable[[Any], ResponseSchemaType],
    ) -> PaginatedResponse[ResponseSchemaType]:
        """Run ``query`` one page at a time."""
        pagination.validate_params()

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to count total for pagination",
            )
            or 0
        )

        page_query = query.offset(pagination.offset).limit(pagination.page_size)
        rows = self._all(page_query, "Failed to get paginated results")

        return PaginatedResponse(
            items=[to_model(row) for row in rows],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )
