"""
Circulation coordinator: the atomicity boundary of the engine.

Every command, from a single renewal to "approve this request, consume an
item and open the loan", runs through ``run_atomic``. It opens a fresh
session, builds session-bound ledgers on it, runs the operation and commits
once. A domain error rolls everything back and reaches the caller unchanged.
Store contention (a row version that moved under us, a unique index that
caught a racing insert, SQLite's "database is locked") rolls back and retries
the whole operation with linear backoff, then surfaces as ``ConflictError``.
Any other constraint the store refuses is bad input and surfaces at once as
``InvalidRequestError``.

Notifications queued by the ledgers are delivered only after the commit
succeeds and never affect its outcome.
"""

import logging
import time
from collections.abc import Callable
from datetime import date
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..collaborators import (
    CirculationEvent,
    Clock,
    EventKind,
    IdentityProvider,
    LoggingNotifier,
    Notifier,
    StaticIdentity,
    SystemClock,
)
from ..config import CirculationConfig, get_config
from ..models import (
    BorrowRequest,
    BorrowRequestStatus,
    Item,
    ItemStatus,
    Loan,
    LoanStatus,
    Member,
    MemberRole,
    Reservation,
    ReservationStatus,
    Title,
)
from ..models.status import OPEN_LOAN_STATUSES
from ..observability import trace_operation
from .borrow_request_repository import BorrowRequestWorkflow
from .inventory_repository import InventoryLedger
from .loan_repository import LoanLedger
from .member_repository import MemberRegistry
from .repository import (
    TRANSIENT_ERRORS,
    ConflictError,
    InvalidRequestError,
    PaginatedResponse,
    PaginationParams,
)
from .reservation_repository import ReservationQueue
from .schema import Item as ItemDB
from .schema import Loan as LoanDB
from .schema import Member as MemberDB
from .schema import Title as TitleDB
from .session import DatabaseManager, get_db_manager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CirculationContext:
    """The ledgers of one transaction, all sharing its session and event queue."""

    def __init__(self, session: Session, clock: Clock, config: CirculationConfig):
        self.session = session
        self.events: list[CirculationEvent] = []
        self.members = MemberRegistry(session, clock, config, self.events)
        self.inventory = InventoryLedger(session, clock, config, self.events)
        self.loans = LoanLedger(session, clock, config, self.events, self.inventory, self.members)
        self.reservations = ReservationQueue(
            session, clock, config, self.events, self.inventory, self.loans, self.members
        )
        self.requests = BorrowRequestWorkflow(
            session, clock, config, self.events, self.inventory, self.loans, self.members
        )


class ReturnOutcome(BaseModel):
    """Result of a return: the closed loan and, if the item went to the queue, who got it."""

    loan: Loan
    notified_reservation: Reservation | None = None


def _store_message(error: DBAPIError) -> str:
    return str(error.orig).lower() if error.orig is not None else str(error).lower()


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, OperationalError):
        message = _store_message(error)
        return "locked" in message or "busy" in message or "deadlock" in message
    if isinstance(error, IntegrityError):
        # Only a racing insert on a unique index goes away on retry
        message = _store_message(error)
        return "unique" in message or "duplicate key" in message
    return True


class CirculationCoordinator:
    """
    Entry point for every circulation command and query.

    Args:
        db: Database manager; defaults to the global one
        clock: Time source; defaults to the wall clock
        notifier: Delivery channel for member notices; defaults to the log
        config: Circulation policy; defaults to the global configuration
        identity: Who is acting when a caller does not say
    """

    def __init__(
        self,
        db: DatabaseManager | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        config: CirculationConfig | None = None,
        identity: IdentityProvider | None = None,
    ):
        self.config = config or get_config()
        self.db = db or get_db_manager()
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotifier()
        self.identity = identity or StaticIdentity(self.config.acting_member_id)

    # === Transaction boundary ===

    def run_atomic(self, operation: str, fn: Callable[[CirculationContext], T]) -> T:
        """
        Run ``fn`` inside one transaction, retrying on store contention.

        Raises:
            CirculationError: Whatever domain error ``fn`` raised, unchanged
            InvalidRequestError: A write broke a constraint other than uniqueness
            ConflictError: Contention persisted for ``max_transaction_attempts``
        """
        attempts = self.config.max_transaction_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            session = self.db.create_session()
            ctx = CirculationContext(session, self.clock, self.config)
            try:
                with trace_operation(operation, attempt=attempt):
                    result = fn(ctx)
                    session.commit()
            except TRANSIENT_ERRORS as e:
                session.rollback()
                if isinstance(e, IntegrityError) and not _is_retryable(e):
                    logger.error("%s violated a store constraint: %s", operation, e.orig)
                    raise InvalidRequestError(
                        f"{operation} was refused by the store: {e.orig}"
                    ) from e
                if not _is_retryable(e):
                    raise
                last_error = e
                logger.warning(
                    "%s: attempt %d/%d lost a write race (%s)",
                    operation,
                    attempt,
                    attempts,
                    type(e).__name__,
                )
                if attempt < attempts and self.config.retry_backoff_seconds > 0:
                    time.sleep(self.config.retry_backoff_seconds * attempt)
                continue
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            self._dispatch(ctx.events)
            return result

        raise ConflictError(
            f"{operation} could not complete after {attempts} attempts"
        ) from last_error

    def _dispatch(self, events: list[CirculationEvent]) -> None:
        for event in events:
            try:
                self.notifier.notify(event)
            except Exception:
                logger.exception(
                    "Failed to deliver %s notice to member %s", event.kind.value, event.member_id
                )

    def acting_member_id(self) -> str | None:
        return self.identity.current_member_id()

    # === Members ===

    def register_member(
        self,
        name: str,
        role: MemberRole = MemberRole.MEMBER,
        email: str | None = None,
        max_borrow: int | None = None,
        member_id: str | None = None,
    ) -> Member:
        return self.run_atomic(
            "register_member",
            lambda ctx: ctx.members.register(name, role, email, max_borrow, member_id),
        )

    def set_member_role(self, member_id: str, role: MemberRole) -> Member:
        """Change a role; an account that can no longer borrow leaves every queue it was in."""

        def op(ctx: CirculationContext) -> Member:
            member = ctx.members.set_role(member_id, role)
            if ctx.members.role_of(member_id) != MemberRole.MEMBER:
                ctx.reservations.withdraw_member(member_id)
            return member

        return self.run_atomic("set_member_role", op)

    def get_member(self, member_id: str) -> Member:
        return self.run_atomic("get_member", lambda ctx: ctx.members.get(member_id))

    def list_members(self, role: MemberRole | None = None) -> list[Member]:
        return self.run_atomic("list_members", lambda ctx: ctx.members.list_members(role))

    # === Inventory ===

    def add_title(
        self,
        title: str,
        authors: list[str] | None = None,
        isbn: str | None = None,
        categories: list[str] | None = None,
        published_at: date | None = None,
        copies: int = 0,
        barcode_prefix: str | None = None,
        location: str | None = None,
    ) -> Title:
        return self.run_atomic(
            "add_title",
            lambda ctx: ctx.inventory.add_title(
                title, authors, isbn, categories, published_at, copies, barcode_prefix, location
            ),
        )

    def add_item(
        self,
        title_id: str,
        barcode: str,
        location: str | None = None,
        condition: str | None = None,
    ) -> Item:
        """Add a copy; if members are waiting, it goes straight to the queue head."""

        def op(ctx: CirculationContext) -> Item:
            item = ctx.inventory.add_item(title_id, barcode, location, condition)
            row = ctx.inventory.get_item_row(item.id)
            ctx.reservations.notify_next(title_id, row)
            return Item.model_validate(row)

        return self.run_atomic("add_item", op)

    def set_item_status(self, item_id: str, new_status: ItemStatus) -> Item:
        """Change shelf status; an item coming back to the shelf is offered to the queue."""

        def op(ctx: CirculationContext) -> Item:
            ctx.inventory.set_item_status(item_id, new_status)
            row = ctx.inventory.get_item_row(item_id)
            if row.status == ItemStatus.AVAILABLE:
                ctx.reservations.notify_next(row.title_id, row)
            return Item.model_validate(row)

        return self.run_atomic("set_item_status", op)

    def remove_item(self, item_id: str) -> Item:
        """Withdraw an item; a reservation holding it goes back to waiting."""

        def op(ctx: CirculationContext) -> Item:
            row = ctx.inventory.get_item_row(item_id)
            if row.status == ItemStatus.RESERVED:
                ctx.reservations.unbind_item(item_id)
            return ctx.inventory.remove_item(item_id)

        return self.run_atomic("remove_item", op)

    def update_title(
        self,
        title_id: str,
        title: str | None = None,
        authors: list[str] | None = None,
        isbn: str | None = None,
        categories: list[str] | None = None,
        published_at: date | None = None,
    ) -> Title:
        return self.run_atomic(
            "update_title",
            lambda ctx: ctx.inventory.update_title(
                title_id, title, authors, isbn, categories, published_at
            ),
        )

    def remove_title(self, title_id: str) -> Title:
        """
        Withdraw a title and its copies.

        The title's reservations and pending borrow requests are cancelled in
        the same transaction, so a refusal (a copy still on loan) leaves them
        untouched.
        """

        def op(ctx: CirculationContext) -> Title:
            ctx.inventory.get_title_row(title_id)
            ctx.reservations.close_title(title_id)
            ctx.requests.withdraw_title(title_id)
            return ctx.inventory.remove_title(title_id)

        return self.run_atomic("remove_title", op)

    def recompute_counts(self, title_id: str) -> Title:
        return self.run_atomic(
            "recompute_counts", lambda ctx: ctx.inventory.recompute_counts(title_id)
        )

    def get_title(self, title_id: str) -> Title:
        return self.run_atomic("get_title", lambda ctx: ctx.inventory.get_title(title_id))

    def list_titles(self, pagination: PaginationParams | None = None) -> PaginatedResponse[Title]:
        return self.run_atomic("list_titles", lambda ctx: ctx.inventory.list_titles(pagination))

    def get_item(self, item_id: str) -> Item:
        return self.run_atomic("get_item", lambda ctx: ctx.inventory.get_item(item_id))

    def list_items(self, title_id: str, status: ItemStatus | None = None) -> list[Item]:
        return self.run_atomic(
            "list_items", lambda ctx: ctx.inventory.list_items(title_id, status)
        )

    # === Loans ===

    def issue_loan(self, member_id: str, title_id: str, item_id: str | None = None) -> Loan:
        """Walk-in checkout of a title (or a specific copy of it)."""
        return self.run_atomic(
            "checkout", lambda ctx: ctx.loans.issue_loan(member_id, title_id, item_id)
        )

    checkout = issue_loan

    def renew_loan(self, loan_id: str) -> Loan:
        return self.run_atomic("renew_loan", lambda ctx: ctx.loans.renew_loan(loan_id))

    def return_book(self, loan_id: str) -> ReturnOutcome:
        """Close the loan and route the freed item to the reservation queue head."""

        def op(ctx: CirculationContext) -> ReturnOutcome:
            loan, item = ctx.loans.return_book(loan_id)
            notified = ctx.reservations.notify_next(loan.title_id, item)
            return ReturnOutcome(loan=loan, notified_reservation=notified)

        return self.run_atomic("return_and_cascade", op)

    return_and_cascade = return_book

    def mark_overdue(self, loan_id: str) -> Loan:
        return self.run_atomic("mark_overdue", lambda ctx: ctx.loans.mark_overdue(loan_id))

    def sweep_overdue(self) -> list[Loan]:
        return self.run_atomic("sweep_overdue", lambda ctx: ctx.loans.sweep_overdue())

    def send_due_reminders(self, within_days: int | None = None) -> list[Loan]:
        """Queue a due reminder for every loan due within the window."""

        def op(ctx: CirculationContext) -> list[Loan]:
            due_soon = ctx.loans.list_due_soon(within_days)
            now = self.clock.now()
            for loan in due_soon:
                ctx.events.append(
                    CirculationEvent(
                        kind=EventKind.DUE_REMINDER,
                        member_id=loan.member_id,
                        title_id=loan.title_id,
                        loan_id=loan.id,
                        item_id=loan.item_id,
                        occurred_at=now,
                        details={"due_date": loan.due_date.isoformat()},
                    )
                )
            return due_soon

        return self.run_atomic("send_due_reminders", op)

    def pay_fine(self, loan_id: str) -> Loan:
        return self.run_atomic("pay_fine", lambda ctx: ctx.loans.pay_fine(loan_id))

    def get_loan(self, loan_id: str) -> Loan:
        return self.run_atomic("get_loan", lambda ctx: ctx.loans.get(loan_id))

    def list_loans(
        self,
        member_id: str | None = None,
        status: LoanStatus | None = None,
        title_id: str | None = None,
    ) -> list[Loan]:
        return self.run_atomic(
            "list_loans", lambda ctx: ctx.loans.list_loans(member_id, status, title_id)
        )

    def list_due_soon(self, within_days: int | None = None) -> list[Loan]:
        return self.run_atomic("list_due_soon", lambda ctx: ctx.loans.list_due_soon(within_days))

    def list_outstanding_fines(self, member_id: str | None = None) -> list[Loan]:
        return self.run_atomic(
            "list_outstanding_fines", lambda ctx: ctx.loans.list_outstanding_fines(member_id)
        )

    # === Reservations ===

    def reserve(self, member_id: str, title_id: str) -> Reservation:
        return self.run_atomic("reserve", lambda ctx: ctx.reservations.reserve(member_id, title_id))

    def cancel_reservation(self, reservation_id: str, member_id: str | None = None) -> Reservation:
        return self.run_atomic(
            "cancel_reservation", lambda ctx: ctx.reservations.cancel(reservation_id, member_id)
        )

    def fulfill_reservation(
        self, reservation_id: str, librarian_id: str | None = None
    ) -> Reservation:
        return self.run_atomic(
            "fulfill_reservation",
            lambda ctx: ctx.reservations.fulfill(reservation_id, librarian_id),
        )

    def get_reservation(self, reservation_id: str) -> Reservation:
        return self.run_atomic("get_reservation", lambda ctx: ctx.reservations.get(reservation_id))

    def reservation_queue(self, title_id: str) -> list[Reservation]:
        return self.run_atomic("reservation_queue", lambda ctx: ctx.reservations.queue(title_id))

    def reservation_position(self, reservation_id: str) -> int | None:
        return self.run_atomic(
            "reservation_position", lambda ctx: ctx.reservations.position(reservation_id)
        )

    def waiting_count(self, title_id: str) -> int:
        return self.run_atomic(
            "waiting_count", lambda ctx: ctx.reservations.waiting_count(title_id)
        )

    def has_active_reservation(self, member_id: str, title_id: str) -> bool:
        return self.run_atomic(
            "has_active_reservation",
            lambda ctx: ctx.reservations.has_active_reservation(member_id, title_id),
        )

    def list_reservations(
        self,
        title_id: str | None = None,
        status: ReservationStatus | None = None,
        member_id: str | None = None,
    ) -> list[Reservation]:
        return self.run_atomic(
            "list_reservations",
            lambda ctx: ctx.reservations.list_reservations(title_id, status, member_id),
        )

    # === Borrow requests ===

    def submit_borrow_request(
        self,
        member_id: str,
        title_id: str,
        item_id: str | None = None,
        member_note: str | None = None,
    ) -> BorrowRequest:
        return self.run_atomic(
            "submit_borrow_request",
            lambda ctx: ctx.requests.submit(member_id, title_id, item_id, member_note),
        )

    def approve_borrow_request(
        self,
        request_id: str,
        librarian_id: str,
        item_id: str | None = None,
        librarian_note: str | None = None,
    ) -> BorrowRequest:
        """Approve a request and issue its loan as one unit."""
        return self.run_atomic(
            "approve_and_issue",
            lambda ctx: ctx.requests.approve(request_id, librarian_id, item_id, librarian_note),
        )

    approve_and_issue = approve_borrow_request

    def reject_borrow_request(
        self, request_id: str, librarian_id: str, reason: str
    ) -> BorrowRequest:
        return self.run_atomic(
            "reject_borrow_request",
            lambda ctx: ctx.requests.reject(request_id, librarian_id, reason),
        )

    def cancel_borrow_request(self, request_id: str, member_id: str) -> BorrowRequest:
        return self.run_atomic(
            "cancel_borrow_request", lambda ctx: ctx.requests.cancel(request_id, member_id)
        )

    def get_borrow_request(self, request_id: str) -> BorrowRequest:
        return self.run_atomic("get_borrow_request", lambda ctx: ctx.requests.get(request_id))

    def list_borrow_requests(
        self,
        status: BorrowRequestStatus | None = None,
        member_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[BorrowRequest]:
        return self.run_atomic(
            "list_borrow_requests",
            lambda ctx: ctx.requests.list_requests(status, member_id, pagination),
        )

    # === Consistency checks ===

    def verify_invariants(self) -> list[str]:
        """
        Check the store-wide circulation invariants.

        Returns one message per violation; an empty list means consistent:

        - each title's counters match its live items
        - no item has more than one open loan, and borrowed items have one
        - each member's borrowed count matches their open loans
        """
        return self.run_atomic("verify_invariants", _collect_violations)


def _collect_violations(ctx: CirculationContext) -> list[str]:
    session = ctx.session
    problems: list[str] = []

    live_items = select(ItemDB).where(ItemDB.removed_at.is_(None))
    items = session.execute(live_items).scalars().all()
    by_title: dict[str, list[ItemDB]] = {}
    for item in items:
        by_title.setdefault(item.title_id, []).append(item)

    for title in session.execute(select(TitleDB)).scalars():
        title_items = by_title.get(title.id, [])
        available = sum(1 for i in title_items if i.status == ItemStatus.AVAILABLE)
        if title.available_copies != available:
            problems.append(
                f"Title {title.id}: available_copies={title.available_copies} "
                f"but {available} items are available"
            )
        if title.total_copies != len(title_items):
            problems.append(
                f"Title {title.id}: total_copies={title.total_copies} "
                f"but it has {len(title_items)} items"
            )

    open_by_item = dict(
        session.execute(
            select(LoanDB.item_id, func.count())
            .where(LoanDB.status.in_(OPEN_LOAN_STATUSES))
            .group_by(LoanDB.item_id)
        ).all()
    )
    for item_id, count in open_by_item.items():
        if count > 1:
            problems.append(f"Item {item_id}: {count} open loans")
    for item in items:
        if item.status == ItemStatus.BORROWED and open_by_item.get(item.id, 0) != 1:
            problems.append(f"Item {item.id}: borrowed without exactly one open loan")

    open_by_member = dict(
        session.execute(
            select(LoanDB.member_id, func.count())
            .where(LoanDB.status.in_(OPEN_LOAN_STATUSES))
            .group_by(LoanDB.member_id)
        ).all()
    )
    for member in session.execute(select(MemberDB)).scalars():
        expected = open_by_member.get(member.id, 0)
        if member.borrowed_count != expected:
            problems.append(
                f"Member {member.id}: borrowed_count={member.borrowed_count} "
                f"but {expected} loans are open"
            )

    return problems


_coordinator: CirculationCoordinator | None = None


def get_coordinator() -> CirculationCoordinator:
    """Get the global coordinator used by the MCP tools and resources."""
    global _coordinator  # noqa: PLW0603 - Singleton pattern like the database manager

    if _coordinator is None:
        _coordinator = CirculationCoordinator()
    return _coordinator


def set_coordinator(coordinator: CirculationCoordinator | None) -> None:
    """Install a coordinator (tests, or a server with a custom notifier/clock)."""
    global _coordinator  # noqa: PLW0603
    _coordinator = coordinator


def reset_coordinator() -> None:
    set_coordinator(None)
