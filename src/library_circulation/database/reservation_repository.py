"""
Reservation queue: the per-title FIFO waiting list.

Queue order is ``reserved_at`` ascending, with ``queue_position`` (monotonic
per title) breaking ties between reservations made in the same instant. A
freed item goes to the head of the queue before anyone can walk in and
borrow it: the item is put on hold (``reserved``) and the head reservation is
``notified`` with the item bound to it.

Cancelling a notified reservation always releases its item and notifies the
next waiting member, so an item is never left on hold without a claimant.
"""

import logging

from sqlalchemy import func, select

from ..collaborators import CirculationEvent, EventKind
from ..models.circulation import Reservation as ReservationModel
from ..models.status import (
    ACTIVE_RESERVATION_STATUSES,
    ItemStatus,
    MemberRole,
    ReservationStatus,
)
from .inventory_repository import InventoryLedger
from .loan_repository import LoanLedger
from .member_repository import MemberRegistry
from .repository import (
    BaseLedger,
    DuplicateReservationError,
    InvalidTransitionError,
    UnauthorizedError,
    new_id,
)
from .schema import Item as ItemDB
from .schema import Reservation as ReservationDB

logger = logging.getLogger(__name__)


class ReservationQueue(BaseLedger):
    """Owns reservations: enqueue, notify, fulfil, cancel."""

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        events=None,
        inventory: InventoryLedger | None = None,
        loans: LoanLedger | None = None,
        members: MemberRegistry | None = None,
    ):
        super().__init__(session, clock, config, events)
        self.inventory = inventory or InventoryLedger(session, self.clock, self.config, self.events)
        self.members = members or MemberRegistry(session, self.clock, self.config, self.events)
        self.loans = loans or LoanLedger(
            session, self.clock, self.config, self.events, self.inventory, self.members
        )

    def get_row(self, reservation_id: str) -> ReservationDB:
        return self._get(ReservationDB, reservation_id, "Reservation")

    def get(self, reservation_id: str) -> ReservationModel:
        return ReservationModel.model_validate(self.get_row(reservation_id))

    def reserve(self, member_id: str, title_id: str) -> ReservationModel:
        """
        Join the waiting queue of a title.

        Allowed even while copies are on the shelf. Only borrowing members
        queue, since nobody else could take the copy when their turn comes.

        Raises:
            UnauthorizedError: The account is cancelled or is not a member account
            DuplicateReservationError: The member already has an active reservation
        """
        self.members.require_active(member_id)
        if self.members.role_of(member_id) != MemberRole.MEMBER:
            raise UnauthorizedError(f"Member {member_id} is not a borrowing member")
        self.inventory.get_title_row(title_id)
        if self.has_active_reservation(member_id, title_id):
            raise DuplicateReservationError(
                f"Member {member_id} already has an active reservation for title {title_id}"
            )

        last_position = self._scalar(
            select(func.max(ReservationDB.queue_position)).where(
                ReservationDB.title_id == title_id
            ),
            "Failed to read queue positions",
        )
        reservation = ReservationDB(
            id=new_id("reservation"),
            member_id=member_id,
            title_id=title_id,
            reserved_at=self.now(),
            queue_position=(last_position or 0) + 1,
            status=ReservationStatus.WAITING,
            created_at=self.now(),
            updated_at=self.now(),
        )
        self.session.add(reservation)
        self.session.flush()
        logger.info(
            "Member %s reserved title %s at position %d",
            member_id,
            title_id,
            reservation.queue_position,
        )
        return ReservationModel.model_validate(reservation)

    def notify_next(self, title_id: str, item: ItemDB) -> ReservationModel | None:
        """
        Hand a freshly available item to the head of the queue.

        Returns the notified reservation, or None when nobody is waiting (the
        item then stays available for walk-in borrowing).
        """
        if item.status != ItemStatus.AVAILABLE:
            return None
        head = self._first(
            self._queue_query(title_id, (ReservationStatus.WAITING,)),
            "Failed to read reservation queue",
        )
        if head is None:
            return None

        self.inventory.hold(item)
        now = self.now()
        head.status = ReservationStatus.NOTIFIED
        head.item_id = item.id
        head.notified_at = now
        head.updated_at = now
        self.session.flush()

        self.events.append(
            CirculationEvent(
                kind=EventKind.RESERVATION_NOTIFIED,
                member_id=head.member_id,
                title_id=title_id,
                reservation_id=head.id,
                item_id=item.id,
                occurred_at=now,
            )
        )
        logger.info("Reservation %s notified with item %s", head.id, item.id)
        return ReservationModel.model_validate(head)

    def fulfill(self, reservation_id: str, librarian_id: str | None = None) -> ReservationModel:
        """
        Turn a reservation into a loan.

        A notified reservation uses its bound item. A waiting reservation may
        only be fulfilled by a librarian, with an auto-picked item.

        Raises:
            InvalidTransitionError: The reservation is not active, or is waiting
                without a librarian override
            UnauthorizedError: The override comes from a non-librarian
        """
        reservation = self.get_row(reservation_id)
        status = ReservationStatus(reservation.status)

        if status == ReservationStatus.NOTIFIED:
            item = self.inventory.get_item_row(reservation.item_id)
            self.inventory.release(item)
            loan = self.loans.issue_loan(
                reservation.member_id, reservation.title_id, item.id, issued_by=librarian_id
            )
        elif status == ReservationStatus.WAITING:
            if librarian_id is None:
                raise InvalidTransitionError(
                    f"Reservation {reservation_id} is still waiting; "
                    "only a librarian can fulfil it early"
                )
            self.members.require_librarian(librarian_id)
            loan = self.loans.issue_loan(
                reservation.member_id, reservation.title_id, issued_by=librarian_id
            )
            reservation.item_id = loan.item_id
        else:
            raise InvalidTransitionError(
                f"Reservation {reservation_id} is {status.value} and cannot be fulfilled"
            )

        reservation.status = ReservationStatus.FULFILLED
        reservation.loan_id = loan.id
        reservation.updated_at = self.now()
        self.session.flush()
        return ReservationModel.model_validate(reservation)

    def cancel(self, reservation_id: str, member_id: str | None = None) -> ReservationModel:
        """
        Cancel an active reservation.

        ``member_id``, when given, must be the reservation's owner. A notified
        reservation releases its item, which is offered to the next in line.

        Raises:
            UnauthorizedError: Cancelling someone else's reservation
            InvalidTransitionError: The reservation is already closed
        """
        reservation = self.get_row(reservation_id)
        if member_id is not None and reservation.member_id != member_id:
            raise UnauthorizedError(
                f"Reservation {reservation_id} does not belong to member {member_id}"
            )
        status = ReservationStatus(reservation.status)
        if status not in ACTIVE_RESERVATION_STATUSES:
            raise InvalidTransitionError(
                f"Reservation {reservation_id} is {status.value} and cannot be cancelled"
            )

        reservation.status = ReservationStatus.CANCELED
        reservation.updated_at = self.now()
        self.session.flush()

        if status == ReservationStatus.NOTIFIED and reservation.item_id:
            item = self.inventory.get_item_row(reservation.item_id)
            if item.status == ItemStatus.RESERVED:
                self.inventory.release(item)
                self.notify_next(reservation.title_id, item)

        logger.info("Reservation %s cancelled (was %s)", reservation_id, status.value)
        return ReservationModel.model_validate(reservation)

    def withdraw_member(self, member_id: str) -> list[ReservationModel]:
        """
        Cancel every active reservation of a member who can no longer borrow.

        Copies held for them pass to the next in line.
        """
        active = self._all(
            select(ReservationDB.id)
            .where(
                ReservationDB.member_id == member_id,
                ReservationDB.status.in_(ACTIVE_RESERVATION_STATUSES),
            )
            .order_by(ReservationDB.reserved_at, ReservationDB.queue_position),
            "Failed to find member reservations",
        )
        withdrawn = [self.cancel(reservation_id) for reservation_id in active]
        if withdrawn:
            logger.info("Withdrew %d reservations of member %s", len(withdrawn), member_id)
        return withdrawn

    def close_title(self, title_id: str) -> list[ReservationModel]:
        """Cancel the whole queue of a title that is leaving the catalog."""
        active = self._all(
            self._queue_query(title_id, ACTIVE_RESERVATION_STATUSES),
            "Failed to read reservation queue",
        )
        # Waiting entries go first so a released hold is not offered on
        waiting = [r.id for r in active if r.status == ReservationStatus.WAITING]
        notified = [r.id for r in active if r.status == ReservationStatus.NOTIFIED]
        closed = [self.cancel(reservation_id) for reservation_id in waiting + notified]
        if closed:
            logger.info("Closed %d reservations of title %s", len(closed), title_id)
        return closed

    def unbind_item(self, item_id: str) -> ReservationModel | None:
        """
        Send the notified reservation holding ``item_id`` back to waiting.

        Used when the held item is withdrawn from circulation. The reservation
        keeps its place at the head of the queue.
        """
        reservation_id = self.inventory.bound_reservation_id(item_id)
        if reservation_id is None:
            return None
        reservation = self.get_row(reservation_id)
        reservation.status = ReservationStatus.WAITING
        reservation.item_id = None
        reservation.notified_at = None
        reservation.updated_at = self.now()
        self.session.flush()
        return ReservationModel.model_validate(reservation)

    # === Queries ===

    def queue(self, title_id: str) -> list[ReservationModel]:
        """Active reservations of a title in fulfillment order."""
        rows = self._all(
            self._queue_query(title_id, ACTIVE_RESERVATION_STATUSES),
            "Failed to read reservation queue",
        )
        return [ReservationModel.model_validate(r) for r in rows]

    def position(self, reservation_id: str) -> int | None:
        """1-based place among the title's active reservations, None if closed."""
        reservation = self.get_row(reservation_id)
        for index, entry in enumerate(self.queue(reservation.title_id), start=1):
            if entry.id == reservation_id:
                return index
        return None

    def waiting_count(self, title_id: str) -> int:
        return (
            self._scalar(
                select(func.count())
                .select_from(ReservationDB)
                .where(
                    ReservationDB.title_id == title_id,
                    ReservationDB.status == ReservationStatus.WAITING,
                ),
                "Failed to count waiting reservations",
            )
            or 0
        )

    def has_active_reservation(self, member_id: str, title_id: str) -> bool:
        existing = self._first(
            select(ReservationDB.id).where(
                ReservationDB.member_id == member_id,
                ReservationDB.title_id == title_id,
                ReservationDB.status.in_(ACTIVE_RESERVATION_STATUSES),
            ),
            "Failed to check existing reservations",
        )
        return existing is not None

    def list_reservations(
        self,
        title_id: str | None = None,
        status: ReservationStatus | None = None,
        member_id: str | None = None,
    ) -> list[ReservationModel]:
        query = select(ReservationDB).order_by(
            ReservationDB.reserved_at, ReservationDB.queue_position
        )
        if title_id:
            query = query.where(ReservationDB.title_id == title_id)
        if status is not None:
            query = query.where(ReservationDB.status == ReservationStatus(status))
        if member_id:
            query = query.where(ReservationDB.member_id == member_id)
        rows = self._all(query, "Failed to list reservations")
        return [ReservationModel.model_validate(r) for r in rows]

    def _queue_query(self, title_id: str, statuses):
        return (
            select(ReservationDB)
            .where(ReservationDB.title_id == title_id, ReservationDB.status.in_(statuses))
            .order_by(ReservationDB.reserved_at, ReservationDB.queue_position)
        )
