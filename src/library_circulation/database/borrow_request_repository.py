"""
Borrow request workflow: member-submitted requests awaiting a librarian.

State machine: ``pending -> approved | rejected | cancelled``, all terminal.

Submission does not look at the shelf; availability is checked when a
librarian approves, and approval issues the loan in the same transaction.
"""

import logging

from sqlalchemy import select

from ..models.circulation import BorrowRequest as BorrowRequestModel
from ..models.status import BorrowRequestStatus, ItemStatus
from .inventory_repository import InventoryLedger
from .loan_repository import LoanLedger
from .member_repository import MemberRegistry
from .repository import (
    BaseLedger,
    DuplicateRequestError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    RequestNotPendingError,
    UnauthorizedError,
    new_id,
)
from .schema import BorrowRequest as BorrowRequestDB

logger = logging.getLogger(__name__)


class BorrowRequestWorkflow(BaseLedger):
    """Owns borrow requests and their librarian decisions."""

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

    def get_row(self, request_id: str) -> BorrowRequestDB:
        return self._get(BorrowRequestDB, request_id, "Borrow request")

    def get(self, request_id: str) -> BorrowRequestModel:
        return BorrowRequestModel.model_validate(self.get_row(request_id))

    def submit(
        self,
        member_id: str,
        title_id: str,
        item_id: str | None = None,
        member_note: str | None = None,
    ) -> BorrowRequestModel:
        """
        File a request for a librarian to issue a title.

        Raises:
            NotFoundError: Unknown member or title
            UnauthorizedError: The account is cancelled
            InvalidTransitionError: The pre-selected item belongs to another title
            DuplicateRequestError: A pending request for the title already exists
        """
        self.members.require_active(member_id)
        self.inventory.get_title_row(title_id)
        if item_id:
            item = self.inventory.get_item_row(item_id)
            if item.title_id != title_id:
                raise InvalidTransitionError(
                    f"Item {item_id} does not belong to title {title_id}"
                )

        pending = self._first(
            select(BorrowRequestDB.id).where(
                BorrowRequestDB.member_id == member_id,
                BorrowRequestDB.title_id == title_id,
                BorrowRequestDB.status == BorrowRequestStatus.PENDING,
            ),
            "Failed to check pending requests",
        )
        if pending is not None:
            raise DuplicateRequestError(
                f"Member {member_id} already has pending request {pending} for title {title_id}"
            )

        request = BorrowRequestDB(
            id=new_id("request"),
            member_id=member_id,
            title_id=title_id,
            item_id=item_id,
            requested_at=self.now(),
            status=BorrowRequestStatus.PENDING,
            member_note=member_note,
            created_at=self.now(),
            updated_at=self.now(),
        )
        self.session.add(request)
        self.session.flush()
        logger.info("Borrow request %s submitted by %s", request.id, member_id)
        return BorrowRequestModel.model_validate(request)

    def approve(
        self,
        request_id: str,
        librarian_id: str,
        item_id: str | None = None,
        librarian_note: str | None = None,
    ) -> BorrowRequestModel:
        """
        Approve a pending request and issue the loan.

        The item is the one the member pre-selected if it is still on the
        shelf, else the one the librarian names, else an auto-picked copy.

        Raises:
            RequestNotPendingError: The request was already decided or cancelled
            UnauthorizedError: ``librarian_id`` is not a librarian
            NoItemsAvailableError: No copy can be assigned
        """
        request = self.get_row(request_id)
        self._require_pending(request)
        self.members.require_librarian(librarian_id)

        chosen = self._resolve_item(request, item_id)
        loan = self.loans.issue_loan(
            request.member_id, request.title_id, chosen, issued_by=librarian_id
        )

        now = self.now()
        request.status = BorrowRequestStatus.APPROVED
        request.item_id = loan.item_id
        request.loan_id = loan.id
        request.processed_by = librarian_id
        request.processed_at = now
        if librarian_note is not None:
            request.librarian_note = librarian_note
        request.updated_at = now
        self.session.flush()
        logger.info(
            "Borrow request %s approved by %s as loan %s", request_id, librarian_id, loan.id
        )
        return BorrowRequestModel.model_validate(request)

    def reject(self, request_id: str, librarian_id: str, reason: str) -> BorrowRequestModel:
        """
        Reject a pending request; the reason is recorded as the librarian note.

        Raises:
            InvalidRequestError: Blank reason
            RequestNotPendingError: The request was already decided or cancelled
            UnauthorizedError: ``librarian_id`` is not a librarian
        """
        if not reason or not reason.strip():
            raise InvalidRequestError("A reason is required to reject a borrow request")
        request = self.get_row(request_id)
        self._require_pending(request)
        self.members.require_librarian(librarian_id)

        now = self.now()
        request.status = BorrowRequestStatus.REJECTED
        request.librarian_note = reason.strip()
        request.processed_by = librarian_id
        request.processed_at = now
        request.updated_at = now
        self.session.flush()
        return BorrowRequestModel.model_validate(request)

    def cancel(self, request_id: str, member_id: str) -> BorrowRequestModel:
        """
        Withdraw a pending request; only the requester may do this.

        Raises:
            UnauthorizedError: ``member_id`` is not the requester
            RequestNotPendingError: The request was already decided or cancelled
        """
        request = self.get_row(request_id)
        if request.member_id != member_id:
            raise UnauthorizedError(
                f"Borrow request {request_id} does not belong to member {member_id}"
            )
        self._require_pending(request)

        request.status = BorrowRequestStatus.CANCELLED
        request.updated_at = self.now()
        self.session.flush()
        return BorrowRequestModel.model_validate(request)

    def withdraw_title(self, title_id: str) -> list[BorrowRequestModel]:
        """Cancel the pending requests of a title that is leaving the catalog."""
        pending = self._all(
            select(BorrowRequestDB)
            .where(
                BorrowRequestDB.title_id == title_id,
                BorrowRequestDB.status == BorrowRequestStatus.PENDING,
            )
            .order_by(BorrowRequestDB.requested_at, BorrowRequestDB.id),
            "Failed to find pending requests",
        )
        return [self.cancel(request.id, request.member_id) for request in pending]

    def list_requests(
        self,
        status: BorrowRequestStatus | None = None,
        member_id: str | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[BorrowRequestModel]:
        """Requests, oldest first, so librarians work the queue in arrival order."""
        query = select(BorrowRequestDB).order_by(
            BorrowRequestDB.requested_at, BorrowRequestDB.id
        )
        if status is not None:
            query = query.where(BorrowRequestDB.status == BorrowRequestStatus(status))
        if member_id:
            query = query.where(BorrowRequestDB.member_id == member_id)
        return self._paginate(
            query, pagination or PaginationParams(), BorrowRequestModel.model_validate
        )

    def _require_pending(self, request: BorrowRequestDB) -> None:
        if request.status != BorrowRequestStatus.PENDING:
            raise RequestNotPendingError(
                f"Borrow request {request.id} is "
                f"{BorrowRequestStatus(request.status).value}, not pending"
            )

    def _resolve_item(self, request: BorrowRequestDB, librarian_item_id: str | None) -> str | None:
        """Item to issue, or None to let the loan ledger auto-pick."""
        for candidate in (request.item_id, librarian_item_id):
            if candidate and self._is_on_shelf(candidate, request.title_id):
                return candidate
        return None

    def _is_on_shelf(self, item_id: str, title_id: str) -> bool:
        try:
            item = self.inventory.get_item_row(item_id)
        except NotFoundError:
            return False
        return item.title_id == title_id and item.status == ItemStatus.AVAILABLE
