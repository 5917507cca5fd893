"""
Loan ledger: issue, renew, return, overdue detection and fines.

Loan state machine::

    issued -> issued (renewed) | overdue | returned
    overdue -> returned
    returned (terminal)

An overdue loan cannot be renewed. A fine can be paid while the loan is still
open; whatever accrues after the payment is owed again on return.
``Member.borrowed_count`` changes only here, in the same flush as the loan
that opens or closes, so it always equals the member's number of open loans.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select

from ..collaborators import CirculationEvent, EventKind
from ..models.circulation import Loan as LoanModel
from ..models.status import OPEN_LOAN_STATUSES, ItemStatus, LoanStatus, MemberRole
from .inventory_repository import InventoryLedger
from .member_repository import MemberRegistry
from .repository import (
    BaseLedger,
    BorrowLimitExceededError,
    InvalidTransitionError,
    ItemNotAvailableError,
    LoanNotActiveError,
    NoOutstandingFineError,
    NotFoundError,
    RenewalLimitExceededError,
    UnauthorizedError,
    new_id,
)
from .schema import Item as ItemDB
from .schema import Loan as LoanDB

logger = logging.getLogger(__name__)


class LoanLedger(BaseLedger):
    """Owns the loan lifecycle and the member borrow counters."""

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        events=None,
        inventory: InventoryLedger | None = None,
        members: MemberRegistry | None = None,
    ):
        super().__init__(session, clock, config, events)
        self.inventory = inventory or InventoryLedger(session, self.clock, self.config, self.events)
        self.members = members or MemberRegistry(session, self.clock, self.config, self.events)

    def get_row(self, loan_id: str) -> LoanDB:
        return self._get(LoanDB, loan_id, "Loan")

    def get(self, loan_id: str) -> LoanModel:
        return LoanModel.model_validate(self.get_row(loan_id))

    def fine_for(self, due_date: datetime, as_of: datetime) -> float:
        """``max(0, full days late) * fine_per_day``."""
        days_late = max(0, (as_of - due_date).days)
        return days_late * self.config.fine_per_day

    def issue_loan(
        self,
        member_id: str,
        title_id: str,
        item_id: str | None = None,
        issued_by: str | None = None,
    ) -> LoanModel:
        """
        Lend one copy of a title to a member.

        With ``item_id`` that exact copy must be on the shelf; otherwise the
        available copy with the lowest barcode is taken.

        Raises:
            NotFoundError: Unknown member or title
            UnauthorizedError: The account is not a borrowing member
            BorrowLimitExceededError: The member already holds ``max_borrow`` loans
            ItemNotAvailableError: The chosen copy is not available for this title
            NoItemsAvailableError: No copy is available to auto-pick
        """
        member = self.members.get_row(member_id)
        if member.role != MemberRole.MEMBER:
            raise UnauthorizedError(
                f"Member {member_id} with role {MemberRole(member.role).value} cannot borrow"
            )
        if member.borrowed_count >= member.max_borrow:
            raise BorrowLimitExceededError(
                f"Member {member_id} has reached the borrow limit of {member.max_borrow}"
            )

        self.inventory.get_title_row(title_id)
        if item_id:
            item = self._resolve_chosen_item(item_id, title_id)
        else:
            item = self.inventory.pick_available_item(title_id)

        now = self.now()
        self.inventory.check_out(item)
        loan = LoanDB(
            id=new_id("loan"),
            member_id=member_id,
            title_id=title_id,
            item_id=item.id,
            issue_date=now,
            due_date=now + timedelta(days=self.config.loan_period_days),
            status=LoanStatus.ISSUED,
            fine=0.0,
            renew_count=0,
            fine_paid=False,
            fine_paid_amount=0.0,
            issued_by=issued_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(loan)
        member.borrowed_count += 1
        member.updated_at = now
        self.session.flush()

        logger.info("Issued loan %s: item %s to member %s", loan.id, item.id, member_id)
        return LoanModel.model_validate(loan)

    def renew_loan(self, loan_id: str) -> LoanModel:
        """
        Push the due date out by the renewal extension.

        Raises:
            LoanNotActiveError: The loan is overdue or returned
            RenewalLimitExceededError: ``max_renewals`` renewals already taken
        """
        loan = self.get_row(loan_id)
        if loan.status != LoanStatus.ISSUED:
            raise LoanNotActiveError(
                f"Loan {loan_id} is {LoanStatus(loan.status).value} and cannot be renewed"
            )
        if loan.renew_count >= self.config.max_renewals:
            raise RenewalLimitExceededError(
                f"Loan {loan_id} has reached the renewal limit of {self.config.max_renewals}"
            )

        loan.due_date = loan.due_date + timedelta(days=self.config.renewal_extension_days)
        loan.renew_count += 1
        loan.updated_at = self.now()
        self.session.flush()
        return LoanModel.model_validate(loan)

    def return_book(self, loan_id: str) -> tuple[LoanModel, ItemDB]:
        """
        Close an open loan and put the item back on the shelf.

        Returns the closed loan and the item row, now ``available``; routing
        the item to a waiting reservation is the coordinator's next step.

        Raises:
            LoanNotActiveError: The loan was already returned
        """
        loan = self.get_row(loan_id)
        if loan.status not in OPEN_LOAN_STATUSES:
            raise LoanNotActiveError(f"Loan {loan_id} is not active")

        now = self.now()
        loan.return_date = now
        loan.status = LoanStatus.RETURNED
        loan.fine = self.fine_for(loan.due_date, now)
        if loan.fine > loan.fine_paid_amount:
            loan.fine_paid = False
        loan.updated_at = now

        member = self.members.get_row(loan.member_id)
        member.borrowed_count -= 1
        member.updated_at = now

        item = self._get(ItemDB, loan.item_id, "Item")
        self.inventory.check_in(item)
        self.session.flush()

        logger.info("Returned loan %s (fine %.2f)", loan_id, loan.fine)
        return LoanModel.model_validate(loan), item

    def mark_overdue(self, loan_id: str) -> LoanModel:
        """
        Flag an issued loan as overdue and accrue the fine so far.

        Raises:
            LoanNotActiveError: The loan is not ``issued``
            InvalidTransitionError: The loan is not yet past due
        """
        loan = self.get_row(loan_id)
        if loan.status != LoanStatus.ISSUED:
            raise LoanNotActiveError(
                f"Loan {loan_id} is {LoanStatus(loan.status).value}, not issued"
            )
        now = self.now()
        if now <= loan.due_date:
            raise InvalidTransitionError(f"Loan {loan_id} is not yet due")

        loan.status = LoanStatus.OVERDUE
        loan.fine = self.fine_for(loan.due_date, now)
        loan.updated_at = now
        self.session.flush()

        self.events.append(
            CirculationEvent(
                kind=EventKind.LOAN_OVERDUE,
                member_id=loan.member_id,
                title_id=loan.title_id,
                loan_id=loan.id,
                item_id=loan.item_id,
                occurred_at=now,
                details={"days_overdue": (now - loan.due_date).days, "fine": loan.fine},
            )
        )
        return LoanModel.model_validate(loan)

    def sweep_overdue(self) -> list[LoanModel]:
        """Mark every issued loan that is past due as overdue."""
        now = self.now()
        due = self._all(
            select(LoanDB)
            .where(LoanDB.status == LoanStatus.ISSUED, LoanDB.due_date < now)
            .order_by(LoanDB.due_date, LoanDB.id),
            "Failed to find overdue loans",
        )
        marked = [self.mark_overdue(loan.id) for loan in due]
        if marked:
            logger.info("Overdue sweep marked %d loans", len(marked))
        return marked

    def list_due_soon(self, within_days: int | None = None) -> list[LoanModel]:
        """Issued loans whose due date falls within the reminder window."""
        days = self.config.due_reminder_days if within_days is None else within_days
        now = self.now()
        rows = self._all(
            select(LoanDB)
            .where(
                LoanDB.status == LoanStatus.ISSUED,
                LoanDB.due_date >= now,
                LoanDB.due_date <= now + timedelta(days=days),
            )
            .order_by(LoanDB.due_date, LoanDB.id),
            "Failed to find loans due soon",
        )
        return [LoanModel.model_validate(r) for r in rows]

    def pay_fine(self, loan_id: str) -> LoanModel:
        """
        Record payment of everything accrued on a loan so far.

        An overdue loan can be settled before it comes back; the return then
        charges only the days that passed after the payment.

        Raises:
            NoOutstandingFineError: No fine, or it was already paid
        """
        loan = self.get_row(loan_id)
        now = self.now()
        if loan.status == LoanStatus.OVERDUE:
            loan.fine = self.fine_for(loan.due_date, now)
        if loan.fine <= loan.fine_paid_amount:
            raise NoOutstandingFineError(f"Loan {loan_id} has no outstanding fine")

        loan.fine_paid_amount = loan.fine
        loan.fine_paid = True
        loan.fine_paid_at = now
        loan.updated_at = now
        self.session.flush()
        return LoanModel.model_validate(loan)

    def list_loans(
        self,
        member_id: str | None = None,
        status: LoanStatus | None = None,
        title_id: str | None = None,
    ) -> list[LoanModel]:
        """Loans, newest first, filtered by member, status and/or title."""
        query = select(LoanDB).order_by(LoanDB.issue_date.desc(), LoanDB.id)
        if member_id:
            query = query.where(LoanDB.member_id == member_id)
        if status is not None:
            query = query.where(LoanDB.status == LoanStatus(status))
        if title_id:
            query = query.where(LoanDB.title_id == title_id)
        return [LoanModel.model_validate(r) for r in self._all(query, "Failed to list loans")]

    def list_outstanding_fines(self, member_id: str | None = None) -> list[LoanModel]:
        query = (
            select(LoanDB)
            .where(LoanDB.fine > 0, LoanDB.fine_paid.is_(False))
            .order_by(LoanDB.member_id, LoanDB.due_date)
        )
        if member_id:
            query = query.where(LoanDB.member_id == member_id)
        return [LoanModel.model_validate(r) for r in self._all(query, "Failed to list fines")]

    def _resolve_chosen_item(self, item_id: str, title_id: str) -> ItemDB:
        try:
            item = self.inventory.get_item_row(item_id)
        except NotFoundError:
            raise ItemNotAvailableError(f"Item {item_id} is not available") from None
        if item.title_id != title_id:
            raise ItemNotAvailableError(f"Item {item_id} does not belong to title {title_id}")
        if item.status != ItemStatus.AVAILABLE:
            raise ItemNotAvailableError(
                f"Item {item_id} is {ItemStatus(item.status).value}, not available"
            )
        return item
