"""Loan Tools - Checkout, Renewal, Return and Fines

Tools:
- issue_loan: Lend a copy of a title to a member
- renew_loan: Extend an issued loan
- return_book: Close a loan; the copy goes to the reservation queue head if anyone waits
- pay_fine: Record payment of the fine accrued on a loan
- mark_overdue / sweep_overdue: Overdue detection, normally run on a schedule
- send_due_reminders: Remind members whose loans fall due soon
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..database.circulation_coordinator import CirculationCoordinator
from .common import (
    ITEM_ID_PATTERN,
    LOAN_ID_PATTERN,
    MEMBER_ID_PATTERN,
    TITLE_ID_PATTERN,
    execute_tool,
    resolve_actor,
)

logger = logging.getLogger(__name__)


class IssueLoanInput(BaseModel):
    """Input schema for a walk-in checkout."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)
    member_id: str | None = Field(
        default=None,
        pattern=MEMBER_ID_PATTERN,
        description="Borrowing member; defaults to the member the server acts as",
    )
    item_id: str | None = Field(
        default=None,
        pattern=ITEM_ID_PATTERN,
        description="Specific copy to lend; if omitted the copy with the lowest barcode is used",
    )


def _issue_loan(params: IssueLoanInput, coordinator: CirculationCoordinator):
    member_id = resolve_actor(params.member_id, coordinator)
    loan = coordinator.issue_loan(member_id, params.title_id, params.item_id)
    message = (
        f"Issued loan {loan.id}: item {loan.item_id} to member {loan.member_id}. "
        f"Due date: {loan.due_date.strftime('%B %d, %Y')}"
    )
    return message, {"loan": loan.model_dump(mode="json")}


async def issue_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Client calls: tool.call("issue_loan", {"title_id": "...", "member_id": "..."})"""
    return await execute_tool("issue_loan", IssueLoanInput, arguments, _issue_loan)


class LoanIdInput(BaseModel):
    """Input schema for tools that act on one loan."""

    loan_id: str = Field(..., pattern=LOAN_ID_PATTERN)


def _renew_loan(params: LoanIdInput, coordinator: CirculationCoordinator):
    loan = coordinator.renew_loan(params.loan_id)
    message = (
        f"Renewed loan {loan.id} ({loan.renew_count} of {coordinator.config.max_renewals}). "
        f"New due date: {loan.due_date.strftime('%B %d, %Y')}"
    )
    return message, {"loan": loan.model_dump(mode="json")}


async def renew_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("renew_loan", LoanIdInput, arguments, _renew_loan)


def _return_book(params: LoanIdInput, coordinator: CirculationCoordinator):
    outcome = coordinator.return_book(params.loan_id)
    loan = outcome.loan
    message = f"Returned loan {loan.id}."
    if loan.outstanding_fine > 0:
        message += f" Fine due: {loan.outstanding_fine:,.0f}."
    if outcome.notified_reservation is not None:
        message += (
            f" Copy {loan.item_id} is held for member "
            f"{outcome.notified_reservation.member_id}."
        )
    return message, outcome.model_dump(mode="json")


async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("return_book", LoanIdInput, arguments, _return_book)


def _pay_fine(params: LoanIdInput, coordinator: CirculationCoordinator):
    loan = coordinator.pay_fine(params.loan_id)
    message = f"Fine on loan {loan.id} paid: {loan.fine_paid_amount:,.0f} settled in total"
    return message, {"loan": loan.model_dump(mode="json")}


async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("pay_fine", LoanIdInput, arguments, _pay_fine)


def _mark_overdue(params: LoanIdInput, coordinator: CirculationCoordinator):
    loan = coordinator.mark_overdue(params.loan_id)
    message = f"Loan {loan.id} is overdue; fine so far {loan.fine:,.0f}"
    return message, {"loan": loan.model_dump(mode="json")}


async def mark_overdue_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("mark_overdue", LoanIdInput, arguments, _mark_overdue)


class SweepInput(BaseModel):
    """No parameters; the sweep uses the server clock."""


def _sweep_overdue(params: SweepInput, coordinator: CirculationCoordinator):  # noqa: ARG001
    loans = coordinator.sweep_overdue()
    return (
        f"Marked {len(loans)} loans overdue",
        {"loans": [loan.model_dump(mode="json") for loan in loans]},
    )


async def sweep_overdue_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("sweep_overdue", SweepInput, arguments, _sweep_overdue)


class DueRemindersInput(BaseModel):
    """Input schema for due reminders."""

    within_days: int | None = Field(
        default=None,
        ge=0,
        le=30,
        description="Reminder window in days; defaults to the configured window",
    )


def _send_due_reminders(params: DueRemindersInput, coordinator: CirculationCoordinator):
    loans = coordinator.send_due_reminders(params.within_days)
    return (
        f"Sent {len(loans)} due reminders",
        {"loans": [loan.model_dump(mode="json") for loan in loans]},
    )


async def send_due_reminders_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "send_due_reminders", DueRemindersInput, arguments, _send_due_reminders
    )


issue_loan = {
    "name": "issue_loan",
    "description": (
        "Lend a copy of a title to a member for the standard loan period. Fails with "
        "BorrowLimitExceeded, ItemNotAvailable or NoItemsAvailable."
    ),
    "inputSchema": IssueLoanInput.model_json_schema(),
    "handler": issue_loan_handler,
}

renew_loan = {
    "name": "renew_loan",
    "description": (
        "Extend an issued, not yet overdue loan. A limited number of renewals is allowed."
    ),
    "inputSchema": LoanIdInput.model_json_schema(),
    "handler": renew_loan_handler,
}

return_book = {
    "name": "return_book",
    "description": (
        "Return a borrowed copy, computing the late fine. If members are waiting for the "
        "title, the copy is held for the first of them and they are notified."
    ),
    "inputSchema": LoanIdInput.model_json_schema(),
    "handler": return_book_handler,
}

pay_fine = {
    "name": "pay_fine",
    "description": (
        "Record that the fine accrued on a loan so far has been paid. "
        "Overdue loans can be settled before they are returned."
    ),
    "inputSchema": LoanIdInput.model_json_schema(),
    "handler": pay_fine_handler,
}

mark_overdue = {
    "name": "mark_overdue",
    "description": "Flag one past-due loan as overdue and accrue its fine.",
    "inputSchema": LoanIdInput.model_json_schema(),
    "handler": mark_overdue_handler,
}

sweep_overdue = {
    "name": "sweep_overdue",
    "description": "Flag every past-due loan as overdue and notify the borrowers.",
    "inputSchema": SweepInput.model_json_schema(),
    "handler": sweep_overdue_handler,
}

send_due_reminders = {
    "name": "send_due_reminders",
    "description": "Notify members whose loans fall due within the reminder window.",
    "inputSchema": DueRemindersInput.model_json_schema(),
    "handler": send_due_reminders_handler,
}

loan_tools = [
    issue_loan,
    renew_loan,
    return_book,
    pay_fine,
    mark_overdue,
    sweep_overdue,
    send_due_reminders,
]
