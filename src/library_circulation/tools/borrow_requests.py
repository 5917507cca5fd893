"""Borrow Request Tools - Librarian Approval Workflow

Tools:
- submit_borrow_request: A member asks for a title
- approve_borrow_request: A librarian approves and the loan is issued in the same step
- reject_borrow_request: A librarian declines, with a reason
- cancel_borrow_request: The member withdraws a pending request
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..database.circulation_coordinator import CirculationCoordinator
from .common import (
    ITEM_ID_PATTERN,
    MEMBER_ID_PATTERN,
    REQUEST_ID_PATTERN,
    TITLE_ID_PATTERN,
    execute_tool,
    resolve_actor,
)

logger = logging.getLogger(__name__)


class SubmitBorrowRequestInput(BaseModel):
    """Input schema for a member's borrow request."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)
    member_id: str | None = Field(default=None, pattern=MEMBER_ID_PATTERN)
    item_id: str | None = Field(
        default=None,
        pattern=ITEM_ID_PATTERN,
        description="Copy the member would like, if any",
    )
    member_note: str | None = Field(default=None, max_length=1000)


def _submit(params: SubmitBorrowRequestInput, coordinator: CirculationCoordinator):
    member_id = resolve_actor(params.member_id, coordinator)
    request = coordinator.submit_borrow_request(
        member_id, params.title_id, params.item_id, params.member_note
    )
    return (
        f"Borrow request {request.id} submitted for title {request.title_id}",
        {"request": request.model_dump(mode="json")},
    )


async def submit_borrow_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "submit_borrow_request", SubmitBorrowRequestInput, arguments, _submit
    )


class ApproveBorrowRequestInput(BaseModel):
    """Input schema for approving a request."""

    request_id: str = Field(..., pattern=REQUEST_ID_PATTERN)
    librarian_id: str | None = Field(
        default=None,
        pattern=MEMBER_ID_PATTERN,
        description="Approving librarian; defaults to the member the server acts as",
    )
    item_id: str | None = Field(
        default=None,
        pattern=ITEM_ID_PATTERN,
        description="Copy to lend if the member's choice is no longer on the shelf",
    )
    librarian_note: str | None = Field(default=None, max_length=1000)


def _approve(params: ApproveBorrowRequestInput, coordinator: CirculationCoordinator):
    librarian_id = resolve_actor(params.librarian_id, coordinator)
    request = coordinator.approve_borrow_request(
        params.request_id, librarian_id, params.item_id, params.librarian_note
    )
    return (
        f"Borrow request {request.id} approved; loan {request.loan_id} issued "
        f"with item {request.item_id}",
        {"request": request.model_dump(mode="json")},
    )


async def approve_borrow_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "approve_borrow_request", ApproveBorrowRequestInput, arguments, _approve
    )


class RejectBorrowRequestInput(BaseModel):
    """Input schema for rejecting a request."""

    request_id: str = Field(..., pattern=REQUEST_ID_PATTERN)
    reason: str = Field(..., max_length=1000, description="Shown to the member")
    librarian_id: str | None = Field(default=None, pattern=MEMBER_ID_PATTERN)


def _reject(params: RejectBorrowRequestInput, coordinator: CirculationCoordinator):
    librarian_id = resolve_actor(params.librarian_id, coordinator)
    request = coordinator.reject_borrow_request(params.request_id, librarian_id, params.reason)
    return (
        f"Borrow request {request.id} rejected: {request.librarian_note}",
        {"request": request.model_dump(mode="json")},
    )


async def reject_borrow_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "reject_borrow_request", RejectBorrowRequestInput, arguments, _reject
    )


class CancelBorrowRequestInput(BaseModel):
    """Input schema for withdrawing a request."""

    request_id: str = Field(..., pattern=REQUEST_ID_PATTERN)
    member_id: str | None = Field(default=None, pattern=MEMBER_ID_PATTERN)


def _cancel(params: CancelBorrowRequestInput, coordinator: CirculationCoordinator):
    member_id = resolve_actor(params.member_id, coordinator)
    request = coordinator.cancel_borrow_request(params.request_id, member_id)
    return (
        f"Borrow request {request.id} cancelled",
        {"request": request.model_dump(mode="json")},
    )


async def cancel_borrow_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "cancel_borrow_request", CancelBorrowRequestInput, arguments, _cancel
    )


submit_borrow_request = {
    "name": "submit_borrow_request",
    "description": (
        "Ask a librarian to lend a title. Availability is checked when the request is approved."
    ),
    "inputSchema": SubmitBorrowRequestInput.model_json_schema(),
    "handler": submit_borrow_request_handler,
}

approve_borrow_request = {
    "name": "approve_borrow_request",
    "description": (
        "Approve a pending request and issue the loan in one step. Uses the member's chosen "
        "copy if still available, else the librarian's, else any available copy."
    ),
    "inputSchema": ApproveBorrowRequestInput.model_json_schema(),
    "handler": approve_borrow_request_handler,
}

reject_borrow_request = {
    "name": "reject_borrow_request",
    "description": "Reject a pending request. A reason is required.",
    "inputSchema": RejectBorrowRequestInput.model_json_schema(),
    "handler": reject_borrow_request_handler,
}

cancel_borrow_request = {
    "name": "cancel_borrow_request",
    "description": "Withdraw your own pending borrow request.",
    "inputSchema": CancelBorrowRequestInput.model_json_schema(),
    "handler": cancel_borrow_request_handler,
}

borrow_request_tools = [
    submit_borrow_request,
    approve_borrow_request,
    reject_borrow_request,
    cancel_borrow_request,
]
