"""Circulation Resources - Loans, Queues, Requests and Fines

Resources:
- library://members/{member_id} - Account, role and borrow limit
- library://members/{member_id}/loans - A member's loans, newest first
- library://titles/{title_id}/reservations - A title's waiting queue in fulfillment order
- library://borrow-requests/{status} - Borrow requests by status, oldest first
- library://fines/outstanding - Unpaid fines
- library://circulation/consistency - Store-wide invariant check
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.circulation_coordinator import get_coordinator
from ..database.repository import NotFoundError, PaginationParams
from ..models.status import BorrowRequestStatus

logger = logging.getLogger(__name__)


async def get_member_handler(member_id: str) -> dict[str, Any]:
    try:
        member = get_coordinator().get_member(member_id)
        return {
            "member": member.model_dump(mode="json"),
            "can_borrow": member.can_borrow,
            "remaining_borrows": member.remaining_borrows,
        }
    except NotFoundError as e:
        raise ResourceError(f"Member not found: {member_id}") from e
    except Exception as e:
        logger.exception("Error in member resource")
        raise ResourceError(f"Failed to retrieve member: {e!s}") from e


async def get_member_loans_handler(member_id: str) -> dict[str, Any]:
    """Handle requests for a member's loan history, split into open and closed."""
    try:
        coordinator = get_coordinator()
        coordinator.get_member(member_id)
        loans = coordinator.list_loans(member_id=member_id)
        active = [loan for loan in loans if loan.is_open]
        return {
            "member_id": member_id,
            "active": [loan.model_dump(mode="json") for loan in active],
            "history": [loan.model_dump(mode="json") for loan in loans if not loan.is_open],
            "outstanding_fines": sum(loan.outstanding_fine for loan in loans),
        }
    except NotFoundError as e:
        raise ResourceError(f"Member not found: {member_id}") from e
    except Exception as e:
        logger.exception("Error in member loans resource")
        raise ResourceError(f"Failed to retrieve loans: {e!s}") from e


async def get_title_reservations_handler(title_id: str) -> dict[str, Any]:
    try:
        coordinator = get_coordinator()
        coordinator.get_title(title_id)
        queue = coordinator.reservation_queue(title_id)
        return {
            "title_id": title_id,
            "queue": [
                {"position": n, **r.model_dump(mode="json")} for n, r in enumerate(queue, start=1)
            ],
            "waiting_count": sum(1 for r in queue if r.status == "waiting"),
        }
    except NotFoundError as e:
        raise ResourceError(f"Title not found: {title_id}") from e
    except Exception as e:
        logger.exception("Error in title reservations resource")
        raise ResourceError(f"Failed to retrieve reservations: {e!s}") from e


async def list_borrow_requests_handler(status: str) -> dict[str, Any]:
    """
    Handle requests for borrow requests by status.

    Example URIs:
    - library://borrow-requests/pending
    - library://borrow-requests/approved
    """
    try:
        request_status = BorrowRequestStatus(status.lower())
    except ValueError as e:
        raise ResourceError(f"Invalid borrow request status: {status}") from e

    try:
        result = get_coordinator().list_borrow_requests(
            request_status, pagination=PaginationParams(page=1, page_size=100)
        )
        return {
            "status_filter": request_status.value,
            "requests": [r.model_dump(mode="json") for r in result.items],
            "total": result.total,
            "has_next": result.has_next,
        }
    except Exception as e:
        logger.exception("Error in borrow-requests resource")
        raise ResourceError(f"Failed to retrieve borrow requests: {e!s}") from e


async def list_outstanding_fines_handler() -> dict[str, Any]:
    try:
        loans = get_coordinator().list_outstanding_fines()
        return {
            "fines": [loan.model_dump(mode="json") for loan in loans],
            "total_amount": sum(loan.outstanding_fine for loan in loans),
        }
    except Exception as e:
        logger.exception("Error in outstanding fines resource")
        raise ResourceError(f"Failed to retrieve fines: {e!s}") from e


async def consistency_handler() -> dict[str, Any]:
    try:
        problems = get_coordinator().verify_invariants()
        return {"consistent": not problems, "violations": problems}
    except Exception as e:
        logger.exception("Error in consistency resource")
        raise ResourceError(f"Failed to check consistency: {e!s}") from e


circulation_resources: list[dict[str, Any]] = [
    {
        "uri_template": "library://members/{member_id}",
        "name": "Member Account",
        "description": "A library account with its role, borrow limit and current loan count.",
        "mime_type": "application/json",
        "handler": get_member_handler,
    },
    {
        "uri_template": "library://members/{member_id}/loans",
        "name": "Member Loans",
        "description": "A member's open loans and loan history, with outstanding fines.",
        "mime_type": "application/json",
        "handler": get_member_loans_handler,
    },
    {
        "uri_template": "library://titles/{title_id}/reservations",
        "name": "Title Reservation Queue",
        "description": "Active reservations of a title in the order copies will be handed out.",
        "mime_type": "application/json",
        "handler": get_title_reservations_handler,
    },
    {
        "uri_template": "library://borrow-requests/{status}",
        "name": "Borrow Requests by Status",
        "description": (
            "Borrow requests with a given status (pending, approved, rejected, cancelled), "
            "oldest first."
        ),
        "mime_type": "application/json",
        "handler": list_borrow_requests_handler,
    },
    {
        "uri": "library://fines/outstanding",
        "name": "Outstanding Fines",
        "description": "Loans with an unpaid fine.",
        "mime_type": "application/json",
        "handler": list_outstanding_fines_handler,
    },
    {
        "uri": "library://circulation/consistency",
        "name": "Circulation Consistency",
        "description": (
            "Checks copy counters, open loans per item and member loan counts across the store."
        ),
        "mime_type": "application/json",
        "handler": consistency_handler,
    },
]
