"""Reservation Tools - Waiting Queue Management

Tools:
- reserve_title: Join the FIFO queue of a title
- cancel_reservation: Leave the queue; a held copy passes to the next member
- fulfill_reservation: Turn a notified reservation (or, for librarians, a waiting one) into a loan
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..database.circulation_coordinator import CirculationCoordinator
from .common import (
    MEMBER_ID_PATTERN,
    RESERVATION_ID_PATTERN,
    TITLE_ID_PATTERN,
    execute_tool,
    resolve_actor,
)

logger = logging.getLogger(__name__)


class ReserveTitleInput(BaseModel):
    """Input schema for joining a title's waiting queue."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)
    member_id: str | None = Field(
        default=None,
        pattern=MEMBER_ID_PATTERN,
        description="Reserving member; defaults to the member the server acts as",
    )


def _reserve_title(params: ReserveTitleInput, coordinator: CirculationCoordinator):
    member_id = resolve_actor(params.member_id, coordinator)
    reservation = coordinator.reserve(member_id, params.title_id)
    position = coordinator.reservation_position(reservation.id)
    message = (
        f"Reserved title {reservation.title_id} for member {member_id}. "
        f"Queue position: {position}"
    )
    return message, {
        "reservation": reservation.model_dump(mode="json"),
        "queue_position": position,
    }


async def reserve_title_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("reserve_title", ReserveTitleInput, arguments, _reserve_title)


class CancelReservationInput(BaseModel):
    """Input schema for cancelling a reservation."""

    reservation_id: str = Field(..., pattern=RESERVATION_ID_PATTERN)
    member_id: str | None = Field(
        default=None,
        pattern=MEMBER_ID_PATTERN,
        description="Owner of the reservation; defaults to the member the server acts as",
    )


def _cancel_reservation(params: CancelReservationInput, coordinator: CirculationCoordinator):
    member_id = params.member_id or coordinator.acting_member_id()
    reservation = coordinator.cancel_reservation(params.reservation_id, member_id)
    return (
        f"Reservation {reservation.id} cancelled",
        {"reservation": reservation.model_dump(mode="json")},
    )


async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "cancel_reservation", CancelReservationInput, arguments, _cancel_reservation
    )


class FulfillReservationInput(BaseModel):
    """Input schema for fulfilling a reservation."""

    reservation_id: str = Field(..., pattern=RESERVATION_ID_PATTERN)
    librarian_id: str | None = Field(
        default=None,
        pattern=MEMBER_ID_PATTERN,
        description="Librarian fulfilling a reservation that is still waiting",
    )


def _fulfill_reservation(params: FulfillReservationInput, coordinator: CirculationCoordinator):
    reservation = coordinator.fulfill_reservation(params.reservation_id, params.librarian_id)
    return (
        f"Reservation {reservation.id} fulfilled as loan {reservation.loan_id}",
        {"reservation": reservation.model_dump(mode="json")},
    )


async def fulfill_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool(
        "fulfill_reservation", FulfillReservationInput, arguments, _fulfill_reservation
    )


reserve_title = {
    "name": "reserve_title",
    "description": (
        "Join the first-come-first-served waiting queue of a title. Allowed even when "
        "copies are on the shelf; a member holds at most one active reservation per title."
    ),
    "inputSchema": ReserveTitleInput.model_json_schema(),
    "handler": reserve_title_handler,
}

cancel_reservation = {
    "name": "cancel_reservation",
    "description": (
        "Cancel a waiting or notified reservation. A copy held for it is offered to the "
        "next member in the queue."
    ),
    "inputSchema": CancelReservationInput.model_json_schema(),
    "handler": cancel_reservation_handler,
}

fulfill_reservation = {
    "name": "fulfill_reservation",
    "description": (
        "Issue the loan for a notified reservation using the held copy. A librarian may "
        "also fulfil a waiting reservation from any available copy."
    ),
    "inputSchema": FulfillReservationInput.model_json_schema(),
    "handler": fulfill_reservation_handler,
}

reservation_tools = [reserve_title, cancel_reservation, fulfill_reservation]
