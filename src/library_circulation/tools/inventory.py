"""Inventory Tools - Catalog and Shelf Management

Librarian-facing tools that change what the library holds.

Tools:
- add_title: Create a catalog title, optionally with copies
- update_title: Correct catalog metadata
- remove_title: Withdraw a title with all of its copies
- add_item: Add a physical copy of a title
- set_item_status: Send a copy to maintenance, mark it lost, or shelve it again
- remove_item: Withdraw a copy from circulation
"""

import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from ..database.circulation_coordinator import CirculationCoordinator
from ..models.status import ItemStatus
from .common import ITEM_ID_PATTERN, TITLE_ID_PATTERN, execute_tool

logger = logging.getLogger(__name__)


class AddTitleInput(BaseModel):
    """Input schema for creating a catalog title."""

    title: str = Field(..., min_length=1, max_length=500, examples=["Dế Mèn phiêu lưu ký"])
    authors: list[str] = Field(default_factory=list, examples=[["Tô Hoài"]])
    isbn: str | None = Field(
        default=None,
        description="ISBN-10 or ISBN-13 without separators",
        pattern=r"^(\d{9}[\dX]|\d{13})$",
    )
    categories: list[str] = Field(default_factory=list)
    published_at: date | None = None
    copies: int = Field(default=0, ge=0, le=500, description="Number of copies to create")
    barcode_prefix: str | None = Field(
        default=None,
        max_length=40,
        description="Barcode prefix for the created copies; defaults to the ISBN",
    )
    location: str | None = Field(default=None, max_length=200)


def _add_title(params: AddTitleInput, coordinator: CirculationCoordinator):
    title = coordinator.add_title(
        params.title,
        params.authors,
        params.isbn,
        params.categories,
        params.published_at,
        params.copies,
        params.barcode_prefix,
        params.location,
    )
    message = f"Added '{title.title}' ({title.id}) with {title.total_copies} copies"
    return message, {"title": title.model_dump(mode="json")}


async def add_title_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Create a title. Client calls: tool.call("add_title", {"title": "...", "copies": 3})"""
    return await execute_tool("add_title", AddTitleInput, arguments, _add_title)


class UpdateTitleInput(BaseModel):
    """Input schema for correcting catalog metadata. Omitted fields are kept."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)
    title: str | None = Field(default=None, min_length=1, max_length=500)
    authors: list[str] | None = None
    isbn: str | None = Field(default=None, pattern=r"^(\d{9}[\dX]|\d{13})$")
    categories: list[str] | None = None
    published_at: date | None = None


def _update_title(params: UpdateTitleInput, coordinator: CirculationCoordinator):
    title = coordinator.update_title(
        params.title_id,
        params.title,
        params.authors,
        params.isbn,
        params.categories,
        params.published_at,
    )
    return f"Updated '{title.title}' ({title.id})", {"title": title.model_dump(mode="json")}


async def update_title_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("update_title", UpdateTitleInput, arguments, _update_title)


class RemoveTitleInput(BaseModel):
    """Input schema for withdrawing a title."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)


def _remove_title(params: RemoveTitleInput, coordinator: CirculationCoordinator):
    title = coordinator.remove_title(params.title_id)
    return f"Removed '{title.title}' ({title.id})", {"title": title.model_dump(mode="json")}


async def remove_title_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Withdraw a title; its queue and pending requests are cancelled with it."""
    return await execute_tool("remove_title", RemoveTitleInput, arguments, _remove_title)


class AddItemInput(BaseModel):
    """Input schema for adding a physical copy."""

    title_id: str = Field(..., pattern=TITLE_ID_PATTERN)
    barcode: str = Field(..., min_length=1, max_length=64, examples=["BC-000123"])
    location: str | None = Field(default=None, max_length=200)
    condition: str | None = Field(default=None, max_length=50, examples=["new", "good"])


def _add_item(params: AddItemInput, coordinator: CirculationCoordinator):
    item = coordinator.add_item(params.title_id, params.barcode, params.location, params.condition)
    message = f"Added copy {item.barcode} ({item.id}) to title {item.title_id}: {item.status}"
    return message, {"item": item.model_dump(mode="json")}


async def add_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Add a copy; if members are waiting for the title it is held for the first of them."""
    return await execute_tool("add_item", AddItemInput, arguments, _add_item)


class SetItemStatusInput(BaseModel):
    """Input schema for a librarian status change."""

    item_id: str = Field(..., pattern=ITEM_ID_PATTERN)
    status: ItemStatus = Field(
        ...,
        description="New status; 'borrowed' is only reachable through issuing a loan",
    )


def _set_item_status(params: SetItemStatusInput, coordinator: CirculationCoordinator):
    item = coordinator.set_item_status(params.item_id, params.status)
    return f"Item {item.id} is now {item.status}", {"item": item.model_dump(mode="json")}


async def set_item_status_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("set_item_status", SetItemStatusInput, arguments, _set_item_status)


class RemoveItemInput(BaseModel):
    """Input schema for withdrawing a copy."""

    item_id: str = Field(..., pattern=ITEM_ID_PATTERN)


def _remove_item(params: RemoveItemInput, coordinator: CirculationCoordinator):
    item = coordinator.remove_item(params.item_id)
    return f"Removed copy {item.barcode} ({item.id})", {"item": item.model_dump(mode="json")}


async def remove_item_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("remove_item", RemoveItemInput, arguments, _remove_item)


add_title = {
    "name": "add_title",
    "description": (
        "Create a catalog title, optionally with a number of physical copies whose "
        "barcodes are generated from a prefix."
    ),
    "inputSchema": AddTitleInput.model_json_schema(),
    "handler": add_title_handler,
}

update_title = {
    "name": "update_title",
    "description": (
        "Correct a title's catalog metadata: name, authors, ISBN, categories or "
        "publication date. Copy counts follow the copies and cannot be set here."
    ),
    "inputSchema": UpdateTitleInput.model_json_schema(),
    "handler": update_title_handler,
}

remove_title = {
    "name": "remove_title",
    "description": (
        "Withdraw a title and all of its copies. Refused while any copy is on loan. "
        "Reservations and pending borrow requests for the title are cancelled."
    ),
    "inputSchema": RemoveTitleInput.model_json_schema(),
    "handler": remove_title_handler,
}

add_item = {
    "name": "add_item",
    "description": (
        "Add a physical copy of a title. Barcodes are unique across the library. "
        "If members are waiting for the title, the new copy is held for the first of them."
    ),
    "inputSchema": AddItemInput.model_json_schema(),
    "handler": add_item_handler,
}

set_item_status = {
    "name": "set_item_status",
    "description": (
        "Move a copy between available, reserved, maintenance and lost. Borrowed copies "
        "change status only by being returned."
    ),
    "inputSchema": SetItemStatusInput.model_json_schema(),
    "handler": set_item_status_handler,
}

remove_item = {
    "name": "remove_item",
    "description": "Withdraw a copy from circulation. Copies on loan cannot be removed.",
    "inputSchema": RemoveItemInput.model_json_schema(),
    "handler": remove_item_handler,
}

inventory_tools = [add_title, update_title, remove_title, add_item, set_item_status, remove_item]
