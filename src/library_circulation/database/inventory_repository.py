"""
Inventory ledger: titles, physical items, and the copy counters.

``Title.available_copies`` and ``Title.total_copies`` are materialized views
over the title's items. They are written in exactly one place,
``_transition`` (plus item creation and removal), so the counters move in
lock-step with item status changes inside the same transaction and cannot
drift. ``recompute_counts`` rebuilds them from the item rows for repair.

Allowed item status graph::

    available -> borrowed | reserved | maintenance | lost
    borrowed | reserved | maintenance | lost -> available

``borrowed`` is entered and left only through the loan ledger (issue and
return); the public ``set_item_status`` command refuses it.
"""

import logging
from datetime import date

from pydantic import ValidationError
from sqlalchemy import select

from ..models.inventory import Item as ItemModel
from ..models.inventory import Title as TitleModel
from ..models.status import ItemStatus, ReservationStatus
from .repository import (
    BaseLedger,
    DuplicateBarcodeError,
    InvalidRequestError,
    InvalidTransitionError,
    ItemInUseError,
    NoItemsAvailableError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    new_id,
)
from .schema import Item as ItemDB
from .schema import Reservation as ReservationDB
from .schema import Title as TitleDB

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.AVAILABLE: frozenset(
        {ItemStatus.BORROWED, ItemStatus.RESERVED, ItemStatus.MAINTENANCE, ItemStatus.LOST}
    ),
    ItemStatus.BORROWED: frozenset({ItemStatus.AVAILABLE}),
    ItemStatus.RESERVED: frozenset({ItemStatus.AVAILABLE}),
    ItemStatus.MAINTENANCE: frozenset({ItemStatus.AVAILABLE}),
    ItemStatus.LOST: frozenset({ItemStatus.AVAILABLE}),
}


class InventoryLedger(BaseLedger):
    """Owns item status and the derived copy counters of each title."""

    # === Titles ===

    def get_title_row(self, title_id: str) -> TitleDB:
        title = self._get(TitleDB, title_id, "Title")
        if title.removed_at is not None:
            raise NotFoundError(f"Title {title_id} not found")
        return title

    def get_title(self, title_id: str) -> TitleModel:
        return TitleModel.model_validate(self.get_title_row(title_id))

    def list_titles(
        self, pagination: PaginationParams | None = None
    ) -> PaginatedResponse[TitleModel]:
        query = (
            select(TitleDB).where(TitleDB.removed_at.is_(None)).order_by(TitleDB.title, TitleDB.id)
        )
        return self._paginate(query, pagination or PaginationParams(), TitleModel.model_validate)

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
    ) -> TitleModel:
        """
        Create a catalog title, optionally with ``copies`` physical items.

        Items get barcodes ``<prefix>-0001``, ``<prefix>-0002`` ... where the
        prefix defaults to the ISBN, or the title id when there is none.

        Raises:
            InvalidRequestError: Negative ``copies`` or malformed metadata
            DuplicateBarcodeError: If a generated barcode is already in use
        """
        if copies < 0:
            raise InvalidRequestError("copies must be >= 0")

        row = TitleDB(
            id=new_id("title"),
            title=title,
            authors=list(authors or []),
            isbn=isbn,
            categories=list(categories or []),
            published_at=published_at,
            total_copies=0,
            available_copies=0,
            created_at=self.now(),
            updated_at=self.now(),
        )
        # Validate before touching the session
        _validated(row)
        self.session.add(row)
        self.session.flush()

        prefix = barcode_prefix or isbn or row.id
        for n in range(1, copies + 1):
            self.add_item(row.id, f"{prefix}-{n:04d}", location=location)

        logger.info("Added title %s with %d copies", row.id, copies)
        return TitleModel.model_validate(row)

    def update_title(
        self,
        title_id: str,
        title: str | None = None,
        authors: list[str] | None = None,
        isbn: str | None = None,
        categories: list[str] | None = None,
        published_at: date | None = None,
    ) -> TitleModel:
        """
        Change catalog metadata. Fields left as None keep their value.

        Copy counters are not touched; they follow the items.

        Raises:
            NotFoundError: Unknown or removed title
            InvalidRequestError: The new metadata does not validate
        """
        row = self.get_title_row(title_id)
        changes = {
            "title": title,
            "authors": list(authors) if authors is not None else None,
            "isbn": isbn,
            "categories": list(categories) if categories is not None else None,
            "published_at": published_at,
        }
        changes = {field: value for field, value in changes.items() if value is not None}
        if not changes:
            return TitleModel.model_validate(row)

        candidate = TitleModel.model_validate(row).model_dump()
        candidate.update(changes)
        _validated(candidate)

        for field, value in changes.items():
            setattr(row, field, value)
        row.updated_at = self.now()
        self.session.flush()
        logger.info("Updated title %s: %s", title_id, ", ".join(sorted(changes)))
        return TitleModel.model_validate(row)

    def remove_title(self, title_id: str) -> TitleModel:
        """
        Withdraw a title together with every copy still in circulation.

        Rows are soft-deleted like ``remove_item``: past loans keep resolving
        and barcodes stay taken. The caller closes the title's reservation
        queue first; a copy still held for a reservation is refused.

        Raises:
            NotFoundError: Unknown or already removed title
            ItemInUseError: A copy is on loan
            InvalidTransitionError: A copy is held for a notified reservation
        """
        row = self.get_title_row(title_id)
        items = self._live_items(title_id)
        on_loan = [i.barcode for i in items if i.status == ItemStatus.BORROWED]
        if on_loan:
            raise ItemInUseError(
                f"Title {title_id} has copies on loan and cannot be removed: {', '.join(on_loan)}"
            )
        for item in items:
            if self.bound_reservation_id(item.id):
                raise InvalidTransitionError(
                    f"Item {item.id} is held for a notified reservation; close the queue first"
                )

        for item in items:
            self.remove_item(item.id)
        row.removed_at = self.now()
        row.updated_at = self.now()
        self.session.flush()
        logger.info("Removed title %s with %d copies", title_id, len(items))
        return TitleModel.model_validate(row)

    def recompute_counts(self, title_id: str) -> TitleModel:
        """Rebuild a title's counters from its non-removed items."""
        title = self.get_title_row(title_id)
        items = self._live_items(title_id)
        title.total_copies = len(items)
        title.available_copies = sum(1 for i in items if i.status == ItemStatus.AVAILABLE)
        title.updated_at = self.now()
        self.session.flush()
        return TitleModel.model_validate(title)

    # === Items ===

    def get_item_row(self, item_id: str) -> ItemDB:
        item = self._get(ItemDB, item_id, "Item")
        if item.removed_at is not None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def get_item(self, item_id: str) -> ItemModel:
        return ItemModel.model_validate(self.get_item_row(item_id))

    def list_items(self, title_id: str, status: ItemStatus | None = None) -> list[ItemModel]:
        self.get_title_row(title_id)
        items = self._live_items(title_id, status)
        return [ItemModel.model_validate(i) for i in items]

    def add_item(
        self,
        title_id: str,
        barcode: str,
        location: str | None = None,
        condition: str | None = None,
    ) -> ItemModel:
        """
        Add a physical copy to a title.

        Raises:
            NotFoundError: Unknown title
            DuplicateBarcodeError: Barcode already used anywhere, including removed items
        """
        title = self.get_title_row(title_id)
        existing = self._first(
            select(ItemDB).where(ItemDB.barcode == barcode), "Failed to check barcode"
        )
        if existing is not None:
            raise DuplicateBarcodeError(f"Barcode {barcode} is already in use")

        item = ItemDB(
            id=new_id("item"),
            title_id=title_id,
            barcode=barcode,
            location=location,
            condition=condition,
            status=ItemStatus.AVAILABLE,
            created_at=self.now(),
            updated_at=self.now(),
        )
        self.session.add(item)
        title.total_copies += 1
        title.available_copies += 1
        title.updated_at = self.now()
        self.session.flush()
        return ItemModel.model_validate(item)

    def set_item_status(self, item_id: str, new_status: ItemStatus) -> ItemModel:
        """
        Librarian-driven status change (maintenance, lost, shelf holds).

        Raises:
            InvalidTransitionError: The change is outside the allowed graph,
                touches ``borrowed``, or would strand a notified reservation
        """
        new_status = ItemStatus(new_status)
        item = self.get_item_row(item_id)
        current = ItemStatus(item.status)

        if ItemStatus.BORROWED in (current, new_status):
            raise InvalidTransitionError(
                f"Item {item_id} cannot move {current.value} -> {new_status.value}; "
                "borrowed items change only through issue and return"
            )
        if current == ItemStatus.RESERVED and self.bound_reservation_id(item_id):
            raise InvalidTransitionError(
                f"Item {item_id} is held for a notified reservation; cancel or fulfil it first"
            )
        self._transition(item, new_status)
        return ItemModel.model_validate(item)

    def remove_item(self, item_id: str) -> ItemModel:
        """
        Soft-delete an item.

        The row is kept so historical loans still resolve and its barcode stays
        taken. A reservation holding this item must be released by the caller
        first.

        Raises:
            ItemInUseError: The item is on loan
        """
        item = self.get_item_row(item_id)
        if item.status == ItemStatus.BORROWED:
            raise ItemInUseError(f"Item {item_id} is on loan and cannot be removed")

        title = self.get_title_row(item.title_id)
        if item.status == ItemStatus.AVAILABLE:
            title.available_copies -= 1
        title.total_copies -= 1
        title.updated_at = self.now()
        item.removed_at = self.now()
        self.session.flush()
        logger.info("Removed item %s (%s) from title %s", item.id, item.barcode, title.id)
        return ItemModel.model_validate(item)

    def pick_available_item(self, title_id: str) -> ItemDB:
        """
        Choose the available item with the lowest barcode.

        Raises:
            NoItemsAvailableError: No copy of the title is on the shelf
        """
        self.get_title_row(title_id)
        item = self._first(
            select(ItemDB)
            .where(
                ItemDB.title_id == title_id,
                ItemDB.status == ItemStatus.AVAILABLE,
                ItemDB.removed_at.is_(None),
            )
            .order_by(ItemDB.barcode),
            "Failed to pick an available item",
        )
        if item is None:
            raise NoItemsAvailableError(f"No copies of title {title_id} are available")
        return item

    def bound_reservation_id(self, item_id: str) -> str | None:
        """Id of the notified reservation holding this item, if any."""
        return self._first(
            select(ReservationDB.id).where(
                ReservationDB.item_id == item_id,
                ReservationDB.status == ReservationStatus.NOTIFIED,
            ),
            "Failed to look up item hold",
        )

    # === Guarded transitions used by the loan ledger and reservation queue ===

    def check_out(self, item: ItemDB) -> None:
        self._transition(item, ItemStatus.BORROWED)

    def check_in(self, item: ItemDB) -> None:
        self._transition(item, ItemStatus.AVAILABLE)

    def hold(self, item: ItemDB) -> None:
        self._transition(item, ItemStatus.RESERVED)

    def release(self, item: ItemDB) -> None:
        self._transition(item, ItemStatus.AVAILABLE)

    def _transition(self, item: ItemDB, new_status: ItemStatus) -> None:
        """The only writer of item status and ``available_copies``."""
        current = ItemStatus(item.status)
        if new_status == current or new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Item {item.id} cannot move {current.value} -> {new_status.value}"
            )

        title = self.get_title_row(item.title_id)
        if current == ItemStatus.AVAILABLE:
            title.available_copies -= 1
        elif new_status == ItemStatus.AVAILABLE:
            title.available_copies += 1

        item.status = new_status
        item.updated_at = self.now()
        title.updated_at = self.now()
        self.session.flush()
        logger.debug("Item %s: %s -> %s", item.id, current.value, new_status.value)

    def _live_items(self, title_id: str, status: ItemStatus | None = None) -> list[ItemDB]:
        query = (
            select(ItemDB)
            .where(ItemDB.title_id == title_id, ItemDB.removed_at.is_(None))
            .order_by(ItemDB.barcode)
        )
        if status is not None:
            query = query.where(ItemDB.status == ItemStatus(status))
        return self._all(query, "Failed to list items")


def _validated(data) -> TitleModel:
    try:
        return TitleModel.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'title'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid title: {problems}") from e
