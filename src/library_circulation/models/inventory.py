"""
Inventory models: catalog titles and the physical items that circulate.

A Title carries two counters, ``total_copies`` and ``available_copies``.
Both are materialized views over the Title's items and are only ever written
by the inventory ledger's guarded transition function.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .status import ItemStatus


class Title(BaseModel):
    """Catalog record for a book, with its copy counters."""

    id: str = Field(
        ...,
        description="Unique identifier for the title",
        pattern=r"^title_[a-zA-Z0-9]{6,}$",
        examples=["title_3f9a1c2b7d10"],
    )

    title: str = Field(
        ...,
        description="Title of the book",
        min_length=1,
        max_length=500,
        examples=["The Pragmatic Programmer", "Dế Mèn phiêu lưu ký"],
    )

    authors: list[str] = Field(
        default_factory=list,
        description="Author names in display order",
    )

    isbn: str | None = Field(
        None,
        description="ISBN-10 or ISBN-13 without separators",
        pattern=r"^(\d{9}[\dX]|\d{13})$",
        examples=["9780134685479"],
    )

    categories: list[str] = Field(
        default_factory=list,
        description="Subject categories used for browsing",
    )

    total_copies: int = Field(
        default=0,
        description="Number of non-removed items for this title",
        ge=0,
    )

    available_copies: int = Field(
        default=0,
        description="Number of items currently on the shelf with status available",
        ge=0,
    )

    published_at: date | None = Field(
        None,
        description="Publication date",
    )

    created_at: datetime | None = None
    updated_at: datetime | None = None
    removed_at: datetime | None = Field(None, description="Set once the title is withdrawn")

    @model_validator(mode="after")
    def validate_copy_counts(self) -> "Title":
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        populate_by_name=True,
    )


class Item(BaseModel):
    """One physical, barcoded copy of a Title."""

    id: str = Field(
        ...,
        description="Unique identifier for the item",
        pattern=r"^item_[a-zA-Z0-9]{6,}$",
    )

    title_id: str = Field(..., description="Title this copy belongs to")

    barcode: str = Field(
        ...,
        description="Library barcode, unique across the whole system",
        min_length=1,
        max_length=64,
        examples=["BC-000123"],
    )

    location: str | None = Field(
        None,
        description="Shelf or branch location",
        max_length=200,
        examples=["Floor 2 / Shelf B4"],
    )

    condition: str | None = Field(
        None,
        description="Physical condition noted by the librarian",
        max_length=50,
        examples=["new", "good", "worn"],
    )

    status: ItemStatus = Field(
        default=ItemStatus.AVAILABLE,
        description="Current shelf status",
    )

    created_at: datetime | None = None

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "item_9c1d2e3f4a5b",
                "title_id": "title_3f9a1c2b7d10",
                "barcode": "BC-000123",
                "location": "Floor 2 / Shelf B4",
                "condition": "good",
                "status": "available",
            }
        },
    )
