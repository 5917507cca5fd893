"""
Member model for the library circulation engine.

A member account carries a role from a closed enumeration and a borrow limit.
``borrowed_count`` mirrors the number of the member's open loans and is only
changed by the loan ledger, in lock-step with loan creation and return.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .status import MemberRole


class Member(BaseModel):
    """A library account: borrowing member, librarian, or cancelled."""

    id: str = Field(
        ...,
        description="Unique identifier for the member",
        pattern=r"^member_[a-zA-Z0-9]{6,}$",
        examples=["member_5e6f7a8b9c0d"],
    )

    name: str = Field(
        ...,
        description="Display name",
        min_length=1,
        max_length=200,
    )

    email: EmailStr | None = Field(
        None,
        description="Contact address used by the notification channel",
    )

    role: MemberRole = Field(default=MemberRole.MEMBER)

    max_borrow: int = Field(
        default=3,
        description="Maximum number of concurrently open loans",
        ge=0,
    )

    borrowed_count: int = Field(
        default=0,
        description="Number of currently open loans",
        ge=0,
    )

    created_at: datetime | None = None

    @model_validator(mode="after")
    def validate_limits(self) -> "Member":
        if self.borrowed_count > self.max_borrow:
            raise ValueError("Borrowed count cannot exceed the borrow limit")
        if self.role == MemberRole.CANCELLED and self.max_borrow != 0:
            raise ValueError("Cancelled accounts must have a borrow limit of 0")
        return self

    @property
    def can_borrow(self) -> bool:
        return self.role == MemberRole.MEMBER and self.borrowed_count < self.max_borrow

    @property
    def remaining_borrows(self) -> int:
        return max(0, self.max_borrow - self.borrowed_count)

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        populate_by_name=True,
    )
