"""
Circulation models for the library circulation engine.

These models represent the movement of items between the shelf and members:
- Loan: one item lent to one member for a bounded period
- Reservation: a member's place in a title's waiting queue
- BorrowRequest: a member-initiated ask for librarian-mediated issuance

They are read models: every mutation happens in the ledgers under
``library_circulation.database``, which return these models to callers.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .status import BorrowRequestStatus, LoanStatus, ReservationStatus

_READ_MODEL_CONFIG = ConfigDict(
    from_attributes=True,
    use_enum_values=True,
    populate_by_name=True,
)


class Loan(BaseModel):
    """
    Represents one item lent to one member.

    The due date starts at ``issue_date + loan period`` and moves forward by
    the renewal extension on each renewal. Fines accrue per full day past due.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the loan",
        pattern=r"^loan_[a-zA-Z0-9]{6,}$",
        examples=["loan_1a2b3c4d5e6f"],
    )

    member_id: str = Field(..., description="Borrowing member")
    title_id: str = Field(..., description="Title of the borrowed item")
    item_id: str = Field(..., description="Borrowed item")

    issue_date: datetime = Field(..., description="When the item left the library")
    due_date: datetime = Field(..., description="When the item must be back")
    return_date: datetime | None = Field(None, description="When the item came back")

    status: LoanStatus = Field(
        default=LoanStatus.ISSUED,
        description="Current status of the loan",
    )

    fine: float = Field(
        default=0.0,
        description="Fine accrued on this loan",
        ge=0.0,
    )

    renew_count: int = Field(
        default=0,
        description="Number of renewals taken",
        ge=0,
    )

    fine_paid: bool = Field(default=False, description="Whether the fine has been settled")
    fine_paid_amount: float = Field(
        default=0.0,
        description="Part of the fine already paid; more can accrue while the loan is open",
        ge=0.0,
    )
    fine_paid_at: datetime | None = None

    issued_by: str | None = Field(
        None,
        description="Librarian who approved the request that produced this loan",
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "Loan":
        """Validate date relationships."""
        if self.due_date <= self.issue_date:
            raise ValueError("Due date must be after issue date")
        if self.return_date and self.return_date < self.issue_date:
            raise ValueError("Return date cannot be before issue date")
        return self

    @property
    def is_open(self) -> bool:
        return self.status in (LoanStatus.ISSUED, LoanStatus.OVERDUE)

    @property
    def outstanding_fine(self) -> float:
        return max(0.0, self.fine - self.fine_paid_amount)

    def days_overdue(self, as_of: datetime) -> int:
        """Full days past the due date at ``as_of`` (or at return, if returned)."""
        end = self.return_date or as_of
        return max(0, (end - self.due_date).days)

    model_config = _READ_MODEL_CONFIG


class Reservation(BaseModel):
    """
    A member's place in the FIFO waiting queue of a title.

    Queue order is ``reserved_at`` ascending with ``queue_position`` as the
    tie-break. ``item_id`` is bound when the reservation is notified.
    """

    id: str = Field(
        ...,
        description="Unique identifier for the reservation",
        pattern=r"^reservation_[a-zA-Z0-9]{6,}$",
    )

    member_id: str
    title_id: str
    item_id: str | None = Field(None, description="Item held for this member once notified")

    reserved_at: datetime
    queue_position: int = Field(..., ge=1, description="Monotonic position within the title")

    status: ReservationStatus = Field(default=ReservationStatus.WAITING)

    notified_at: datetime | None = None
    loan_id: str | None = Field(None, description="Loan created when the reservation was fulfilled")

    @property
    def is_active(self) -> bool:
        return self.status in (ReservationStatus.WAITING, ReservationStatus.NOTIFIED)

    model_config = _READ_MODEL_CONFIG


class BorrowRequest(BaseModel):
    """A member's request for a librarian to issue a title."""

    id: str = Field(
        ...,
        description="Unique identifier for the request",
        pattern=r"^request_[a-zA-Z0-9]{6,}$",
    )

    member_id: str
    title_id: str
    item_id: str | None = Field(
        None, description="Pre-selected item, or the item assigned on approval"
    )

    requested_at: datetime
    status: BorrowRequestStatus = Field(default=BorrowRequestStatus.PENDING)

    member_note: str | None = Field(None, max_length=1000)
    librarian_note: str | None = Field(None, max_length=1000)

    processed_by: str | None = None
    processed_at: datetime | None = None
    loan_id: str | None = None

    @model_validator(mode="after")
    def validate_processing(self) -> "BorrowRequest":
        """processed_by/processed_at are set exactly for approved and rejected requests."""
        processed = self.status in (BorrowRequestStatus.APPROVED, BorrowRequestStatus.REJECTED)
        if processed != (self.processed_by is not None and self.processed_at is not None):
            raise ValueError("processed_by/processed_at must be set iff the request was processed")
        return self

    model_config = _READ_MODEL_CONFIG
