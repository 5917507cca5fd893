"""
SQLAlchemy database schema for the library circulation engine.

Every table carries a ``version`` column registered as the mapper's
``version_id_col``. SQLAlchemy then adds ``AND version = :old`` to each
UPDATE and raises ``StaleDataError`` when another transaction got there
first, which is how two members racing for the last copy are kept from both
succeeding. Partial unique indexes back the two "at most one active record"
invariants at the storage level as well.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.status import (
    BorrowRequestStatus,
    ItemStatus,
    LoanStatus,
    MemberRole,
    ReservationStatus,
)

Base = declarative_base()


def _status_column(enum_class, default):
    """Status column storing the enum's wire value rather than its member name."""
    return Column(
        Enum(
            enum_class,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            validate_strings=True,
            length=20,
        ),
        nullable=False,
        default=default,
    )


class Member(Base):
    """Library accounts with their role and borrow limit."""

    __tablename__ = "members"

    id = Column(String(50), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(255), nullable=True, unique=True)
    role = _status_column(MemberRole, MemberRole.MEMBER)
    max_borrow = Column(Integer, nullable=False, default=3)
    borrowed_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="member")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("id LIKE 'member_%'", name="check_member_id_format"),
        CheckConstraint("max_borrow >= 0", name="check_max_borrow_non_negative"),
        CheckConstraint("borrowed_count >= 0", name="check_borrowed_count_non_negative"),
        CheckConstraint("borrowed_count <= max_borrow", name="check_borrowed_within_limit"),
    )


class Title(Base):
    """Catalog titles and their copy counters. Removed titles are kept for loan history."""

    __tablename__ = "titles"

    id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=False, index=True)
    authors = Column(JSON, nullable=False, default=list)
    isbn = Column(String(13), nullable=True, index=True)
    categories = Column(JSON, nullable=False, default=list)
    total_copies = Column(Integer, nullable=False, default=0)
    available_copies = Column(Integer, nullable=False, default=0)
    published_at = Column(Date, nullable=True)
    removed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, default=func.now(), onupdate=func.now())

    items = relationship("Item", back_populates="title")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("id LIKE 'title_%'", name="check_title_id_format"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
        CheckConstraint("total_copies >= 0", name="check_total_copies_non_negative"),
    )


class Item(Base):
    """Physical copies. Removed items are kept (soft delete) for loan history."""

    __tablename__ = "items"

    id = Column(String(50), primary_key=True)
    title_id = Column(String(50), ForeignKey("titles.id"), nullable=False)
    barcode = Column(String(64), nullable=False, unique=True)
    location = Column(String(200), nullable=True)
    condition = Column(String(50), nullable=True)
    status = _status_column(ItemStatus, ItemStatus.AVAILABLE)
    removed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    title = relationship("Title", back_populates="items")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_item_title_status", "title_id", "status"),
        CheckConstraint("id LIKE 'item_%'", name="check_item_id_format"),
    )


class Loan(Base):
    """Loans of items to members."""

    __tablename__ = "loans"

    id = Column(String(50), primary_key=True)
    member_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    title_id = Column(String(50), ForeignKey("titles.id"), nullable=False)
    item_id = Column(String(50), ForeignKey("items.id"), nullable=False)
    issue_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = _status_column(LoanStatus, LoanStatus.ISSUED)
    fine = Column(Float, nullable=False, default=0.0)
    renew_count = Column(Integer, nullable=False, default=0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_amount = Column(Float, nullable=False, default=0.0)
    fine_paid_at = Column(DateTime, nullable=True)
    issued_by = Column(String(50), nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="loans")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_loan_member_status", "member_id", "status"),
        Index("idx_loan_due_date", "due_date"),
        Index(
            "uq_loan_open_item",
            "item_id",
            unique=True,
            sqlite_where=text("status IN ('issued', 'overdue')"),
            postgresql_where=text("status IN ('issued', 'overdue')"),
        ),
        CheckConstraint("id LIKE 'loan_%'", name="check_loan_id_format"),
        CheckConstraint("fine >= 0", name="check_fine_non_negative"),
        CheckConstraint("fine_paid_amount BETWEEN 0 AND fine", name="check_fine_paid_within_fine"),
        CheckConstraint("renew_count >= 0", name="check_renew_count_non_negative"),
    )


class Reservation(Base):
    """Per-title FIFO waiting queue."""

    __tablename__ = "reservations"

    id = Column(String(50), primary_key=True)
    member_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    title_id = Column(String(50), ForeignKey("titles.id"), nullable=False)
    item_id = Column(String(50), ForeignKey("items.id"), nullable=True)
    reserved_at = Column(DateTime, nullable=False)
    queue_position = Column(Integer, nullable=False)
    status = _status_column(ReservationStatus, ReservationStatus.WAITING)
    notified_at = Column(DateTime, nullable=True)
    loan_id = Column(String(50), ForeignKey("loans.id"), nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_reservation_queue", "title_id", "status", "reserved_at", "queue_position"),
        Index(
            "uq_reservation_active_member_title",
            "member_id",
            "title_id",
            unique=True,
            sqlite_where=text("status IN ('waiting', 'notified')"),
            postgresql_where=text("status IN ('waiting', 'notified')"),
        ),
        UniqueConstraint("title_id", "queue_position", name="unique_queue_position"),
        CheckConstraint("id LIKE 'reservation_%'", name="check_reservation_id_format"),
        CheckConstraint("queue_position > 0", name="check_queue_position_positive"),
    )


class BorrowRequest(Base):
    """Member requests awaiting librarian approval."""

    __tablename__ = "borrow_requests"

    id = Column(String(50), primary_key=True)
    member_id = Column(String(50), ForeignKey("members.id"), nullable=False)
    title_id = Column(String(50), ForeignKey("titles.id"), nullable=False)
    item_id = Column(String(50), ForeignKey("items.id"), nullable=True)
    requested_at = Column(DateTime, nullable=False)
    status = _status_column(BorrowRequestStatus, BorrowRequestStatus.PENDING)
    member_note = Column(Text, nullable=True)
    librarian_note = Column(Text, nullable=True)
    processed_by = Column(String(50), ForeignKey("members.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    loan_id = Column(String(50), ForeignKey("loans.id"), nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_request_status", "status", "requested_at"),
        Index("idx_request_member", "member_id"),
        CheckConstraint("id LIKE 'request_%'", name="check_request_id_format"),
        CheckConstraint(
            "(status IN ('approved', 'rejected')) = "
            "(processed_by IS NOT NULL AND processed_at IS NOT NULL)",
            name="check_processed_iff_decided",
        ),
    )
