"""Tests for the circulation coordinator: transactions, retries, notices and invariants."""

import threading
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from library_circulation.collaborators import EventKind, StaticIdentity, SystemClock
from library_circulation.database import (
    CirculationCoordinator,
    ConflictError,
    DuplicateBarcodeError,
    DuplicateError,
    InvalidRequestError,
    InvalidTransitionError,
    ItemInUseError,
    ItemNotAvailableError,
    LoanNotActiveError,
    NoItemsAvailableError,
    NotFoundError,
    get_coordinator,
)
from library_circulation.database.schema import Title as TitleDB
from library_circulation.models import (
    BorrowRequestStatus,
    ItemStatus,
    LoanStatus,
    MemberRole,
    ReservationStatus,
)


class TestRunAtomic:
    def test_domain_error_rolls_back_everything(self, coordinator: CirculationCoordinator):
        def op(ctx):
            ctx.members.register("Half Written")
            raise NotFoundError("Title title_missing not found")

        with pytest.raises(NotFoundError):
            coordinator.run_atomic("half_written", op)

        assert [m.name for m in coordinator.list_members()] == []

    def test_stale_data_is_retried(self, coordinator: CirculationCoordinator):
        attempts = []

        def op(ctx):
            attempts.append(len(attempts) + 1)
            member = ctx.members.register("Retry Reader")
            if len(attempts) == 1:
                raise StaleDataError("row version moved")
            return member

        member = coordinator.run_atomic("retry_once", op)

        assert attempts == [1, 2]
        assert [m.id for m in coordinator.list_members()] == [member.id]

    def test_persistent_conflict_surfaces(self, coordinator: CirculationCoordinator):
        attempts = []

        def op(ctx):
            attempts.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(ConflictError) as exc_info:
            coordinator.run_atomic("always_conflicts", op)

        assert len(attempts) == coordinator.config.max_transaction_attempts
        assert exc_info.value.kind == "Conflict"
        assert isinstance(exc_info.value.__cause__, IntegrityError)

    def test_locked_database_is_retried(self, coordinator: CirculationCoordinator):
        attempts = []

        def op(ctx):
            attempts.append(1)
            if len(attempts) < 3:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return "done"

        assert coordinator.run_atomic("locked", op) == "done"
        assert len(attempts) == 3

    def test_other_operational_errors_are_not_retried(self, coordinator):
        attempts = []

        def op(ctx):
            attempts.append(1)
            raise OperationalError("SELECT", {}, Exception("no such table: loans"))

        with pytest.raises(OperationalError):
            coordinator.run_atomic("broken", op)
        assert len(attempts) == 1

    def test_check_constraint_is_bad_input_not_contention(self, coordinator):
        attempts = []

        def op(ctx):
            attempts.append(1)
            raise IntegrityError(
                "INSERT", {}, Exception("CHECK constraint failed: check_max_borrow_non_negative")
            )

        with pytest.raises(InvalidRequestError, match="refused by the store") as exc_info:
            coordinator.run_atomic("bad_row", op)

        assert len(attempts) == 1
        assert exc_info.value.kind == "InvalidRequest"
        assert isinstance(exc_info.value.__cause__, IntegrityError)

    def test_negative_borrow_limit_is_refused(self, coordinator):
        with pytest.raises(InvalidRequestError, match="max_borrow must be >= 0"):
            coordinator.register_member("Neg", max_borrow=-1)
        assert [m.name for m in coordinator.list_members()] == []

    def test_events_are_not_sent_when_rolled_back(
        self, coordinator, member, other_member, single_copy_title, notifier
    ):
        loan = coordinator.issue_loan(member.id, single_copy_title.id)
        coordinator.reserve(other_member.id, single_copy_title.id)

        def op(ctx):
            _, item = ctx.loans.return_book(loan.id)
            assert ctx.reservations.notify_next(single_copy_title.id, item) is not None
            assert len(ctx.events) == 1
            raise InvalidTransitionError("abort")

        with pytest.raises(InvalidTransitionError):
            coordinator.run_atomic("aborted_return", op)

        assert notifier.events == []
        assert coordinator.get_loan(loan.id).status == LoanStatus.ISSUED


class TestNotifications:
    def test_notifier_failure_does_not_undo_commit(
        self, db, clock, test_config, member, other_member, single_copy_title
    ):
        class BrokenNotifier:
            def notify(self, event):
                raise RuntimeError("SMTP server unreachable")

        coordinator = CirculationCoordinator(
            db=db, clock=clock, notifier=BrokenNotifier(), config=test_config
        )
        loan = coordinator.issue_loan(member.id, single_copy_title.id)
        coordinator.reserve(other_member.id, single_copy_title.id)

        outcome = coordinator.return_book(loan.id)

        assert outcome.notified_reservation.member_id == other_member.id
        stored = coordinator.get_reservation(outcome.notified_reservation.id)
        assert stored.status == ReservationStatus.NOTIFIED

    def test_overdue_sweep_notifies_borrowers(self, coordinator, member, title, clock, notifier):
        loan = coordinator.issue_loan(member.id, title.id)
        clock.advance(days=16)

        swept = coordinator.sweep_overdue()

        assert [s.id for s in swept] == [loan.id]
        (notice,) = notifier.of_kind(EventKind.LOAN_OVERDUE)
        assert notice.member_id == member.id
        assert notice.loan_id == loan.id

    def test_due_reminders(self, coordinator, member, other_member, title, clock, notifier):
        soon = coordinator.issue_loan(member.id, title.id)
        clock.advance(days=5)
        coordinator.issue_loan(other_member.id, title.id)
        clock.advance(days=8)

        reminded = coordinator.send_due_reminders()

        assert [loan.id for loan in reminded] == [soon.id]
        (reminder,) = notifier.of_kind(EventKind.DUE_REMINDER)
        assert reminder.member_id == member.id
        assert reminder.details["due_date"] == soon.due_date.isoformat()


class TestInventoryCommands:
    def test_new_copy_goes_to_waiting_member(self, coordinator, member, empty_title, notifier):
        reservation = coordinator.reserve(member.id, empty_title.id)

        item = coordinator.add_item(empty_title.id, "DDIA-0001")

        assert item.status == ItemStatus.RESERVED
        held = coordinator.get_reservation(reservation.id)
        assert held.status == ReservationStatus.NOTIFIED
        assert held.item_id == item.id
        assert len(notifier.of_kind(EventKind.RESERVATION_NOTIFIED)) == 1

    def test_repaired_copy_goes_to_waiting_member(self, coordinator, member, single_copy_title):
        (item,) = coordinator.list_items(single_copy_title.id)
        coordinator.set_item_status(item.id, ItemStatus.MAINTENANCE)
        reservation = coordinator.reserve(member.id, single_copy_title.id)

        back = coordinator.set_item_status(item.id, ItemStatus.AVAILABLE)

        assert back.status == ItemStatus.RESERVED
        assert coordinator.get_reservation(reservation.id).status == ReservationStatus.NOTIFIED

    def test_removing_held_copy_requeues_member(
        self, coordinator, member, other_member, single_copy_title
    ):
        loan = coordinator.issue_loan(other_member.id, single_copy_title.id)
        reservation = coordinator.reserve(member.id, single_copy_title.id)
        outcome = coordinator.return_book(loan.id)

        coordinator.remove_item(outcome.loan.item_id)

        reverted = coordinator.get_reservation(reservation.id)
        assert reverted.status == ReservationStatus.WAITING
        assert reverted.item_id is None
        title = coordinator.get_title(single_copy_title.id)
        assert (title.total_copies, title.available_copies) == (0, 0)
        assert coordinator.verify_invariants() == []

    def test_update_title_keeps_copies(self, coordinator, title):
        updated = coordinator.update_title(title.id, authors=["Nam Cao"], isbn="9786041183058")

        assert updated.authors == ["Nam Cao"]
        assert updated.isbn == "9786041183058"
        assert updated.title == title.title
        assert (updated.total_copies, updated.available_copies) == (2, 2)

        with pytest.raises(InvalidRequestError, match="isbn"):
            coordinator.update_title(title.id, isbn="not-an-isbn")
        assert coordinator.get_title(title.id).isbn == "9786041183058"

    def test_remove_title_closes_queue_and_requests(
        self, coordinator, member, other_member, third_member, single_copy_title, notifier
    ):
        loan = coordinator.issue_loan(third_member.id, single_copy_title.id)
        held = coordinator.reserve(member.id, single_copy_title.id)
        waiting = coordinator.reserve(other_member.id, single_copy_title.id)
        request = coordinator.submit_borrow_request(other_member.id, single_copy_title.id)
        coordinator.return_book(loan.id)

        removed = coordinator.remove_title(single_copy_title.id)

        assert removed.removed_at is not None
        assert (removed.total_copies, removed.available_copies) == (0, 0)
        for reservation in (held, waiting):
            assert coordinator.get_reservation(reservation.id).status == ReservationStatus.CANCELED
        assert coordinator.get_borrow_request(request.id).status == BorrowRequestStatus.CANCELLED
        notified = [e.member_id for e in notifier.of_kind(EventKind.RESERVATION_NOTIFIED)]
        assert notified == [member.id]
        with pytest.raises(NotFoundError):
            coordinator.get_item(loan.item_id)
        with pytest.raises(NotFoundError):
            coordinator.get_title(single_copy_title.id)
        assert single_copy_title.id not in [t.id for t in coordinator.list_titles().items]
        assert coordinator.get_loan(loan.id).status == LoanStatus.RETURNED
        assert coordinator.verify_invariants() == []

    def test_remove_title_with_copy_on_loan_changes_nothing(
        self, coordinator, member, other_member, single_copy_title
    ):
        coordinator.issue_loan(member.id, single_copy_title.id)
        reservation = coordinator.reserve(other_member.id, single_copy_title.id)

        with pytest.raises(ItemInUseError):
            coordinator.remove_title(single_copy_title.id)

        assert coordinator.get_reservation(reservation.id).status == ReservationStatus.WAITING
        assert coordinator.get_title(single_copy_title.id).total_copies == 1

    def test_removed_title_barcodes_stay_taken(self, coordinator, title, empty_title):
        coordinator.remove_title(title.id)

        with pytest.raises(DuplicateBarcodeError):
            coordinator.add_item(empty_title.id, "9786042088321-0001")

    def test_checkout_alias(self, coordinator, member, title):
        loan = coordinator.checkout(member.id, title.id)
        assert coordinator.get_loan(loan.id).status == LoanStatus.ISSUED


class TestMembers:
    def test_role_defaults(self, coordinator):
        reader = coordinator.register_member("Reader")
        staff = coordinator.register_member("Staff", MemberRole.LIBRARIAN)
        gone = coordinator.register_member("Gone", MemberRole.CANCELLED)

        assert (reader.max_borrow, staff.max_borrow, gone.max_borrow) == (3, 10, 0)
        librarians = coordinator.list_members(MemberRole.LIBRARIAN)
        assert [m.id for m in librarians] == [staff.id]

    def test_cannot_cancel_with_open_loans(self, coordinator, member, title):
        coordinator.issue_loan(member.id, title.id)
        with pytest.raises(InvalidTransitionError):
            coordinator.set_member_role(member.id, MemberRole.CANCELLED)
        assert coordinator.get_member(member.id).role == MemberRole.MEMBER

    def test_cancel_after_returns(self, coordinator, member, title):
        loan = coordinator.issue_loan(member.id, title.id)
        coordinator.return_book(loan.id)

        cancelled = coordinator.set_member_role(member.id, MemberRole.CANCELLED)
        assert cancelled.max_borrow == 0
        assert not cancelled.can_borrow

    def test_cancelled_account_leaves_the_queue(
        self, coordinator, member, other_member, single_copy_title
    ):
        loan = coordinator.issue_loan(member.id, single_copy_title.id)
        reservation = coordinator.reserve(other_member.id, single_copy_title.id)

        coordinator.set_member_role(other_member.id, MemberRole.CANCELLED)
        outcome = coordinator.return_book(loan.id)

        assert outcome.notified_reservation is None
        assert coordinator.get_reservation(reservation.id).status == ReservationStatus.CANCELED
        assert coordinator.get_item(loan.item_id).status == ItemStatus.AVAILABLE

    def test_promoted_member_passes_held_copy_on(
        self, coordinator, member, other_member, third_member, single_copy_title, notifier
    ):
        loan = coordinator.issue_loan(third_member.id, single_copy_title.id)
        first = coordinator.reserve(member.id, single_copy_title.id)
        second = coordinator.reserve(other_member.id, single_copy_title.id)
        coordinator.return_book(loan.id)

        coordinator.set_member_role(member.id, MemberRole.LIBRARIAN)

        assert coordinator.get_reservation(first.id).status == ReservationStatus.CANCELED
        held = coordinator.get_reservation(second.id)
        assert held.status == ReservationStatus.NOTIFIED
        assert held.item_id == loan.item_id
        notified = [e.member_id for e in notifier.of_kind(EventKind.RESERVATION_NOTIFIED)]
        assert notified == [member.id, other_member.id]
        assert coordinator.verify_invariants() == []

    def test_duplicate_email(self, coordinator, member):
        with pytest.raises(DuplicateError):
            coordinator.register_member("Impostor", email=member.email)

    def test_acting_member_from_identity(self, db, clock, test_config, member):
        coordinator = CirculationCoordinator(
            db=db, clock=clock, config=test_config, identity=StaticIdentity(member.id)
        )
        assert coordinator.acting_member_id() == member.id


class TestInvariants:
    def test_consistent_after_mixed_activity(
        self, coordinator, member, other_member, third_member, librarian, title, clock
    ):
        first = coordinator.issue_loan(member.id, title.id)
        coordinator.issue_loan(other_member.id, title.id)
        reservation = coordinator.reserve(third_member.id, title.id)
        clock.advance(days=20)
        coordinator.sweep_overdue()
        coordinator.return_book(first.id)
        coordinator.fulfill_reservation(reservation.id)
        request = coordinator.submit_borrow_request(member.id, title.id)
        coordinator.reject_borrow_request(request.id, librarian.id, "No copies left")

        assert coordinator.verify_invariants() == []

    def test_drift_is_reported_and_repaired(self, coordinator, title):
        with coordinator.db.session_scope() as session:
            session.get(TitleDB, title.id).available_copies = 0

        problems = coordinator.verify_invariants()
        assert len(problems) == 1
        assert "available_copies=0" in problems[0]

        repaired = coordinator.recompute_counts(title.id)
        assert repaired.available_copies == 2
        assert coordinator.verify_invariants() == []


class TestGlobalCoordinator:
    def test_fixture_installs_coordinator(self, coordinator):
        assert get_coordinator() is coordinator

    def test_default_clock_is_naive_utc(self):
        now = SystemClock().now()
        assert now.tzinfo is None
        assert abs(datetime.now(UTC).replace(tzinfo=None) - now) < timedelta(seconds=5)


@pytest.mark.concurrency
class TestConcurrentCheckout:
    def test_last_copy_goes_to_exactly_one_member(
        self, coordinator, member, other_member, single_copy_title
    ):
        barrier = threading.Barrier(2)
        results: dict[str, object] = {}

        def borrow(member_id: str) -> None:
            barrier.wait()
            try:
                results[member_id] = coordinator.issue_loan(member_id, single_copy_title.id)
            except Exception as e:  # noqa: BLE001 - collected for assertions
                results[member_id] = e

        threads = [
            threading.Thread(target=borrow, args=(m.id,)) for m in (member, other_member)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        outcomes = list(results.values())
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(outcomes) == 2
        assert len(failures) == 1
        assert isinstance(
            failures[0], NoItemsAvailableError | ItemNotAvailableError | ConflictError
        )

        title = coordinator.get_title(single_copy_title.id)
        assert title.available_copies == 0
        assert len(coordinator.list_loans(status=LoanStatus.ISSUED)) == 1
        assert coordinator.verify_invariants() == []


class TestReturnIdempotence:
    def test_second_return_changes_nothing(self, coordinator, member, title, notifier):
        loan = coordinator.issue_loan(member.id, title.id)
        coordinator.return_book(loan.id)
        before = coordinator.get_title(title.id)

        with pytest.raises(LoanNotActiveError):
            coordinator.return_book(loan.id)

        assert coordinator.get_title(title.id) == before
        assert coordinator.get_member(member.id).borrowed_count == 0
