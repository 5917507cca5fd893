"""Tests for the loan, reservation and borrow request tools.

Handlers are called directly with raw argument dicts, the way FastMCP invokes
them, against the coordinator the fixtures install.
"""

from library_circulation.collaborators import StaticIdentity
from library_circulation.database import CirculationCoordinator, set_coordinator
from library_circulation.tools.borrow_requests import (
    approve_borrow_request_handler,
    cancel_borrow_request_handler,
    reject_borrow_request_handler,
    submit_borrow_request_handler,
)
from library_circulation.tools.loans import (
    issue_loan_handler,
    mark_overdue_handler,
    pay_fine_handler,
    renew_loan_handler,
    return_book_handler,
    send_due_reminders_handler,
    sweep_overdue_handler,
)
from library_circulation.tools.reservations import (
    cancel_reservation_handler,
    fulfill_reservation_handler,
    reserve_title_handler,
)


def error_text(result: dict) -> str:
    assert result.get("isError") is True
    return result["content"][0]["text"]


class TestLoanTools:
    async def test_issue_renew_return(self, coordinator, member, title, clock):
        issued = await issue_loan_handler({"title_id": title.id, "member_id": member.id})
        loan_id = issued["data"]["loan"]["id"]
        assert issued["data"]["loan"]["status"] == "issued"

        renewed = await renew_loan_handler({"loan_id": loan_id})
        assert renewed["data"]["loan"]["renew_count"] == 1

        clock.advance(days=32)
        returned = await return_book_handler({"loan_id": loan_id})
        assert returned["data"]["loan"]["fine"] == 2 * 5000.0
        assert returned["data"]["notified_reservation"] is None
        assert "Fine due: 10,000" in returned["content"][0]["text"]

        paid = await pay_fine_handler({"loan_id": loan_id})
        assert paid["data"]["loan"]["fine_paid"] is True

    async def test_borrow_limit_is_reported_by_kind(self, coordinator, title):
        reader = coordinator.register_member("Tight Limit", max_borrow=0)
        result = await issue_loan_handler({"title_id": title.id, "member_id": reader.id})
        assert error_text(result).startswith("BorrowLimitExceeded: ")

    async def test_missing_actor(self, coordinator, title):
        result = await issue_loan_handler({"title_id": title.id})
        assert error_text(result).startswith("Unauthorized: ")

    async def test_actor_from_identity(self, db, clock, notifier, test_config, member, title):
        set_coordinator(
            CirculationCoordinator(
                db=db,
                clock=clock,
                notifier=notifier,
                config=test_config,
                identity=StaticIdentity(member.id),
            )
        )
        result = await issue_loan_handler({"title_id": title.id})
        assert result["data"]["loan"]["member_id"] == member.id

    async def test_overdue_tools(self, coordinator, member, other_member, title, clock):
        first = coordinator.issue_loan(member.id, title.id)
        coordinator.issue_loan(other_member.id, title.id)

        early = await mark_overdue_handler({"loan_id": first.id})
        assert error_text(early).startswith("InvalidTransition: ")

        clock.advance(days=14)
        reminders = await send_due_reminders_handler({})
        assert len(reminders["data"]["loans"]) == 2

        clock.advance(days=2)
        swept = await sweep_overdue_handler({})
        assert {loan["status"] for loan in swept["data"]["loans"]} == {"overdue"}
        assert swept["content"][0]["text"] == "Marked 2 loans overdue"

    async def test_malformed_loan_id(self, coordinator):
        result = await return_book_handler({"loan_id": "42"})
        assert error_text(result).startswith("Invalid parameters")

    async def test_pay_fine_before_return(self, coordinator, member, title, clock):
        loan = coordinator.issue_loan(member.id, title.id)
        clock.advance(days=17)
        coordinator.sweep_overdue()

        paid = await pay_fine_handler({"loan_id": loan.id})
        assert paid["data"]["loan"]["status"] == "overdue"
        assert paid["content"][0]["text"] == f"Fine on loan {loan.id} paid: 10,000 settled in total"

        nothing_due = await pay_fine_handler({"loan_id": loan.id})
        assert error_text(nothing_due).startswith("NoOutstandingFine: ")

        clock.advance(days=1)
        returned = await return_book_handler({"loan_id": loan.id})
        assert returned["data"]["loan"]["fine"] == 15000.0
        assert "Fine due: 5,000" in returned["content"][0]["text"]


class TestReservationTools:
    async def test_reserve_and_cancel(self, coordinator, member, other_member, title):
        first = await reserve_title_handler({"title_id": title.id, "member_id": member.id})
        second = await reserve_title_handler(
            {"title_id": title.id, "member_id": other_member.id}
        )
        assert first["data"]["queue_position"] == 1
        assert second["data"]["queue_position"] == 2

        duplicate = await reserve_title_handler({"title_id": title.id, "member_id": member.id})
        assert error_text(duplicate).startswith("DuplicateReservation: ")

        reservation_id = first["data"]["reservation"]["id"]
        stolen = await cancel_reservation_handler(
            {"reservation_id": reservation_id, "member_id": other_member.id}
        )
        assert error_text(stolen).startswith("Unauthorized: ")

        cancelled = await cancel_reservation_handler(
            {"reservation_id": reservation_id, "member_id": member.id}
        )
        assert cancelled["data"]["reservation"]["status"] == "canceled"

    async def test_fulfill(self, coordinator, member, other_member, single_copy_title):
        loan = coordinator.issue_loan(other_member.id, single_copy_title.id)
        reservation = coordinator.reserve(member.id, single_copy_title.id)

        waiting = await fulfill_reservation_handler({"reservation_id": reservation.id})
        assert error_text(waiting).startswith("InvalidTransition: ")

        coordinator.return_book(loan.id)
        result = await fulfill_reservation_handler({"reservation_id": reservation.id})
        assert result["data"]["reservation"]["status"] == "fulfilled"
        assert result["data"]["reservation"]["loan_id"]


class TestBorrowRequestTools:
    async def test_submit_approve(self, coordinator, member, librarian, title):
        submitted = await submit_borrow_request_handler(
            {"title_id": title.id, "member_id": member.id, "member_note": "Please"}
        )
        request_id = submitted["data"]["request"]["id"]

        approved = await approve_borrow_request_handler(
            {"request_id": request_id, "librarian_id": librarian.id}
        )
        assert approved["data"]["request"]["status"] == "approved"
        assert approved["data"]["request"]["loan_id"]

        again = await approve_borrow_request_handler(
            {"request_id": request_id, "librarian_id": librarian.id}
        )
        assert error_text(again).startswith("RequestNotPending: ")

    async def test_member_cannot_approve(self, coordinator, member, title):
        request = coordinator.submit_borrow_request(member.id, title.id)
        result = await approve_borrow_request_handler(
            {"request_id": request.id, "librarian_id": member.id}
        )
        assert error_text(result).startswith("Unauthorized: ")

    async def test_reject_and_cancel(self, coordinator, member, librarian, title, empty_title):
        first = coordinator.submit_borrow_request(member.id, title.id)
        second = coordinator.submit_borrow_request(member.id, empty_title.id)

        blank = await reject_borrow_request_handler(
            {"request_id": first.id, "librarian_id": librarian.id, "reason": " "}
        )
        assert error_text(blank).startswith("InvalidRequest: ")

        rejected = await reject_borrow_request_handler(
            {"request_id": first.id, "librarian_id": librarian.id, "reason": "Reference only"}
        )
        assert rejected["data"]["request"]["librarian_note"] == "Reference only"

        cancelled = await cancel_borrow_request_handler(
            {"request_id": second.id, "member_id": member.id}
        )
        assert cancelled["data"]["request"]["status"] == "cancelled"
