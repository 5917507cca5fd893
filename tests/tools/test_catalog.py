"""Tests for the catalog and shelf tools, and for the tool registry.

Handlers are called directly with raw argument dicts, the way FastMCP invokes
them, against the coordinator the fixtures install.
"""

from library_circulation.models import ReservationStatus
from library_circulation.tools import all_tools
from library_circulation.tools.inventory import (
    add_item_handler,
    add_title_handler,
    remove_item_handler,
    remove_title_handler,
    set_item_status_handler,
    update_title_handler,
)


def error_text(result: dict) -> str:
    assert result.get("isError") is True
    return result["content"][0]["text"]


class TestRegistry:
    def test_every_tool_is_well_formed(self):
        names = [tool["name"] for tool in all_tools]
        assert len(names) == len(set(names))
        for tool in all_tools:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"
            assert callable(tool["handler"])

    def test_expected_commands_are_exposed(self):
        names = {tool["name"] for tool in all_tools}
        assert {
            "add_title",
            "update_title",
            "remove_title",
            "add_item",
            "set_item_status",
            "remove_item",
            "issue_loan",
            "renew_loan",
            "return_book",
            "pay_fine",
            "mark_overdue",
            "sweep_overdue",
            "send_due_reminders",
            "reserve_title",
            "cancel_reservation",
            "fulfill_reservation",
            "submit_borrow_request",
            "approve_borrow_request",
            "reject_borrow_request",
            "cancel_borrow_request",
            "register_member",
            "set_member_role",
        } <= names


class TestInventoryTools:
    async def test_add_title_and_item(self, coordinator):
        result = await add_title_handler(
            {
                "title": "Số đỏ",
                "authors": ["Vũ Trọng Phụng"],
                "isbn": "9786049690510",
                "copies": 2,
            }
        )
        title = result["data"]["title"]
        assert title["total_copies"] == 2
        assert "with 2 copies" in result["content"][0]["text"]

        result = await add_item_handler({"title_id": title["id"], "barcode": "SD-EXTRA"})
        assert result["data"]["item"]["status"] == "available"

    async def test_duplicate_barcode_is_reported_by_kind(self, coordinator, title):
        result = await add_item_handler({"title_id": title.id, "barcode": "9786042088321-0001"})
        assert error_text(result).startswith("DuplicateBarcode: ")

    async def test_invalid_parameters(self, coordinator):
        result = await add_title_handler({"title": "", "copies": -1})
        assert error_text(result).startswith("Invalid parameters")

    async def test_status_change_and_removal(self, coordinator, title):
        item = coordinator.list_items(title.id)[0]

        result = await set_item_status_handler({"item_id": item.id, "status": "maintenance"})
        assert result["data"]["item"]["status"] == "maintenance"

        result = await set_item_status_handler({"item_id": item.id, "status": "borrowed"})
        assert error_text(result).startswith("InvalidTransition: ")

        result = await remove_item_handler({"item_id": item.id})
        assert result["data"]["item"]["id"] == item.id
        assert coordinator.get_title(title.id).total_copies == 1

    async def test_unknown_item(self, coordinator):
        result = await remove_item_handler({"item_id": "item_doesnotexist"})
        assert error_text(result).startswith("NotFound: ")


class TestTitleMaintenanceTools:
    async def test_update_title_metadata(self, coordinator, title):
        result = await update_title_handler(
            {"title_id": title.id, "title": "Tắt đèn", "categories": ["Tiểu thuyết"]}
        )
        updated = result["data"]["title"]
        assert updated["title"] == "Tắt đèn"
        assert updated["categories"] == ["Tiểu thuyết"]
        assert updated["isbn"] == title.isbn
        assert updated["total_copies"] == 2
        assert result["content"][0]["text"] == f"Updated 'Tắt đèn' ({title.id})"

    async def test_update_title_rejects_bad_isbn(self, coordinator, title):
        result = await update_title_handler({"title_id": title.id, "isbn": "12-34"})
        assert error_text(result).startswith("Invalid parameters")
        assert coordinator.get_title(title.id).isbn == title.isbn

    async def test_remove_title(self, coordinator, member, title):
        reservation = coordinator.reserve(member.id, title.id)

        result = await remove_title_handler({"title_id": title.id})
        assert result["data"]["title"]["removed_at"] is not None
        assert result["data"]["title"]["total_copies"] == 0
        assert coordinator.get_reservation(reservation.id).status == ReservationStatus.CANCELED

        again = await remove_title_handler({"title_id": title.id})
        assert error_text(again).startswith("NotFound: ")

    async def test_remove_title_on_loan_is_refused(self, coordinator, member, title):
        coordinator.issue_loan(member.id, title.id)

        result = await remove_title_handler({"title_id": title.id})
        assert error_text(result).startswith("ItemInUse: ")
        assert coordinator.get_title(title.id).total_copies == 2
