"""Tests for the read-only MCP resources."""

import pytest
from fastmcp.exceptions import ResourceError

from library_circulation.resources import all_resources
from library_circulation.resources.catalog import (
    get_title_handler,
    list_title_items_handler,
    list_titles_handler,
)
from library_circulation.resources.circulation import (
    consistency_handler,
    get_member_handler,
    get_member_loans_handler,
    get_title_reservations_handler,
    list_borrow_requests_handler,
    list_outstanding_fines_handler,
)


class TestRegistry:
    def test_every_resource_has_a_uri(self):
        for resource in all_resources:
            uri = resource.get("uri_template", resource.get("uri"))
            assert uri.startswith("library://")
            assert resource["mime_type"] == "application/json"
            assert callable(resource["handler"])

    def test_uris_are_unique(self):
        uris = [r.get("uri_template", r.get("uri")) for r in all_resources]
        assert len(uris) == len(set(uris))


class TestCatalogResources:
    async def test_titles_listing(self, coordinator, title, single_copy_title):
        result = await list_titles_handler()
        assert result["total"] == 2
        assert {t["id"] for t in result["titles"]} == {title.id, single_copy_title.id}
        assert result["has_next"] is False

    async def test_title_details(self, coordinator, member, single_copy_title):
        coordinator.issue_loan(member.id, single_copy_title.id)
        coordinator.reserve(coordinator.register_member("Waiting").id, single_copy_title.id)

        result = await get_title_handler(single_copy_title.id)

        assert result["title"]["available_copies"] == 0
        assert result["is_available"] is False
        assert result["waiting_count"] == 1

    async def test_unknown_title(self, coordinator):
        with pytest.raises(ResourceError, match="Title not found"):
            await get_title_handler("title_doesnotexist")
        with pytest.raises(ResourceError, match="Title not found"):
            await list_title_items_handler("title_doesnotexist")

    async def test_title_items(self, coordinator, member, title):
        coordinator.issue_loan(member.id, title.id)

        result = await list_title_items_handler(title.id)

        assert result["count"] == 2
        assert result["by_status"] == {"borrowed": 1, "available": 1}
        assert [i["barcode"] for i in result["items"]] == [
            "9786042088321-0001",
            "9786042088321-0002",
        ]


class TestCirculationResources:
    async def test_member_account(self, coordinator, member, title):
        coordinator.issue_loan(member.id, title.id)

        result = await get_member_handler(member.id)

        assert result["member"]["borrowed_count"] == 1
        assert result["can_borrow"] is True
        assert result["remaining_borrows"] == 2

    async def test_unknown_member(self, coordinator):
        with pytest.raises(ResourceError, match="Member not found"):
            await get_member_handler("member_doesnotexist")
        with pytest.raises(ResourceError, match="Member not found"):
            await get_member_loans_handler("member_doesnotexist")

    async def test_member_loans(self, coordinator, member, title, clock):
        returned = coordinator.issue_loan(member.id, title.id)
        clock.advance(days=16)
        coordinator.return_book(returned.id)
        open_loan = coordinator.issue_loan(member.id, title.id)

        result = await get_member_loans_handler(member.id)

        assert [loan["id"] for loan in result["active"]] == [open_loan.id]
        assert [loan["id"] for loan in result["history"]] == [returned.id]
        assert result["outstanding_fines"] == 5000.0

    async def test_reservation_queue(self, coordinator, member, other_member, title):
        coordinator.reserve(member.id, title.id)
        coordinator.reserve(other_member.id, title.id)

        result = await get_title_reservations_handler(title.id)

        assert [(r["position"], r["member_id"]) for r in result["queue"]] == [
            (1, member.id),
            (2, other_member.id),
        ]
        assert result["waiting_count"] == 2

    async def test_borrow_requests_by_status(self, coordinator, member, librarian, title):
        pending = coordinator.submit_borrow_request(member.id, title.id)

        result = await list_borrow_requests_handler("PENDING")

        assert result["status_filter"] == "pending"
        assert [r["id"] for r in result["requests"]] == [pending.id]
        assert (await list_borrow_requests_handler("approved"))["total"] == 0

    async def test_unknown_request_status(self, coordinator):
        with pytest.raises(ResourceError, match="Invalid borrow request status"):
            await list_borrow_requests_handler("archived")

    async def test_outstanding_fines(self, coordinator, member, title, clock):
        loan = coordinator.issue_loan(member.id, title.id)
        clock.advance(days=18)
        coordinator.return_book(loan.id)

        result = await list_outstanding_fines_handler()

        assert [f["id"] for f in result["fines"]] == [loan.id]
        assert result["total_amount"] == 3 * 5000.0

    async def test_consistency(self, coordinator, member, title):
        coordinator.issue_loan(member.id, title.id)
        assert await consistency_handler() == {"consistent": True, "violations": []}
