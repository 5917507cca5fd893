"""Tests for the member account tools."""

from library_circulation.tools.members import register_member_handler, set_member_role_handler


def error_text(result: dict) -> str:
    assert result.get("isError") is True
    return result["content"][0]["text"]


class TestMemberTools:
    async def test_register_and_promote(self, coordinator):
        result = await register_member_handler({"name": "Hoang Van Em", "email": "em@example.com"})
        member = result["data"]["member"]
        assert member["max_borrow"] == 3

        promoted = await set_member_role_handler({"member_id": member["id"], "role": "librarian"})
        assert promoted["data"]["member"]["role"] == "librarian"
        assert promoted["data"]["member"]["max_borrow"] == 10

    async def test_duplicate_email(self, coordinator, member):
        result = await register_member_handler({"name": "Impostor", "email": member.email})
        assert error_text(result).startswith("Duplicate: ")

    async def test_unknown_role(self, coordinator):
        result = await register_member_handler({"name": "X", "role": "admin"})
        assert error_text(result).startswith("Invalid parameters")

    async def test_negative_limit(self, coordinator):
        result = await register_member_handler({"name": "Neg", "max_borrow": -1})
        assert error_text(result).startswith("Invalid parameters")
