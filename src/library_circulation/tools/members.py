"""Member Tools - Account Administration

Tools:
- register_member: Open a member or librarian account
- set_member_role: Promote, demote or cancel an account
"""

import logging
from typing import Any

from pydantic import BaseModel, EmailStr, Field

from ..database.circulation_coordinator import CirculationCoordinator
from ..models.status import MemberRole
from .common import MEMBER_ID_PATTERN, execute_tool

logger = logging.getLogger(__name__)


class RegisterMemberInput(BaseModel):
    """Input schema for opening an account."""

    name: str = Field(..., min_length=1, max_length=200)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    email: EmailStr | None = None
    max_borrow: int | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Borrow limit; defaults to the configured limit for the role",
    )


def _register(params: RegisterMemberInput, coordinator: CirculationCoordinator):
    member = coordinator.register_member(
        params.name, params.role, params.email, params.max_borrow
    )
    return (
        f"Registered {member.role} {member.name} ({member.id}), limit {member.max_borrow}",
        {"member": member.model_dump(mode="json")},
    )


async def register_member_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("register_member", RegisterMemberInput, arguments, _register)


class SetMemberRoleInput(BaseModel):
    """Input schema for a role change."""

    member_id: str = Field(..., pattern=MEMBER_ID_PATTERN)
    role: MemberRole


def _set_role(params: SetMemberRoleInput, coordinator: CirculationCoordinator):
    member = coordinator.set_member_role(params.member_id, params.role)
    return (
        f"Member {member.id} is now {member.role} (limit {member.max_borrow})",
        {"member": member.model_dump(mode="json")},
    )


async def set_member_role_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    return await execute_tool("set_member_role", SetMemberRoleInput, arguments, _set_role)


register_member = {
    "name": "register_member",
    "description": "Open a library account for a member or a librarian.",
    "inputSchema": RegisterMemberInput.model_json_schema(),
    "handler": register_member_handler,
}

set_member_role = {
    "name": "set_member_role",
    "description": (
        "Change an account's role. Cancelling an account requires all its loans to be returned."
    ),
    "inputSchema": SetMemberRoleInput.model_json_schema(),
    "handler": set_member_role_handler,
}

member_tools = [register_member, set_member_role]
