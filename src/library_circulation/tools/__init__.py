"""
MCP tools for the library circulation engine.

Tools are the command surface: every tool runs one coordinator command, so
each call is a single all-or-nothing transaction. Domain failures come back
as ``<ErrorKind>: <message>`` with ``isError`` set.
"""

from .borrow_requests import (
    approve_borrow_request,
    borrow_request_tools,
    cancel_borrow_request,
    reject_borrow_request,
    submit_borrow_request,
)
from .inventory import (
    add_item,
    add_title,
    inventory_tools,
    remove_item,
    remove_title,
    set_item_status,
    update_title,
)
from .loans import (
    issue_loan,
    loan_tools,
    mark_overdue,
    pay_fine,
    renew_loan,
    return_book,
    send_due_reminders,
    sweep_overdue,
)
from .members import member_tools, register_member, set_member_role
from .reservations import (
    cancel_reservation,
    fulfill_reservation,
    reservation_tools,
    reserve_title,
)

# The server registers every tool in this list
all_tools = inventory_tools + loan_tools + reservation_tools + borrow_request_tools + member_tools

__all__ = [
    "add_item",
    "add_title",
    "all_tools",
    "approve_borrow_request",
    "cancel_borrow_request",
    "cancel_reservation",
    "fulfill_reservation",
    "issue_loan",
    "mark_overdue",
    "pay_fine",
    "register_member",
    "reject_borrow_request",
    "remove_item",
    "remove_title",
    "renew_loan",
    "reserve_title",
    "return_book",
    "send_due_reminders",
    "set_item_status",
    "set_member_role",
    "submit_borrow_request",
    "sweep_overdue",
    "update_title",
]
