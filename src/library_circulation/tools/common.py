"""Shared plumbing for the circulation tools: validation, audit logging, error rendering."""

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from ..database.circulation_coordinator import CirculationCoordinator, get_coordinator
from ..database.repository import CirculationError, RepositoryException, UnauthorizedError

logger = logging.getLogger(__name__)

# An action returns the human-readable message and the structured payload
ToolAction = Callable[[Any, CirculationCoordinator], tuple[str, dict[str, Any]]]

MEMBER_ID_PATTERN = r"^member_[a-zA-Z0-9]{6,}$"
TITLE_ID_PATTERN = r"^title_[a-zA-Z0-9]{6,}$"
ITEM_ID_PATTERN = r"^item_[a-zA-Z0-9]{6,}$"
LOAN_ID_PATTERN = r"^loan_[a-zA-Z0-9]{6,}$"
RESERVATION_ID_PATTERN = r"^reservation_[a-zA-Z0-9]{6,}$"
REQUEST_ID_PATTERN = r"^request_[a-zA-Z0-9]{6,}$"


def _format_error_response(error_type: str, details: str) -> dict[str, Any]:
    """Format error responses consistently across all tools."""
    return {"isError": True, "content": [{"type": "text", "text": f"{error_type}: {details}"}]}


def _log_operation(operation: str, **kwargs) -> None:
    """Log operation details for audit trail."""
    logger.info(
        "Operation: %s | Details: %s", operation, " | ".join(f"{k}={v}" for k, v in kwargs.items())
    )


def resolve_actor(explicit_id: str | None, coordinator: CirculationCoordinator) -> str:
    """The member named in the call, else the identity the server acts as."""
    actor = explicit_id or coordinator.acting_member_id()
    if not actor:
        raise UnauthorizedError("No acting member: pass an id or configure an identity")
    return actor


async def execute_tool(
    tool_name: str,
    input_model: type[BaseModel],
    arguments: dict[str, Any],
    action: ToolAction,
) -> dict[str, Any]:
    """
    Validate ``arguments``, run ``action`` against the coordinator and shape the reply.

    Domain errors come back as ``<kind>: <message>`` with ``isError`` set, so
    the caller can match on the kind.
    """
    try:
        try:
            params = input_model.model_validate(arguments)
        except ValidationError as e:
            logger.warning("Invalid %s parameters: %s", tool_name, e)
            return _format_error_response("Invalid parameters", str(e))

        _log_operation(f"{tool_name}_start", **params.model_dump(exclude_none=True))

        try:
            message, data = action(params, get_coordinator())
        except CirculationError as e:
            logger.info("%s failed - %s: %s", tool_name, e.kind, e)
            _log_operation(f"{tool_name}_failed", error_type=e.kind, error_details=str(e))
            return _format_error_response(e.kind, str(e))
        except RepositoryException as e:
            logger.exception("%s database error", tool_name)
            return _format_error_response("Database error", str(e))

        _log_operation(f"{tool_name}_success", result=message)
        return {"content": [{"type": "text", "text": message}], "data": data}

    except Exception as e:
        logger.exception("Unexpected error in %s tool", tool_name)
        return _format_error_response("Unexpected error", str(e))
