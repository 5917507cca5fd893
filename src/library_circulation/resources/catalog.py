"""Catalog Resources - Titles and Their Copies

Resources:
- library://titles - Catalog titles with copy counters (first page)
- library://titles/{title_id} - One title with its counters and queue length
- library://titles/{title_id}/items - Physical copies of a title and their status
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.circulation_coordinator import get_coordinator
from ..database.repository import NotFoundError, PaginationParams

logger = logging.getLogger(__name__)


async def list_titles_handler() -> dict[str, Any]:
    """Handle requests for the catalog listing."""
    try:
        result = get_coordinator().list_titles(PaginationParams(page=1, page_size=50))
        return {
            "titles": [t.model_dump(mode="json") for t in result.items],
            "total": result.total,
            "page": result.page,
            "page_size": result.page_size,
            "total_pages": result.total_pages,
            "has_next": result.has_next,
            "has_previous": result.has_previous,
        }
    except Exception as e:
        logger.exception("Error in titles list resource")
        raise ResourceError(f"Failed to list titles: {e!s}") from e


async def get_title_handler(title_id: str) -> dict[str, Any]:
    """
    Handle requests for one title.

    Includes the number of members waiting, which tells a client whether a
    returned copy will go back on the shelf or to the queue.
    """
    try:
        coordinator = get_coordinator()
        title = coordinator.get_title(title_id)
        return {
            "title": title.model_dump(mode="json"),
            "is_available": title.is_available,
            "waiting_count": coordinator.waiting_count(title_id),
        }
    except NotFoundError as e:
        raise ResourceError(f"Title not found: {title_id}") from e
    except Exception as e:
        logger.exception("Error in title resource")
        raise ResourceError(f"Failed to retrieve title: {e!s}") from e


async def list_title_items_handler(title_id: str) -> dict[str, Any]:
    """Handle requests for the copies of a title."""
    try:
        items = get_coordinator().list_items(title_id)
        by_status: dict[str, int] = {}
        for item in items:
            by_status[item.status] = by_status.get(item.status, 0) + 1
        return {
            "title_id": title_id,
            "items": [i.model_dump(mode="json") for i in items],
            "count": len(items),
            "by_status": by_status,
        }
    except NotFoundError as e:
        raise ResourceError(f"Title not found: {title_id}") from e
    except Exception as e:
        logger.exception("Error in title items resource")
        raise ResourceError(f"Failed to retrieve items: {e!s}") from e


catalog_resources: list[dict[str, Any]] = [
    {
        "uri": "library://titles",
        "name": "Catalog Titles",
        "description": "Titles in the catalog with their total and available copy counts.",
        "mime_type": "application/json",
        "handler": list_titles_handler,
    },
    {
        "uri_template": "library://titles/{title_id}",
        "name": "Title Details",
        "description": "One title with its copy counters and the length of its waiting queue.",
        "mime_type": "application/json",
        "handler": get_title_handler,
    },
    {
        "uri_template": "library://titles/{title_id}/items",
        "name": "Title Copies",
        "description": "Physical copies of a title, their barcodes, locations and status.",
        "mime_type": "application/json",
        "handler": list_title_items_handler,
    },
]
