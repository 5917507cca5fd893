"""
MCP resources for the library circulation engine.

Resources are the read-only query surface: titles and copies, member loans,
reservation queues, borrow requests and fines. Every change goes through a
tool instead.
"""

from .catalog import catalog_resources
from .circulation import circulation_resources

all_resources = catalog_resources + circulation_resources

__all__ = [
    "all_resources",
    "catalog_resources",
    "circulation_resources",
]
