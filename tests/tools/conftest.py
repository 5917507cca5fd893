"""Shared checks for the MCP tool handler tests."""

import pytest


@pytest.fixture(autouse=True)
def consistent_after_tools(coordinator):
    """Every tool test must leave the copy counters and queues consistent."""
    yield
    assert coordinator.verify_invariants() == []
