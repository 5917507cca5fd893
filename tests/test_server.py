"""Tests for the FastMCP server wiring."""

import importlib

import pytest

from library_circulation.database import reset_db_manager
from library_circulation.resources import all_resources
from library_circulation.tools import all_tools


@pytest.fixture
def server_module(monkeypatch, test_db_path):
    monkeypatch.setenv("LIBRARY_CIRCULATION_DATABASE_PATH", str(test_db_path))
    import library_circulation.server as server

    return server


async def test_all_tools_registered(server_module):
    tools = await server_module.mcp.get_tools()
    assert set(tools) == {tool["name"] for tool in all_tools}


async def test_all_resources_registered(server_module):
    static = await server_module.mcp.get_resources()
    templates = await server_module.mcp.get_resource_templates()

    registered = {str(uri) for uri in static} | {str(uri) for uri in templates}
    expected = {r.get("uri_template", r.get("uri")) for r in all_resources}
    assert registered == expected


def test_prepare_storage_creates_schema(monkeypatch, test_db_path):
    monkeypatch.setenv("LIBRARY_CIRCULATION_DATABASE_PATH", str(test_db_path))
    server = importlib.import_module("library_circulation.server")
    monkeypatch.setattr(server, "config", server.get_config())
    reset_db_manager()
    try:
        server.prepare_storage()
        assert test_db_path.exists()
    finally:
        reset_db_manager()
