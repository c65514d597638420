"""Tests for the MCP tool surface."""

import asyncio
import json

import pytest
from quest_state import mcp as quest_mcp


@pytest.fixture
def call(engine, monkeypatch):
    """Invoke a tool against the test engine and decode its JSON reply."""
    monkeypatch.setattr(quest_mcp, "_engine", engine)

    def _call(name, /, **arguments):
        result = asyncio.run(quest_mcp.call_tool(name, arguments))
        return json.loads(result[0].text)

    return _call


def test_tool_names():
    names = {tool.name for tool in quest_mcp.TOOLS}

    assert names == {
        "create_entity",
        "update_entity",
        "delete_entity",
        "duplicate_entity",
        "get_all_entities",
        "insert_marker",
        "update_marker",
        "delete_marker",
        "update_marker_positions",
        "get_all_markers",
        "delete_field_completely",
        "get_entity_state",
        "new_document",
        "save_document",
        "load_document",
    }


def test_list_tools():
    assert asyncio.run(quest_mcp.list_tools()) is quest_mcp.TOOLS


def test_entity_and_marker_flow(call):
    hero = call("create_entity", name="Hero", color="#FF6B6B")
    assert hero["name"] == "Hero"
    assert hero["fields"] == []

    marker = call(
        "insert_marker",
        entity_id=hero["id"],
        position=10,
        changes=[
            {"field": "stats.HP", "change_type": "absolute", "value": 50},
            {"field": "inventory.sword", "change_type": "absolute", "value": "Rusty Blade"},
        ],
        visual={"icon": "⚔️"},
    )
    assert marker["visual"] == {"icon": "⚔️", "color": "#FFD700"}
    assert marker["changes"][0] == {"field": "stats.HP", "change_type": "absolute", "value": 50.0}

    call(
        "insert_marker",
        entity_id=hero["id"],
        position=20,
        changes=[{"field": "stats.HP", "change_type": "relative", "value": 10}],
    )

    state = call("get_entity_state", entity_id=hero["id"], position=25)
    assert state["state"] == {"stats": {"HP": 60.0}, "inventory": {"sword": "Rusty Blade"}}
    assert state["fields"] == {"stats.HP": 60.0, "inventory.sword": "Rusty Blade"}

    entities = call("get_all_entities")
    assert entities[0]["fields"] == ["stats.HP", "inventory.sword"]


def test_update_marker_positions(call):
    hero = call("create_entity", name="Hero")
    marker = call(
        "insert_marker",
        entity_id=hero["id"],
        position=10,
        changes=[{"field": "Level", "change_type": "absolute", "value": 1}],
    )

    result = call(
        "update_marker_positions",
        updates=[
            {"marker_id": marker["id"], "position": 14},
            {"marker_id": "gone", "position": 3},
        ],
    )

    assert result == {"moved": 1}
    assert call("get_all_markers")[0]["position"] == 14


def test_delete_field_completely(call):
    hero = call("create_entity", name="Hero")
    call(
        "insert_marker",
        entity_id=hero["id"],
        position=0,
        changes=[
            {"field": "stats.HP", "change_type": "absolute", "value": 5},
            {"field": "stats.MP", "change_type": "absolute", "value": 2},
        ],
    )

    assert call("delete_field_completely", entity_id=hero["id"], path="stats.HP") == {
        "removed_changes": 1
    }
    state = call("get_entity_state", entity_id=hero["id"], position=0)
    assert state["state"] == {"stats": {"MP": 2.0}}


def test_save_and_load(call, tmp_path):
    call("create_entity", name="Hero")

    saved = call("save_document", path=str(tmp_path / "story"), document_payload={"type": "doc"})
    assert saved == {"path": str(tmp_path / "story.qsd")}

    assert call("new_document") == {"ok": True}
    assert call("get_all_entities") == []

    loaded = call("load_document", path=saved["path"])
    assert loaded["document_payload"] == {"type": "doc"}
    assert [e["name"] for e in loaded["entities"]] == ["Hero"]


@pytest.mark.parametrize(
    "name, arguments, kind",
    [
        ("delete_entity", {"entity_id": "missing"}, "not_found"),
        ("create_entity", {"name": "  "}, "validation"),
        ("create_entity", {}, "validation"),
        ("get_entity_state", {"entity_id": "missing", "position": 0}, "not_found"),
        ("no_such_tool", {}, "unknown_tool"),
    ],
)
def test_error_kinds(call, name, arguments, kind):
    result = call(name, **arguments)

    assert result["error"] == kind
    assert result["message"]


def test_load_errors(call, tmp_path):
    assert call("load_document", path=str(tmp_path / "missing.qsd"))["error"] == "io"

    junk = tmp_path / "junk.qsd"
    junk.write_text("not a project")
    assert call("load_document", path=str(junk))["error"] == "format"


def test_get_engine_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(quest_mcp, "_engine", None)
    monkeypatch.setenv("QUEST_PROJECT_PATH", str(tmp_path / "missing.qsd"))
    monkeypatch.setenv("QUEST_FILE_SUFFIX", ".quest")

    engine = quest_mcp.get_engine()
    try:
        assert engine.config.project_path == str(tmp_path / "missing.qsd")
        assert engine.config.file_suffix == ".quest"
        assert quest_mcp.get_engine() is engine
    finally:
        engine.close()
