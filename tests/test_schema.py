"""Tests for schema creation and basic storage."""

import json
import sqlite3

import pytest
from quest_state import QuestStateEngine, EngineConfig


def test_engine_creates_tables(engine):
    """Verify all core tables are created."""
    tables = engine.db.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()
    table_names = {row["name"] for row in tables}

    assert "entities" in table_names
    assert "entity_fields" in table_names
    assert "markers" in table_names
    assert "field_changes" in table_names
    assert "project_meta" in table_names


def test_foreign_keys_enabled(engine):
    row = engine.db.execute("PRAGMA foreign_keys").fetchone()
    assert row[0] == 1


def test_entity_row(engine):
    entity = engine.create_entity("The Hero")

    row = engine.db.execute("SELECT * FROM entities WHERE id = ?", (entity.id,)).fetchone()
    assert row["name"] == "The Hero"
    assert row["color"] == "#FFD700"


def test_changes_stored_in_order(engine):
    entity = engine.create_entity("Hero")
    marker = engine.insert_marker(
        entity.id,
        5,
        [
            {"field": "stats.HP", "change_type": "absolute", "value": 10},
            {"field": "stats.HP", "change_type": "relative", "value": 5},
            {"field": "Level", "change_type": "remove"},
        ],
    )

    rows = engine.db.execute(
        "SELECT * FROM field_changes WHERE marker_id = ? ORDER BY ordinal",
        (marker.id,),
    ).fetchall()

    assert [row["change_type"] for row in rows] == ["absolute", "relative", "remove"]
    assert json.loads(rows[0]["path"]) == ["stats", "HP"]
    assert rows[2]["value"] is None


def test_default_color_from_config():
    engine = QuestStateEngine(EngineConfig(default_entity_color="#000000"))
    try:
        assert engine.create_entity("Shade").color == "#000000"
    finally:
        engine.close()


def test_negative_position_rejected_by_schema(engine):
    entity = engine.create_entity("Hero")
    marker = engine.insert_marker(
        entity.id, 1, [{"field": "Level", "change_type": "absolute", "value": 1}]
    )

    with pytest.raises(sqlite3.IntegrityError):
        engine.db.execute("UPDATE markers SET position = -1 WHERE id = ?", (marker.id,))
