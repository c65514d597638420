"""Tests for point-in-time state computation."""

import logging

import pytest
from quest_state import (
    ChangeType,
    FieldChange,
    FieldPath,
    Marker,
    MarkerVisual,
    NotFoundError,
    ValidationError,
    compute_state,
    flatten_state,
)


def _marker(position, *changes):
    return Marker(
        id=f"m{position}",
        entity_id="e1",
        position=position,
        changes=tuple(changes),
        visual=MarkerVisual(),
        description="",
        created_at="2024-01-01T00:00:00+00:00",
        modified_at="2024-01-01T00:00:00+00:00",
    )


def _change(path, change_type, value=None):
    return FieldChange(FieldPath.parse(path), ChangeType(change_type), value)


def test_state_at_positions(seeded_engine):
    engine, hero = seeded_engine

    assert engine.get_entity_state(hero, 5) == {}
    assert engine.get_entity_state(hero, 10) == {"stats": {"HP": 50.0, "Level": 1.0}}
    assert engine.get_entity_state(hero, 15) == {"stats": {"HP": 50.0, "Level": 1.0}}
    assert engine.get_entity_state(hero, 25) == {"stats": {"HP": 60.0, "Level": 1.0}}
    assert engine.get_entity_state(hero, 30) == {
        "stats": {"HP": 60.0, "Level": 1.0},
        "inventory": {"sword": "Rusty Blade"},
    }


def test_state_only_sees_prefix(seeded_engine):
    engine, hero = seeded_engine
    before = engine.get_entity_state(hero, 25)

    engine.insert_marker(hero, 26, [{"field": "stats.HP", "change_type": "absolute", "value": 1}])
    engine.insert_marker(hero, 500, [{"field": "stats", "change_type": "remove"}])

    assert engine.get_entity_state(hero, 25) == before


def test_state_is_deterministic(seeded_engine):
    engine, hero = seeded_engine

    first = engine.get_entity_state(hero, 100)
    second = engine.get_entity_state(hero, 100)

    assert first == second
    first["stats"]["HP"] = 0
    assert engine.get_entity_state(hero, 100)["stats"]["HP"] == 60.0


def test_state_of_other_entity_is_independent(seeded_engine):
    engine, hero = seeded_engine
    villain = next(e for e in engine.get_all_entities() if e.name == "Villain")

    assert engine.get_entity_state(villain.id, 100) == {}


def test_remove_then_set_again(engine):
    hero = engine.create_entity("Hero").id
    engine.insert_marker(hero, 10, [{"field": "stats.HP", "change_type": "absolute", "value": 50}])
    engine.insert_marker(hero, 30, [{"field": "stats.HP", "change_type": "remove"}])
    engine.insert_marker(hero, 40, [{"field": "stats.HP", "change_type": "absolute", "value": 80}])

    assert engine.get_entity_state(hero, 20) == {"stats": {"HP": 50.0}}
    assert engine.get_entity_state(hero, 35) == {}
    assert engine.get_entity_state(hero, 45) == {"stats": {"HP": 80.0}}


def test_relative_change_from_missing_field(engine):
    hero = engine.create_entity("Hero").id
    engine.insert_marker(hero, 5, [{"field": "gold", "change_type": "relative", "value": 25}])

    assert engine.get_entity_state(hero, 5) == {"gold": 25.0}


def test_delete_field_completely(seeded_engine):
    engine, hero = seeded_engine

    removed = engine.delete_field_completely(hero, "stats.HP")

    assert removed == 2
    assert FieldPath.parse("stats.HP") not in engine.get_entity(hero).known_fields
    for position in (0, 10, 20, 30, 100):
        assert "stats.HP" not in flatten_state(engine.get_entity_state(hero, position))
    assert engine.get_entity_state(hero, 100) == {
        "stats": {"Level": 1.0},
        "inventory": {"sword": "Rusty Blade"},
    }


def test_delete_field_completely_errors(seeded_engine):
    engine, hero = seeded_engine

    with pytest.raises(NotFoundError):
        engine.delete_field_completely("missing", "stats.HP")
    with pytest.raises(ValidationError):
        engine.delete_field_completely(hero, "stats..HP")


def test_delete_unknown_field_is_noop(seeded_engine):
    engine, hero = seeded_engine
    before = engine.get_entity_state(hero, 100)

    assert engine.delete_field_completely(hero, "stats.Mana") == 0
    assert engine.get_entity_state(hero, 100) == before


def test_state_query_errors(seeded_engine):
    engine, hero = seeded_engine

    with pytest.raises(NotFoundError):
        engine.get_entity_state("missing", 10)
    with pytest.raises(ValidationError):
        engine.get_entity_state(hero, -1)


def test_compute_state_applies_changes_in_order():
    markers = [
        _marker(
            1,
            _change("stats.HP", "absolute", 10),
            _change("stats.HP", "relative", 5),
            _change("stats.HP", "relative", -2.5),
        ),
    ]

    assert compute_state(markers) == {"stats": {"HP": 12.5}}


def test_remove_prunes_empty_categories():
    markers = [
        _marker(1, _change("spells.fire.Firebolt", "absolute", 3)),
        _marker(2, _change("spells.fire.Firebolt", "remove")),
    ]

    assert compute_state(markers) == {}


def test_remove_keeps_non_empty_categories():
    markers = [
        _marker(1, _change("spells.fire.Firebolt", "absolute", 3)),
        _marker(1, _change("spells.ice.Frostbite", "absolute", 1)),
        _marker(2, _change("spells.fire.Firebolt", "remove")),
    ]

    assert compute_state(markers) == {"spells": {"ice": {"Frostbite": 1.0}}}


def test_remove_category_removes_subtree():
    markers = [
        _marker(1, _change("stats.HP", "absolute", 3), _change("stats.MP", "absolute", 4)),
        _marker(2, _change("stats", "remove")),
    ]

    assert compute_state(markers) == {}


def test_remove_missing_path_is_noop():
    markers = [
        _marker(1, _change("Level", "absolute", 2)),
        _marker(2, _change("stats.HP", "remove"), _change("Level.sub", "remove")),
    ]

    assert compute_state(markers) == {"Level": 2.0}


def test_relative_on_text_treated_as_zero(caplog):
    markers = [
        _marker(1, _change("title", "absolute", "Knight")),
        _marker(2, _change("title", "relative", 3)),
    ]

    with caplog.at_level(logging.WARNING, logger="quest_state.state"):
        state = compute_state(markers)

    assert state == {"title": 3.0}
    assert "non-numeric" in caplog.text


def test_relative_on_boolean_treated_as_zero():
    markers = [
        _marker(1, _change("flags.cursed", "absolute", True)),
        _marker(2, _change("flags.cursed", "relative", 1)),
    ]

    assert compute_state(markers) == {"flags": {"cursed": 1.0}}


def test_writing_through_leaf_replaces_it():
    markers = [
        _marker(1, _change("stats", "absolute", 5)),
        _marker(2, _change("stats.HP", "absolute", 10)),
    ]

    assert compute_state(markers) == {"stats": {"HP": 10.0}}


def test_absolute_on_category_replaces_it():
    markers = [
        _marker(1, _change("stats.HP", "absolute", 10)),
        _marker(2, _change("stats", "absolute", "gone")),
    ]

    assert compute_state(markers) == {"stats": "gone"}


def test_relative_on_category_treated_as_zero():
    markers = [
        _marker(1, _change("stats.HP", "absolute", 10)),
        _marker(2, _change("stats", "relative", 2)),
    ]

    assert compute_state(markers) == {"stats": 2.0}


def test_mixed_value_types():
    markers = [
        _marker(
            1,
            _change("inventory.sword", "absolute", "Rusty Blade"),
            _change("flags.cursed", "absolute", False),
            _change("stats.HP", "absolute", 7),
        ),
    ]

    state = compute_state(markers)

    assert state["inventory"]["sword"] == "Rusty Blade"
    assert state["flags"]["cursed"] is False
    assert state["stats"]["HP"] == 7.0


def test_flatten_state():
    tree = {
        "stats": {"HP": 60.0, "Level": 1.0},
        "inventory": {"weapons": {"sword": "Rusty Blade"}},
        "alive": True,
    }

    assert flatten_state(tree) == {
        "stats.HP": 60.0,
        "stats.Level": 1.0,
        "inventory.weapons.sword": "Rusty Blade",
        "alive": True,
    }
    assert flatten_state({}) == {}
