"""Pytest fixtures for Quest State tests."""

import pytest
from quest_state import QuestStateEngine, EngineConfig


@pytest.fixture
def engine():
    """Create an in-memory engine for testing."""
    engine = QuestStateEngine(EngineConfig())
    yield engine
    engine.close()


@pytest.fixture
def seeded_engine(engine):
    """Engine with a hero whose HP and inventory change along the text."""
    hero = engine.create_entity("Hero", "#FF6B6B")
    engine.create_entity("Villain", "#4ECDC4")

    engine.insert_marker(
        hero.id,
        10,
        [
            {"field": "stats.HP", "change_type": "absolute", "value": 50},
            {"field": "stats.Level", "change_type": "absolute", "value": 1},
        ],
        description="Character sheet",
    )
    engine.insert_marker(
        hero.id,
        20,
        [{"field": "stats.HP", "change_type": "relative", "value": 10}],
    )
    engine.insert_marker(
        hero.id,
        30,
        [{"field": "inventory.sword", "change_type": "absolute", "value": "Rusty Blade"}],
    )

    return engine, hero.id
