"""Basic state tracking example.

This example demonstrates:
- Entity creation
- Markers with absolute, relative and remove changes
- Querying state at different positions in the text
- Duplicating an entity as a template
- Erasing a field from the whole story
- Saving and reopening a project
"""

from quest_state import QuestStateEngine, EngineConfig, flatten_state


CHAPTER = (
    "The hero woke in the ruined chapel. "
    "A goblin leapt from the shadows and drew blood. "
    "Among the rubble lay an old blade. "
    "By nightfall the wound had closed."
)


def show(engine, entity_id, position, label):
    state = engine.get_entity_state(entity_id, position)
    print(f"\n{label} (offset {position}):")
    for field, value in flatten_state(state).items():
        print(f"  {field} = {value}")
    if not state:
        print("  (nothing yet)")


def main():
    engine = QuestStateEngine(EngineConfig())

    try:
        hero = engine.create_entity("Hero", "#FF6B6B")

        # Markers sit at character offsets into the chapter
        woke = CHAPTER.index("woke")
        goblin = CHAPTER.index("goblin")
        blade = CHAPTER.index("old blade")
        night = CHAPTER.index("nightfall")

        engine.insert_marker(
            hero.id,
            woke,
            [
                {"field": "stats.HP", "change_type": "absolute", "value": 50},
                {"field": "stats.Level", "change_type": "absolute", "value": 1},
                {"field": "conditions.asleep", "change_type": "absolute", "value": True},
            ],
            description="Character sheet",
        )
        engine.insert_marker(
            hero.id,
            goblin,
            [
                {"field": "conditions.asleep", "change_type": "remove"},
                {"field": "stats.HP", "change_type": "relative", "value": -12},
            ],
            visual={"icon": "🔥", "color": "#FF6B6B"},
        )
        engine.insert_marker(
            hero.id,
            blade,
            [{"field": "inventory.weapons.sword", "change_type": "absolute", "value": "Rusty Blade"}],
            visual={"icon": "⚔️"},
        )
        engine.insert_marker(
            hero.id,
            night,
            [{"field": "stats.HP", "change_type": "relative", "value": "12"}],
            description="Rested",
        )

        show(engine, hero.id, 0, "Before the story starts")
        show(engine, hero.id, woke, "On waking")
        show(engine, hero.id, blade, "After the ambush")
        show(engine, hero.id, len(CHAPTER), "End of chapter")

        # A template keeps the field schema without any history
        rival = engine.duplicate_entity(hero.id, "Rival")
        print(f"\nRival fields: {[str(p) for p in rival.known_fields]}")
        show(engine, rival.id, len(CHAPTER), "Rival at end of chapter")

        # The author decides levels don't matter in this story
        removed = engine.delete_field_completely(hero.id, "stats.Level")
        print(f"\nRemoved {removed} change(s) to stats.Level")
        show(engine, hero.id, len(CHAPTER), "End of chapter")

        path = engine.save_document("chapter_one", {"text": CHAPTER})
        print(f"\nSaved to {path}")

        engine.new_document()
        snapshot = engine.load_document(path)
        print(f"Reopened: {len(snapshot.entities)} entities, {len(snapshot.markers)} markers")

    finally:
        engine.close()


if __name__ == "__main__":
    main()
