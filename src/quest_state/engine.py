"""Quest State Engine - Core implementation."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from quest_state.errors import FormatError, NotFoundError, QuestStateError
from quest_state.models import (
    EngineConfig,
    Entity,
    FieldChange,
    Marker,
    MarkerVisual,
    ProjectSnapshot,
)
from quest_state.persistence import ProjectFile
from quest_state.state import StateTree, compute_state
from quest_state.stores import EntityStore, MarkerStore, validate_position
from quest_state.values import FieldPath

logger = logging.getLogger(__name__)


class QuestStateEngine:
    """Engine tracking entity state along the positions of a document.

    Owns the working database and the lock that serializes every command.
    Each mutating command runs in one SQLite transaction: it either applies
    completely or not at all.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self._lock = threading.RLock()
        self._project_file = ProjectFile(suffix=self.config.file_suffix)
        self._dirty = False
        self._attach(self._open_database())

        if self.config.project_path and Path(self.config.project_path).is_file():
            self.load_document(self.config.project_path)

    def _open_database(self) -> sqlite3.Connection:
        """Open an empty in-memory working database."""
        db = sqlite3.connect(":memory:", check_same_thread=False)
        db.row_factory = sqlite3.Row
        db.execute("PRAGMA foreign_keys = ON")
        return db

    def _init_schema(self, db: sqlite3.Connection) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()
        db.executescript(schema)
        db.commit()

    def _attach(self, db: sqlite3.Connection) -> None:
        self._init_schema(db)
        self.db = db
        self.entities = EntityStore(db, default_color=self.config.default_entity_color)
        self.markers = MarkerStore(db, self.entities)

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Hold the lock and a transaction for one command."""
        with self._lock, self.db:
            yield
            self._dirty = True

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.db.close()

    def __enter__(self) -> QuestStateEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def is_dirty(self) -> bool:
        """True when there are changes since the last save, load or new."""
        return self._dirty

    # -------------------------------------------------------------------------
    # Entity Operations
    # -------------------------------------------------------------------------

    def create_entity(self, name: str, color: str | None = None) -> Entity:
        """Create a tracked character.

        Args:
            name: Display name (must not be blank)
            color: Hex color for the entity's markers

        Returns:
            The new Entity
        """
        with self._mutation():
            return self.entities.create(name, color)

    def update_entity(self, entity_id: str, name: str, color: str | None = None) -> Entity:
        """Rename or recolor an entity."""
        with self._mutation():
            return self.entities.rename_or_recolor(entity_id, name, color)

    def delete_entity(self, entity_id: str) -> None:
        """Delete an entity and every marker that belongs to it."""
        with self._mutation():
            self.entities.delete(entity_id)
        logger.info("Deleted entity %s", entity_id)

    def duplicate_entity(self, entity_id: str, new_name: str) -> Entity:
        """Copy an entity's field schema (not its markers) to a new entity."""
        with self._mutation():
            return self.entities.duplicate(entity_id, new_name)

    def get_entity(self, entity_id: str) -> Entity:
        with self._lock:
            return self.entities.get(entity_id)

    def get_all_entities(self) -> list[Entity]:
        with self._lock:
            return self.entities.list_all()

    # -------------------------------------------------------------------------
    # Marker Operations
    # -------------------------------------------------------------------------

    def insert_marker(
        self,
        entity_id: str,
        position: int,
        changes: Iterable[FieldChange | dict],
        visual: MarkerVisual | dict | None = None,
        description: str | None = None,
    ) -> Marker:
        """Record state changes for an entity at a document position.

        Args:
            entity_id: Entity the changes apply to
            position: Offset into the document's linear content
            changes: FieldChange objects or dicts with field/change_type/value
            visual: Icon and color shown in the editor
            description: Optional note, e.g. "Leveled up after boss fight"

        Returns:
            The new Marker
        """
        with self._mutation():
            return self.markers.insert(entity_id, position, changes, visual, description)

    def update_marker(
        self,
        marker_id: str,
        entity_id: str | None = None,
        changes: Iterable[FieldChange | dict] | None = None,
        visual: MarkerVisual | dict | None = None,
        description: str | None = None,
    ) -> Marker:
        """Edit a marker's content or reassign it to another entity.

        Arguments left as None keep their current value. Position is only
        changed through update_marker_positions.
        """
        with self._mutation():
            return self.markers.update(marker_id, entity_id, changes, visual, description)

    def delete_marker(self, marker_id: str) -> None:
        with self._mutation():
            self.markers.delete(marker_id)

    def update_marker_positions(self, updates: Iterable[tuple[str, int]]) -> int:
        """Apply new marker offsets reported by the editor after a text edit.

        Args:
            updates: (marker_id, position) pairs; unknown ids are ignored

        Returns:
            Number of markers moved
        """
        with self._lock, self.db:
            moved = self.markers.reposition_many(updates)
            if moved:
                self._dirty = True
        return moved

    def get_marker(self, marker_id: str) -> Marker:
        with self._lock:
            return self.markers.get(marker_id)

    def get_all_markers(self) -> list[Marker]:
        with self._lock:
            return self.markers.list_all()

    def get_markers_for_entity(self, entity_id: str) -> list[Marker]:
        with self._lock:
            if not self.entities.exists(entity_id):
                raise NotFoundError(f"Entity not found: {entity_id}")
            return self.markers.for_entity(entity_id)

    # -------------------------------------------------------------------------
    # Field Operations
    # -------------------------------------------------------------------------

    def delete_field_completely(self, entity_id: str, path: FieldPath | str | list) -> int:
        """Erase a field from an entity's schema and from all of its markers.

        The field disappears from every computed state, past and future.

        Args:
            entity_id: Entity owning the field
            path: Field path, e.g. "stats.HP"

        Returns:
            Number of field changes removed
        """
        field_path = FieldPath.coerce(path)
        with self._mutation():
            removed = self.entities.delete_field_globally(entity_id, field_path, self.markers)
        logger.info(
            "Deleted field %s from entity %s (%d changes removed)",
            field_path, entity_id, removed,
        )
        return removed

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    def get_entity_state(self, entity_id: str, position: int) -> StateTree:
        """Get an entity's state as of a document position.

        Only the marker snapshot is read under the lock; the fold runs on
        immutable Marker objects.

        Args:
            entity_id: Which entity
            position: Markers at or before this offset are applied

        Returns:
            Nested dict of categories and values
        """
        validate_position(position)
        with self._lock:
            if not self.entities.exists(entity_id):
                raise NotFoundError(f"Entity not found: {entity_id}")
            markers = self.markers.for_entity_up_to(entity_id, position)
        return compute_state(markers)

    # -------------------------------------------------------------------------
    # Document Operations
    # -------------------------------------------------------------------------

    def new_document(self) -> None:
        """Discard all entities and markers."""
        with self._lock:
            old = self.db
            self._attach(self._open_database())
            old.close()
            self._dirty = False
        logger.info("Started new project")

    def save_document(self, path: str | Path, document_payload: Any = None) -> Path:
        """Save entities, markers and the editor's document to one file.

        Returns:
            The path written
        """
        with self._lock:
            saved = self._project_file.save(self.db, path, document_payload)
            self._dirty = False
        return saved

    def load_document(self, path: str | Path) -> ProjectSnapshot:
        """Replace the current project with the one stored at ``path``.

        Nothing is replaced unless the whole file loads cleanly.

        Raises:
            IOError: If the file cannot be read
            FormatError: If the file is not a valid project
        """
        with self._lock:
            db = self._open_database()
            try:
                payload = self._project_file.load(path, db)
                snapshot = self._read_snapshot(db, payload)
            except Exception:
                db.close()
                raise
            old = self.db
            self._attach(db)
            old.close()
            self._dirty = False
        return snapshot

    def snapshot(self, document_payload: Any = None) -> ProjectSnapshot:
        """Current entities and markers, e.g. for an export."""
        with self._lock:
            return ProjectSnapshot(
                entities=self.entities.list_all(),
                markers=self.markers.list_all(),
                document_payload=document_payload,
            )

    def _read_snapshot(self, db: sqlite3.Connection, payload: Any) -> ProjectSnapshot:
        """Materialize a loaded database, rejecting rows that do not parse."""
        try:
            self._init_schema(db)
            entities = EntityStore(db, default_color=self.config.default_entity_color)
            markers = MarkerStore(db, entities)
            return ProjectSnapshot(
                entities=entities.list_all(),
                markers=markers.list_all(),
                document_payload=payload,
            )
        except (QuestStateError, KeyError, ValueError, TypeError, sqlite3.Error) as e:
            raise FormatError(f"Corrupt project data: {e}") from e
