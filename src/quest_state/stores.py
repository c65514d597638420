"""Entity and marker stores backed by the engine's SQLite connection.

The stores never commit. Transactions and locking belong to
QuestStateEngine, which wraps every command in a single transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from typing import Any

from quest_state.errors import NotFoundError, ValidationError
from quest_state.models import (
    DEFAULT_COLOR,
    ChangeType,
    Entity,
    FieldChange,
    FieldMetadata,
    Marker,
    MarkerVisual,
    now_iso,
)
from quest_state.queries import (
    build_copy_fields_query,
    build_known_fields_query,
    build_markers_query,
    build_next_seq_query,
    build_register_field_query,
    build_strip_field_query,
)
from quest_state.values import FieldPath

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Entity name must not be empty")
    return name.strip()


def validate_position(position: int) -> int:
    if isinstance(position, bool) or not isinstance(position, int):
        raise ValidationError(f"Position must be an integer, got {position!r}")
    if position < 0:
        raise ValidationError(f"Position must be non-negative, got {position}")
    return position


class EntityStore:
    """Characters and the field schema each one has used."""

    def __init__(self, db: sqlite3.Connection, default_color: str = DEFAULT_COLOR):
        self.db = db
        self.default_color = default_color

    def exists(self, entity_id: str) -> bool:
        row = self.db.execute(
            "SELECT 1 FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return row is not None

    def get(self, entity_id: str) -> Entity:
        row = self.db.execute(
            "SELECT * FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        fields = self.db.execute(
            build_known_fields_query(), {"entity_id": entity_id}
        ).fetchall()
        return self._entity_from_rows(row, fields)

    def list_all(self) -> list[Entity]:
        """All entities in creation order."""
        rows = self.db.execute(
            "SELECT * FROM entities ORDER BY created_at, rowid"
        ).fetchall()
        field_rows: dict[str, list[sqlite3.Row]] = {}
        for f in self.db.execute(
            "SELECT * FROM entity_fields ORDER BY entity_id, ordinal"
        ):
            field_rows.setdefault(f["entity_id"], []).append(f)
        return [self._entity_from_rows(row, field_rows.get(row["id"], [])) for row in rows]

    def create(self, name: str, color: str | None = None) -> Entity:
        """Create an entity with no known fields.

        Raises:
            ValidationError: If the name is empty after trimming.
        """
        entity_id = str(uuid.uuid4())
        self.db.execute(
            "INSERT INTO entities (id, name, color, created_at) VALUES (?, ?, ?, ?)",
            (entity_id, _clean_name(name), color or self.default_color, now_iso()),
        )
        logger.debug("Created entity %s (%s)", entity_id, name)
        return self.get(entity_id)

    def rename_or_recolor(self, entity_id: str, name: str, color: str | None = None) -> Entity:
        """Update name and color. Markers are not touched.

        A color of None keeps the current color.
        """
        clean = _clean_name(name)
        current = self.get(entity_id)
        self.db.execute(
            "UPDATE entities SET name = ?, color = ? WHERE id = ?",
            (clean, color or current.color, entity_id),
        )
        return self.get(entity_id)

    def delete(self, entity_id: str) -> None:
        """Delete an entity together with all of its markers.

        Markers and their changes go in the same statement through the
        schema's ON DELETE CASCADE.
        """
        cursor = self.db.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Entity not found: {entity_id}")

    def duplicate(self, entity_id: str, new_name: str) -> Entity:
        """Copy an entity's field schema under a new id. Markers are not copied."""
        clean = _clean_name(new_name)
        source = self.get(entity_id)
        new_id = str(uuid.uuid4())
        self.db.execute(
            "INSERT INTO entities (id, name, color, created_at) VALUES (?, ?, ?, ?)",
            (new_id, clean, source.color, now_iso()),
        )
        self.db.execute(
            build_copy_fields_query(), {"source_id": entity_id, "target_id": new_id}
        )
        return self.get(new_id)

    def register_field_use(self, entity_id: str, path: FieldPath) -> None:
        """Record that a marker touched ``path``. Idempotent."""
        if not self.exists(entity_id):
            raise NotFoundError(f"Entity not found: {entity_id}")
        self.db.execute(
            build_register_field_query(),
            {"entity_id": entity_id, "path": path.to_json(), "now": now_iso()},
        )

    def forget_field(self, entity_id: str, path: FieldPath) -> bool:
        """Drop ``path`` from the entity's known fields and metadata."""
        cursor = self.db.execute(
            "DELETE FROM entity_fields WHERE entity_id = ? AND path = ?",
            (entity_id, path.to_json()),
        )
        return cursor.rowcount > 0

    def delete_field_globally(
        self, entity_id: str, path: FieldPath, markers: MarkerStore
    ) -> int:
        """Erase ``path`` from the entity's schema and from all of its markers.

        Markers left without changes are kept.

        Returns:
            Number of field changes removed from markers
        """
        if not self.exists(entity_id):
            raise NotFoundError(f"Entity not found: {entity_id}")
        self.forget_field(entity_id, path)
        return markers.strip_field(entity_id, path)

    @staticmethod
    def _entity_from_rows(row: sqlite3.Row, fields: Iterable[sqlite3.Row]) -> Entity:
        known = []
        metadata = {}
        for f in fields:
            path = FieldPath.from_json(f["path"])
            known.append(path)
            metadata[path] = FieldMetadata(
                created_at=f["created_at"], last_modified=f["last_modified"]
            )
        return Entity(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            created_at=row["created_at"],
            known_fields=tuple(known),
            field_metadata=metadata,
        )


class MarkerStore:
    """State-change markers anchored to document positions."""

    def __init__(self, db: sqlite3.Connection, entities: EntityStore):
        self.db = db
        self.entities = entities

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, marker_id: str) -> Marker:
        markers = self._query(build_markers_query(by_id=True), {"marker_id": marker_id})
        if not markers:
            raise NotFoundError(f"Marker not found: {marker_id}")
        return markers[0]

    def list_all(self) -> list[Marker]:
        """All markers, in document order."""
        return self._query(build_markers_query(), {})

    def for_entity(self, entity_id: str) -> list[Marker]:
        return self._query(
            build_markers_query(by_entity=True), {"entity_id": entity_id}
        )

    def for_entity_up_to(self, entity_id: str, position: int) -> list[Marker]:
        """Markers of an entity at or before ``position``, in fold order.

        Ordered by position, ties broken by creation time and then by
        insertion sequence, so the fold is reproducible.
        """
        return self._query(
            build_markers_query(by_entity=True, up_to_position=True),
            {"entity_id": entity_id, "position": position},
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert(
        self,
        entity_id: str,
        position: int,
        changes: Iterable[FieldChange | dict],
        visual: MarkerVisual | dict | None = None,
        description: str | None = None,
    ) -> Marker:
        """Insert a marker and register every path it touches.

        Raises:
            NotFoundError: If the entity is unknown
            ValidationError: On an empty change set, bad path or bad position
        """
        if not self.entities.exists(entity_id):
            raise NotFoundError(f"Entity not found: {entity_id}")
        validate_position(position)
        normalized = self._normalize_changes(changes)
        visual = self._normalize_visual(visual)

        marker_id = str(uuid.uuid4())
        now = now_iso()
        seq = self.db.execute(build_next_seq_query()).fetchone()["next_seq"]
        self.db.execute(
            """
            INSERT INTO markers
                (id, entity_id, position, seq, icon, color, description, created_at, modified_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                marker_id,
                entity_id,
                position,
                seq,
                visual.icon,
                visual.color,
                description or "",
                now,
                now,
            ),
        )
        self._write_changes(marker_id, normalized)
        self._register_paths(entity_id, normalized)
        logger.debug(
            "Inserted marker %s for %s at %d (%d changes)",
            marker_id, entity_id, position, len(normalized),
        )
        return self.get(marker_id)

    def update(
        self,
        marker_id: str,
        entity_id: str | None = None,
        changes: Iterable[FieldChange | dict] | None = None,
        visual: MarkerVisual | dict | None = None,
        description: str | None = None,
    ) -> Marker:
        """Edit marker content or reassign it. Position is not editable here."""
        current = self.get(marker_id)
        target_entity = current.entity_id
        if entity_id is not None:
            if not self.entities.exists(entity_id):
                raise NotFoundError(f"Entity not found: {entity_id}")
            target_entity = entity_id
        normalized = self._normalize_changes(changes) if changes is not None else None
        new_visual = self._normalize_visual(visual) if visual is not None else current.visual
        new_description = description if description is not None else current.description

        self.db.execute(
            """
            UPDATE markers
            SET entity_id = ?, icon = ?, color = ?, description = ?, modified_at = ?
            WHERE id = ?
            """,
            (
                target_entity,
                new_visual.icon,
                new_visual.color,
                new_description,
                now_iso(),
                marker_id,
            ),
        )
        if normalized is not None:
            self.db.execute("DELETE FROM field_changes WHERE marker_id = ?", (marker_id,))
            self._write_changes(marker_id, normalized)
            self._register_paths(target_entity, normalized)
        elif target_entity != current.entity_id:
            # the new owner must know every path the marker carries
            self._register_paths(target_entity, current.changes)
        return self.get(marker_id)

    def delete(self, marker_id: str) -> None:
        cursor = self.db.execute("DELETE FROM markers WHERE id = ?", (marker_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Marker not found: {marker_id}")

    def reposition_many(self, updates: Iterable[tuple[str, int]]) -> int:
        """Move markers after document edits.

        Unknown ids are skipped; the editor may sync positions for a marker it
        has just deleted.

        Returns:
            Number of markers actually moved
        """
        params = []
        for marker_id, position in updates:
            params.append((validate_position(position), marker_id))
        if not params:
            return 0
        cursor = self.db.executemany(
            "UPDATE markers SET position = ? WHERE id = ?", params
        )
        moved = cursor.rowcount
        if moved < len(params):
            logger.debug("Skipped %d stale marker ids in reposition", len(params) - moved)
        return moved

    def strip_field(self, entity_id: str, path: FieldPath) -> int:
        """Remove every change to ``path`` from the entity's markers."""
        cursor = self.db.execute(
            build_strip_field_query(),
            {"entity_id": entity_id, "path": path.to_json()},
        )
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _normalize_changes(changes: Iterable[FieldChange | dict]) -> tuple[FieldChange, ...]:
        if changes is None or isinstance(changes, (str, bytes, dict)):
            raise ValidationError("Changes must be a list of field changes")
        normalized = tuple(
            c if isinstance(c, FieldChange) else FieldChange.from_dict(c)
            for c in changes
        )
        if not normalized:
            raise ValidationError("A marker needs at least one field change")
        return normalized

    @staticmethod
    def _normalize_visual(visual: MarkerVisual | dict | None) -> MarkerVisual:
        if isinstance(visual, MarkerVisual):
            return visual
        return MarkerVisual.from_dict(visual)

    def _write_changes(self, marker_id: str, changes: tuple[FieldChange, ...]) -> None:
        self.db.executemany(
            """
            INSERT INTO field_changes (marker_id, ordinal, path, change_type, value)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (
                    marker_id,
                    ordinal,
                    c.field_path.to_json(),
                    c.change_type.value,
                    json.dumps(c.value) if c.value is not None else None,
                )
                for ordinal, c in enumerate(changes)
            ],
        )

    def _register_paths(self, entity_id: str, changes: tuple[FieldChange, ...]) -> None:
        for path in dict.fromkeys(c.field_path for c in changes):
            self.entities.register_field_use(entity_id, path)

    def _query(self, sql: str, params: dict[str, Any]) -> list[Marker]:
        """Group joined marker/change rows back into Marker objects."""
        grouped: dict[str, tuple[sqlite3.Row, list[FieldChange]]] = {}
        for row in self.db.execute(sql, params):
            entry = grouped.get(row["id"])
            if entry is None:
                entry = grouped[row["id"]] = (row, [])
            if row["ordinal"] is not None:
                entry[1].append(
                    FieldChange(
                        field_path=FieldPath.from_json(row["path"]),
                        change_type=ChangeType(row["change_type"]),
                        value=json.loads(row["value"]) if row["value"] is not None else None,
                    )
                )
        return [
            Marker(
                id=row["id"],
                entity_id=row["entity_id"],
                position=row["position"],
                changes=tuple(changes),
                visual=MarkerVisual(icon=row["icon"], color=row["color"]),
                description=row["description"],
                created_at=row["created_at"],
                modified_at=row["modified_at"],
            )
            for row, changes in grouped.values()
        ]
