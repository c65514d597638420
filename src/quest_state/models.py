"""Data models for Quest State."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from quest_state.errors import ValidationError
from quest_state.values import FieldPath, FieldValue, coerce_value, is_number, parse_value

DEFAULT_COLOR = "#FFD700"
DEFAULT_ICON = "⭐"


def now_iso() -> str:
    """Current UTC time as ISO-8601 with microseconds."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class EngineConfig:
    """Configuration for QuestStateEngine."""

    project_path: str | None = None  # loaded on startup if it exists
    file_suffix: str = ".qsd"
    default_entity_color: str = DEFAULT_COLOR


class ChangeType(Enum):
    """How a FieldChange mutates the value at its path."""

    ABSOLUTE = "absolute"  # replace the value
    RELATIVE = "relative"  # add a numeric delta
    REMOVE = "remove"  # delete the path

    @classmethod
    def coerce(cls, raw: ChangeType | str) -> ChangeType:
        if isinstance(raw, ChangeType):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid change type: {raw!r}") from None


@dataclass(frozen=True)
class FieldChange:
    """A single state modification carried by a marker."""

    field_path: FieldPath
    change_type: ChangeType
    value: FieldValue | None = None

    def __post_init__(self):
        object.__setattr__(self, "field_path", FieldPath.coerce(self.field_path))
        change_type = ChangeType.coerce(self.change_type)
        object.__setattr__(self, "change_type", change_type)

        if change_type is ChangeType.REMOVE:
            object.__setattr__(self, "value", None)
            return

        if self.value is None:
            raise ValidationError(
                f"{change_type.value} change to {self.field_path} needs a value"
            )
        value = coerce_value(self.value)
        if change_type is ChangeType.RELATIVE and not is_number(value):
            raise ValidationError(
                f"Relative change to {self.field_path} needs a number, got {value!r}"
            )
        object.__setattr__(self, "value", value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": str(self.field_path),
            "change_type": self.change_type.value,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldChange:
        """Build a change from command input.

        Accepts ``field``, ``field_path`` or the legacy ``field_name`` key.
        Text values of relative changes are parsed, since the editor sends
        deltas typed by the author as text. Absolute text stays text.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Field change must be an object, got {data!r}")
        raw_path = data.get("field", data.get("field_path", data.get("field_name")))
        if raw_path is None:
            raise ValidationError("Field change is missing its field path")
        change_type = ChangeType.coerce(data.get("change_type", ChangeType.ABSOLUTE))
        value = data.get("value")
        if isinstance(value, str) and change_type is ChangeType.RELATIVE:
            value = parse_value(value)
        return cls(field_path=raw_path, change_type=change_type, value=value)


@dataclass(frozen=True)
class MarkerVisual:
    """How a marker is drawn in the editor."""

    icon: str = DEFAULT_ICON
    color: str = DEFAULT_COLOR

    def to_dict(self) -> dict[str, Any]:
        return {"icon": self.icon, "color": self.color}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MarkerVisual:
        data = data or {}
        return cls(
            icon=data.get("icon", DEFAULT_ICON),
            color=data.get("color", DEFAULT_COLOR),
        )


@dataclass(frozen=True)
class FieldMetadata:
    created_at: str
    last_modified: str

    def to_dict(self) -> dict[str, Any]:
        return {"created_at": self.created_at, "last_modified": self.last_modified}


@dataclass(frozen=True)
class Entity:
    """A tracked character or object."""

    id: str
    name: str
    color: str
    created_at: str
    known_fields: tuple[FieldPath, ...] = ()
    field_metadata: dict[FieldPath, FieldMetadata] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": self.created_at,
            "fields": [str(p) for p in self.known_fields],
            "field_metadata": {
                str(p): meta.to_dict() for p, meta in self.field_metadata.items()
            },
        }


@dataclass(frozen=True)
class Marker:
    """A state-change event anchored to a document position."""

    id: str
    entity_id: str
    position: int
    changes: tuple[FieldChange, ...]
    visual: MarkerVisual
    description: str
    created_at: str
    modified_at: str

    @property
    def field_paths(self) -> list[FieldPath]:
        """Distinct paths touched by this marker, in first-use order."""
        return list(dict.fromkeys(c.field_path for c in self.changes))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "position": self.position,
            "changes": [c.to_dict() for c in self.changes],
            "visual": self.visual.to_dict(),
            "description": self.description,
            "created_at": self.created_at,
            "modified_at": self.modified_at,
        }


@dataclass
class ProjectSnapshot:
    """Everything a loaded project hands back to the editor."""

    entities: list[Entity] = field(default_factory=list)
    markers: list[Marker] = field(default_factory=list)
    document_payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "markers": [m.to_dict() for m in self.markers],
            "document_payload": self.document_payload,
        }
