"""Quest State - Point-in-time entity state engine for annotated prose."""

from quest_state.models import (
    EngineConfig,
    ChangeType,
    FieldChange,
    MarkerVisual,
    FieldMetadata,
    Entity,
    Marker,
    ProjectSnapshot,
)
from quest_state.values import FieldPath, coerce_value, parse_value
from quest_state.errors import (
    QuestStateError,
    NotFoundError,
    ValidationError,
    FormatError,
)
from quest_state.state import compute_state, flatten_state
from quest_state.engine import QuestStateEngine

__version__ = "0.1.0"

__all__ = [
    "QuestStateEngine",
    "EngineConfig",
    "ChangeType",
    "FieldChange",
    "FieldPath",
    "MarkerVisual",
    "FieldMetadata",
    "Entity",
    "Marker",
    "ProjectSnapshot",
    "QuestStateError",
    "NotFoundError",
    "ValidationError",
    "FormatError",
    "compute_state",
    "flatten_state",
    "coerce_value",
    "parse_value",
]
