"""Field paths and field values."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Union

from quest_state.errors import ValidationError

FieldValue = Union[float, str, bool]

PATH_SEPARATOR = "."


@dataclass(frozen=True)
class FieldPath:
    """Hierarchical key into an entity's state, e.g. ``stats.HP``."""

    segments: tuple[str, ...]

    def __post_init__(self):
        if not self.segments:
            raise ValidationError("Field path must have at least one segment")
        for segment in self.segments:
            if not isinstance(segment, str) or not segment.strip():
                raise ValidationError(f"Invalid field path segment: {segment!r}")
            if PATH_SEPARATOR in segment:
                raise ValidationError(f"Field path segment contains {PATH_SEPARATOR!r}: {segment!r}")

    @classmethod
    def parse(cls, text: str) -> FieldPath:
        """Parse dotted text such as ``"spells.fire.Firebolt"``."""
        if not isinstance(text, str):
            raise ValidationError(f"Field path must be a string, got {type(text).__name__}")
        return cls(tuple(part.strip() for part in text.split(PATH_SEPARATOR)))

    @classmethod
    def coerce(cls, raw: FieldPath | str | list | tuple) -> FieldPath:
        """Accept a FieldPath, dotted text, or a sequence of segments."""
        if isinstance(raw, FieldPath):
            return raw
        if isinstance(raw, str):
            return cls.parse(raw)
        if isinstance(raw, (list, tuple)):
            if not all(isinstance(s, str) for s in raw):
                raise ValidationError(f"Field path segments must be strings: {raw!r}")
            return cls(tuple(s.strip() for s in raw))
        raise ValidationError(f"Unsupported field path: {raw!r}")

    def to_json(self) -> str:
        """Storage form used as the SQL key."""
        return json.dumps(list(self.segments), ensure_ascii=False)

    @classmethod
    def from_json(cls, data: str) -> FieldPath:
        return cls(tuple(json.loads(data)))

    @property
    def parent(self) -> tuple[str, ...]:
        return self.segments[:-1]

    @property
    def leaf(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        return PATH_SEPARATOR.join(self.segments)

    def __len__(self) -> int:
        return len(self.segments)


def is_number(value: object) -> bool:
    """True for Number values; booleans are not numbers here."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def coerce_value(value: object) -> FieldValue:
    """Validate a raw value and normalise it to a FieldValue.

    Raises:
        ValidationError: If the value is not a number, string or boolean.
    """
    if isinstance(value, bool) or isinstance(value, str):
        return value
    if is_number(value):
        number = float(value)
        if not math.isfinite(number):
            raise ValidationError(f"Number values must be finite, got {value!r}")
        return number
    raise ValidationError(f"Unsupported field value: {value!r}")


def parse_value(text: str) -> FieldValue:
    """Parse a value typed into the editor as text.

    ``"true"``/``"false"`` become booleans, anything numeric becomes a float,
    everything else stays text.
    """
    stripped = text.strip()
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        number = float(stripped)
    except ValueError:
        return text
    if not math.isfinite(number):
        return text
    return number
