"""Error types raised by Quest State."""


class QuestStateError(Exception):
    """Base class for all engine errors."""


class NotFoundError(QuestStateError, LookupError):
    """An entity or marker id is unknown."""


class ValidationError(QuestStateError, ValueError):
    """A command was given malformed input (empty name, empty change set, bad path)."""


class FormatError(QuestStateError, ValueError):
    """A saved project is corrupt or uses an unsupported format version."""
