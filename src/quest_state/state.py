"""Point-in-time state computation.

A state tree is rebuilt from scratch on every query by folding the ordered
field changes of an entity's markers, so the result depends only on the
markers handed in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Union

from quest_state.models import ChangeType, FieldChange, Marker
from quest_state.values import PATH_SEPARATOR, FieldValue, is_number

logger = logging.getLogger(__name__)

StateTree = dict[str, Union["StateTree", FieldValue]]


def compute_state(markers: Iterable[Marker]) -> StateTree:
    """Fold markers, already in fold order, into a fresh state tree."""
    tree: StateTree = {}
    for marker in markers:
        for change in marker.changes:
            apply_change(tree, change)
    return tree


def apply_change(tree: StateTree, change: FieldChange) -> None:
    """Apply one field change to ``tree`` in place."""
    segments = change.field_path.segments
    if not segments:
        raise ValueError("Field change with an empty path reached the fold")

    if change.change_type is ChangeType.ABSOLUTE:
        _category(tree, segments[:-1])[segments[-1]] = change.value
    elif change.change_type is ChangeType.RELATIVE:
        parent = _category(tree, segments[:-1])
        current = parent.get(segments[-1])
        if current is None:
            current = 0.0
        elif not is_number(current):
            logger.warning(
                "Relative change to non-numeric %s (%r); treating it as 0",
                change.field_path, current,
            )
            current = 0.0
        parent[segments[-1]] = float(current) + change.value
    elif change.change_type is ChangeType.REMOVE:
        _remove(tree, segments)
    else:
        raise ValueError(f"Unhandled change type: {change.change_type}")


def _category(tree: StateTree, segments: tuple[str, ...]) -> StateTree:
    """Walk to the category at ``segments``, creating it as needed.

    A leaf sitting where a category is needed is replaced.
    """
    node = tree
    for segment in segments:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = node[segment] = {}
        node = child
    return node


def _remove(tree: StateTree, segments: tuple[str, ...]) -> None:
    """Delete the node at ``segments`` and prune ancestors left empty."""
    trail = []
    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            return
        trail.append((node, segment))
        node = child
    node.pop(segments[-1], None)

    for parent, segment in reversed(trail):
        if parent[segment]:
            break
        del parent[segment]


def flatten_state(tree: StateTree, prefix: str = "") -> dict[str, FieldValue]:
    """Flatten a state tree into dotted keys, e.g. ``{"stats.HP": 60.0}``."""
    flat: dict[str, FieldValue] = {}
    for key, value in tree.items():
        path = f"{prefix}{PATH_SEPARATOR}{key}" if prefix else key
        if isinstance(value, dict):
            flat.update(flatten_state(value, path))
        else:
            flat[path] = value
    return flat
