"""Project file I/O.

File format:
- A single SQLite database holding the entity and marker tables
- ``project_meta`` rows: format_version, saved_at, document_payload (JSON)
- Written to a sibling temp file and renamed over the destination, so a
  failed save never truncates an existing project
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any

from quest_state.errors import FormatError, ValidationError
from quest_state.models import now_iso
from quest_state.queries import REQUIRED_TABLES

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

SQLITE_HEADER = b"SQLite format 3\x00"


class ProjectFile:
    """Handles project file I/O."""

    def __init__(self, suffix: str = ".qsd"):
        self.suffix = suffix

    def resolve(self, path: str | Path) -> Path:
        """Ensure the project extension."""
        path = Path(path)
        if self.suffix and path.suffix != self.suffix:
            path = path.with_name(path.name + self.suffix)
        return path

    def save(self, db: sqlite3.Connection, path: str | Path, document_payload: Any) -> Path:
        """Write ``db`` plus the document payload to ``path``.

        Args:
            db: Working database to snapshot
            path: Destination file path
            document_payload: Editor document, any JSON-serialisable value

        Returns:
            The path actually written (with suffix)

        Raises:
            ValidationError: If the payload cannot be encoded as JSON
            IOError: If the write fails; the destination is left untouched
        """
        path = self.resolve(path)
        try:
            payload_json = json.dumps(document_payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Document payload is not JSON-serialisable: {e}") from e

        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.unlink(missing_ok=True)
            target = sqlite3.connect(tmp)
            try:
                db.backup(target)
                target.executemany(
                    "INSERT OR REPLACE INTO project_meta (key, value) VALUES (?, ?)",
                    [
                        ("format_version", str(FORMAT_VERSION)),
                        ("saved_at", now_iso()),
                        ("document_payload", payload_json),
                    ],
                )
                target.commit()
            finally:
                target.close()
            os.replace(tmp, path)
        except (OSError, sqlite3.Error) as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove temp file %s", tmp)
            raise IOError(f"Failed to save project to {path}: {e}") from e

        logger.info("Saved project to %s", path)
        return path

    def load(self, path: str | Path, target: sqlite3.Connection) -> Any:
        """Copy the project at ``path`` into ``target`` and return its payload.

        Raises:
            IOError: If the file is missing or unreadable
            FormatError: If the file is not a project of the current version
        """
        path = Path(path)
        if not path.is_file():
            path = self.resolve(path)
        if not path.is_file():
            raise IOError(f"Project file not found: {path}")
        try:
            with open(path, "rb") as f:
                header = f.read(len(SQLITE_HEADER))
        except OSError as e:
            raise IOError(f"Failed to read project from {path}: {e}") from e
        if header != SQLITE_HEADER:
            raise FormatError(f"Not a project file: {path}")

        try:
            source = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.OperationalError as e:
            raise IOError(f"Failed to open project {path}: {e}") from e

        try:
            tables = {
                row[0]
                for row in source.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                )
            }
            missing = [t for t in REQUIRED_TABLES if t not in tables]
            if missing:
                raise FormatError(f"Project {path} is missing tables: {', '.join(missing)}")

            meta = dict(source.execute("SELECT key, value FROM project_meta").fetchall())
            version = meta.get("format_version")
            if version != str(FORMAT_VERSION):
                raise FormatError(
                    f"Incompatible project version: {version}. Expected {FORMAT_VERSION}"
                )
            try:
                payload = json.loads(meta.get("document_payload") or "null")
            except json.JSONDecodeError as e:
                raise FormatError(f"Corrupt document payload in {path}: {e}") from e

            source.backup(target)
        except sqlite3.DatabaseError as e:
            raise FormatError(f"Invalid project file {path}: {e}") from e
        finally:
            source.close()

        logger.info("Loaded project from %s (saved %s)", path, meta.get("saved_at"))
        return payload
