"""
File-backed JSON document store.

Each store owns one JSON document on disk. Reads happen once at startup;
every mutation rewrites the whole file. Writes run in a worker thread so
they never block the event loop, and go through a temp file plus an atomic
rename so a crash mid-write never leaves a truncated document behind.

Writes are serialized per store with an asyncio lock. The design assumes a
single writer process per document.

Usage:
    store = JsonDocumentStore(Path(".swarm-monitor/alerts.json"))
    doc = store.read() or {"alerts": []}
    await store.write(doc)
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a state document cannot be written to disk."""


class JsonDocumentStore:
    """Whole-document JSON persistence with serialized async writes.

    Args:
        path: Location of the JSON document. Parent directories are
            created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def read(self) -> dict[str, Any] | None:
        """Load the document from disk.

        Returns:
            Parsed document, or None if the file is missing or unreadable.
            Unreadable documents are logged and treated as absent so the
            owning component can start from defaults.
        """
        if not self._path.exists():
            return None

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load state document %s: %s", self._path, e)
            return None

        if not isinstance(data, dict):
            logger.error(
                "State document %s is not a JSON object, ignoring", self._path,
            )
            return None
        return data

    async def write(self, document: dict[str, Any]) -> None:
        """Rewrite the whole document.

        Args:
            document: JSON-serializable mapping. Callers pass a snapshot,
                not a live structure they keep mutating.

        Raises:
            PersistenceError: If serialization or the file write fails.
        """
        try:
            payload = json.dumps(document, indent=2, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"State document is not serializable: {e}") from e

        async with self._lock:
            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to write state document {self._path}: {e}"
                ) from e

    def _write_atomic(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
