"""Durable SQLite-backed queue of pending uploads.

Changes are staged with :meth:`UploadQueueStore.add` / :meth:`UploadQueueStore.remove`
and only become visible (and crash-safe) after :meth:`UploadQueueStore.commit`.
Readers always see the last committed state.
"""

import json
import sqlite3
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

from fileuploader.config import get_settings


class UploadNotFoundError(KeyError):
    """Raised when an upload id is not present in the committed queue."""


@dataclass(frozen=True)
class UploadDescriptor:
    """A single queued upload."""

    upload_id: str
    file_path: str
    upload_url: str
    delete_on_upload: bool = False
    extras: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only copy so the caller's dict cannot change a queued descriptor
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "upload_id": self.upload_id,
            "file_path": self.file_path,
            "upload_url": self.upload_url,
            "delete_on_upload": self.delete_on_upload,
            "extras": dict(self.extras),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadDescriptor":
        """Build a descriptor from request data, generating an id when absent.

        Raises:
            ValueError: If file_path or upload_url is missing, or extras is malformed
        """
        file_path = data.get("file_path")
        upload_url = data.get("upload_url")
        if not file_path or not upload_url:
            raise ValueError("file_path and upload_url are required")

        extras = data.get("extras") or {}
        if not isinstance(extras, dict):
            raise ValueError("extras must be an object of string values")

        return cls(
            upload_id=str(data.get("upload_id") or uuid.uuid4()),
            file_path=str(file_path),
            upload_url=str(upload_url),
            delete_on_upload=bool(data.get("delete_on_upload", False)),
            extras={str(k): str(v) for k, v in extras.items()},
        )


class UploadQueueStore:
    """Upload queue with thread-safe SQLite access and staged commits."""

    def __init__(self, db_path: str | Path) -> None:
        """Open (or create) the queue database at db_path."""
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._staged_adds: dict[str, UploadDescriptor] = {}
        self._staged_removals: set[str] = set()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.connection = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.connection.row_factory = sqlite3.Row
        conn: sqlite3.Connection = self._local.connection
        return conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS uploads (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                upload_id TEXT NOT NULL UNIQUE,
                file_path TEXT NOT NULL,
                upload_url TEXT NOT NULL,
                delete_on_upload BOOLEAN DEFAULT 0,
                extras TEXT DEFAULT '{}',
                queued_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()

    @staticmethod
    def _row_to_descriptor(row: sqlite3.Row) -> UploadDescriptor:
        return UploadDescriptor(
            upload_id=row["upload_id"],
            file_path=row["file_path"],
            upload_url=row["upload_url"],
            delete_on_upload=bool(row["delete_on_upload"]),
            extras=json.loads(row["extras"] or "{}"),
        )

    def list(self) -> list[tuple[str, UploadDescriptor]]:
        """Return committed entries in the order they were queued."""
        cursor = self._get_connection().execute("SELECT * FROM uploads ORDER BY seq")
        return [(row["upload_id"], self._row_to_descriptor(row)) for row in cursor.fetchall()]

    def get(self, upload_id: str) -> UploadDescriptor:
        """Return the committed descriptor for upload_id.

        Raises:
            UploadNotFoundError: If no committed entry exists
        """
        cursor = self._get_connection().execute(
            "SELECT * FROM uploads WHERE upload_id = ?", (upload_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise UploadNotFoundError(upload_id)
        return self._row_to_descriptor(row)

    def count(self) -> int:
        """Number of committed entries."""
        row = self._get_connection().execute("SELECT COUNT(*) FROM uploads").fetchone()
        return int(row[0])

    def add(self, descriptor: UploadDescriptor) -> None:
        """Stage an insert (or replacement) of a descriptor."""
        with self._lock:
            self._staged_removals.discard(descriptor.upload_id)
            self._staged_adds[descriptor.upload_id] = descriptor

    def remove(self, upload_id: str) -> None:
        """Stage the removal of an entry."""
        with self._lock:
            self._staged_adds.pop(upload_id, None)
            self._staged_removals.add(upload_id)

    def commit(self) -> None:
        """Durably apply every staged change in a single transaction."""
        with self._lock:
            if not self._staged_adds and not self._staged_removals:
                return

            conn = self._get_connection()
            now = datetime.now(UTC).isoformat()
            with conn:
                conn.executemany(
                    "DELETE FROM uploads WHERE upload_id = ?",
                    [(upload_id,) for upload_id in self._staged_removals],
                )
                conn.executemany(
                    """
                    INSERT INTO uploads
                        (upload_id, file_path, upload_url, delete_on_upload, extras, queued_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(upload_id) DO UPDATE SET
                        file_path = excluded.file_path,
                        upload_url = excluded.upload_url,
                        delete_on_upload = excluded.delete_on_upload,
                        extras = excluded.extras
                    """,
                    [
                        (
                            d.upload_id,
                            d.file_path,
                            d.upload_url,
                            d.delete_on_upload,
                            json.dumps(dict(d.extras)),
                            now,
                        )
                        for d in self._staged_adds.values()
                    ],
                )

            self._staged_adds.clear()
            self._staged_removals.clear()

    def discard_staged(self) -> None:
        """Drop staged changes that were never committed."""
        with self._lock:
            self._staged_adds.clear()
            self._staged_removals.clear()


# Global queue store instance
_queue_store: UploadQueueStore | None = None


def get_queue_store() -> UploadQueueStore:
    """Get the process-wide queue store, opened at the configured path."""
    global _queue_store
    if _queue_store is None:
        _queue_store = UploadQueueStore(get_settings().queue_db_path)
    return _queue_store
