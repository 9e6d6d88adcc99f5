"""JSONL logging service for upload lifecycle events.

Writes one JSON object per line to hive-partitioned daily .jsonl files under
``<log_directory>/json/year=YYYY/month=MM/day=DD/events.jsonl``. Per-invocation
job summaries land next to them as ``<job_id>.jsonl``.
"""

import json
import re
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fileuploader.config import get_settings

HIVE_DATE_PATTERN = re.compile(r"year=(\d{4})/month=(\d{2})/day=(\d{2})")


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self) -> None:
        """Initialize the log service."""
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path:
        """Get the configured log directory, creating it if needed."""
        log_dir = get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, dt: datetime) -> Path:
        """Build (and create) the hive-partitioned directory for a date."""
        hive_dir = (
            self._get_log_dir()
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    @staticmethod
    def _extract_date_from_hive_path(path: Path) -> str | None:
        """Extract a YYYY-MM-DD string from a hive-partitioned path."""
        match = HIVE_DATE_PATTERN.search(path.as_posix())
        if match:
            return f"{match.group(1)}-{match.group(2)}-{match.group(3)}"
        return None

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (app, job, upload, cleanup, queue, settings)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
        """
        now = datetime.now(UTC)
        entry: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_hive_dir(now) / "events.jsonl"
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an INFO-level event."""
        self.log("INFO", category, event, message, metadata)

    def warning(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log a WARNING-level event."""
        self.log("WARNING", category, event, message, metadata)

    def error(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an ERROR-level event."""
        self.log("ERROR", category, event, message, metadata)

    def save_job_jsonl(
        self,
        job_id: str,
        summary: dict[str, Any],
        completed_at: datetime,
    ) -> Path:
        """Write a per-invocation JSONL summary file.

        Args:
            job_id: The job invocation ID
            summary: Job completion summary dict
            completed_at: When the invocation finished

        Returns:
            Path to the written file
        """
        out_path = self._get_hive_dir(completed_at) / f"{job_id}.jsonl"
        line = json.dumps(summary, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def list_log_files(self) -> list[dict[str, Any]]:
        """List all JSONL log files, newest first."""
        log_dir = self._get_log_dir()
        json_dir = log_dir / "json"
        if not json_dir.exists():
            return []

        return [
            {
                "date": self._extract_date_from_hive_path(f),
                "filename": f.name,
                "relative_path": f.relative_to(log_dir).as_posix(),
                "size_bytes": f.stat().st_size,
            }
            for f in sorted(json_dir.rglob("*.jsonl"), reverse=True)
        ]

    def _event_files(self, date: str | None = None) -> list[Path]:
        json_dir = self._get_log_dir() / "json"
        if date is None:
            return sorted(json_dir.rglob("events.jsonl"), reverse=True) if json_dir.exists() else []

        try:
            dt = datetime.strptime(date, "%Y-%m-%d")
        except ValueError:
            return []
        path = (
            json_dir
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
            / "events.jsonl"
        )
        return [path] if path.exists() else []

    @staticmethod
    def _iter_entries(log_file: Path) -> Iterator[dict[str, Any]]:
        try:
            with open(log_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield json.loads(line)
                    except json.JSONDecodeError:
                        continue
        except OSError:
            return

    def read_log_entries(
        self,
        date: str | None = None,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Read and filter log entries with pagination.

        Args:
            date: Filter by date (YYYY-MM-DD). None = all dates.
            level: Filter by level (INFO/WARNING/ERROR)
            category: Filter by category
            search: Case-insensitive search in message and event fields
            offset: Number of entries to skip
            limit: Maximum entries to return

        Returns:
            Dict with entries, total count, offset, limit
        """
        needle = search.lower() if search else None
        entries: list[dict[str, Any]] = []

        for log_file in self._event_files(date):
            for entry in self._iter_entries(log_file):
                if level and entry.get("level", "").upper() != level.upper():
                    continue
                if category and entry.get("category") != category:
                    continue
                if needle and (
                    needle not in entry.get("message", "").lower()
                    and needle not in entry.get("event", "").lower()
                ):
                    continue
                entries.append(entry)

        # Newest first
        entries.sort(key=lambda e: e.get("timestamp", ""), reverse=True)

        return {
            "entries": entries[offset : offset + limit],
            "total": len(entries),
            "offset": offset,
            "limit": limit,
        }

    def get_log_stats(self) -> dict[str, Any]:
        """Get aggregate counts by level and category across all event files."""
        level_counts: dict[str, int] = {}
        category_counts: dict[str, int] = {}
        total_entries = 0
        total_size = 0
        dates: set[str] = set()

        event_files = self._event_files()
        for log_file in event_files:
            total_size += log_file.stat().st_size
            date_str = self._extract_date_from_hive_path(log_file)
            if date_str:
                dates.add(date_str)

            for entry in self._iter_entries(log_file):
                total_entries += 1
                lvl = entry.get("level", "UNKNOWN")
                level_counts[lvl] = level_counts.get(lvl, 0) + 1
                cat = entry.get("category", "unknown")
                category_counts[cat] = category_counts.get(cat, 0) + 1

        ordered = sorted(dates)
        return {
            "total_entries": total_entries,
            "total_size_bytes": total_size,
            "level_counts": level_counts,
            "category_counts": category_counts,
            "date_range": {
                "earliest": ordered[0] if ordered else None,
                "latest": ordered[-1] if ordered else None,
            },
            "file_count": len(event_files),
        }


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
