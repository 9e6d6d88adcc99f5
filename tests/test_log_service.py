"""Tests for the JSONL log service."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from fileuploader.services.log_service import LogService, get_log_service


@pytest.fixture
def log_dir(isolated_settings: Path) -> Path:
    """The log directory configured by the isolated settings."""
    return isolated_settings / "logs"


@pytest.fixture
def log_service() -> LogService:
    return LogService()


def _find_event_files(log_dir: Path) -> list[Path]:
    """Find all events.jsonl files under the hive-partitioned json/ directory."""
    json_dir = log_dir / "json"
    if not json_dir.exists():
        return []
    return list(json_dir.rglob("events.jsonl"))


class TestLogServiceWrite:
    """Tests for writing log entries."""

    def test_log_creates_file(self, log_service: LogService, log_dir: Path) -> None:
        """Test that log() creates a JSONL file in hive-partitioned structure."""
        log_service.log("INFO", "app", "test_event", "Test message")

        files = _find_event_files(log_dir)
        assert len(files) == 1
        assert "year=" in str(files[0])

    def test_log_entry_format(self, log_service: LogService, log_dir: Path) -> None:
        """Test that log entries have the correct JSON schema."""
        log_service.log(
            "info", "upload", "file_upload_completed", "Uploaded a.bin", {"status_code": 200}
        )

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())
        assert "timestamp" in entry
        assert entry["level"] == "INFO"
        assert entry["category"] == "upload"
        assert entry["event"] == "file_upload_completed"
        assert entry["message"] == "Uploaded a.bin"
        assert entry["metadata"]["status_code"] == 200

    @pytest.mark.parametrize(
        ("method", "level"),
        [("info", "INFO"), ("warning", "WARNING"), ("error", "ERROR")],
    )
    def test_convenience_methods(
        self, log_service: LogService, log_dir: Path, method: str, level: str
    ) -> None:
        getattr(log_service, method)("app", "test", "Test")

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())
        assert entry["level"] == level

    def test_multiple_entries_appended(self, log_service: LogService, log_dir: Path) -> None:
        """Test that multiple log calls append to the same file."""
        log_service.info("app", "event1", "First")
        log_service.info("app", "event2", "Second")
        log_service.error("app", "event3", "Third")

        log_file = _find_event_files(log_dir)[0]
        lines = [line for line in log_file.read_text().split("\n") if line]
        assert len(lines) == 3

    def test_no_metadata_omits_field(self, log_service: LogService, log_dir: Path) -> None:
        log_service.info("app", "test", "No metadata")

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())
        assert "metadata" not in entry


class TestLogServiceRead:
    """Tests for reading and filtering log entries."""

    @pytest.fixture(autouse=True)
    def _entries(self, log_service: LogService) -> None:
        log_service.info("job", "job_started", "2 files to upload")
        log_service.info("upload", "file_upload_completed", "Uploaded a.bin")
        log_service.error("upload", "file_upload_failed", "Upload of b failed: timeout")
        log_service.warning("upload", "file_missing", "File not found, cancelled upload")

    def test_read_entries(self, log_service: LogService) -> None:
        result = log_service.read_log_entries()
        assert result["total"] == 4
        assert len(result["entries"]) == 4

    def test_filter_by_level(self, log_service: LogService) -> None:
        result = log_service.read_log_entries(level="error")
        assert [e["event"] for e in result["entries"]] == ["file_upload_failed"]

    def test_filter_by_category(self, log_service: LogService) -> None:
        result = log_service.read_log_entries(category="upload")
        assert result["total"] == 3

    def test_filter_by_search(self, log_service: LogService) -> None:
        result = log_service.read_log_entries(search="TIMEOUT")
        assert result["total"] == 1

    def test_pagination(self, log_service: LogService) -> None:
        result = log_service.read_log_entries(offset=1, limit=2)
        assert result["total"] == 4
        assert len(result["entries"]) == 2
        assert result["offset"] == 1

    def test_date_filter(self, log_service: LogService) -> None:
        today = datetime.now(UTC).strftime("%Y-%m-%d")
        assert log_service.read_log_entries(date=today)["total"] == 4
        assert log_service.read_log_entries(date="2001-01-01")["total"] == 0

    def test_invalid_date(self, log_service: LogService) -> None:
        assert log_service.read_log_entries(date="not-a-date")["total"] == 0

    def test_skips_corrupt_lines(self, log_service: LogService, log_dir: Path) -> None:
        log_file = _find_event_files(log_dir)[0]
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("{not json\n\n")

        assert log_service.read_log_entries()["total"] == 4


class TestLogServiceStats:
    """Tests for log statistics."""

    def test_get_stats(self, log_service: LogService) -> None:
        log_service.info("app", "a", "A")
        log_service.error("upload", "b", "B")

        stats = log_service.get_log_stats()
        assert stats["total_entries"] == 2
        assert stats["level_counts"] == {"INFO": 1, "ERROR": 1}
        assert stats["category_counts"] == {"app": 1, "upload": 1}
        assert stats["file_count"] == 1
        assert stats["date_range"]["earliest"] == stats["date_range"]["latest"]

    def test_empty_stats(self, log_service: LogService) -> None:
        stats = log_service.get_log_stats()
        assert stats["total_entries"] == 0
        assert stats["date_range"]["earliest"] is None


class TestHivePartitioning:
    """Tests for hive-partitioned directory structure."""

    def test_hive_dir_structure(self, log_service: LogService, log_dir: Path) -> None:
        dt = datetime(2026, 2, 8, 14, 30, 25, tzinfo=UTC)

        hive_dir = log_service._get_hive_dir(dt)

        assert hive_dir == log_dir / "json" / "year=2026" / "month=02" / "day=08"
        assert hive_dir.exists()

    def test_extract_date_from_hive_path(self) -> None:
        path = Path("/tmp/logs/json/year=2026/month=02/day=08/events.jsonl")
        assert LogService._extract_date_from_hive_path(path) == "2026-02-08"

    def test_extract_date_from_non_hive_path(self) -> None:
        assert LogService._extract_date_from_hive_path(Path("/tmp/logs/2026-02-08.jsonl")) is None


class TestJobSaveJsonl:
    """Tests for per-invocation JSONL summaries."""

    def test_save_job_jsonl_creates_file(self, log_service: LogService, log_dir: Path) -> None:
        job_id = "a1b2c3d4-5678-9abc-def0-1234567890ab"
        completed_at = datetime(2026, 2, 8, 14, 30, 25, tzinfo=UTC)

        path = log_service.save_job_jsonl(
            job_id, {"event": "job_finished", "job_id": job_id, "delivered": 3}, completed_at
        )

        expected_dir = log_dir / "json" / "year=2026" / "month=02" / "day=08"
        assert path == expected_dir / f"{job_id}.jsonl"
        lines = [ln for ln in path.read_text().split("\n") if ln.strip()]
        assert len(lines) == 1
        assert json.loads(lines[0])["delivered"] == 3

    def test_job_files_are_listed_but_not_read_as_events(self, log_service: LogService) -> None:
        log_service.info("app", "a", "A")
        log_service.save_job_jsonl("job-1", {"event": "job_finished"}, datetime.now(UTC))

        filenames = {f["filename"] for f in log_service.list_log_files()}
        assert filenames == {"events.jsonl", "job-1.jsonl"}
        assert log_service.read_log_entries()["total"] == 1


class TestGetLogService:
    def test_singleton(self) -> None:
        assert get_log_service() is get_log_service()
