"""Tests for the background file cleanup worker."""

import threading
import time
from pathlib import Path
from unittest.mock import patch

from fileuploader.services.cleanup_worker import FileCleanupWorker, delete_file_and_empty_parent
from fileuploader.services.log_service import get_log_service


class TestDeleteFileAndEmptyParent:
    """Tests for the delete task itself."""

    def test_deletes_file_and_empty_parent(self, tmp_path: Path) -> None:
        folder = tmp_path / "session"
        folder.mkdir()
        target = folder / "a.bin"
        target.write_bytes(b"x")

        assert delete_file_and_empty_parent(str(target)) is True
        assert not target.exists()
        assert not folder.exists()

    def test_keeps_non_empty_parent(self, tmp_path: Path) -> None:
        folder = tmp_path / "session"
        folder.mkdir()
        target = folder / "a.bin"
        target.write_bytes(b"x")
        (folder / "b.bin").write_bytes(b"y")

        assert delete_file_and_empty_parent(str(target)) is True
        assert folder.exists()

    def test_missing_file_returns_false(self, tmp_path: Path) -> None:
        assert delete_file_and_empty_parent(str(tmp_path / "gone.bin")) is False
        assert tmp_path.exists()


class TestFileCleanupWorker:
    """Tests for the serial worker."""

    def test_post_deletes_in_background(self, tmp_path: Path) -> None:
        folder = tmp_path / "session"
        folder.mkdir()
        files = [folder / f"{i}.bin" for i in range(5)]
        for f in files:
            f.write_bytes(b"x")

        worker = FileCleanupWorker()
        for f in files:
            assert worker.post(str(f)) is True
        worker.shutdown(timeout=5.0)

        assert not any(f.exists() for f in files)
        assert not folder.exists()

    def test_post_after_shutdown_is_refused(self, tmp_path: Path) -> None:
        target = tmp_path / "a.bin"
        target.write_bytes(b"x")

        worker = FileCleanupWorker()
        worker.shutdown()

        assert worker.is_running is False
        assert worker.post(str(target)) is False
        assert target.exists()

    def test_refused_delete_is_logged(self, tmp_path: Path) -> None:
        """Test that a deletion refused after shutdown is written to the event log."""
        target = tmp_path / "a.bin"
        target.write_bytes(b"x")

        worker = FileCleanupWorker()
        worker.shutdown()
        worker.post(str(target))

        result = get_log_service().read_log_entries(category="cleanup")
        assert [e["event"] for e in result["entries"]] == ["file_delete_skipped"]
        assert result["entries"][0]["metadata"]["file_path"] == str(target)

    def test_shutdown_without_wait_finishes_queued_deletes(self, tmp_path: Path) -> None:
        """Test that shutdown(wait=False) returns at once and queued deletions still run."""
        release = threading.Event()
        done: list[str] = []

        def slow_delete(file_path: str) -> bool:
            release.wait(5)
            done.append(file_path)
            return True

        worker = FileCleanupWorker()
        with patch(
            "fileuploader.services.cleanup_worker.delete_file_and_empty_parent", slow_delete
        ):
            worker.post("first")
            worker.post("second")

            started = time.monotonic()
            worker.shutdown(timeout=5.0, wait=False)
            assert time.monotonic() - started < 0.5
            assert worker.is_running is False

            release.set()
            worker._executor.shutdown(wait=True)

        assert done == ["first", "second"]

    def test_shutdown_twice(self) -> None:
        worker = FileCleanupWorker()
        worker.shutdown()
        worker.shutdown()
        assert worker.is_running is False

    def test_shutdown_is_bounded(self, tmp_path: Path) -> None:
        """A stuck deletion does not hold shutdown past its timeout."""
        release = threading.Event()

        def stuck(file_path: str) -> bool:
            release.wait(10)
            return True

        worker = FileCleanupWorker()
        with patch("fileuploader.services.cleanup_worker.delete_file_and_empty_parent", stuck):
            worker.post(str(tmp_path / "a.bin"))
            worker.post(str(tmp_path / "b.bin"))
            finished = threading.Event()

            def run_shutdown() -> None:
                worker.shutdown(timeout=0.2)
                finished.set()

            threading.Thread(target=run_shutdown).start()
            assert finished.wait(5)
        release.set()

    def test_failed_delete_does_not_stop_worker(self, tmp_path: Path) -> None:
        target = tmp_path / "a.bin"
        target.write_bytes(b"x")

        worker = FileCleanupWorker()
        worker.post(str(tmp_path / "missing.bin"))
        worker.post(str(target))
        worker.shutdown(timeout=5.0)

        assert not target.exists()
