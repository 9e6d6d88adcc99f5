"""Background deletion of uploaded files."""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from pathlib import Path

from fileuploader.services.log_service import get_log_service

logger = logging.getLogger(__name__)


def delete_file_and_empty_parent(file_path: str) -> bool:
    """Delete a file, then its parent directory if that left it empty.

    Returns:
        True if the file was deleted
    """
    path = Path(file_path)
    log = get_log_service()
    try:
        os.unlink(path)
    except OSError as e:
        log.warning(
            "cleanup",
            "file_delete_failed",
            f"Failed to delete {path.name}: {e}",
            {"file_path": str(path), "error": str(e)},
        )
        return False

    log.info("cleanup", "file_deleted", f"Deleted {path.name}", {"file_path": str(path)})

    parent = path.parent
    try:
        if not any(parent.iterdir()):
            parent.rmdir()
            logger.debug("Removed empty directory %s", parent)
    except OSError:
        # Another file showed up or the directory is not ours to remove
        logger.debug("Left directory %s in place", parent, exc_info=True)
    return True


class FileCleanupWorker:
    """Serial queue of delete-file tasks on a single background thread."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="file-cleanup")
        self._pending: set[Future[bool]] = set()
        self._lock = threading.Lock()
        self._shut_down = False

    @property
    def is_running(self) -> bool:
        return not self._shut_down

    def post(self, file_path: str) -> bool:
        """Queue a file for deletion without waiting for it.

        Returns:
            False if the worker has already been shut down
        """
        with self._lock:
            refused = self._shut_down
            if not refused:
                future = self._executor.submit(delete_file_and_empty_parent, file_path)
                self._pending.add(future)

        if refused:
            logger.warning("Cleanup worker stopped; not deleting %s", file_path)
            try:
                get_log_service().warning(
                    "cleanup",
                    "file_delete_skipped",
                    f"Cleanup stopped before {Path(file_path).name} could be deleted",
                    {"file_path": file_path},
                )
            except OSError:
                logger.warning("Could not write file_delete_skipped to the event log")
            return False

        future.add_done_callback(self._discard)
        return True

    def _discard(self, future: "Future[bool]") -> None:
        with self._lock:
            self._pending.discard(future)

    def shutdown(self, timeout: float = 5.0, wait: bool = True) -> None:
        """Stop accepting deletions. Safe to call more than once.

        With wait=True, queued deletions get up to timeout seconds and any
        still queued afterwards are abandoned. With wait=False the call
        returns at once and queued deletions finish on the worker thread.
        """
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            pending = set(self._pending)

        if not wait:
            self._executor.shutdown(wait=False)
            return

        if pending:
            _, not_done = wait_for_futures(pending, timeout=timeout)
            if not_done:
                logger.warning("Abandoning %d queued file deletions", len(not_done))
        self._executor.shutdown(wait=False, cancel_futures=True)
