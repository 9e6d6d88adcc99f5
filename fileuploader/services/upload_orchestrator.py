"""Upload orchestrator: runs one batch of queued uploads per job invocation."""

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from fileuploader.services.cleanup_worker import FileCleanupWorker
from fileuploader.services.event_service import (
    ErrorKind,
    EventService,
    UploadError,
    UploadEvent,
    UploadStatus,
)
from fileuploader.services.log_service import get_log_service
from fileuploader.services.queue_store import UploadDescriptor, UploadQueueStore
from fileuploader.services.transport import TransportClient, UploadResponse, UploadTransportError

if TYPE_CHECKING:
    from fileuploader.services.job_scheduler import JobParameters

logger = logging.getLogger(__name__)


class JobFinishedReporter(Protocol):
    """Receives the single completion report of a job invocation."""

    def job_finished(self, job: "JobParameters", needs_reschedule: bool) -> None: ...


class BatchPhase(Enum):
    """Lifecycle of a batch within one job invocation."""

    IDLE = "idle"
    STARTED = "started"
    DRAINING = "draining"
    COMPLETE = "complete"


class BatchOutcome(Enum):
    """How a dispatched upload ended, as far as rescheduling is concerned."""

    DELIVERED = "delivered"  # removed from the queue
    ABANDONED = "abandoned"  # removed from the queue without uploading (missing file)
    RETRYABLE = "retryable"  # still queued for the next run


@dataclass
class BatchState:
    """Counters for one job invocation, guarded by a single lock."""

    total_dispatched: int
    remaining_to_report: int = -1
    pending_failures: int = 0
    delivered: int = 0
    abandoned: int = 0
    phase: BatchPhase = BatchPhase.STARTED
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    _recorded: set[str] = field(default_factory=set, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.remaining_to_report < 0:
            self.remaining_to_report = self.total_dispatched

    def record(self, upload_id: str, outcome: BatchOutcome) -> bool:
        """Record the terminal outcome of one dispatched upload.

        Returns:
            True for exactly one call per batch: the one that reports the last
            outstanding upload
        """
        with self.lock:
            if upload_id in self._recorded or self.remaining_to_report == 0:
                logger.warning("Ignoring repeated outcome for upload %s", upload_id)
                return False
            self._recorded.add(upload_id)

            self.remaining_to_report -= 1
            if outcome is BatchOutcome.RETRYABLE:
                self.pending_failures += 1
            elif outcome is BatchOutcome.DELIVERED:
                self.delivered += 1
            else:
                self.abandoned += 1

            if self.remaining_to_report == 0:
                self.phase = BatchPhase.COMPLETE
                self.completed_at = datetime.now(UTC)
                return True
            self.phase = BatchPhase.DRAINING
            return False

    @property
    def in_flight(self) -> int:
        with self.lock:
            return self.remaining_to_report

    @property
    def needs_reschedule(self) -> bool:
        # Abandoned uploads are gone from the queue and never count here
        with self.lock:
            return self.pending_failures > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        with self.lock:
            duration = (
                (self.completed_at - self.started_at).total_seconds()
                if self.completed_at
                else None
            )
            return {
                "phase": self.phase.value,
                "total_dispatched": self.total_dispatched,
                "remaining_to_report": self.remaining_to_report,
                "pending_failures": self.pending_failures,
                "delivered": self.delivered,
                "abandoned": self.abandoned,
                "started_at": self.started_at.isoformat(),
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "duration_seconds": duration,
            }


class UploadOrchestrator:
    """Dispatches every queued upload and reports when all of them have ended.

    One instance serves one job invocation. Outcome callbacks run on the
    transport's threads and may arrive after on_stop() or on_teardown().
    """

    def __init__(
        self,
        reporter: JobFinishedReporter,
        queue_store: UploadQueueStore,
        transport: TransportClient,
        event_service: EventService,
        cleanup_worker_factory: Callable[[], FileCleanupWorker] = FileCleanupWorker,
        cleanup_timeout: float = 5.0,
    ) -> None:
        self._reporter = reporter
        self._store = queue_store
        self._transport = transport
        self._events = event_service
        self._cleanup_worker_factory = cleanup_worker_factory
        self._cleanup_timeout = cleanup_timeout
        self._cleanup_worker: FileCleanupWorker | None = None
        self._batch: BatchState | None = None
        self._stopped = False

    @property
    def batch(self) -> BatchState | None:
        return self._batch

    @property
    def phase(self) -> BatchPhase:
        return self._batch.phase if self._batch else BatchPhase.IDLE

    def start(self, job: "JobParameters") -> bool:
        """Dispatch every queued upload.

        Returns:
            True if uploads were dispatched and the job must stay alive,
            False if the queue was empty
        """
        self._cleanup_worker = self._cleanup_worker_factory()

        entries = self._store.list()
        if not entries:
            self._journal("INFO", "job", "job_idle", "Nothing to upload", {"job_id": job.job_id})
            return False

        self._batch = BatchState(total_dispatched=len(entries))
        self._journal(
            "INFO",
            "job",
            "job_started",
            f"{len(entries)} files to upload",
            {"job_id": job.job_id, "total_files": len(entries), "attempt": job.attempt},
        )

        for _, descriptor in entries:
            self.dispatch_one(job, descriptor)

        return True

    def dispatch_one(self, job: "JobParameters", descriptor: UploadDescriptor) -> None:
        """Issue one upload; its outcome is recorded asynchronously."""
        batch = self._batch
        if batch is None:
            raise RuntimeError("dispatch_one() called before start()")

        self._emit(job, UploadEvent(descriptor.upload_id, UploadStatus.STARTED, descriptor.extras))

        if not os.path.isfile(descriptor.file_path):
            self._cancel_missing_file(job, batch, descriptor)
            return

        try:
            future = self._transport.upload(descriptor.upload_url, descriptor.file_path)
        except RuntimeError as e:
            # Transport pool already shut down
            outcome = self._handle_network_failure(job, descriptor, str(e))
            self._finish_upload(job, batch, descriptor, outcome)
            return

        future.add_done_callback(lambda f: self._on_upload_done(job, batch, descriptor, f))

    def _cancel_missing_file(
        self, job: "JobParameters", batch: BatchState, descriptor: UploadDescriptor
    ) -> None:
        """Drop an upload whose file no longer exists.

        Terminal and not retryable: the entry leaves the queue and does not
        count toward rescheduling, unless the removal could not be committed.
        """
        removed = self._remove_from_queue(job, descriptor)
        self._emit(
            job,
            UploadEvent(
                descriptor.upload_id,
                UploadStatus.CANCELLED,
                descriptor.extras,
                reason="file not found",
            ),
        )
        self._journal(
            "WARNING",
            "upload",
            "file_missing",
            f"File not found, cancelled upload: {descriptor.file_path}",
            {
                "job_id": job.job_id,
                "upload_id": descriptor.upload_id,
                "file_path": descriptor.file_path,
            },
        )
        # Still queued if the removal did not commit, so the next run drops it
        outcome = BatchOutcome.ABANDONED if removed else BatchOutcome.RETRYABLE
        self._finish_upload(job, batch, descriptor, outcome)

    def _on_upload_done(
        self,
        job: "JobParameters",
        batch: BatchState,
        descriptor: UploadDescriptor,
        future: "Future[UploadResponse]",
    ) -> None:
        outcome = BatchOutcome.RETRYABLE
        try:
            try:
                response = future.result()
            except (UploadTransportError, CancelledError) as e:
                outcome = self._handle_network_failure(job, descriptor, str(e) or type(e).__name__)
            except Exception as e:
                logger.exception("Transport raised unexpectedly for %s", descriptor.upload_id)
                outcome = self._handle_network_failure(job, descriptor, str(e) or type(e).__name__)
            else:
                if response.is_successful:
                    outcome = self._handle_success(job, descriptor, response)
                else:
                    outcome = self._handle_response_failure(job, descriptor, response)
        except Exception:
            logger.exception("Failed to handle outcome of upload %s", descriptor.upload_id)
        finally:
            self._finish_upload(job, batch, descriptor, outcome)

    def _handle_success(
        self, job: "JobParameters", descriptor: UploadDescriptor, response: UploadResponse
    ) -> BatchOutcome:
        removed = self._remove_from_queue(job, descriptor)
        if descriptor.delete_on_upload and self._cleanup_worker is not None:
            self._cleanup_worker.post(descriptor.file_path)
        self._emit(job, UploadEvent(descriptor.upload_id, UploadStatus.COMPLETED, descriptor.extras))
        self._journal(
            "INFO",
            "upload",
            "file_upload_completed",
            f"Uploaded {os.path.basename(descriptor.file_path)}",
            {
                "job_id": job.job_id,
                "upload_id": descriptor.upload_id,
                "upload_url": descriptor.upload_url,
                "status_code": response.status_code,
            },
        )

        # A delivered upload whose removal did not commit will be sent again
        return BatchOutcome.DELIVERED if removed else BatchOutcome.RETRYABLE

    def _handle_response_failure(
        self, job: "JobParameters", descriptor: UploadDescriptor, response: UploadResponse
    ) -> BatchOutcome:
        error = UploadError(ErrorKind.RESPONSE_ERROR, response.status_code, response.message)
        self._emit(
            job, UploadEvent(descriptor.upload_id, UploadStatus.FAILED, descriptor.extras, error)
        )
        self._journal(
            "ERROR",
            "upload",
            "file_upload_failed",
            f"Upload of {descriptor.upload_id} rejected with HTTP {response.status_code}",
            {"job_id": job.job_id, "upload_id": descriptor.upload_id, **error.to_dict()},
        )
        return BatchOutcome.RETRYABLE

    def _handle_network_failure(
        self, job: "JobParameters", descriptor: UploadDescriptor, message: str
    ) -> BatchOutcome:
        error = UploadError(ErrorKind.NETWORK_ERROR, 0, message)
        self._emit(
            job, UploadEvent(descriptor.upload_id, UploadStatus.FAILED, descriptor.extras, error)
        )
        self._journal(
            "ERROR",
            "upload",
            "file_upload_failed",
            f"Upload of {descriptor.upload_id} failed: {message}",
            {"job_id": job.job_id, "upload_id": descriptor.upload_id, **error.to_dict()},
        )
        return BatchOutcome.RETRYABLE

    def _remove_from_queue(self, job: "JobParameters", descriptor: UploadDescriptor) -> bool:
        """Remove and commit; False if the removal could not be made durable."""
        try:
            self._store.remove(descriptor.upload_id)
            self._store.commit()
        except Exception as e:
            logger.exception("Could not remove %s from the upload queue", descriptor.upload_id)
            self._journal(
                "ERROR",
                "queue",
                "queue_commit_failed",
                f"Could not remove {descriptor.upload_id} from the queue: {e}",
                {"job_id": job.job_id, "upload_id": descriptor.upload_id, "error": str(e)},
            )
            return False
        return True

    def _emit(self, job: "JobParameters", event: UploadEvent) -> None:
        self._events.publish(event)
        logger.debug("[%s] %s %s", job.job_id, event.upload_id, event.status.value)

    @staticmethod
    def _journal(
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Write to the JSONL event log without letting disk errors escape."""
        try:
            get_log_service().log(level, category, event, message, metadata)
        except OSError:
            logger.warning("Could not write %s to the event log", event, exc_info=True)

    def _finish_upload(
        self,
        job: "JobParameters",
        batch: BatchState,
        descriptor: UploadDescriptor,
        outcome: BatchOutcome,
    ) -> None:
        if batch.record(descriptor.upload_id, outcome):
            self._report_finished(job, batch)

    def _report_finished(self, job: "JobParameters", batch: BatchState) -> None:
        needs_reschedule = batch.needs_reschedule
        summary = batch.to_dict()

        self._journal(
            "INFO",
            "job",
            "job_finished",
            f"Job finished: {summary['delivered']} uploaded, "
            f"{summary['pending_failures']} pending, {summary['abandoned']} cancelled",
            {"job_id": job.job_id, "needs_reschedule": needs_reschedule, **summary},
        )
        try:
            get_log_service().save_job_jsonl(
                job.job_id,
                {
                    "event": "job_finished",
                    "job_id": job.job_id,
                    "attempt": job.attempt,
                    "needs_reschedule": needs_reschedule,
                    "stopped": self._stopped,
                    **summary,
                },
                batch.completed_at or datetime.now(UTC),
            )
        except OSError:
            logger.warning("Failed to save job JSONL summary", exc_info=True)

        self._reporter.job_finished(job, needs_reschedule)

    def on_stop(self, job: "JobParameters") -> bool:
        """The host preempted the job.

        In-flight uploads keep running. Never reports completion.

        Returns:
            True if some upload dispatched in this invocation has not ended yet
        """
        self._stopped = True
        batch = self._batch
        in_flight = batch.in_flight if batch else 0
        needs_reschedule = in_flight > 0
        self._journal(
            "INFO",
            "job",
            "job_stopped",
            f"Job stopped. Needs reschedule: {needs_reschedule}",
            {"job_id": job.job_id, "needs_reschedule": needs_reschedule, "in_flight": in_flight},
        )
        return needs_reschedule

    def on_teardown(self, wait: bool = True) -> None:
        """Stop the cleanup worker.

        Args:
            wait: Block up to the cleanup timeout for queued deletions. When
                False, queued deletions finish in the background instead.
        """
        worker = self._cleanup_worker
        if worker is not None and worker.is_running:
            worker.shutdown(timeout=self._cleanup_timeout, wait=wait)

    def status(self) -> dict[str, Any]:
        """Current batch state for status reporting."""
        if self._batch is None:
            return {"phase": BatchPhase.IDLE.value, "stopped": self._stopped}
        return {**self._batch.to_dict(), "stopped": self._stopped}
