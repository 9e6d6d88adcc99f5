"""Job scheduler adapter: starts, stops and reschedules upload job invocations."""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from fileuploader.config import get_settings
from fileuploader.services.event_service import get_event_service
from fileuploader.services.log_service import get_log_service
from fileuploader.services.queue_store import get_queue_store
from fileuploader.services.transport import TransportClient
from fileuploader.services.upload_orchestrator import UploadOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobParameters:
    """Handle identifying one job invocation."""

    job_id: str
    tag: str = "file-upload"
    attempt: int = 1  # consecutive runs, counting reschedules

    def to_dict(self) -> dict[str, Any]:
        return {"job_id": self.job_id, "tag": self.tag, "attempt": self.attempt}


OrchestratorFactory = Callable[["JobScheduler"], UploadOrchestrator]


class JobScheduler:
    """Runs at most one upload job invocation at a time.

    Each invocation gets a fresh UploadOrchestrator. When an invocation ends
    with work still queued, another run is scheduled after a fixed delay.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        reschedule_delay: float = 30.0,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self._reschedule_delay = reschedule_delay
        self._timer_factory = timer_factory
        self._on_close = on_close
        self._lock = threading.Lock()
        self._current: tuple[JobParameters, UploadOrchestrator] | None = None
        self._timer: threading.Timer | None = None
        self._next_run_at: datetime | None = None
        self._attempt = 1
        self._last_result: dict[str, Any] | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._current is not None

    # Host-facing contract

    def on_start_job(self, job: JobParameters, orchestrator: UploadOrchestrator) -> bool:
        """Start an invocation; True means work is in flight."""
        return orchestrator.start(job)

    def on_stop_job(self, job: JobParameters, orchestrator: UploadOrchestrator) -> bool:
        """Preempt an invocation; True means it should run again later."""
        return orchestrator.on_stop(job)

    def job_finished(self, job: JobParameters, needs_reschedule: bool) -> None:
        """Completion report from the orchestrator of the running invocation."""
        with self._lock:
            if self._current is None or self._current[0] != job:
                logger.info("Ignoring finish report for inactive job %s", job.job_id)
                return
            _, orchestrator = self._current
            self._current = None

        # Runs on the transport thread that delivered the last outcome
        self._end_invocation(job, orchestrator, needs_reschedule, "finished", wait=False)

    # Triggers

    def run_now(self) -> JobParameters | None:
        """Start an invocation immediately.

        Returns:
            The job handle, or None if an invocation is already running or
            the scheduler has been shut down
        """
        with self._lock:
            if self._closed or self._current is not None:
                return None
            self._cancel_timer()
            job = JobParameters(job_id=str(uuid.uuid4()), attempt=self._attempt)
            orchestrator = self._orchestrator_factory(self)
            self._current = (job, orchestrator)

        try:
            keep_alive = self.on_start_job(job, orchestrator)
        except Exception as e:
            logger.exception("Job %s failed to start", job.job_id)
            get_log_service().error(
                "job", "job_start_failed", f"Job failed to start: {e}", {"job_id": job.job_id}
            )
            self._release(job, orchestrator, needs_reschedule=True, reason="start_failed")
            return job

        if not keep_alive:
            self._release(job, orchestrator, needs_reschedule=False, reason="idle")
        return job

    def stop(self) -> bool:
        """Preempt the running invocation.

        Returns:
            True if it was rescheduled because uploads were still in flight
        """
        with self._lock:
            if self._current is None:
                return False
            job, orchestrator = self._current
            self._current = None

        needs_reschedule = self.on_stop_job(job, orchestrator)
        self._end_invocation(job, orchestrator, needs_reschedule, "stopped")
        return needs_reschedule

    def schedule(self, delay: float) -> None:
        """Run an invocation after delay seconds, replacing any pending run."""
        with self._lock:
            if self._closed:
                return
            self._cancel_timer()
            timer = self._timer_factory(delay, self._run_scheduled)
            timer.daemon = True
            self._timer = timer
            self._next_run_at = datetime.now(UTC) + timedelta(seconds=delay)
        timer.start()

    def _run_scheduled(self) -> None:
        with self._lock:
            self._timer = None
            self._next_run_at = None
        self.run_now()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._next_run_at = None

    def _release(
        self,
        job: JobParameters,
        orchestrator: UploadOrchestrator,
        needs_reschedule: bool,
        reason: str,
    ) -> None:
        with self._lock:
            if self._current is None or self._current[0] != job:
                # Already finished from inside start()
                return
            self._current = None
        self._end_invocation(job, orchestrator, needs_reschedule, reason)

    def _end_invocation(
        self,
        job: JobParameters,
        orchestrator: UploadOrchestrator,
        needs_reschedule: bool,
        reason: str,
        wait: bool = True,
    ) -> None:
        orchestrator.on_teardown(wait=wait)

        with self._lock:
            self._attempt = job.attempt + 1 if needs_reschedule else 1
            self._last_result = {
                **job.to_dict(),
                "reason": reason,
                "needs_reschedule": needs_reschedule,
                "ended_at": datetime.now(UTC).isoformat(),
                "batch": orchestrator.status(),
            }

        logger.info("Job %s %s (reschedule=%s)", job.job_id, reason, needs_reschedule)
        if needs_reschedule:
            self.schedule(self._reschedule_delay)

    def status(self) -> dict[str, Any]:
        """Current scheduler state for the HTTP surface."""
        with self._lock:
            current = self._current
            return {
                "running": current is not None,
                "job": current[0].to_dict() if current else None,
                "batch": current[1].status() if current else None,
                "next_run_at": self._next_run_at.isoformat() if self._next_run_at else None,
                "last_result": self._last_result,
            }

    def shutdown(self) -> None:
        """Cancel pending runs, tear down the running invocation without rescheduling."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timer()
            current = self._current
            self._current = None

        if current is not None:
            job, orchestrator = current
            orchestrator.on_stop(job)
            orchestrator.on_teardown()
        if self._on_close is not None:
            self._on_close()


# Global job scheduler instance
_job_scheduler: JobScheduler | None = None
_job_scheduler_lock = threading.Lock()


def get_job_scheduler() -> JobScheduler:
    """Get the global job scheduler, wired to the configured services."""
    global _job_scheduler
    with _job_scheduler_lock:
        if _job_scheduler is None:
            settings = get_settings()
            transport = TransportClient(
                max_workers=settings.max_workers,
                timeout=settings.request_timeout,
                aws_profile=settings.aws_profile,
                aws_region=settings.aws_region,
            )

            def make_orchestrator(scheduler: JobScheduler) -> UploadOrchestrator:
                return UploadOrchestrator(
                    reporter=scheduler,
                    queue_store=get_queue_store(),
                    transport=transport,
                    event_service=get_event_service(),
                    cleanup_timeout=settings.cleanup_shutdown_timeout,
                )

            _job_scheduler = JobScheduler(
                make_orchestrator,
                reschedule_delay=settings.reschedule_delay,
                on_close=transport.close,
            )
        return _job_scheduler
