"""Upload lifecycle events and the in-process event sink."""

import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Per-subscriber buffer size for streaming clients; oldest events drop first
STREAM_BUFFER_SIZE = 1000


class UploadStatus(Enum):
    """Status of a single upload within a job invocation."""

    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ErrorKind(Enum):
    """Why an upload failed."""

    RESPONSE_ERROR = "response_error"  # server answered with a non-2xx status
    NETWORK_ERROR = "network_error"  # no response was obtained


@dataclass(frozen=True)
class UploadError:
    """Details attached to a FAILED event."""

    kind: ErrorKind
    http_status: int = 0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "http_status": self.http_status, "message": self.message}


@dataclass(frozen=True)
class UploadEvent:
    """A state transition of one upload."""

    upload_id: str
    status: UploadStatus
    extras: Mapping[str, str] = field(default_factory=dict)
    error: UploadError | None = None
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "upload_id": self.upload_id,
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
            "reason": self.reason,
            "extras": dict(self.extras),
            "timestamp": self.timestamp.isoformat(),
        }


EventListener = Callable[[UploadEvent], None]


class EventService:
    """Fans upload events out to listeners and streaming clients.

    publish() never raises: a failing listener is logged and skipped so the
    upload path is unaffected.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self._streams: list[deque[dict[str, Any]]] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def open_stream(self) -> deque[dict[str, Any]]:
        """Register a buffer that receives every published event as a dict."""
        stream: deque[dict[str, Any]] = deque(maxlen=STREAM_BUFFER_SIZE)
        with self._lock:
            self._streams.append(stream)
        return stream

    def close_stream(self, stream: deque[dict[str, Any]]) -> None:
        # Buffers compare by content, so match on identity
        with self._lock:
            self._streams = [s for s in self._streams if s is not stream]

    def publish(self, event: UploadEvent) -> None:
        """Deliver an event to every listener and open stream."""
        with self._lock:
            listeners = list(self._listeners)
            streams = list(self._streams)

        if streams:
            data = event.to_dict()
            for stream in streams:
                stream.append(data)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener failed for %s (%s)", event.upload_id, event.status.value
                )


# Global event service instance
_event_service: EventService | None = None


def get_event_service() -> EventService:
    """Get the global event service instance."""
    global _event_service
    if _event_service is None:
        _event_service = EventService()
    return _event_service
