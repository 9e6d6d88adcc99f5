"""Server-Sent Events stream of upload lifecycle events"""

import json
import time
from collections.abc import Generator

from flask import Blueprint, Response

from fileuploader.services.event_service import get_event_service

events_bp = Blueprint("events", __name__)

# Seconds between keep-alive comments when no events arrive
KEEPALIVE_INTERVAL = 15.0


@events_bp.route("", methods=["GET"])
def stream_events() -> Response:
    """Stream every upload event via Server-Sent Events.

    Returns:
        SSE stream; each message is one event dict
    """
    events = get_event_service()

    def generate() -> Generator[str, None, None]:
        stream = events.open_stream()
        last_sent = time.monotonic()
        try:
            while True:
                while stream:
                    yield f"data: {json.dumps(stream.popleft())}\n\n"
                    last_sent = time.monotonic()

                if time.monotonic() - last_sent >= KEEPALIVE_INTERVAL:
                    yield ": keep-alive\n\n"
                    last_sent = time.monotonic()

                # Small delay to prevent busy waiting
                time.sleep(0.1)
        finally:
            events.close_stream(stream)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
