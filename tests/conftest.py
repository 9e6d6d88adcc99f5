"""Pytest configuration and fixtures for the fileuploader tests."""

import json
from collections.abc import Generator
from concurrent.futures import Future
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

import fileuploader.config as config_module
import fileuploader.services.event_service as event_module
import fileuploader.services.job_scheduler as scheduler_module
import fileuploader.services.log_service as log_module
import fileuploader.services.queue_store as queue_module
from fileuploader import create_app
from fileuploader.services.event_service import EventService, UploadEvent
from fileuploader.services.queue_store import UploadDescriptor, UploadQueueStore
from fileuploader.services.transport import UploadResponse


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point settings, logs and the queue database at a temp directory.

    Also resets every module-level singleton so tests never share state.
    """
    settings_file = tmp_path / "settings.json"
    settings_file.write_text(
        json.dumps(
            {
                "queue_db_path": str(tmp_path / "queue.db"),
                "log_directory": str(tmp_path / "logs"),
                "max_workers": 2,
                "request_timeout": 5.0,
                "reschedule_delay": 60.0,
                "cleanup_shutdown_timeout": 2.0,
            }
        )
    )
    monkeypatch.setattr(config_module, "SETTINGS_FILE", settings_file)
    monkeypatch.setattr(config_module, "SETTINGS_DEFAULT_FILE", tmp_path / "settings.default.json")
    for env_name in (
        config_module.ENV_QUEUE_DB_PATH,
        config_module.ENV_LOG_DIRECTORY,
        config_module.ENV_MAX_WORKERS,
        config_module.ENV_REQUEST_TIMEOUT,
        config_module.ENV_RESCHEDULE_DELAY,
        config_module.ENV_AWS_PROFILE,
        config_module.ENV_AWS_REGION,
    ):
        monkeypatch.delenv(env_name, raising=False)

    monkeypatch.setattr(config_module.Settings, "_instance", None)
    monkeypatch.setattr(log_module, "_log_service", None)
    monkeypatch.setattr(queue_module, "_queue_store", None)
    monkeypatch.setattr(event_module, "_event_service", None)
    monkeypatch.setattr(scheduler_module, "_job_scheduler", None)

    yield tmp_path

    if scheduler_module._job_scheduler is not None:
        scheduler_module._job_scheduler.shutdown()


@pytest.fixture
def app() -> Flask:
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def store(tmp_path: Path) -> UploadQueueStore:
    """A queue store backed by a temp database."""
    return UploadQueueStore(tmp_path / "test_queue.db")


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    """Directory holding files to upload."""
    path = tmp_path / "outbox"
    path.mkdir()
    return path


def make_descriptor(
    upload_dir: Path,
    upload_id: str,
    *,
    create: bool = True,
    delete_on_upload: bool = False,
    extras: dict[str, str] | None = None,
) -> UploadDescriptor:
    """Build a descriptor, creating its file unless create is False."""
    file_path = upload_dir / f"{upload_id}.bin"
    if create:
        file_path.write_bytes(b"payload-" + upload_id.encode())
    return UploadDescriptor(
        upload_id=upload_id,
        file_path=str(file_path),
        upload_url=f"https://uploads.example.com/{upload_id}",
        delete_on_upload=delete_on_upload,
        extras=extras or {"name": upload_id},
    )


class FakeTransport:
    """Transport whose uploads stay pending until the test resolves them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Future[UploadResponse]]] = []

    def upload(self, url: str, file_path: str) -> Future[UploadResponse]:
        future: Future[UploadResponse] = Future()
        self.calls.append((url, file_path, future))
        return future

    def future_for(self, upload_id: str) -> Future[UploadResponse]:
        for url, _, future in self.calls:
            if url.endswith(f"/{upload_id}"):
                return future
        raise KeyError(upload_id)

    def close(self) -> None:
        pass


class RecordingReporter:
    """Collects job_finished reports."""

    def __init__(self) -> None:
        self.reports: list[tuple[object, bool]] = []

    def job_finished(self, job: object, needs_reschedule: bool) -> None:
        self.reports.append((job, needs_reschedule))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def events() -> EventService:
    return EventService()


@pytest.fixture
def received(events: EventService) -> list[UploadEvent]:
    """Every event published on the events fixture."""
    collected: list[UploadEvent] = []
    events.add_listener(collected.append)
    return collected
