"""Transport client that performs single file uploads on a worker pool.

Each call to :meth:`TransportClient.upload` returns a ``Future`` that resolves
to an :class:`UploadResponse` when the remote side answered (whatever the
status), or raises :class:`UploadTransportError` when no response was obtained.
There is no retry here.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from botocore.exceptions import BotoCoreError
from mypy_boto3_s3 import S3Client

from fileuploader.services import s3_service

logger = logging.getLogger(__name__)


class UploadTransportError(Exception):
    """The upload did not produce a response (connection, DNS, timeout...)."""


@dataclass(frozen=True)
class UploadResponse:
    """Response returned by the remote side for one upload."""

    status_code: int
    message: str = ""

    @property
    def is_successful(self) -> bool:
        return 200 <= self.status_code < 300


class TransportClient:
    """Runs uploads concurrently on its own thread pool."""

    def __init__(
        self,
        max_workers: int = 4,
        timeout: float = 60.0,
        http_client: httpx.Client | None = None,
        s3_client: S3Client | None = None,
        aws_profile: str = "default",
        aws_region: str = "us-west-2",
    ) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="upload-transport"
        )
        self._http = http_client or httpx.Client(timeout=timeout)
        self._s3_client = s3_client
        self._aws_profile = aws_profile
        self._aws_region = aws_region
        self._s3_lock = threading.Lock()
        self._closed = False

    def upload(self, url: str, file_path: str) -> "Future[UploadResponse]":
        """Submit one upload of file_path to url."""
        return self._executor.submit(self._upload, url, file_path)

    def _upload(self, url: str, file_path: str) -> UploadResponse:
        scheme = urlparse(url).scheme.lower()
        if scheme in ("http", "https"):
            return self._upload_http(url, file_path)
        if scheme == "s3":
            return self._upload_s3(url, file_path)
        raise UploadTransportError(f"Unsupported upload URL scheme: {scheme or url!r}")

    def _upload_http(self, url: str, file_path: str) -> UploadResponse:
        try:
            with open(file_path, "rb") as body:
                response = self._http.put(url, content=body)
        except httpx.HTTPError as e:
            raise UploadTransportError(str(e) or type(e).__name__) from e
        except OSError as e:
            raise UploadTransportError(f"Could not read {file_path}: {e}") from e

        logger.debug("PUT %s -> %s", url, response.status_code)
        return UploadResponse(status_code=response.status_code, message=response.reason_phrase)

    def _get_s3_client(self) -> S3Client:
        with self._s3_lock:
            if self._s3_client is None:
                self._s3_client = s3_service.create_s3_client(self._aws_profile, self._aws_region)
            return self._s3_client

    def _upload_s3(self, url: str, file_path: str) -> UploadResponse:
        try:
            bucket, key = s3_service.parse_s3_url(url)
        except ValueError as e:
            raise UploadTransportError(str(e)) from e

        try:
            result = s3_service.upload_file(self._get_s3_client(), file_path, bucket, key)
        except BotoCoreError as e:
            raise UploadTransportError(str(e)) from e
        except OSError as e:
            raise UploadTransportError(f"Could not read {file_path}: {e}") from e

        return UploadResponse(status_code=result["status_code"], message=result["message"])

    def close(self) -> None:
        """Stop accepting uploads and release the HTTP client.

        HTTP uploads still in flight end with an UploadTransportError, which
        leaves their queue entries in place for the next run.
        """
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False)
        self._http.close()
