"""S3 helpers used by the transport for s3:// upload URLs."""

from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError
from mypy_boto3_s3 import S3Client


def create_s3_client(profile: str, region: str = "us-west-2") -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: AWS region (default: us-west-2)

    Returns:
        Configured S3 client
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    client: S3Client = session.client("s3")
    return client


def parse_s3_url(url: str) -> tuple[str, str]:
    """Split an ``s3://bucket/key`` URL into bucket and key.

    Raises:
        ValueError: If the URL is not an s3:// URL with both bucket and key
    """
    parsed = urlparse(url)
    key = parsed.path.lstrip("/")
    if parsed.scheme != "s3" or not parsed.netloc or not key:
        raise ValueError(f"Not a valid s3:// URL: {url}")
    return parsed.netloc, key


def upload_file(client: S3Client, path: str, bucket: str, key: str) -> dict[str, Any]:
    """Upload a local file to S3.

    Service-side rejections are returned rather than raised so the caller can
    report the HTTP status. Connection-level botocore errors propagate.

    Returns:
        Dictionary with success flag, HTTP status code and message
    """
    try:
        with open(Path(path), "rb") as body:
            client.put_object(Bucket=bucket, Key=key, Body=body)
        return {"success": True, "status_code": 200, "message": "OK"}
    except ClientError as e:
        error = e.response.get("Error", {})
        status_code = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        return {
            "success": False,
            "status_code": int(status_code),
            "message": error.get("Message") or error.get("Code") or str(e),
        }
