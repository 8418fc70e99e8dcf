"""Upload downloaded videos to an S3-compatible object store."""

from __future__ import annotations

import logging
import mimetypes
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from models import MediaItem

from .config import ObjectStoreConfig, TimeoutConfig
from .store import ContentStore, ContentStoreError

LOGGER = logging.getLogger(__name__)

_DEFAULT_EXTENSION = ".mp4"


class ObjectStoreUploadError(RuntimeError):
    """Raised when an item cannot be uploaded to the object store."""


class MissingLocalFileError(ObjectStoreUploadError):
    """Raised when the downloaded file an upload needs is not on disk."""


@dataclass(slots=True)
class PutObjectResult:
    url: str
    etag: Optional[str] = None


@dataclass(slots=True)
class ObjectStoreBatchResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_post_ids: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_post_ids": list(self.failed_post_ids),
            "errors": dict(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


def build_s3_client(config: ObjectStoreConfig, timeout: TimeoutConfig | None = None):
    timeout = timeout or TimeoutConfig()
    boto_config = BotoConfig(
        connect_timeout=timeout.upload_timeout,
        read_timeout=timeout.upload_timeout,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    return boto3.client(
        "s3",
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        endpoint_url=config.endpoint_url,
        region_name=config.region,
        config=boto_config,
    )


class ObjectStoreUploader:
    """Give each item exactly one durable object-store URL.

    Keys are derived from the post id and the local file extension, so an
    upload repeated after a lost database write overwrites the same object
    with the same bytes.
    """

    def __init__(
        self,
        config: ObjectStoreConfig,
        store: ContentStore,
        *,
        client: Any = None,
        timeout: TimeoutConfig | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client = client if client is not None else build_s3_client(config, timeout)

    def object_key(self, post_id: str, local_path: str | Path | None = None) -> str:
        extension = Path(local_path).suffix if local_path else ""
        prefix = self._config.key_prefix.strip("/")
        key = f"{post_id}{extension or _DEFAULT_EXTENSION}"
        return f"{prefix}/{key}" if prefix else key

    def public_url(self, key: str) -> str:
        if self._config.public_base_url:
            return f"{self._config.public_base_url.rstrip('/')}/{key}"
        return f"https://{self._config.bucket}.{self._config.endpoint_host}/{key}"

    def put_object(self, key: str, path: Path) -> PutObjectResult:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            with path.open("rb") as handle:
                response = self._client.put_object(
                    Bucket=self._config.bucket,
                    Key=key,
                    Body=handle,
                    ContentType=content_type,
                )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreUploadError(f"Failed to upload {path} to {key}: {exc}") from exc
        except OSError as exc:
            raise ObjectStoreUploadError(f"Failed to read {path}: {exc}") from exc

        etag = None
        if isinstance(response, dict):
            etag = response.get("ETag")
        return PutObjectResult(url=self.public_url(key), etag=etag)

    def ensure_object_store_url(self, item: MediaItem) -> str:
        if item.object_store_url:
            LOGGER.debug("Item %s already has object store URL", item.post_id)
            return item.object_store_url

        local_path = Path(item.local_video_path or "")
        if not item.local_video_path or not local_path.is_file():
            raise MissingLocalFileError(f"Local video file not found for {item.post_id}: {item.local_video_path}")

        key = self.object_key(item.post_id, local_path)
        LOGGER.info("Uploading %s to object store key %s", item.post_id, key)
        result = self.put_object(key, local_path)

        self._store.mark_object_store_uploaded(item.post_id, result.url)
        item.object_store_url = result.url
        item.uploaded_to_object_store = True
        LOGGER.info("Uploaded %s to object store: %s", item.post_id, result.url)
        return result.url

    def upload_pending(self, limit: int = 0, cancel_event: threading.Event | None = None) -> ObjectStoreBatchResult:
        started = time.monotonic()
        items = self._store.pending_object_store_upload(limit)
        result = ObjectStoreBatchResult()
        LOGGER.info("Found %d items waiting for object store upload", len(items))

        for item in items:
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("Object store upload cancelled")
                break
            result.attempted += 1
            try:
                self.ensure_object_store_url(item)
            except (ObjectStoreUploadError, ContentStoreError) as exc:
                LOGGER.error("Failed to upload %s to object store: %s", item.post_id, exc)
                result.failed += 1
                result.failed_post_ids.append(item.post_id)
                result.errors[item.post_id] = str(exc)
                continue
            result.succeeded += 1

        result.duration_seconds = time.monotonic() - started
        LOGGER.info(
            "Object store upload completed: attempted=%d, succeeded=%d, failed=%d",
            result.attempted,
            result.succeeded,
            result.failed,
        )
        return result


__all__ = [
    "MissingLocalFileError",
    "ObjectStoreBatchResult",
    "ObjectStoreUploadError",
    "ObjectStoreUploader",
    "PutObjectResult",
    "build_s3_client",
]
