"""Publish stored items to the external CMS ingestion API."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

import httpx

from models import MediaItem

from .config import CmsConfig
from .object_store import ObjectStoreUploader, ObjectStoreUploadError
from .store import ContentStore, ContentStoreError

LOGGER = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
_ELLIPSIS = "..."


class CmsUploadError(RuntimeError):
    """Raised when the CMS rejects an upload or cannot be reached."""


@dataclass(slots=True)
class CmsUser:
    username: str
    email: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"username": self.username, "email": self.email, "name": self.name}


@dataclass(slots=True)
class CmsUploadRequest:
    media_url: str
    title: str
    description: str
    user: CmsUser

    def to_payload(self) -> dict[str, Any]:
        return {
            "media_url": self.media_url,
            "title": self.title,
            "description": self.description,
            "user": self.user.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class CmsErrorText:
    text: str


@dataclass(frozen=True, slots=True)
class CmsErrorDetail:
    detail: Mapping[str, Any]

    @property
    def message(self) -> Optional[str]:
        value = self.detail.get("message")
        return value if isinstance(value, str) and value else None


CmsError = Union[CmsErrorText, CmsErrorDetail]


def parse_cms_error(raw: Any) -> Optional[CmsError]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return CmsErrorText(raw)
    if isinstance(raw, Mapping):
        return CmsErrorDetail(dict(raw))
    return CmsErrorText(str(raw))


@dataclass(slots=True)
class CmsUploadResponse:
    success: bool = False
    task_id: Optional[str] = None
    friendly_token: Optional[str] = None
    status_url: Optional[str] = None
    media_url: Optional[str] = None
    error: Optional[CmsError] = None
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "CmsUploadResponse":
        if not isinstance(payload, Mapping):
            raise CmsUploadError(f"Unexpected CMS response shape: {type(payload).__name__}")

        def optional_str(name: str) -> Optional[str]:
            value = payload.get(name)
            return str(value) if value not in (None, "") else None

        return cls(
            success=bool(payload.get("success", False)),
            task_id=optional_str("task_id"),
            friendly_token=optional_str("friendly_token"),
            status_url=optional_str("status_url"),
            media_url=optional_str("media_url"),
            error=parse_cms_error(payload.get("error")),
            message=optional_str("message"),
        )


def normalize_error_message(response: CmsUploadResponse) -> str:
    """Collapse whichever error shape the API returned into one message."""

    error = response.error
    message = ""
    if isinstance(error, CmsErrorText):
        message = error.text
    elif isinstance(error, CmsErrorDetail):
        message = error.message or json.dumps(error.detail, sort_keys=True)
    if not message:
        message = response.message or ""
    return message or "unknown error"


def generate_title(text: Optional[str], post_id: str) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        return f"Video - {post_id}"
    if len(cleaned) <= TITLE_MAX_LENGTH:
        return cleaned
    return cleaned[: TITLE_MAX_LENGTH - len(_ELLIPSIS)] + _ELLIPSIS


def generate_description(text: Optional[str], post_id: str) -> str:
    if text:
        return text
    return f"Generated video - {post_id}"


@dataclass(slots=True)
class CmsUploadResult:
    total_unuploaded: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_post_ids: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def record_failure(self, post_id: str, message: str) -> None:
        self.failed += 1
        self.failed_post_ids.append(post_id)
        self.errors[post_id] = message

    def to_dict(self) -> dict[str, object]:
        return {
            "total_unuploaded": self.total_unuploaded,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_post_ids": list(self.failed_post_ids),
            "errors": dict(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class CmsUploader:
    """Push items to the CMS one at a time with a fixed pause between them."""

    def __init__(
        self,
        config: CmsConfig,
        store: ContentStore,
        object_store: ObjectStoreUploader,
        *,
        client: httpx.Client | None = None,
        timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._store = store
        self._object_store = object_store
        self._sleep = sleep
        if client is None:
            self._client = httpx.Client(timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "CmsUploader":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    def build_request(self, item: MediaItem, media_url: str) -> CmsUploadRequest:
        return CmsUploadRequest(
            media_url=media_url,
            title=generate_title(item.text, item.post_id),
            description=generate_description(item.text, item.post_id),
            user=CmsUser(username=self._config.username, email=self._config.email, name=self._config.name),
        )

    def upload_item(self, item: MediaItem) -> CmsUploadResponse:
        try:
            media_url = self._object_store.ensure_object_store_url(item)
        except (ObjectStoreUploadError, ContentStoreError) as exc:
            raise CmsUploadError(f"Failed to ensure object store URL: {exc}") from exc

        request = self.build_request(item, media_url)
        LOGGER.debug("CMS upload request: post_id=%s, title=%r, media_url=%s", item.post_id, request.title, media_url)
        try:
            response = self._client.post(
                self._config.api_url,
                json=request.to_payload(),
                headers={"Authorization": f"Api-Key {self._config.api_key}"},
            )
        except httpx.HTTPError as exc:
            raise CmsUploadError(f"Failed to send CMS request: {exc}") from exc

        LOGGER.debug("CMS response: status=%d, body=%s", response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise CmsUploadError(
                f"Failed to decode CMS response (status {response.status_code}): {response.text[:200]}"
            ) from exc

        parsed = CmsUploadResponse.from_payload(payload)
        if not parsed.success:
            raise CmsUploadError(normalize_error_message(parsed))

        if parsed.friendly_token:
            try:
                self._store.update_cms_token(item.post_id, parsed.friendly_token)
            except ContentStoreError as exc:
                LOGGER.warning("Failed to save CMS token for %s: %s", item.post_id, exc)
            else:
                LOGGER.info("Uploaded %s to CMS, token=%s", item.post_id, parsed.friendly_token)
        else:
            LOGGER.info("Uploaded %s to CMS (no token returned)", item.post_id)
        return parsed

    def upload_unuploaded(self, limit: int = 0, cancel_event: threading.Event | None = None) -> CmsUploadResult:
        started = time.monotonic()
        items = self._store.pending_cms_upload(limit)
        result = CmsUploadResult(total_unuploaded=len(items))
        if not items:
            LOGGER.info("No items waiting for CMS upload")
            return result

        LOGGER.info("Found %d items waiting for CMS upload", len(items))
        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("CMS upload cancelled after %d items", index)
                break
            if index > 0 and self._config.upload_delay > 0:
                self._sleep(self._config.upload_delay)

            result.attempted += 1
            LOGGER.info("Uploading item %d/%d: post_id=%s", index + 1, len(items), item.post_id)
            try:
                self.upload_item(item)
            except CmsUploadError as exc:
                LOGGER.error("Failed to upload %s to CMS: %s", item.post_id, exc)
                result.record_failure(item.post_id, str(exc))
                continue

            try:
                self._store.mark_cms_uploaded(item.post_id)
            except ContentStoreError as exc:
                LOGGER.error("Failed to mark %s as uploaded: %s", item.post_id, exc)
                result.record_failure(item.post_id, str(exc))
                continue
            result.succeeded += 1

        result.duration_seconds = time.monotonic() - started
        LOGGER.info(
            "CMS upload completed: succeeded=%d, failed=%d, duration=%.1fs",
            result.succeeded,
            result.failed,
            result.duration_seconds,
        )
        return result


__all__ = [
    "CmsError",
    "CmsErrorDetail",
    "CmsErrorText",
    "CmsUploadError",
    "CmsUploadRequest",
    "CmsUploadResponse",
    "CmsUploadResult",
    "CmsUploader",
    "CmsUser",
    "generate_description",
    "generate_title",
    "normalize_error_message",
    "parse_cms_error",
]
