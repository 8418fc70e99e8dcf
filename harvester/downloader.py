"""Idempotent media downloads keyed by a deterministic identifier."""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence
from urllib.parse import unquote

import httpx

from .classifier import MediaType
from .config import DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)

_TASK_ID_RE = re.compile(r"task_[a-z0-9]{26}")
_URL_HASH_LENGTH = 12


class MediaDownloadError(RuntimeError):
    """Raised when a single media file cannot be fetched or written."""


def extract_task_id(url: str) -> str | None:
    try:
        decoded = unquote(url)
    except (TypeError, ValueError):
        decoded = url
    match = _TASK_ID_RE.search(decoded)
    return match.group(0) if match else None


def storage_key(url: str) -> str:
    """Folder name for ``url``: its task id when present, else a short URL hash."""

    task_id = extract_task_id(url)
    if task_id:
        return task_id
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:_URL_HASH_LENGTH]


@dataclass(slots=True)
class BatchDownloadResult:
    paths: list[Path] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.errors)


class MediaDownloader:
    """Download media files into ``<save_root>/<key>/<file name>``.

    A destination that already exists is returned as-is without touching the
    network, so repeated calls for the same key are free. Bodies are streamed
    into a sibling ``.part`` file and renamed into place only once complete.
    """

    def __init__(
        self,
        save_root: Path,
        *,
        timeout: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.Client | None = None,
    ) -> None:
        self._save_root = Path(save_root)
        if client is None:
            self._client = httpx.Client(
                timeout=timeout,
                headers={"User-Agent": user_agent},
                follow_redirects=True,
            )
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    @property
    def save_root(self) -> Path:
        return self._save_root

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "MediaDownloader":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    def target_path(self, url: str, media_type: MediaType, *, key: str | None = None) -> Path:
        return self._save_root / (key or storage_key(url)) / media_type.filename

    def download(self, url: str, media_type: MediaType, *, key: str | None = None) -> Path:
        target = self.target_path(url, media_type, key=key)
        if target.exists():
            LOGGER.debug("File already exists, skipping download: %s", target)
            return target

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise MediaDownloadError(f"Failed to create folder {target.parent}: {exc}") from exc

        LOGGER.info("Downloading %s: %s", media_type.value, url)
        bytes_written = self._stream_to_file(url, target)
        LOGGER.info("Downloaded %s to %s (%d bytes)", media_type.value, target, bytes_written)
        return target

    def download_batch(
        self,
        urls: Sequence[str],
        media_type: MediaType,
        *,
        max_workers: int = 1,
    ) -> BatchDownloadResult:
        result = BatchDownloadResult()
        if not urls:
            return result

        if max_workers <= 1:
            outcomes = [self._download_quietly(url, media_type) for url in urls]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                outcomes = list(executor.map(lambda url: self._download_quietly(url, media_type), urls))

        for url, (path, error) in zip(urls, outcomes):
            if path is not None:
                result.paths.append(path)
            else:
                result.errors[url] = error or "unknown error"

        if result.errors:
            LOGGER.warning(
                "Batch download of %ss finished with %d failures out of %d",
                media_type.value,
                len(result.errors),
                len(urls),
            )
        return result

    def _download_quietly(self, url: str, media_type: MediaType) -> tuple[Path | None, str | None]:
        try:
            return self.download(url, media_type), None
        except MediaDownloadError as exc:
            LOGGER.warning("Failed to download %s %s: %s", media_type.value, url, exc)
            return None, str(exc)

    def _stream_to_file(self, url: str, target: Path) -> int:
        partial = target.with_name(f"{target.name}.{uuid.uuid4().hex}.part")
        bytes_written = 0
        try:
            with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise MediaDownloadError(f"Download failed with status {response.status_code} for {url}")
                with partial.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        if not chunk:
                            continue
                        handle.write(chunk)
                        bytes_written += len(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            partial.unlink(missing_ok=True)
            raise MediaDownloadError(f"Failed to download {url}: {exc}") from exc
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise MediaDownloadError(f"Failed to write {target}: {exc}") from exc
        except MediaDownloadError:
            partial.unlink(missing_ok=True)
            raise

        if bytes_written == 0:
            partial.unlink(missing_ok=True)
            raise MediaDownloadError(f"Empty response body for {url}")

        partial.replace(target)
        return bytes_written


__all__ = [
    "BatchDownloadResult",
    "MediaDownloadError",
    "MediaDownloader",
    "extract_task_id",
    "storage_key",
]
