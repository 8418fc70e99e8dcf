"""Feed ingestion: fetch or load a feed, download new items and record them."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, Sequence, Union

from models import MediaItem

from .browser import PlaywrightBrowserSession
from .classifier import MediaType
from .config import HarvestConfig
from .downloader import MediaDownloader, MediaDownloadError
from .feed import FeedItem, FeedResponse, load_feed, validate_feed
from .feed_fetcher import FeedFetcher
from .store import ContentStore, ContentStoreError

LOGGER = logging.getLogger(__name__)


class FeedSource(Protocol):
    def load(self) -> FeedResponse:
        ...


@dataclass(slots=True)
class SnapshotFeedSource:
    """A feed previously saved to disk; not re-validated."""

    path: Path

    def load(self) -> FeedResponse:
        return load_feed(self.path)


@dataclass(slots=True)
class LiveFeedSource:
    """Fetch the feed through a fresh browser session and validate it."""

    config: HarvestConfig

    def load(self) -> FeedResponse:
        with PlaywrightBrowserSession(self.config.browser) as session:
            fetcher = FeedFetcher(
                session,
                feed_url=self.config.feed_url,
                timeout=self.config.timeout.feed_timeout,
            )
            feed = fetcher.fetch()
        validate_feed(feed)
        return feed


@dataclass(slots=True)
class IngestResult:
    fetched: int = 0
    new_count: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    video_paths: list[Path] = field(default_factory=list)
    thumbnail_paths: list[Path] = field(default_factory=list)
    failed_post_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "fetched": self.fetched,
            "new_count": self.new_count,
            "downloaded": self.downloaded,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 3),
            "video_paths": [str(path) for path in self.video_paths],
            "thumbnail_paths": [str(path) for path in self.thumbnail_paths],
            "failed_post_ids": list(self.failed_post_ids),
        }


def select_new_items(items: Sequence[FeedItem], known_ids: set[str], limit: int = 0) -> list[FeedItem]:
    """Items that are unknown and carry a downloadable attachment, in feed order."""

    selected: list[FeedItem] = []
    seen: set[str] = set()
    for item in items:
        post_id = item.post.id
        if not post_id or post_id in known_ids or post_id in seen:
            continue
        if not item.post.attachments:
            LOGGER.debug("Skipping post %s: no attachments", post_id)
            continue
        if item.primary_attachment() is None:
            LOGGER.debug("Skipping post %s: no downloadable video attachment", post_id)
            continue
        seen.add(post_id)
        selected.append(item)
        if limit > 0 and len(selected) >= limit:
            LOGGER.info("Reached download limit of %d items", limit)
            break
    return selected


class FeedIngestionPipeline:
    def __init__(self, store: ContentStore, downloader: MediaDownloader) -> None:
        self._store = store
        self._downloader = downloader

    def ingest(
        self,
        source: Union[FeedSource, FeedResponse],
        limit: int = 0,
        *,
        cancel_event: threading.Event | None = None,
    ) -> IngestResult:
        started = time.monotonic()
        feed = source if isinstance(source, FeedResponse) else source.load()
        LOGGER.info("Loaded feed with %d items", len(feed.items))

        known_ids = self._store.existing_post_ids()
        LOGGER.info("Found %d existing items in content store", len(known_ids))

        new_items = select_new_items(feed.items, known_ids, limit)
        result = IngestResult(fetched=len(feed.items), new_count=len(new_items))
        LOGGER.info("Found %d new items to download", len(new_items))

        for index, item in enumerate(new_items, start=1):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("Ingestion cancelled after %d of %d items", index - 1, len(new_items))
                break
            LOGGER.info(
                "Processing item %d/%d: post_id=%s, username=%s",
                index,
                len(new_items),
                item.post.id,
                item.profile.username,
            )
            self._process_item(item, result)

        result.duration_seconds = time.monotonic() - started
        LOGGER.info(
            "Ingestion completed: fetched=%d, new=%d, downloaded=%d, skipped=%d, failed=%d, duration=%.1fs",
            result.fetched,
            result.new_count,
            result.downloaded,
            result.skipped,
            result.failed,
            result.duration_seconds,
        )
        return result

    def _process_item(self, item: FeedItem, result: IngestResult) -> None:
        post_id = item.post.id
        attachment = item.primary_attachment()
        if attachment is None:
            LOGGER.warning("No downloadable attachment for post %s", post_id)
            result.skipped += 1
            return

        try:
            video_path = self._downloader.download(attachment.downloadable_url, MediaType.VIDEO, key=post_id)
        except MediaDownloadError as exc:
            LOGGER.error("Failed to download video for post %s: %s", post_id, exc)
            result.failed += 1
            result.failed_post_ids.append(post_id)
            return
        result.video_paths.append(video_path)

        thumbnail_path = ""
        if attachment.thumbnail_url:
            try:
                path = self._downloader.download(attachment.thumbnail_url, MediaType.THUMBNAIL, key=post_id)
            except MediaDownloadError as exc:
                LOGGER.warning("Failed to download thumbnail for post %s: %s", post_id, exc)
            else:
                result.thumbnail_paths.append(path)
                thumbnail_path = str(path)

        record = MediaItem(
            post_id=post_id,
            generation_id=attachment.generation_id,
            video_url=attachment.downloadable_url,
            thumbnail_url=attachment.thumbnail_url,
            text=item.post.text,
            username=item.profile.username,
            user_id=item.profile.user_id,
            posted_at=item.post.posted_at,
            width=attachment.width,
            height=attachment.height,
            downloaded_at=datetime.now(),
            local_video_path=str(video_path),
            local_thumbnail_path=thumbnail_path,
            uploaded_to_object_store=False,
            uploaded_to_cms=False,
        )
        try:
            self._store.insert(record)
        except ContentStoreError as exc:
            # The file stays on disk; the next run re-selects the item and the download is a no-op.
            LOGGER.error("Failed to save metadata for post %s: %s", post_id, exc)

        result.downloaded += 1
        LOGGER.info("Downloaded post %s to %s", post_id, video_path)


def run_ingest(
    config: HarvestConfig,
    *,
    feed_file: Path | None = None,
    limit: int | None = None,
    cancel_event: threading.Event | None = None,
) -> IngestResult:
    """Build the store and downloader from ``config`` and run one ingestion pass."""

    config.ensure_directories()
    store = ContentStore.from_url(config.db_url)
    source: FeedSource = SnapshotFeedSource(Path(feed_file)) if feed_file else LiveFeedSource(config)
    effective_limit = config.feed_limit if limit is None else limit
    with MediaDownloader(config.save_path, timeout=config.timeout.media_timeout) as downloader:
        pipeline = FeedIngestionPipeline(store, downloader)
        return pipeline.ingest(source, effective_limit, cancel_event=cancel_event)


__all__ = [
    "FeedIngestionPipeline",
    "FeedSource",
    "IngestResult",
    "LiveFeedSource",
    "SnapshotFeedSource",
    "run_ingest",
    "select_new_items",
]
