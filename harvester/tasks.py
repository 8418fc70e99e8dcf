"""Celery tasks wrapping the ingestion and upload stages."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from celery import Task

from .celery_app import celery_app
from .cms import CmsUploader
from .config import CmsConfig, HarvestConfig, ObjectStoreConfig, TimeoutConfig
from .downloader import MediaDownloader
from .ingest import FeedIngestionPipeline, FeedSource, LiveFeedSource, SnapshotFeedSource
from .object_store import ObjectStoreUploader
from .store import ContentStore

LOGGER = logging.getLogger(__name__)


def _build_config(payload: Mapping[str, Any]) -> HarvestConfig:
    config = HarvestConfig.from_env()
    if payload.get("db_url"):
        config.db_url = str(payload["db_url"])
    if payload.get("save_path"):
        config.save_path = Path(payload["save_path"])
    if payload.get("feed_url"):
        config.feed_url = str(payload["feed_url"])
    if "headless" in payload:
        config.browser.headless = bool(payload["headless"])

    default_timeout = TimeoutConfig()
    config.timeout = TimeoutConfig(
        navigation_timeout=float(payload.get("navigation_timeout", default_timeout.navigation_timeout)),
        feed_timeout=float(payload.get("feed_timeout", default_timeout.feed_timeout)),
        media_timeout=float(payload.get("media_timeout", default_timeout.media_timeout)),
        upload_timeout=float(payload.get("upload_timeout", default_timeout.upload_timeout)),
    )
    return config


@lru_cache(maxsize=8)
def _content_store(db_url: str) -> ContentStore:
    return ContentStore.from_url(db_url)


def _limit(payload: Mapping[str, Any], default: int = 0) -> int:
    try:
        return max(0, int(payload.get("limit", default)))
    except (TypeError, ValueError):
        LOGGER.warning("Invalid limit %r in task payload; using %d", payload.get("limit"), default)
        return default


@celery_app.task(name="harvester.ingest_feed", bind=True)
def ingest_feed_task(self: Task, job: Mapping[str, Any]) -> dict[str, Any]:
    config = _build_config(job)
    config.ensure_directories()
    store = _content_store(config.db_url)

    feed_file = job.get("feed_file")
    source: FeedSource = SnapshotFeedSource(Path(feed_file)) if feed_file else LiveFeedSource(config)
    limit = _limit(job, config.feed_limit)

    with MediaDownloader(config.save_path, timeout=config.timeout.media_timeout) as downloader:
        result = FeedIngestionPipeline(store, downloader).ingest(source, limit)
    LOGGER.info("Ingest task finished: downloaded=%d, failed=%d", result.downloaded, result.failed)
    return result.to_dict()


@celery_app.task(name="harvester.upload_to_object_store", bind=True)
def upload_to_object_store_task(self: Task, job: Mapping[str, Any]) -> dict[str, Any]:
    config = _build_config(job)
    store = _content_store(config.db_url)
    uploader = ObjectStoreUploader(ObjectStoreConfig.from_env(), store, timeout=config.timeout)
    result = uploader.upload_pending(_limit(job))
    return result.to_dict()


@celery_app.task(name="harvester.upload_to_cms", bind=True)
def upload_to_cms_task(self: Task, job: Mapping[str, Any]) -> dict[str, Any]:
    config = _build_config(job)
    store = _content_store(config.db_url)
    object_store = ObjectStoreUploader(ObjectStoreConfig.from_env(), store, timeout=config.timeout)
    with CmsUploader(CmsConfig.from_env(), store, object_store, timeout=config.timeout.upload_timeout) as uploader:
        result = uploader.upload_unuploaded(_limit(job))
    return result.to_dict()


__all__ = ["ingest_feed_task", "upload_to_cms_task", "upload_to_object_store_task"]
