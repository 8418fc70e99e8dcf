"""Operator command line for the harvester pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .browser import BrowserSessionError
from .cms import CmsUploader
from .config import ConfigurationError, CmsConfig, HarvestConfig, ObjectStoreConfig
from .crawl import CrawlRequest, CrawlSessionError, crawl_and_download
from .feed import FeedParseError, UnusableFeedError, dump_feed
from .feed_fetcher import FeedFetchError, fetch_feed_to_file
from .ingest import run_ingest
from .object_store import ObjectStoreUploader
from .store import ContentStore, ContentStoreError

LOGGER = logging.getLogger(__name__)

_FATAL_ERRORS = (
    BrowserSessionError,
    CrawlSessionError,
    FeedFetchError,
    FeedParseError,
    UnusableFeedError,
    ContentStoreError,
    ConfigurationError,
)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Harvest short-form videos from the public feed")
    parser.add_argument("--db-url", type=str, help="SQLAlchemy database URL (default: HARVESTER_DATABASE_URL)")
    parser.add_argument("--save-path", type=Path, help="Directory for downloaded media")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None, help="Run the browser headless")
    headless.add_argument("--headed", dest="headless", action="store_false", help="Show the browser window")

    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Scroll the public page and download media seen on the network")
    crawl.add_argument("--duration", type=int, default=300, help="Total crawl duration in seconds (default: 300)")
    crawl.add_argument("--scroll-interval", type=int, default=20, help="Seconds between scrolls (default: 20)")
    crawl.add_argument("--workers", type=int, default=1, help="Concurrent media downloads (default: 1)")

    fetch = sub.add_parser("fetch-feed", help="Fetch the feed and save it as a JSON snapshot")
    fetch.add_argument("--output", type=Path, required=True, help="Snapshot file to write")

    ingest = sub.add_parser("ingest", help="Download new feed items and record them")
    ingest.add_argument("--feed-file", type=Path, help="Ingest a saved snapshot instead of fetching live")
    ingest.add_argument("--limit", type=int, default=50, help="Maximum new items to download (0 = no limit)")
    ingest.add_argument("--queue", action="store_true", help="Dispatch through the Celery task queue")

    object_store = sub.add_parser("upload-object-store", help="Upload downloaded videos to the object store")
    object_store.add_argument("--limit", type=int, default=0, help="Maximum items to upload (0 = no limit)")
    object_store.add_argument("--queue", action="store_true", help="Dispatch through the Celery task queue")

    cms = sub.add_parser("upload-cms", help="Publish items that have not reached the CMS yet")
    cms.add_argument("--limit", type=int, default=0, help="Maximum items to upload (0 = no limit)")
    cms.add_argument("--queue", action="store_true", help="Dispatch through the Celery task queue")

    sub.add_parser("stats", help="Print content store and upload statistics")

    export = sub.add_parser("export", help="Export stored items in the feed snapshot format")
    export.add_argument("--limit", type=int, default=0, help="Maximum items to export (0 = all)")
    export.add_argument("--output", type=str, default="-", help="Output file, or - for stdout")

    return parser


def _build_config(args: argparse.Namespace) -> HarvestConfig:
    config = HarvestConfig.from_env()
    if args.db_url:
        config.db_url = args.db_url
    if args.save_path:
        config.save_path = args.save_path
    if args.headless is not None:
        config.browser.headless = args.headless
    return config


def _task_payload(config: HarvestConfig, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "db_url": config.db_url,
        "save_path": str(config.save_path),
        "headless": config.browser.headless,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _dispatch(task, payload: dict[str, Any]) -> dict[str, Any]:
    # Eager mode returns the summary; a real broker only gives back the task id.
    async_result = task.delay(payload)
    if async_result.ready():
        return async_result.get()
    return {"task_id": async_result.id, "status": "queued"}


def _cmd_crawl(args: argparse.Namespace, config: HarvestConfig) -> int:
    config.download_workers = max(1, args.workers)
    request = CrawlRequest(
        total_duration_seconds=args.duration,
        scroll_interval_seconds=args.scroll_interval,
        save_path=config.save_path,
    )
    result = crawl_and_download(config, request)
    _print_json(
        {
            "videos": [str(path) for path in result.videos],
            "thumbnails": [str(path) for path in result.thumbnails],
            "total_videos": result.total_videos,
            "total_thumbnails": result.total_thumbnails,
            "duration_seconds": round(result.duration_seconds, 1),
            "errors": result.download_errors,
        }
    )
    return 0 if not result.download_errors else 1


def _cmd_fetch_feed(args: argparse.Namespace, config: HarvestConfig) -> int:
    feed = fetch_feed_to_file(config, args.output)
    LOGGER.info("Saved %d feed items to %s", len(feed.items), args.output)
    return 0


def _cmd_ingest(args: argparse.Namespace, config: HarvestConfig) -> int:
    if args.queue:
        from .tasks import ingest_feed_task

        payload = _task_payload(
            config,
            feed_file=str(args.feed_file) if args.feed_file else None,
            limit=args.limit,
        )
        summary = _dispatch(ingest_feed_task, payload)
        _print_json(summary)
        return 0 if not summary.get("failed") else 1

    result = run_ingest(config, feed_file=args.feed_file, limit=args.limit)
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


def _cmd_upload_object_store(args: argparse.Namespace, config: HarvestConfig) -> int:
    if args.queue:
        from .tasks import upload_to_object_store_task

        summary = _dispatch(upload_to_object_store_task, _task_payload(config, limit=args.limit))
        _print_json(summary)
        return 0 if not summary.get("failed") else 1

    store = ContentStore.from_url(config.db_url)
    uploader = ObjectStoreUploader(ObjectStoreConfig.from_env(), store, timeout=config.timeout)
    result = uploader.upload_pending(args.limit)
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


def _cmd_upload_cms(args: argparse.Namespace, config: HarvestConfig) -> int:
    if args.queue:
        from .tasks import upload_to_cms_task

        summary = _dispatch(upload_to_cms_task, _task_payload(config, limit=args.limit))
        _print_json(summary)
        return 0 if not summary.get("failed") else 1

    store = ContentStore.from_url(config.db_url)
    object_store = ObjectStoreUploader(ObjectStoreConfig.from_env(), store, timeout=config.timeout)
    with CmsUploader(CmsConfig.from_env(), store, object_store, timeout=config.timeout.upload_timeout) as uploader:
        result = uploader.upload_unuploaded(args.limit)
    _print_json(result.to_dict())
    return 0 if result.failed == 0 else 1


def _cmd_stats(args: argparse.Namespace, config: HarvestConfig) -> int:
    store = ContentStore.from_url(config.db_url)
    stats = store.upload_stats()
    _print_json(
        {
            "total": stats.total,
            "uploaded_to_object_store": stats.uploaded_to_object_store,
            "uploaded_to_cms": stats.uploaded_to_cms,
            "pending_cms": stats.pending_cms,
        }
    )
    return 0


def _cmd_export(args: argparse.Namespace, config: HarvestConfig) -> int:
    store = ContentStore.from_url(config.db_url)
    if args.output in ("", "-"):
        feed = store.export_feed(args.limit)
        if not feed.items:
            LOGGER.warning("No items found in content store")
            return 1
        sys.stdout.write(dump_feed(feed) + "\n")
        return 0
    store.export_feed_to_file(args.limit, Path(args.output))
    return 0


_COMMANDS = {
    "crawl": _cmd_crawl,
    "fetch-feed": _cmd_fetch_feed,
    "ingest": _cmd_ingest,
    "upload-object-store": _cmd_upload_object_store,
    "upload-cms": _cmd_upload_cms,
    "stats": _cmd_stats,
    "export": _cmd_export,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = _build_config(args)
        return _COMMANDS[args.command](args, config)
    except _FATAL_ERRORS as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1


__all__ = ["build_arg_parser", "configure_logging", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
