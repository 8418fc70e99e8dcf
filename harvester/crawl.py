"""Live crawl: drive an infinite-scroll page and collect media URLs from its traffic."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from .browser import BrowserSession, BrowserSessionError, PlaywrightBrowserSession
from .classifier import MediaType, UrlClass, classify_url, is_media_host
from .config import CrawlConfig, HarvestConfig
from .downloader import MediaDownloader

LOGGER = logging.getLogger(__name__)

SCROLL_SCRIPT = """() => {
    window.scrollBy({
        top: window.innerHeight,
        behavior: 'smooth'
    });
}"""

_LOGIN_MARKERS = ("Sign in", "Log in", "login")
_DEBUG_SCREENSHOT = "debug_initial_page.png"
_MAX_WAIT_CHUNK = 1.0
_MIN_LOAD_TIMEOUT = 0.001


class CrawlSessionError(RuntimeError):
    """Raised when the crawl cannot start (navigation or initial load failed)."""


class CrawlState(str, Enum):
    RUNNING = "running"
    TIMED_OUT = "timed_out"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class CandidateURL:
    url: str
    kind: MediaType


@dataclass(slots=True)
class CrawlStats:
    total_requests: int = 0
    media_host_requests: int = 0


class MediaURLCollector:
    """Video and thumbnail URL sets plus the lock that guards them.

    The network observer and the scroll loop both go through this object; every
    read and write happens under ``_lock`` and nothing else is done while it
    is held.
    """

    def __init__(self, media_hosts: Iterable[str]) -> None:
        self._media_hosts = tuple(media_hosts)
        self._lock = threading.Lock()
        self._videos: set[str] = set()
        self._thumbnails: set[str] = set()
        self._stats = CrawlStats()
        self._closed = False

    def observe(self, url: str) -> CandidateURL | None:
        classification = classify_url(url, self._media_hosts)
        on_media_host = is_media_host(url, self._media_hosts)
        with self._lock:
            if self._closed:
                return None
            self._stats.total_requests += 1
            if on_media_host:
                self._stats.media_host_requests += 1
            if classification is UrlClass.VIDEO:
                if url in self._videos:
                    return None
                self._videos.add(url)
            elif classification is UrlClass.THUMBNAIL:
                if url in self._thumbnails:
                    return None
                self._thumbnails.add(url)
            else:
                return None
        candidate = CandidateURL(url=url, kind=classification.media_type)
        LOGGER.info("Found %s: %s", candidate.kind.value, url)
        return candidate

    def close(self) -> None:
        """Stop accepting observations; waits for any in-flight one to finish."""

        with self._lock:
            self._closed = True

    def snapshot(self) -> tuple[frozenset[str], frozenset[str], CrawlStats]:
        with self._lock:
            stats = CrawlStats(
                total_requests=self._stats.total_requests,
                media_host_requests=self._stats.media_host_requests,
            )
            return frozenset(self._videos), frozenset(self._thumbnails), stats

    def candidates(self) -> set[CandidateURL]:
        videos, thumbnails, _ = self.snapshot()
        collected = {CandidateURL(url, MediaType.VIDEO) for url in videos}
        collected.update(CandidateURL(url, MediaType.THUMBNAIL) for url in thumbnails)
        return collected


@dataclass(slots=True)
class CrawlRequest:
    total_duration_seconds: int = 300
    scroll_interval_seconds: int = 20
    save_path: Path | None = None

    @classmethod
    def from_config(cls, config: CrawlConfig, save_path: Path | None = None) -> "CrawlRequest":
        return cls(
            total_duration_seconds=config.total_duration_seconds,
            scroll_interval_seconds=config.scroll_interval_seconds,
            save_path=save_path,
        )


@dataclass(slots=True)
class CrawlResult:
    video_urls: list[str] = field(default_factory=list)
    thumbnail_urls: list[str] = field(default_factory=list)
    videos: list[Path] = field(default_factory=list)
    thumbnails: list[Path] = field(default_factory=list)
    scroll_count: int = 0
    total_requests: int = 0
    media_host_requests: int = 0
    duration_seconds: float = 0.0
    download_errors: dict[str, str] = field(default_factory=dict)

    @property
    def total_videos(self) -> int:
        return len(self.videos)

    @property
    def total_thumbnails(self) -> int:
        return len(self.thumbnails)


class CrawlSession:
    """One bounded observation run against a single browser page."""

    def __init__(
        self,
        session: BrowserSession,
        request: CrawlRequest,
        *,
        config: CrawlConfig | None = None,
        navigation_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if request.total_duration_seconds <= 0:
            raise ValueError("total_duration_seconds must be positive")
        if request.scroll_interval_seconds <= 0:
            raise ValueError("scroll_interval_seconds must be positive")
        self._session = session
        self._request = request
        self._config = config or CrawlConfig()
        self._navigation_timeout = navigation_timeout
        self._clock = clock
        self.collector = MediaURLCollector(self._config.media_hosts)
        self.state: CrawlState | None = None

    def run(self, cancel_event: threading.Event | None = None) -> CrawlResult:
        cancel_event = cancel_event or threading.Event()
        request = self._request
        LOGGER.info(
            "Starting crawl: duration=%ds, scroll_interval=%ds, save_path=%s",
            request.total_duration_seconds,
            request.scroll_interval_seconds,
            request.save_path,
        )

        started = self._clock()
        deadline = started + request.total_duration_seconds
        remove_observer = self._session.on_network_request(self.collector.observe)
        scroll_count = 0
        try:
            try:
                self._session.navigate(self._config.target_url, self._load_timeout(deadline))
                self._session.wait_for_load(self._load_timeout(deadline))
            except BrowserSessionError as exc:
                raise CrawlSessionError(f"Crawl failed to load {self._config.target_url}: {exc}") from exc

            self.state = CrawlState.RUNNING
            LOGGER.info("Page loaded, waiting for initial content")
            self._inspect_initial_page(request.save_path)
            self._wait_until(
                min(self._clock() + self._config.initial_wait_seconds, deadline),
                cancel_event,
            )

            next_scroll = self._clock() + request.scroll_interval_seconds
            while not self._should_stop(deadline, cancel_event):
                self._wait_until(min(next_scroll, deadline), cancel_event)
                if self._should_stop(deadline, cancel_event):
                    break
                scroll_count += 1
                self._scroll(scroll_count)
                self._wait_until(
                    min(self._clock() + self._config.scroll_settle_seconds, deadline),
                    cancel_event,
                )
                self._log_status()
                next_scroll += request.scroll_interval_seconds

            self.state = CrawlState.TIMED_OUT
            LOGGER.info("Crawl finished due to timeout or cancellation")
        finally:
            self.collector.close()
            remove_observer()

        videos, thumbnails, stats = self.collector.snapshot()
        self.state = CrawlState.COMPLETED
        elapsed = self._clock() - started
        LOGGER.info(
            "Crawl completed: duration=%.1fs, videos=%d, thumbnails=%d, total_requests=%d, media_requests=%d",
            elapsed,
            len(videos),
            len(thumbnails),
            stats.total_requests,
            stats.media_host_requests,
        )
        return CrawlResult(
            video_urls=sorted(videos),
            thumbnail_urls=sorted(thumbnails),
            scroll_count=scroll_count,
            total_requests=stats.total_requests,
            media_host_requests=stats.media_host_requests,
            duration_seconds=elapsed,
        )

    def _load_timeout(self, deadline: float) -> float:
        # Page loading counts against the crawl deadline too.
        return min(self._navigation_timeout, max(deadline - self._clock(), _MIN_LOAD_TIMEOUT))

    def _should_stop(self, deadline: float, cancel_event: threading.Event) -> bool:
        return cancel_event.is_set() or self._clock() >= deadline

    def _wait_until(self, until: float, cancel_event: threading.Event) -> None:
        while not cancel_event.is_set():
            remaining = until - self._clock()
            if remaining <= 0:
                return
            self._session.wait(min(remaining, _MAX_WAIT_CHUNK))

    def _scroll(self, scroll_count: int) -> None:
        LOGGER.info("Scrolling page (count: %d)", scroll_count)
        try:
            self._session.evaluate(SCROLL_SCRIPT)
        except BrowserSessionError as exc:
            LOGGER.warning("Failed to scroll page: %s", exc)

    def _log_status(self) -> None:
        videos, thumbnails, stats = self.collector.snapshot()
        LOGGER.info(
            "Current status: videos=%d, thumbnails=%d, total_requests=%d, media_requests=%d",
            len(videos),
            len(thumbnails),
            stats.total_requests,
            stats.media_host_requests,
        )

    def _inspect_initial_page(self, save_path: Path | None) -> None:
        try:
            html = self._session.content()
        except BrowserSessionError as exc:
            LOGGER.debug("Could not read initial page content: %s", exc)
            return

        if any(marker in html for marker in _LOGIN_MARKERS):
            LOGGER.warning("Page may require login - detected login-related content")
        LOGGER.debug("Initial page HTML length: %d bytes", len(html))

        if save_path is None:
            return
        screenshot_path = Path(save_path) / _DEBUG_SCREENSHOT
        try:
            screenshot_path.parent.mkdir(parents=True, exist_ok=True)
            self._session.screenshot(screenshot_path)
        except (BrowserSessionError, OSError) as exc:
            LOGGER.debug("Could not save debug screenshot: %s", exc)
        else:
            LOGGER.info("Saved initial page screenshot to %s", screenshot_path)


def download_crawl_results(result: CrawlResult, downloader: MediaDownloader, *, max_workers: int = 1) -> CrawlResult:
    """Download everything a crawl collected, videos first."""

    LOGGER.info(
        "Starting download: %d videos, %d thumbnails",
        len(result.video_urls),
        len(result.thumbnail_urls),
    )
    if result.video_urls:
        batch = downloader.download_batch(result.video_urls, MediaType.VIDEO, max_workers=max_workers)
        result.videos = batch.paths
        result.download_errors.update(batch.errors)
    if result.thumbnail_urls:
        batch = downloader.download_batch(result.thumbnail_urls, MediaType.THUMBNAIL, max_workers=max_workers)
        result.thumbnails = batch.paths
        result.download_errors.update(batch.errors)
    if result.download_errors:
        LOGGER.warning("Some crawl downloads failed: %d errors", len(result.download_errors))
    return result


def crawl_and_download(
    config: HarvestConfig,
    request: CrawlRequest | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> CrawlResult:
    request = request or CrawlRequest.from_config(config.crawl, config.save_path)
    if request.save_path is None:
        request.save_path = config.save_path
    config.ensure_directories()

    with PlaywrightBrowserSession(config.browser) as session:
        crawl = CrawlSession(
            session,
            request,
            config=config.crawl,
            navigation_timeout=config.timeout.navigation_timeout,
        )
        result = crawl.run(cancel_event)

    with MediaDownloader(Path(request.save_path), timeout=config.timeout.media_timeout) as downloader:
        return download_crawl_results(result, downloader, max_workers=config.download_workers)


__all__ = [
    "CandidateURL",
    "CrawlRequest",
    "CrawlResult",
    "CrawlSession",
    "CrawlSessionError",
    "CrawlState",
    "MediaURLCollector",
    "SCROLL_SCRIPT",
    "crawl_and_download",
    "download_crawl_results",
]
