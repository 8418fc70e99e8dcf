"""Fetch the public feed through a browser session and parse it."""

from __future__ import annotations

import logging
from pathlib import Path

from bs4 import BeautifulSoup

from .browser import BrowserSession, BrowserSessionError, PlaywrightBrowserSession
from .config import DEFAULT_FEED_URL, HarvestConfig
from .feed import FeedResponse, parse_feed, save_feed, validate_feed

LOGGER = logging.getLogger(__name__)


class FeedFetchError(RuntimeError):
    """Raised when the feed page cannot be loaded or is empty."""


def extract_payload_text(html: str) -> str:
    """Return the raw JSON text from a rendered feed page.

    Browsers wrap JSON responses in a ``<pre>`` element; when there is none
    the whole body text is used.
    """

    soup = BeautifulSoup(html, "html.parser")
    pre = soup.find("pre")
    if pre is not None:
        text = pre.get_text()
        if text.strip():
            LOGGER.debug("Found feed JSON in <pre> element")
            return text

    container = soup.body or soup
    text = container.get_text()
    if not text.strip():
        raise FeedFetchError("Feed page body is empty")
    LOGGER.debug("Extracted feed JSON from page body")
    return text


class FeedFetcher:
    def __init__(
        self,
        session: BrowserSession,
        *,
        feed_url: str = DEFAULT_FEED_URL,
        timeout: float = 60.0,
        render_wait: float = 2.0,
    ) -> None:
        self._session = session
        self._feed_url = feed_url
        self._timeout = timeout
        self._render_wait = render_wait

    def fetch(self) -> FeedResponse:
        LOGGER.info("Fetching feed from %s", self._feed_url)
        try:
            self._session.navigate(self._feed_url, self._timeout)
            self._session.wait_for_load(self._timeout)
            self._session.wait(self._render_wait)
            html = self._session.content()
        except BrowserSessionError as exc:
            raise FeedFetchError(f"Feed fetch failed for {self._feed_url}: {exc}") from exc

        LOGGER.debug("Received feed page, length: %d bytes", len(html))
        feed = parse_feed(extract_payload_text(html))
        LOGGER.info("Fetched feed: %d items", len(feed.items))
        return feed


def fetch_feed(config: HarvestConfig) -> FeedResponse:
    """Open a fresh browser, fetch the feed and validate it."""

    with PlaywrightBrowserSession(config.browser) as session:
        feed = FeedFetcher(session, feed_url=config.feed_url, timeout=config.timeout.feed_timeout).fetch()
    validate_feed(feed)
    return feed


def fetch_feed_to_file(config: HarvestConfig, path: Path | str) -> FeedResponse:
    feed = fetch_feed(config)
    save_feed(feed, path)
    return feed


__all__ = [
    "FeedFetchError",
    "FeedFetcher",
    "extract_payload_text",
    "fetch_feed",
    "fetch_feed_to_file",
]
