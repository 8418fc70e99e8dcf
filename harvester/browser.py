"""Playwright-backed browser session used by the crawl and feed stages."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Protocol

from .config import BrowserConfig

LOGGER = logging.getLogger(__name__)

RequestCallback = Callable[[str], None]


class BrowserSessionError(RuntimeError):
    """Raised when the browser cannot start, navigate or evaluate."""


class BrowserSession(Protocol):
    """Narrow capability surface the pipeline needs from a browser page."""

    def navigate(self, url: str, timeout: float) -> None:
        ...

    def wait_for_load(self, timeout: float) -> None:
        ...

    def evaluate(self, script: str) -> Any:
        ...

    def content(self) -> str:
        ...

    def on_network_request(self, callback: RequestCallback) -> Callable[[], None]:
        """Observe every outgoing request; returns a callable that stops observing."""
        ...

    def screenshot(self, path: Path) -> None:
        ...

    def wait(self, seconds: float) -> None:
        ...

    def close(self) -> None:
        ...


class PlaywrightBrowserSession:
    """One Chromium page driven through Playwright's sync API.

    The session owns the Playwright driver, browser, context and page and
    releases all of them on ``close``/``__exit__``. Anti-detection payloads are
    treated as opaque scripts from ``BrowserConfig.init_scripts``.
    """

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._playwright_cm = None
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._error_cls: type[BaseException] = Exception

    def __enter__(self) -> "PlaywrightBrowserSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def open(self) -> None:
        try:
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import sync_playwright
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise BrowserSessionError(
                "Playwright is not installed. Install it with `pip install playwright` and run `playwright install`."
            ) from exc

        self._error_cls = PlaywrightError
        LOGGER.info("Launching browser (headless=%s)", self._config.headless)
        try:
            self._playwright_cm = sync_playwright()
            self._playwright = self._playwright_cm.__enter__()
            self._browser = self._playwright.chromium.launch(
                headless=self._config.headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--disable-extensions",
                ],
            )
            self._context = self._browser.new_context(
                user_agent=self._config.user_agent,
                viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
                locale=self._config.locale,
            )
            for script in self._config.init_scripts:
                self._context.add_init_script(script)
            self._page = self._context.new_page()
        except PlaywrightError as exc:
            self.close()
            raise BrowserSessionError(f"Failed to launch browser: {exc}") from exc

    def close(self) -> None:
        for resource in (self._page, self._context, self._browser):
            if resource is None:
                continue
            try:
                resource.close()
            except self._error_cls as exc:  # pragma: no cover - teardown path
                LOGGER.debug("Ignoring error while closing browser resource: %s", exc)
        if self._playwright_cm is not None:
            self._playwright_cm.__exit__(None, None, None)

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        self._playwright_cm = None

    @property
    def page(self):
        if self._page is None:
            raise BrowserSessionError("Browser session must be opened before use")
        return self._page

    def navigate(self, url: str, timeout: float) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=int(timeout * 1000))
        except self._error_cls as exc:
            raise BrowserSessionError(f"Failed to navigate to {url}: {exc}") from exc

    def wait_for_load(self, timeout: float) -> None:
        try:
            self.page.wait_for_load_state("load", timeout=int(timeout * 1000))
        except self._error_cls as exc:
            raise BrowserSessionError(f"Page did not finish loading: {exc}") from exc

    def evaluate(self, script: str) -> Any:
        try:
            return self.page.evaluate(script)
        except self._error_cls as exc:
            raise BrowserSessionError(f"Script evaluation failed: {exc}") from exc

    def content(self) -> str:
        try:
            return self.page.content()
        except self._error_cls as exc:
            raise BrowserSessionError(f"Failed to read page content: {exc}") from exc

    def on_network_request(self, callback: RequestCallback) -> Callable[[], None]:
        page = self.page

        def handle_route(route) -> None:
            # Let the request through untouched, then report where it went.
            try:
                route.continue_()
            except self._error_cls as exc:
                LOGGER.debug("Failed to continue request %s: %s", route.request.url, exc)
                return
            callback(route.request.url)

        page.route("**/*", handle_route)

        def remove() -> None:
            try:
                page.unroute("**/*", handle_route)
            except self._error_cls as exc:  # pragma: no cover - page already gone
                LOGGER.debug("Failed to remove request observer: %s", exc)

        return remove

    def screenshot(self, path: Path) -> None:
        try:
            self.page.screenshot(path=str(path), full_page=True)
        except self._error_cls as exc:
            raise BrowserSessionError(f"Screenshot failed: {exc}") from exc

    def wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        # Waiting through Playwright keeps route callbacks flowing.
        try:
            self.page.wait_for_timeout(seconds * 1000)
        except self._error_cls as exc:
            raise BrowserSessionError(f"Page closed while waiting: {exc}") from exc


def open_browser_session(config: BrowserConfig | None = None) -> PlaywrightBrowserSession:
    session = PlaywrightBrowserSession(config)
    session.open()
    return session


__all__ = [
    "BrowserSession",
    "BrowserSessionError",
    "PlaywrightBrowserSession",
    "RequestCallback",
    "open_browser_session",
]
