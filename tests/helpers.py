from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from harvester.browser import BrowserSessionError


def feed_item_payload(
    post_id: str,
    *,
    kind: str = "sora",
    downloadable_url: str | None = None,
    thumbnail_url: str | None = None,
    text: str = "",
    posted_at: float = 1_700_000_000.0,
    username: str = "creator",
) -> dict[str, Any]:
    downloadable_url = downloadable_url if downloadable_url is not None else f"https://videos.example.com/{post_id}/video.mp4"
    encodings: dict[str, Any] = {}
    if thumbnail_url is None:
        thumbnail_url = f"https://videos.example.com/{post_id}/thumb.webp"
    if thumbnail_url:
        encodings["thumbnail"] = {"path": thumbnail_url}
    return {
        "post": {
            "id": post_id,
            "shared_by": f"user-{username}",
            "posted_at": posted_at,
            "text": text,
            "attachments": [
                {
                    "id": f"att-{post_id}",
                    "kind": kind,
                    "generation_id": f"gen-{post_id}",
                    "generation_type": "video_gen",
                    "url": downloadable_url,
                    "downloadable_url": downloadable_url,
                    "width": 480,
                    "height": 854,
                    "encodings": encodings,
                }
            ],
            "permalink": f"https://example.com/p/{post_id}",
            "like_count": 3,
            "view_count": 10,
        },
        "profile": {
            "user_id": f"user-{username}",
            "username": username,
            "display_name": username.title(),
            "profile_picture_url": "",
            "follower_count": 1,
            "post_count": 2,
            "verified": False,
            "location": "",
            "description": "",
            "permalink": "",
        },
    }


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBrowserSession:
    """In-memory browser session; time only moves when the crawl waits."""

    def __init__(
        self,
        clock: FakeClock | None = None,
        *,
        html: str = "<html><body></body></html>",
        navigate_error: Exception | None = None,
        evaluate_error: Exception | None = None,
        slow_load: bool = False,
    ) -> None:
        self.clock = clock or FakeClock()
        self.html = html
        self.navigate_error = navigate_error
        self.evaluate_error = evaluate_error
        # A slow page uses up the whole timeout it is given.
        self.slow_load = slow_load
        self.load_timeouts: list[float] = []
        self.navigated: list[str] = []
        self.scripts: list[str] = []
        self.waits: list[float] = []
        self.screenshots: list[Path] = []
        self.callback: Callable[[str], None] | None = None
        self.removed = False
        self.closed = False
        # URLs "requested" by the page each time a scroll runs.
        self.scroll_traffic: list[list[str]] = []
        self.load_traffic: list[str] = []

    def navigate(self, url: str, timeout: float) -> None:
        self.navigated.append(url)
        self._loading(timeout)
        if self.navigate_error is not None:
            raise self.navigate_error
        for request_url in self.load_traffic:
            self._emit(request_url)

    def wait_for_load(self, timeout: float) -> None:
        self._loading(timeout)

    def _loading(self, timeout: float) -> None:
        self.load_timeouts.append(timeout)
        if self.slow_load:
            self.clock.advance(timeout)

    def evaluate(self, script: str) -> Any:
        self.scripts.append(script)
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if self.scroll_traffic:
            for request_url in self.scroll_traffic.pop(0):
                self._emit(request_url)
        return None

    def content(self) -> str:
        return self.html

    def on_network_request(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self.callback = callback

        def remove() -> None:
            self.removed = True
            self.callback = None

        return remove

    def screenshot(self, path: Path) -> None:
        Path(path).write_bytes(b"png")
        self.screenshots.append(Path(path))

    def wait(self, seconds: float) -> None:
        self.waits.append(seconds)
        self.clock.advance(seconds)

    def close(self) -> None:
        self.closed = True

    def emit(self, url: str) -> None:
        self._emit(url)

    def _emit(self, url: str) -> None:
        if self.callback is not None:
            self.callback(url)


class FailingNavigation(BrowserSessionError):
    pass
