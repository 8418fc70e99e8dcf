import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from harvester.feed import (
    FeedParseError,
    FeedResponse,
    UnusableFeedError,
    load_feed,
    parse_feed,
    save_feed,
    validate_feed,
)
from harvester.feed_fetcher import FeedFetchError, FeedFetcher, extract_payload_text
from harvester.browser import BrowserSessionError

from tests.helpers import FakeBrowserSession, feed_item_payload


def _feed_payload() -> dict:
    first = feed_item_payload("s_001", text="A dog surfing")
    first["post"]["attachments"][0]["encodings"]["md"] = {"path": "https://videos.example.com/md.mp4", "size": 1024}
    return {"items": [first, feed_item_payload("s_002")], "cursor": "abc"}


class FeedSchemaTestCase(unittest.TestCase):
    def test_parse_reads_nested_fields(self) -> None:
        feed = parse_feed(json.dumps(_feed_payload()))

        self.assertEqual(len(feed.items), 2)
        item = feed.items[0]
        self.assertEqual(item.post.id, "s_001")
        self.assertEqual(item.post.text, "A dog surfing")
        self.assertEqual(item.profile.username, "creator")
        attachment = item.primary_attachment()
        self.assertIsNotNone(attachment)
        self.assertEqual(attachment.thumbnail_url, "https://videos.example.com/s_001/thumb.webp")
        self.assertEqual(attachment.encodings["md"].extra, {"size": 1024})

    def test_snapshot_round_trip_is_lossless(self) -> None:
        feed = parse_feed(json.dumps(_feed_payload()))
        with TemporaryDirectory() as tmpdir:
            path = save_feed(feed, Path(tmpdir) / "snapshots" / "feed.json")
            reloaded = load_feed(path)

        self.assertEqual(reloaded, feed)
        self.assertEqual(reloaded.to_dict(), _feed_payload())

    def test_malformed_payloads_raise_parse_error(self) -> None:
        for payload in ("not json", "[1, 2]", json.dumps({"items": {"post": {}}})):
            with self.subTest(payload=payload):
                with self.assertRaises(FeedParseError):
                    parse_feed(payload)

    def test_primary_attachment_requires_sora_kind_and_locator(self) -> None:
        other_kind = parse_feed(json.dumps({"items": [feed_item_payload("s_1", kind="image")]}))
        no_locator = parse_feed(json.dumps({"items": [feed_item_payload("s_2", downloadable_url="")]}))

        self.assertIsNone(other_kind.items[0].primary_attachment())
        self.assertIsNone(no_locator.items[0].primary_attachment())


class ValidateFeedTestCase(unittest.TestCase):
    def test_accepts_feed_with_one_valid_item_in_sample(self) -> None:
        payload = {"items": [{"post": {"id": ""}}, feed_item_payload("s_1")]}
        self.assertEqual(validate_feed(FeedResponse.from_dict(payload)), 1)

    def test_rejects_empty_and_unusable_feeds(self) -> None:
        with self.assertRaises(UnusableFeedError):
            validate_feed(FeedResponse())

        invalid = [{"post": {"id": "", "attachments": []}} for _ in range(5)]
        invalid.append(feed_item_payload("s_late"))
        with self.assertRaises(UnusableFeedError):
            validate_feed(FeedResponse.from_dict({"items": invalid}))


class FeedFetcherTestCase(unittest.TestCase):
    def test_prefers_pre_element(self) -> None:
        html = '<html><body><div>noise</div><pre>{"items": []}</pre></body></html>'
        self.assertEqual(extract_payload_text(html), '{"items": []}')

    def test_falls_back_to_body_text(self) -> None:
        html = '<html><body>{"items": []}</body></html>'
        self.assertEqual(extract_payload_text(html).strip(), '{"items": []}')

    def test_empty_page_is_fetch_error(self) -> None:
        with self.assertRaises(FeedFetchError):
            extract_payload_text("<html><body>  </body></html>")

    def test_fetch_parses_feed_from_session(self) -> None:
        body = json.dumps(_feed_payload())
        session = FakeBrowserSession(html=f"<html><body><pre>{body}</pre></body></html>")

        feed = FeedFetcher(session, feed_url="https://feed.example.com/feed", render_wait=0).fetch()

        self.assertEqual(session.navigated, ["https://feed.example.com/feed"])
        self.assertEqual([item.post.id for item in feed.items], ["s_001", "s_002"])

    def test_navigation_failure_is_fetch_error(self) -> None:
        session = FakeBrowserSession(navigate_error=BrowserSessionError("timeout"))
        with self.assertRaises(FeedFetchError):
            FeedFetcher(session).fetch()

    def test_malformed_page_is_parse_error(self) -> None:
        session = FakeBrowserSession(html="<html><body><pre>{oops</pre></body></html>")
        with self.assertRaises(FeedParseError):
            FeedFetcher(session, render_wait=0).fetch()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
