import hashlib
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

import httpx

from harvester.classifier import MediaType
from harvester.downloader import MediaDownloadError, MediaDownloader, extract_task_id, storage_key

TASK_URL = "https://videos.openai.com/vg-assets/assets%2Ftask_01k6x9abcdefghjkmnpqrstvwx%2Fsrc.mp4?sig=1"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class StorageKeyTestCase(unittest.TestCase):
    def test_task_id_is_extracted_from_unquoted_url(self) -> None:
        self.assertEqual(extract_task_id(TASK_URL), "task_01k6x9abcdefghjkmnpqrstvwx")
        self.assertEqual(storage_key(TASK_URL), "task_01k6x9abcdefghjkmnpqrstvwx")

    def test_falls_back_to_url_hash(self) -> None:
        url = "https://videos.openai.com/clip.mp4"
        self.assertIsNone(extract_task_id(url))
        self.assertEqual(storage_key(url), hashlib.sha256(url.encode()).hexdigest()[:12])


class MediaDownloaderTestCase(unittest.TestCase):
    def test_second_download_skips_network(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(200, content=b"video-bytes")

        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(handler))
            first = downloader.download(TASK_URL, MediaType.VIDEO)
            second = downloader.download(TASK_URL, MediaType.VIDEO)

            self.assertEqual(first, second)
            self.assertEqual(first, Path(tmpdir) / "task_01k6x9abcdefghjkmnpqrstvwx" / "video.mp4")
            self.assertEqual(first.read_bytes(), b"video-bytes")
            self.assertEqual(len(calls), 1)
            self.assertEqual(list(first.parent.glob("*.part")), [])

    def test_explicit_key_overrides_derived_folder(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"thumb")

        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(handler))
            path = downloader.download("https://videos.openai.com/t.webp", MediaType.THUMBNAIL, key="s_123")

            self.assertEqual(path, Path(tmpdir) / "s_123" / "thumbnail.webp")

    def test_http_error_status_is_item_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(handler))
            with self.assertRaises(MediaDownloadError):
                downloader.download(TASK_URL, MediaType.VIDEO)

            target = downloader.target_path(TASK_URL, MediaType.VIDEO)
            self.assertFalse(target.exists())
            self.assertEqual(list(target.parent.glob("*.part")), [])

    def test_empty_body_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(handler))
            with self.assertRaises(MediaDownloadError):
                downloader.download(TASK_URL, MediaType.VIDEO)
            self.assertFalse(downloader.target_path(TASK_URL, MediaType.VIDEO).exists())

    def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(handler))
            with self.assertRaises(MediaDownloadError):
                downloader.download(TASK_URL, MediaType.VIDEO)


class DownloadBatchTestCase(unittest.TestCase):
    urls = [
        "https://videos.openai.com/one.mp4",
        "https://videos.openai.com/broken.mp4",
        "https://videos.openai.com/three.mp4",
    ]

    @staticmethod
    def _handler(request: httpx.Request) -> httpx.Response:
        if "broken" in request.url.path:
            raise httpx.ConnectError("unreachable", request=request)
        return httpx.Response(200, content=request.url.path.encode())

    def test_one_unreachable_url_keeps_the_rest(self) -> None:
        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(self._handler))
            result = downloader.download_batch(self.urls, MediaType.VIDEO)

            self.assertEqual(len(result.paths), 2)
            self.assertEqual(list(result.errors), ["https://videos.openai.com/broken.mp4"])
            self.assertEqual(result.failed, 1)
            self.assertEqual(result.paths[0].read_bytes(), b"/one.mp4")
            self.assertEqual(result.paths[1].read_bytes(), b"/three.mp4")

    def test_malformed_url_is_an_item_failure(self) -> None:
        malformed = "https://videos.openai.com/\x00bad.mp4"
        urls = [self.urls[0], malformed, self.urls[2]]
        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(self._handler))
            result = downloader.download_batch(urls, MediaType.VIDEO)

            self.assertEqual(len(result.paths), 2)
            self.assertEqual(list(result.errors), [malformed])

            with self.assertRaises(MediaDownloadError):
                downloader.download(malformed, MediaType.VIDEO, key="bad")

    def test_concurrent_batch_keeps_input_order(self) -> None:
        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(self._handler))
            result = downloader.download_batch(self.urls, MediaType.VIDEO, max_workers=3)

            self.assertEqual([path.read_bytes() for path in result.paths], [b"/one.mp4", b"/three.mp4"])
            self.assertEqual(result.failed, 1)

    def test_empty_batch(self) -> None:
        with TemporaryDirectory() as tmpdir:
            downloader = MediaDownloader(Path(tmpdir), client=_client(self._handler))
            result = downloader.download_batch([], MediaType.THUMBNAIL)
            self.assertEqual(result.paths, [])
            self.assertEqual(result.errors, {})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
