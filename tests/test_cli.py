import io
import json
import os
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from harvester import cli
from harvester.feed import FeedResponse, save_feed
from harvester.store import ContentStore

from tests.helpers import feed_item_payload
from tests.test_store import make_item
from tests.test_tasks import _mock_downloader_factory


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)
        self.root = Path(self._tmpdir.name)
        self.db_url = f"sqlite:///{self.root / 'cli.db'}"

    def _run(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["--db-url", self.db_url, "--save-path", str(self.root / "media"), *argv])
        return code, buffer.getvalue()

    def test_parser_requires_command(self) -> None:
        with self.assertRaises(SystemExit):
            cli.build_arg_parser().parse_args([])

    def test_ingest_from_snapshot(self) -> None:
        snapshot = save_feed(FeedResponse.from_dict({"items": [feed_item_payload("s_1")]}), self.root / "feed.json")

        with patch("harvester.ingest.MediaDownloader", side_effect=_mock_downloader_factory):
            code, output = self._run("ingest", "--feed-file", str(snapshot), "--limit", "5")

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["downloaded"], 1)
        self.assertEqual(ContentStore.from_url(self.db_url).existing_post_ids(), {"s_1"})

    def test_stats_and_export(self) -> None:
        store = ContentStore.from_url(self.db_url)
        store.insert(make_item("s_1"))
        store.mark_cms_uploaded("s_1")

        code, output = self._run("stats")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["uploaded_to_cms"], 1)

        code, output = self._run("export")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["items"][0]["post"]["id"], "s_1")

        target = self.root / "out" / "export.json"
        code, _ = self._run("export", "--output", str(target))
        self.assertEqual(code, 0)
        self.assertTrue(target.exists())

    def test_export_of_empty_store_fails(self) -> None:
        code, _ = self._run("export")
        self.assertEqual(code, 1)

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_upload_configuration_is_reported(self) -> None:
        code, _ = self._run("upload-cms")
        self.assertEqual(code, 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
