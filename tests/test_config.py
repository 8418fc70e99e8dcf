import os
import unittest
from pathlib import Path
from unittest.mock import patch

from harvester.celery_app import create_celery_app
from harvester.config import CmsConfig, ConfigurationError, HarvestConfig, ObjectStoreConfig


class HarvestConfigTestCase(unittest.TestCase):
    def test_defaults(self) -> None:
        config = HarvestConfig.from_env({})
        self.assertEqual(config.save_path, Path("downloads/sora"))
        self.assertEqual(config.feed_limit, 50)
        self.assertTrue(config.browser.headless)
        self.assertEqual(config.crawl.scroll_interval_seconds, 20)
        self.assertEqual(config.crawl.total_duration_seconds, 300)

    def test_environment_overrides(self) -> None:
        config = HarvestConfig.from_env(
            {
                "HARVESTER_SAVE_PATH": "/data/media",
                "HARVESTER_DATABASE_URL": "sqlite:///other.db",
                "HARVESTER_HEADLESS": "false",
            }
        )
        self.assertEqual(config.save_path, Path("/data/media"))
        self.assertEqual(config.db_url, "sqlite:///other.db")
        self.assertFalse(config.browser.headless)


class ObjectStoreConfigTestCase(unittest.TestCase):
    def test_missing_values_are_reported(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            ObjectStoreConfig.from_env({"HARVESTER_OBJECT_STORE_BUCKET": "b"})
        self.assertIn("HARVESTER_OBJECT_STORE_ENDPOINT", str(ctx.exception))

    def test_endpoint_forms(self) -> None:
        config = ObjectStoreConfig.from_env(
            {
                "HARVESTER_OBJECT_STORE_ACCESS_KEY_ID": "k",
                "HARVESTER_OBJECT_STORE_SECRET_ACCESS_KEY": "s",
                "HARVESTER_OBJECT_STORE_BUCKET": "b",
                "HARVESTER_OBJECT_STORE_ENDPOINT": "https://oss.example.com/",
            }
        )
        self.assertEqual(config.endpoint_url, "https://oss.example.com/")
        self.assertEqual(config.endpoint_host, "oss.example.com")
        self.assertEqual(config.key_prefix, "videos")


class CmsConfigTestCase(unittest.TestCase):
    def test_api_key_is_required(self) -> None:
        with self.assertRaises(ConfigurationError):
            CmsConfig.from_env({"HARVESTER_CMS_API_URL": "https://cms.example.com"})

    def test_optional_fields(self) -> None:
        config = CmsConfig.from_env(
            {
                "HARVESTER_CMS_API_URL": "https://cms.example.com",
                "HARVESTER_CMS_API_KEY": "key",
                "HARVESTER_CMS_USERNAME": "bot",
                "HARVESTER_CMS_UPLOAD_DELAY": "1.5",
            }
        )
        self.assertEqual(config.username, "bot")
        self.assertEqual(config.upload_delay, 1.5)

    def test_invalid_delay(self) -> None:
        with self.assertRaises(ConfigurationError):
            CmsConfig.from_env(
                {
                    "HARVESTER_CMS_API_URL": "https://cms.example.com",
                    "HARVESTER_CMS_API_KEY": "key",
                    "HARVESTER_CMS_UPLOAD_DELAY": "soon",
                }
            )


class CeleryAppConfigTestCase(unittest.TestCase):
    @patch.dict(os.environ, {"HARVESTER_DATABASE_URL": "sqlite:///queue.db", "HARVESTER_CELERY_TASK_ALWAYS_EAGER": "false"}, clear=True)
    def test_transports_follow_database_url(self) -> None:
        app = create_celery_app()

        self.assertEqual(app.conf.broker_url, "sqla+sqlite:///queue.db")
        self.assertEqual(app.conf.result_backend, "db+sqlite:///queue.db")
        self.assertFalse(app.conf.task_always_eager)

    @patch.dict(os.environ, {"HARVESTER_CELERY_BROKER_URL": "redis://broker:6379/0"}, clear=True)
    def test_explicit_broker_and_memory_backend(self) -> None:
        app = create_celery_app()

        self.assertEqual(app.conf.broker_url, "redis://broker:6379/0")
        self.assertEqual(app.conf.result_backend, "cache+memory://")
        self.assertTrue(app.conf.task_always_eager)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
