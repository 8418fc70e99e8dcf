"""Configuration objects shared by the crawl, ingestion and upload stages."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_SAVE_PATH = Path("downloads/sora")
DEFAULT_DB_URL = "sqlite:///harvester.db"

DEFAULT_TARGET_URL = "https://sora.chatgpt.com/"
DEFAULT_FEED_URL = "https://sora.chatgpt.com/backend/public/nf2/feed"
DEFAULT_MEDIA_HOSTS: tuple[str, ...] = ("videos.openai.com",)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

_ENV_PREFIX = "HARVESTER_"


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or malformed."""


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(f"{_ENV_PREFIX}{name}")
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = _env(environ, name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class TimeoutConfig:
    navigation_timeout: float = 60.0
    feed_timeout: float = 60.0
    media_timeout: float = 60.0
    upload_timeout: float = 60.0


@dataclass(slots=True)
class BrowserConfig:
    """Options for launching the browser collaborator."""

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: str = "en-US"
    # Opaque anti-detection payloads injected before any page script runs.
    init_scripts: tuple[str, ...] = ()


@dataclass(slots=True)
class CrawlConfig:
    target_url: str = DEFAULT_TARGET_URL
    total_duration_seconds: int = 300
    scroll_interval_seconds: int = 20
    initial_wait_seconds: float = 5.0
    scroll_settle_seconds: float = 2.0
    media_hosts: tuple[str, ...] = DEFAULT_MEDIA_HOSTS


@dataclass(slots=True)
class ObjectStoreConfig:
    """Credentials and addressing for the S3-compatible object store."""

    access_key_id: str
    secret_access_key: str
    bucket: str
    endpoint: str
    region: Optional[str] = None
    public_base_url: Optional[str] = None
    key_prefix: str = "videos"

    @property
    def endpoint_url(self) -> str:
        if "://" in self.endpoint:
            return self.endpoint
        return f"https://{self.endpoint}"

    @property
    def endpoint_host(self) -> str:
        return self.endpoint.split("://", 1)[-1].rstrip("/")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ObjectStoreConfig":
        environ = os.environ if environ is None else environ
        access_key = _env(environ, "OBJECT_STORE_ACCESS_KEY_ID")
        secret_key = _env(environ, "OBJECT_STORE_SECRET_ACCESS_KEY")
        bucket = _env(environ, "OBJECT_STORE_BUCKET")
        endpoint = _env(environ, "OBJECT_STORE_ENDPOINT")

        missing = [
            name
            for name, value in (
                ("OBJECT_STORE_ACCESS_KEY_ID", access_key),
                ("OBJECT_STORE_SECRET_ACCESS_KEY", secret_key),
                ("OBJECT_STORE_BUCKET", bucket),
                ("OBJECT_STORE_ENDPOINT", endpoint),
            )
            if value is None
        ]
        if missing:
            names = ", ".join(f"{_ENV_PREFIX}{name}" for name in missing)
            raise ConfigurationError(f"Missing object store settings: {names}")

        return cls(
            access_key_id=access_key,
            secret_access_key=secret_key,
            bucket=bucket,
            endpoint=endpoint,
            region=_env(environ, "OBJECT_STORE_REGION"),
            public_base_url=_env(environ, "OBJECT_STORE_PUBLIC_BASE_URL"),
            key_prefix=_env(environ, "OBJECT_STORE_KEY_PREFIX") or "videos",
        )


@dataclass(slots=True)
class CmsConfig:
    """Settings for the CMS ingestion API."""

    api_url: str
    api_key: str
    username: str = "harvester"
    email: str = "api@example.com"
    name: str = "API User"
    upload_delay: float = 0.5

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CmsConfig":
        environ = os.environ if environ is None else environ
        api_url = _env(environ, "CMS_API_URL")
        api_key = _env(environ, "CMS_API_KEY")
        if not api_url:
            raise ConfigurationError(f"{_ENV_PREFIX}CMS_API_URL is required")
        if not api_key:
            raise ConfigurationError(f"{_ENV_PREFIX}CMS_API_KEY is required")

        config = cls(api_url=api_url, api_key=api_key)
        config.username = _env(environ, "CMS_USERNAME") or config.username
        config.email = _env(environ, "CMS_EMAIL") or config.email
        config.name = _env(environ, "CMS_NAME") or config.name
        delay = _env(environ, "CMS_UPLOAD_DELAY")
        if delay is not None:
            try:
                config.upload_delay = max(0.0, float(delay))
            except ValueError as exc:
                raise ConfigurationError(f"Invalid CMS upload delay {delay!r}") from exc
        return config


@dataclass(slots=True)
class HarvestConfig:
    save_path: Path = DEFAULT_SAVE_PATH
    db_url: str = DEFAULT_DB_URL
    feed_url: str = DEFAULT_FEED_URL
    feed_limit: int = 50
    download_workers: int = 1
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HarvestConfig":
        environ = os.environ if environ is None else environ
        config = cls()
        save_path = _env(environ, "SAVE_PATH")
        if save_path:
            config.save_path = Path(save_path).expanduser()
        config.db_url = _env(environ, "DATABASE_URL") or config.db_url
        config.feed_url = _env(environ, "FEED_URL") or config.feed_url
        config.browser.headless = _env_bool(environ, "HEADLESS", config.browser.headless)
        return config

    def ensure_directories(self) -> None:
        self.save_path.mkdir(parents=True, exist_ok=True)


__all__ = [
    "BrowserConfig",
    "CmsConfig",
    "ConfigurationError",
    "CrawlConfig",
    "HarvestConfig",
    "ObjectStoreConfig",
    "TimeoutConfig",
]
