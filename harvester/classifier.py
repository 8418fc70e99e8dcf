"""Classification of intercepted network URLs into media candidates."""

from __future__ import annotations

from enum import Enum
from typing import Iterable
from urllib.parse import urlsplit

from .config import DEFAULT_MEDIA_HOSTS

_VIDEO_SUFFIXES = (".mp4",)
_THUMBNAIL_SUFFIXES = (".webp",)
_THUMBNAIL_TOKEN = "thumbnail"


class MediaType(str, Enum):
    VIDEO = "video"
    THUMBNAIL = "thumbnail"

    @property
    def filename(self) -> str:
        if self is MediaType.VIDEO:
            return "video.mp4"
        return "thumbnail.webp"


class UrlClass(str, Enum):
    VIDEO = "video"
    THUMBNAIL = "thumbnail"
    IRRELEVANT = "irrelevant"

    @property
    def media_type(self) -> MediaType | None:
        if self is UrlClass.VIDEO:
            return MediaType.VIDEO
        if self is UrlClass.THUMBNAIL:
            return MediaType.THUMBNAIL
        return None


def is_media_host(url: str, hosts: Iterable[str] = DEFAULT_MEDIA_HOSTS) -> bool:
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    if not hostname:
        return False
    for host in hosts:
        host = host.lower()
        if hostname == host or hostname.endswith("." + host):
            return True
    return False


def is_video_url(url: str) -> bool:
    return any(suffix in url for suffix in _VIDEO_SUFFIXES)


def is_thumbnail_url(url: str) -> bool:
    return any(suffix in url for suffix in _THUMBNAIL_SUFFIXES) or _THUMBNAIL_TOKEN in url


def classify_url(url: str, hosts: Iterable[str] = DEFAULT_MEDIA_HOSTS) -> UrlClass:
    """Classify a resource URL observed during a crawl.

    Only URLs served from one of ``hosts`` can be media; everything else is
    irrelevant no matter what it looks like. Video suffixes are checked
    before thumbnail markers.
    """

    if not is_media_host(url, hosts):
        return UrlClass.IRRELEVANT
    if is_video_url(url):
        return UrlClass.VIDEO
    if is_thumbnail_url(url):
        return UrlClass.THUMBNAIL
    return UrlClass.IRRELEVANT


__all__ = [
    "MediaType",
    "UrlClass",
    "classify_url",
    "is_media_host",
    "is_thumbnail_url",
    "is_video_url",
]
