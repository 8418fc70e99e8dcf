"""Typed model of the public feed payload and its on-disk snapshots."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)

DOWNLOADABLE_ATTACHMENT_KIND = "sora"
VALIDATION_SAMPLE_SIZE = 5


class FeedParseError(RuntimeError):
    """Raised when a payload is not valid feed JSON."""


class UnusableFeedError(RuntimeError):
    """Raised when a syntactically valid feed carries no usable items."""


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise FeedParseError(f"Expected an object for {where}, got {type(value).__name__}")
    return value


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise FeedParseError(f"Expected an integer, got {value!r}") from exc


def _float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise FeedParseError(f"Expected a number, got {value!r}") from exc


@dataclass(slots=True)
class Encoding:
    path: str = ""
    # Variant fields this system does not read are carried through untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Encoding":
        data = _mapping(data, "encoding")
        extra = {key: value for key, value in data.items() if key != "path"}
        return cls(path=_str(data.get("path")), extra=extra)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, **self.extra}


@dataclass(slots=True)
class Attachment:
    id: str = ""
    kind: str = ""
    generation_id: str = ""
    generation_type: str = ""
    url: str = ""
    downloadable_url: str = ""
    width: int = 0
    height: int = 0
    encodings: dict[str, Encoding] = field(default_factory=dict)

    @property
    def thumbnail_url(self) -> str:
        encoding = self.encodings.get("thumbnail")
        return encoding.path if encoding else ""

    @property
    def is_downloadable(self) -> bool:
        return self.kind == DOWNLOADABLE_ATTACHMENT_KIND and bool(self.downloadable_url)

    @classmethod
    def from_dict(cls, data: Any) -> "Attachment":
        data = _mapping(data, "attachment")
        encodings = _mapping(data.get("encodings"), "attachment.encodings")
        return cls(
            id=_str(data.get("id")),
            kind=_str(data.get("kind")),
            generation_id=_str(data.get("generation_id")),
            generation_type=_str(data.get("generation_type")),
            url=_str(data.get("url")),
            downloadable_url=_str(data.get("downloadable_url")),
            width=_int(data.get("width")),
            height=_int(data.get("height")),
            encodings={name: Encoding.from_dict(value) for name, value in encodings.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "generation_id": self.generation_id,
            "generation_type": self.generation_type,
            "url": self.url,
            "downloadable_url": self.downloadable_url,
            "width": self.width,
            "height": self.height,
            "encodings": {name: encoding.to_dict() for name, encoding in self.encodings.items()},
        }


@dataclass(slots=True)
class Post:
    id: str = ""
    shared_by: str = ""
    posted_at: float = 0.0
    text: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    permalink: str = ""
    like_count: int = 0
    view_count: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "Post":
        data = _mapping(data, "post")
        attachments = data.get("attachments") or []
        if not isinstance(attachments, list):
            raise FeedParseError("Expected a list for post.attachments")
        return cls(
            id=_str(data.get("id")),
            shared_by=_str(data.get("shared_by")),
            posted_at=_float(data.get("posted_at")),
            text=_str(data.get("text")),
            attachments=[Attachment.from_dict(item) for item in attachments],
            permalink=_str(data.get("permalink")),
            like_count=_int(data.get("like_count")),
            view_count=_int(data.get("view_count")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shared_by": self.shared_by,
            "posted_at": self.posted_at,
            "text": self.text,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "permalink": self.permalink,
            "like_count": self.like_count,
            "view_count": self.view_count,
        }


@dataclass(slots=True)
class Profile:
    user_id: str = ""
    username: str = ""
    display_name: str = ""
    profile_picture_url: str = ""
    follower_count: int = 0
    post_count: int = 0
    verified: bool = False
    location: str = ""
    description: str = ""
    permalink: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Profile":
        data = _mapping(data, "profile")
        return cls(
            user_id=_str(data.get("user_id")),
            username=_str(data.get("username")),
            display_name=_str(data.get("display_name")),
            profile_picture_url=_str(data.get("profile_picture_url")),
            follower_count=_int(data.get("follower_count")),
            post_count=_int(data.get("post_count")),
            verified=bool(data.get("verified", False)),
            location=_str(data.get("location")),
            description=_str(data.get("description")),
            permalink=_str(data.get("permalink")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "display_name": self.display_name,
            "profile_picture_url": self.profile_picture_url,
            "follower_count": self.follower_count,
            "post_count": self.post_count,
            "verified": self.verified,
            "location": self.location,
            "description": self.description,
            "permalink": self.permalink,
        }


@dataclass(slots=True)
class FeedItem:
    post: Post = field(default_factory=Post)
    profile: Profile = field(default_factory=Profile)

    @property
    def post_id(self) -> str:
        return self.post.id

    def primary_attachment(self) -> Optional[Attachment]:
        """First attachment this system can download, if any."""

        for attachment in self.post.attachments:
            if attachment.is_downloadable:
                return attachment
        return None

    @classmethod
    def from_dict(cls, data: Any) -> "FeedItem":
        data = _mapping(data, "item")
        return cls(post=Post.from_dict(data.get("post")), profile=Profile.from_dict(data.get("profile")))

    def to_dict(self) -> dict[str, Any]:
        return {"post": self.post.to_dict(), "profile": self.profile.to_dict()}


@dataclass(slots=True)
class FeedResponse:
    items: list[FeedItem] = field(default_factory=list)
    cursor: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "FeedResponse":
        data = _mapping(data, "feed")
        items = data.get("items")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise FeedParseError("Expected a list for feed.items")
        cursor = data.get("cursor")
        return cls(
            items=[FeedItem.from_dict(item) for item in items],
            cursor=None if cursor is None else str(cursor),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"items": [item.to_dict() for item in self.items]}
        if self.cursor is not None:
            payload["cursor"] = self.cursor
        return payload


def parse_feed(text: str | bytes) -> FeedResponse:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise FeedParseError(f"Failed to parse feed JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise FeedParseError(f"Feed payload must be a JSON object, got {type(data).__name__}")
    return FeedResponse.from_dict(data)


def validate_feed(feed: FeedResponse | None) -> int:
    """Check that the head of ``feed`` carries usable items.

    Only the first ``VALIDATION_SAMPLE_SIZE`` items are inspected. An item is
    usable when it has a post identifier and at least one attachment. Returns
    the number of usable items in the sample.
    """

    if feed is None:
        raise UnusableFeedError("Feed response is missing")
    if not feed.items:
        raise UnusableFeedError("Feed has no items")

    valid = 0
    for index, item in enumerate(feed.items[:VALIDATION_SAMPLE_SIZE]):
        if not item.post.id:
            LOGGER.warning("Feed item %d has an empty post id", index)
            continue
        if not item.post.attachments:
            LOGGER.debug("Feed item %d (post_id=%s) has no attachments", index, item.post.id)
            continue
        valid += 1

    if valid == 0:
        raise UnusableFeedError("No valid items found in feed")
    LOGGER.debug("Feed validation passed: %d of %d sampled items are valid", valid, min(len(feed.items), VALIDATION_SAMPLE_SIZE))
    return valid


def dump_feed(feed: FeedResponse) -> str:
    return json.dumps(feed.to_dict(), indent=4, ensure_ascii=False)


def save_feed(feed: FeedResponse, path: Path | str) -> Path:
    path = Path(path)
    if path.parent != Path(""):
        path.parent.mkdir(parents=True, exist_ok=True)
    data = dump_feed(feed)
    path.write_text(data, encoding="utf-8")
    LOGGER.info("Feed saved to %s (%d bytes)", path, len(data.encode("utf-8")))
    return path


def load_feed(path: Path | str) -> FeedResponse:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FeedParseError(f"Failed to read feed file {path}: {exc}") from exc
    feed = parse_feed(text)
    LOGGER.info("Feed loaded from %s (%d items)", path, len(feed.items))
    return feed


__all__ = [
    "Attachment",
    "DOWNLOADABLE_ATTACHMENT_KIND",
    "Encoding",
    "FeedItem",
    "FeedParseError",
    "FeedResponse",
    "Post",
    "Profile",
    "UnusableFeedError",
    "dump_feed",
    "load_feed",
    "parse_feed",
    "save_feed",
    "validate_feed",
]
