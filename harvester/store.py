"""SQLAlchemy-backed content store tracking each item's pipeline state."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import Base, MediaItem

from .feed import DOWNLOADABLE_ATTACHMENT_KIND, Attachment, Encoding, FeedItem, FeedResponse, Post, Profile, dump_feed

LOGGER = logging.getLogger(__name__)


class ContentStoreError(RuntimeError):
    """Raised when the content store cannot be read or written."""


class DuplicateItemError(ContentStoreError):
    """Raised when inserting a post id that is already stored."""


@dataclass(slots=True)
class UploadStats:
    total: int
    uploaded_to_object_store: int
    uploaded_to_cms: int

    @property
    def pending_cms(self) -> int:
        return self.total - self.uploaded_to_cms


def create_session_factory(db_url: str, *, echo: bool = False) -> sessionmaker:
    """Create the engine for ``db_url``, ensure the schema exists and return a session factory."""

    try:
        engine = create_engine(db_url, echo=echo)
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise ContentStoreError(f"Failed to open content store {db_url}: {exc}") from exc
    return sessionmaker(bind=engine, expire_on_commit=False)


class ContentStore:
    """Single source of truth for which items exist and how far they got.

    Every call opens its own session, so separate pipeline stages can share a
    store without coordinating. Returned rows are detached snapshots.
    """

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, db_url: str) -> "ContentStore":
        return cls(create_session_factory(db_url))

    def existing_post_ids(self) -> set[str]:
        with self._read() as session:
            return {post_id for (post_id,) in session.query(MediaItem.post_id)}

    def exists(self, post_id: str) -> bool:
        with self._read() as session:
            return session.get(MediaItem, post_id) is not None

    def insert(self, item: MediaItem) -> MediaItem:
        if not item.post_id:
            raise ContentStoreError("Cannot insert an item without a post id")
        if item.downloaded_at is None:
            item.downloaded_at = datetime.now()
        if item.uploaded_to_object_store is None:
            item.uploaded_to_object_store = False
        if item.uploaded_to_cms is None:
            item.uploaded_to_cms = False
        try:
            with self._session_factory() as session:
                session.add(item)
                session.commit()
                session.expunge(item)
        except IntegrityError as exc:
            raise DuplicateItemError(f"Item {item.post_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to insert item {item.post_id}: {exc}") from exc
        LOGGER.debug("Stored item %s", item.post_id)
        return item

    def get(self, post_id: str) -> Optional[MediaItem]:
        with self._read() as session:
            return session.get(MediaItem, post_id)

    def count(self) -> int:
        with self._read() as session:
            return session.query(MediaItem).count()

    def recent(self, limit: int = 10) -> list[MediaItem]:
        return self.list_items(limit if limit > 0 else 10)

    def list_items(self, limit: int = 0) -> list[MediaItem]:
        with self._read() as session:
            query = session.query(MediaItem).order_by(MediaItem.posted_at.desc())
            if limit > 0:
                query = query.limit(limit)
            return query.all()

    def pending_cms_upload(self, limit: int = 0) -> list[MediaItem]:
        with self._read() as session:
            query = (
                session.query(MediaItem)
                .filter(MediaItem.uploaded_to_cms.is_(False))
                .order_by(MediaItem.posted_at.desc())
            )
            if limit > 0:
                query = query.limit(limit)
            return query.all()

    def pending_object_store_upload(self, limit: int = 0) -> list[MediaItem]:
        with self._read() as session:
            query = (
                session.query(MediaItem)
                .filter(MediaItem.uploaded_to_cms.is_(False))
                .filter(MediaItem.object_store_url.is_(None))
                .order_by(MediaItem.posted_at.desc())
            )
            if limit > 0:
                query = query.limit(limit)
            return query.all()

    def mark_object_store_uploaded(self, post_id: str, url: str) -> None:
        if not url:
            raise ContentStoreError("Object store URL must not be empty")

        def apply(item: MediaItem) -> None:
            item.uploaded_to_object_store = True
            item.object_store_url = url

        self._update(post_id, apply, "record object store URL")

    def mark_cms_uploaded(self, post_id: str) -> None:
        def apply(item: MediaItem) -> None:
            item.uploaded_to_cms = True

        self._update(post_id, apply, "mark CMS upload")

    def update_cms_token(self, post_id: str, token: str) -> None:
        def apply(item: MediaItem) -> None:
            item.cms_token = token

        self._update(post_id, apply, "store CMS token")

    def upload_stats(self) -> UploadStats:
        with self._read() as session:
            total = session.query(MediaItem).count()
            object_store = session.query(MediaItem).filter(MediaItem.uploaded_to_object_store.is_(True)).count()
            cms = session.query(MediaItem).filter(MediaItem.uploaded_to_cms.is_(True)).count()
        return UploadStats(total=total, uploaded_to_object_store=object_store, uploaded_to_cms=cms)

    def export_feed(self, limit: int = 0) -> FeedResponse:
        return FeedResponse(items=[item_to_feed_item(item) for item in self.list_items(limit)])

    def export_feed_to_file(self, limit: int, path: Path | str) -> int:
        feed = self.export_feed(limit)
        if not feed.items:
            raise ContentStoreError("No items found in content store")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_feed(feed), encoding="utf-8")
        LOGGER.info("Exported %d items to %s", len(feed.items), path)
        return len(feed.items)

    @contextmanager
    def _read(self) -> Iterator[Session]:
        # Loaded rows are detached on exit so callers can use them freely.
        try:
            with self._session_factory() as session:
                yield session
                session.expunge_all()
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Content store query failed: {exc}") from exc

    def _update(self, post_id: str, apply, action: str) -> None:
        try:
            with self._session_factory() as session:
                item = session.get(MediaItem, post_id)
                if item is None:
                    raise ContentStoreError(f"Cannot {action}: item {post_id} not found")
                apply(item)
                session.commit()
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to {action} for {post_id}: {exc}") from exc


def item_to_feed_item(item: MediaItem) -> FeedItem:
    """Rebuild a feed entry from a stored row; one downloadable attachment."""

    encodings = {}
    if item.thumbnail_url:
        encodings["thumbnail"] = Encoding(path=item.thumbnail_url)
    attachment = Attachment(
        id=item.generation_id or "",
        kind=DOWNLOADABLE_ATTACHMENT_KIND,
        generation_id=item.generation_id or "",
        url=item.video_url or "",
        downloadable_url=item.video_url or "",
        width=item.width or 0,
        height=item.height or 0,
        encodings=encodings,
    )
    post = Post(
        id=item.post_id,
        shared_by=item.user_id or "",
        posted_at=item.posted_at or 0.0,
        text=item.text or "",
        attachments=[attachment],
    )
    profile = Profile(user_id=item.user_id or "", username=item.username or "")
    return FeedItem(post=post, profile=profile)


__all__ = [
    "ContentStore",
    "ContentStoreError",
    "DuplicateItemError",
    "UploadStats",
    "create_session_factory",
    "item_to_feed_item",
]
