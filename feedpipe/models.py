from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

feeds = Table(
    "feeds",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("feed_url", String(1000), unique=True, nullable=False),
    Column("site_url", String(1000), nullable=False, default=""),
    Column("title", String(500), nullable=False, default=""),
    Column("description", Text, nullable=False, default=""),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("last_fetched_at", DateTime(timezone=True), nullable=True, index=True),
)

articles = Table(
    "articles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("feed_id", String(36), ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False),
    Column("guid", String(1000), nullable=False),
    Column("title", Text, nullable=False, default=""),
    Column("url", String(2000), nullable=False),
    Column("author", String(500), nullable=False, default=""),
    Column("content", Text, nullable=False, default=""),
    Column("summary", Text, nullable=False, default=""),
    Column("published_at", DateTime(timezone=True), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("feed_id", "guid", name="uq_articles_feed_guid"),
)

# user_id points at the external user store, so it is not a foreign key here.
feed_subscriptions = Table(
    "feed_subscriptions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("feed_id", String(36), ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False),
    Column("custom_title", String(500), nullable=False, default=""),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("user_id", "feed_id", name="uq_subscriptions_user_feed"),
)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Feed:
    id: str
    feed_url: str
    site_url: str
    title: str
    description: str
    created_at: datetime
    updated_at: datetime
    last_fetched_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "Feed":
        return cls(
            id=row["id"],
            feed_url=row["feed_url"],
            site_url=row["site_url"],
            title=row["title"],
            description=row["description"],
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
            last_fetched_at=as_utc(row["last_fetched_at"]),
        )


@dataclass(frozen=True)
class Article:
    feed_id: str
    guid: str
    title: str
    url: str
    author: str
    content: str
    summary: str
    published_at: datetime
    id: Optional[str] = None  # assigned by the store
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "Article":
        return cls(
            id=row["id"],
            feed_id=row["feed_id"],
            guid=row["guid"],
            title=row["title"],
            url=row["url"],
            author=row["author"],
            content=row["content"],
            summary=row["summary"],
            published_at=as_utc(row["published_at"]),
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
        )


@dataclass(frozen=True)
class Subscription:
    id: str
    user_id: str
    feed_id: str
    custom_title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "Subscription":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            feed_id=row["feed_id"],
            custom_title=row["custom_title"],
            created_at=as_utc(row["created_at"]),
            updated_at=as_utc(row["updated_at"]),
        )
