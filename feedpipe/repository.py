import logging
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence, Union
from uuid import uuid4

from databases import Database
from sqlalchemy import and_, case, delete, insert, literal, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from .errors import FeedNotFound, SubscriptionNotFound
from .models import (
    Article,
    Feed,
    Subscription,
    articles,
    feed_subscriptions,
    feeds,
    utcnow,
)

logger = logging.getLogger(__name__)

INSERT_CHUNK = 500

# dialects with a native INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "postgres": postgresql.insert,
    "sqlite": sqlite.insert,
}


class FeedRepository:
    def __init__(self, db: Database):
        self.db = db

    async def create_feed(
        self, feed_url: str, site_url: str = "", title: str = "", description: str = ""
    ) -> Feed:
        now = utcnow()
        values = dict(
            id=str(uuid4()),
            feed_url=feed_url,
            site_url=site_url,
            title=title,
            description=description,
            created_at=now,
            updated_at=now,
            last_fetched_at=None,
        )
        await self.db.execute(insert(feeds).values(**values))
        return Feed(**values)

    async def get_all_feeds(self) -> List[Feed]:
        query = select(feeds).order_by(feeds.c.created_at)
        rows = await self.db.fetch_all(query)
        return [Feed.from_row(row) for row in rows]

    async def get_feed_by_id(self, feed_id: str) -> Optional[Feed]:
        row = await self.db.fetch_one(select(feeds).where(feeds.c.id == feed_id))
        return Feed.from_row(row) if row else None

    async def get_feed_by_url(self, feed_url: str) -> Optional[Feed]:
        row = await self.db.fetch_one(select(feeds).where(feeds.c.feed_url == feed_url))
        return Feed.from_row(row) if row else None

    async def update_last_fetched_at(
        self, feed_id: str, now: Optional[datetime] = None
    ) -> None:
        """Claim the feed: move last_fetched_at to now, never backwards.

        The UPDATE runs on its own so it takes the write lock directly; a
        read-then-write transaction cannot be upgraded under SQLite when
        several claims race.
        """
        now = now or utcnow()
        claimed = literal(now, type_=feeds.c.last_fetched_at.type)
        await self.db.execute(
            update(feeds)
            .where(feeds.c.id == feed_id)
            .values(
                last_fetched_at=case(
                    (feeds.c.last_fetched_at > claimed, feeds.c.last_fetched_at),
                    else_=claimed,
                ),
                updated_at=now,
            )
        )
        # feeds are never deleted here, so a missing row means it never existed
        row = await self.db.fetch_one(select(feeds.c.id).where(feeds.c.id == feed_id))
        if row is None:
            raise FeedNotFound(feed_id)

    async def get_next_feeds_to_fetch(
        self,
        limit: int,
        older_than: Union[timedelta, float],
        now: Optional[datetime] = None,
    ) -> List[Feed]:
        """Up to ``limit`` feeds never fetched or last fetched before now - older_than."""
        if not isinstance(older_than, timedelta):
            older_than = timedelta(seconds=older_than)
        cutoff = (now or utcnow()) - older_than
        query = (
            select(feeds)
            .where(
                or_(
                    feeds.c.last_fetched_at.is_(None),
                    feeds.c.last_fetched_at < cutoff,
                )
            )
            .order_by(feeds.c.last_fetched_at.asc().nulls_first())
            .limit(limit)
        )
        rows = await self.db.fetch_all(query)
        return [Feed.from_row(row) for row in rows]


class ArticleRepository:
    def __init__(self, db: Database):
        self.db = db

    async def insert_many_ignore_duplicates(self, batch: Sequence[Article]) -> None:
        """Insert a batch in one transaction, skipping rows whose
        (feed_id, guid) is already stored. An empty batch touches nothing.
        """
        if not batch:
            return

        now = utcnow()
        rows: List[Dict] = []
        seen = set()
        for a in batch:
            key = (a.feed_id, a.guid)
            if key in seen:
                continue
            seen.add(key)
            rows.append(
                dict(
                    id=str(uuid4()),
                    feed_id=a.feed_id,
                    guid=a.guid,
                    title=a.title,
                    url=a.url,
                    author=a.author,
                    content=a.content,
                    summary=a.summary,
                    published_at=a.published_at,
                    created_at=now,
                    updated_at=now,
                )
            )

        make_insert = _UPSERT_INSERTS.get(self.db.url.dialect)
        async with self.db.transaction(isolation="read_committed"):
            if make_insert is None:
                rows = await self._without_stored(rows)
                if rows:
                    await self.db.execute_many(insert(articles), rows)
                return

            for chunk in _chunks(rows, INSERT_CHUNK):
                stmt = (
                    make_insert(articles)
                    .values(chunk)
                    .on_conflict_do_nothing(index_elements=["feed_id", "guid"])
                )
                await self.db.execute(stmt)

    async def _without_stored(self, rows: List[Dict]) -> List[Dict]:
        by_feed: Dict[str, List[str]] = {}
        for row in rows:
            by_feed.setdefault(row["feed_id"], []).append(row["guid"])

        stored = set()
        for feed_id, guids in by_feed.items():
            query = select(articles.c.guid).where(
                and_(articles.c.feed_id == feed_id, articles.c.guid.in_(guids))
            )
            for r in await self.db.fetch_all(query):
                stored.add((feed_id, r["guid"]))
        return [row for row in rows if (row["feed_id"], row["guid"]) not in stored]

    async def get_user_subscribed_articles(
        self, user_id: str, offset: int, limit: int
    ) -> List[Article]:
        joined = articles.join(
            feed_subscriptions, articles.c.feed_id == feed_subscriptions.c.feed_id
        )
        query = (
            select(articles)
            .select_from(joined)
            .where(feed_subscriptions.c.user_id == user_id)
            .order_by(articles.c.published_at.desc(), articles.c.id)
            .limit(limit)
            .offset(offset)
        )
        rows = await self.db.fetch_all(query)
        return [Article.from_row(row) for row in rows]


class SubscriptionRepository:
    def __init__(self, db: Database):
        self.db = db

    async def subscribe_user_to_feed(
        self, user_id: str, feed_id: str, custom_title: str
    ) -> Subscription:
        now = utcnow()
        values = dict(
            id=str(uuid4()),
            user_id=user_id,
            feed_id=feed_id,
            custom_title=custom_title,
            created_at=now,
            updated_at=now,
        )
        await self.db.execute(insert(feed_subscriptions).values(**values))
        return Subscription(**values)

    async def delete_subscription(self, user_id: str, feed_id: str) -> None:
        if not await self.exists(user_id, feed_id):
            raise SubscriptionNotFound(user_id, feed_id)
        await self.db.execute(
            delete(feed_subscriptions).where(
                and_(
                    feed_subscriptions.c.user_id == user_id,
                    feed_subscriptions.c.feed_id == feed_id,
                )
            )
        )

    async def get_subscriptions_by_user(self, user_id: str) -> List[Subscription]:
        query = (
            select(feed_subscriptions)
            .where(feed_subscriptions.c.user_id == user_id)
            .order_by(feed_subscriptions.c.created_at.desc())
        )
        rows = await self.db.fetch_all(query)
        return [Subscription.from_row(row) for row in rows]

    async def exists(self, user_id: str, feed_id: str) -> bool:
        query = select(feed_subscriptions.c.id).where(
            and_(
                feed_subscriptions.c.user_id == user_id,
                feed_subscriptions.c.feed_id == feed_id,
            )
        )
        return await self.db.fetch_one(query) is not None


def _chunks(rows: List[Dict], size: int) -> Iterator[List[Dict]]:
    for i in range(0, len(rows), size):
        yield rows[i : i + size]
