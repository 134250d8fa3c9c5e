import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Union

from .errors import AlreadySubscribed, FeedAlreadyExists, FeedNotFound
from .fetcher import Fetcher
from .models import Article, Feed, Subscription, utcnow
from .normalize import normalize_items
from .repository import ArticleRepository, FeedRepository, SubscriptionRepository

logger = logging.getLogger(__name__)


class FeedService:
    def __init__(
        self,
        feed_repo: FeedRepository,
        subscription_repo: SubscriptionRepository,
        article_repo: ArticleRepository,
        fetcher: Fetcher,
    ):
        self.feed_repo = feed_repo
        self.subscription_repo = subscription_repo
        self.article_repo = article_repo
        self.fetcher = fetcher

    async def add_feed(
        self, feed_url: str, site_url: str = "", title: str = "", description: str = ""
    ) -> Feed:
        if await self.feed_repo.get_feed_by_url(feed_url) is not None:
            raise FeedAlreadyExists(feed_url)
        return await self.feed_repo.create_feed(feed_url, site_url, title, description)

    async def get_feed_by_id(self, feed_id: str) -> Feed:
        feed = await self.feed_repo.get_feed_by_id(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)
        return feed

    async def get_feed_by_url(self, feed_url: str) -> Feed:
        feed = await self.feed_repo.get_feed_by_url(feed_url)
        if feed is None:
            raise FeedNotFound(feed_url)
        return feed

    async def list_feeds(self) -> List[Feed]:
        return await self.feed_repo.get_all_feeds()

    async def update_feed_last_fetched_at(self, feed_id: str) -> None:
        await self.feed_repo.update_last_fetched_at(feed_id)

    async def subscribe_to_feed(
        self, user_id: str, feed_id: str, custom_title: str = ""
    ) -> Subscription:
        feed = await self.get_feed_by_id(feed_id)
        if await self.subscription_repo.exists(user_id, feed_id):
            raise AlreadySubscribed(user_id, feed_id)
        return await self.subscription_repo.subscribe_user_to_feed(
            user_id, feed_id, custom_title or feed.title
        )

    async def unsubscribe_from_feed(self, user_id: str, feed_id: str) -> None:
        await self.subscription_repo.delete_subscription(user_id, feed_id)

    async def list_subscriptions(self, user_id: str) -> List[Subscription]:
        return await self.subscription_repo.get_subscriptions_by_user(user_id)

    async def fetch_and_store_feed(
        self, feed: Feed, stop: Optional[asyncio.Event] = None
    ) -> int:
        """Claim, fetch, normalize and store one feed.

        The claim happens before any network I/O and is kept even when the
        fetch fails, so a failing feed waits a full interval before its next
        attempt. Returns the number of articles handed to the store.
        """
        await self.feed_repo.update_last_fetched_at(feed.id)

        items = await self.fetcher.fetch(feed.feed_url, stop=stop)
        batch = normalize_items(items, feed.id, utcnow())
        await self.article_repo.insert_many_ignore_duplicates(batch)

        logger.info(
            "Feed %s: %d item(s), %d article(s) stored or already present",
            feed.feed_url,
            len(items),
            len(batch),
        )
        return len(batch)

    async def get_next_feeds_to_fetch(
        self, limit: int, older_than: Union[timedelta, float]
    ) -> List[Feed]:
        return await self.feed_repo.get_next_feeds_to_fetch(limit, older_than)

    async def fetch_user_subscribed_feeds(
        self, user_id: str, offset: int, limit: int
    ) -> List[Article]:
        return await self.article_repo.get_user_subscribed_articles(user_id, offset, limit)
