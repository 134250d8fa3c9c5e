import asyncio
import logging
import sys
from typing import Iterable, List

from databases import Database
from sqlalchemy import create_engine

from . import config
from .errors import FeedAlreadyExists, FeedUnavailable
from .fetcher import Fetcher
from .models import Feed, metadata
from .repository import ArticleRepository, FeedRepository, SubscriptionRepository
from .service import FeedService

logger = logging.getLogger(__name__)


async def seed_feeds(service: FeedService, fetcher: Fetcher, urls: Iterable[str]) -> List[Feed]:
    """Register each URL as a feed, filling metadata from the document itself.

    Already registered URLs are skipped. A URL that cannot be fetched is still
    registered with empty metadata; the worker will retry it when due.
    """
    added: List[Feed] = []
    for url in urls:
        if await service.feed_repo.get_feed_by_url(url) is not None:
            logger.debug("Skipping existing feed: %s", url)
            continue

        site_url = title = description = ""
        try:
            parsed = await fetcher.fetch_document(url)
            info = parsed.feed
            site_url = info.get("link", "") or ""
            title = (info.get("title", "") or "").strip()
            description = (info.get("subtitle", "") or info.get("description", "") or "").strip()
        except FeedUnavailable as e:
            logger.warning("Could not read metadata for %s: %s", url, e)

        try:
            feed = await service.add_feed(url, site_url, title, description)
        except FeedAlreadyExists:
            continue
        added.append(feed)
        logger.info("Registered feed: %s (%s)", title or "untitled", url)

    logger.info("Seeding finished, %d new feed(s)", len(added))
    return added


async def main(urls: List[str]):
    settings = config.Settings()  # type: ignore
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    urls = urls or settings.SEED_FEEDS
    if not urls:
        logger.warning("No feed URLs given and SEED_FEEDS is empty. Nothing to seed.")
        return

    db = Database(settings.DB_URL)
    await db.connect()

    engine = create_engine(settings.DB_URL)
    metadata.create_all(engine)
    engine.dispose()

    fetcher = Fetcher(user_agent=settings.USER_AGENT, timeout=settings.FETCH_TIMEOUT_SEC)
    service = FeedService(
        feed_repo=FeedRepository(db),
        subscription_repo=SubscriptionRepository(db),
        article_repo=ArticleRepository(db),
        fetcher=fetcher,
    )
    try:
        await seed_feeds(service, fetcher, urls)
    finally:
        await fetcher.aclose()
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
