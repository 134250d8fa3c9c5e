import asyncio
import logging
from typing import Optional

from .errors import FeedUnavailable
from .models import Feed
from .service import FeedService

logger = logging.getLogger(__name__)


class Worker:
    """Polls due feeds every ``interval`` seconds.

    At most ``concurrency`` feeds are selected per tick and at most that many
    ingestion units run at once. A tick waits for all of its units before the
    next one can start. A tick that overruns the interval drops the ticks it
    missed and runs at most one catch-up tick immediately.
    """

    def __init__(self, feed_service: FeedService, interval: float, concurrency: int):
        if interval <= 0 or concurrency <= 0:
            raise ValueError("interval and concurrency must be positive")
        self.feed_service = feed_service
        self.interval = interval
        self.concurrency = concurrency

    async def start(self, stop: asyncio.Event) -> None:
        logger.info(
            "Scraping on %d tasks every %.1f seconds", self.concurrency, self.interval
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.interval

        while True:
            delay = max(0.0, deadline - loop.time())
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break

            deadline += self.interval
            await self.run_once(stop)

            now = loop.time()
            if now > deadline:
                missed = int((now - deadline) // self.interval)
                if missed:
                    logger.warning("Tick overran the interval, dropping %d tick(s)", missed)
                deadline += missed * self.interval

        logger.info("Feed worker shutting down")

    async def run_once(self, stop: Optional[asyncio.Event] = None) -> None:
        try:
            due = await self.feed_service.get_next_feeds_to_fetch(
                self.concurrency, self.interval
            )
        except Exception:
            logger.exception("Error selecting feeds to fetch")
            return

        if not due:
            return

        sem = asyncio.Semaphore(self.concurrency)
        await asyncio.gather(*(self._process(feed, sem, stop) for feed in due))

    async def _process(
        self, feed: Feed, sem: asyncio.Semaphore, stop: Optional[asyncio.Event]
    ) -> None:
        async with sem:
            if stop is not None and stop.is_set():
                return
            try:
                await self.feed_service.fetch_and_store_feed(feed, stop=stop)
            except FeedUnavailable as e:
                logger.warning("Error processing feed: %s, with link: %s", e, feed.feed_url)
            except Exception:
                logger.exception("Error processing feed with link: %s", feed.feed_url)
            else:
                logger.info("Successfully fetched and stored feed: %s", feed.feed_url)
