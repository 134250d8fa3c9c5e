import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Tuple

import feedparser
import httpx

from .errors import FeedUnavailable

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 15.0


class Fetcher:
    """Retrieves and parses one feed document per call.

    Every transport, status, timeout, cancellation or parse failure comes out
    as FeedUnavailable. There are no retries and no caching; the worker picks
    the feed up again on its next due cycle.
    """

    def __init__(
        self,
        user_agent: str = "feedpipe/1.0",
        timeout: float = FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(
        self,
        feed_url: str,
        stop: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> List[Any]:
        """Return the feed's raw entries; an empty feed gives an empty list."""
        parsed = await self.fetch_document(feed_url, stop=stop, timeout=timeout)
        entries = list(parsed.entries or [])
        if not entries:
            logger.debug("Feed %s has no items", feed_url)
        return entries

    async def fetch_document(
        self,
        feed_url: str,
        stop: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Return the whole parsed document, feed-level metadata included."""
        if stop is not None and stop.is_set():
            raise FeedUnavailable(feed_url, "cancelled")

        limit = self.timeout if timeout is None else min(timeout, self.timeout)
        try:
            body, headers = await asyncio.wait_for(
                _until_stopped(self._download(feed_url), stop), limit
            )
        except asyncio.TimeoutError as e:
            raise FeedUnavailable(feed_url, "timed out") from e
        except _Stopped as e:
            raise FeedUnavailable(feed_url, "cancelled") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FeedUnavailable(feed_url, str(e) or type(e).__name__) from e

        parsed = feedparser.parse(body, response_headers=headers)
        if not parsed.get("version"):
            # empty body or XML that is not RSS/Atom
            raise FeedUnavailable(
                feed_url, f"not a feed: {parsed.get('bozo_exception') or 'unknown format'}"
            )
        if parsed.bozo:
            logger.warning(
                "Malformed feed %s still parsed (bozo=%s)",
                feed_url,
                parsed.get("bozo_exception"),
            )
        return parsed

    async def _download(self, feed_url: str) -> Tuple[bytes, dict]:
        logger.debug("GET %s", feed_url)
        resp = await self._client.get(feed_url)
        resp.raise_for_status()
        return resp.content, {"content-type": resp.headers.get("content-type", "")}


class _Stopped(Exception):
    pass


async def _until_stopped(aw: Awaitable, stop: Optional[asyncio.Event]):
    if stop is None:
        return await aw

    request = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(stop.wait())
    try:
        done, _ = await asyncio.wait(
            {request, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for fut in (request, waiter):
            if not fut.done():
                fut.cancel()

    if request in done:
        return request.result()
    raise _Stopped()
