import asyncio
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated, List

import sqlalchemy
import uvicorn
from databases import Database
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from pydantic import BaseModel

from . import config
from .errors import (
    AlreadySubscribed,
    FeedAlreadyExists,
    FeedNotFound,
    FeedUnavailable,
    SubscriptionNotFound,
)
from .fetcher import Fetcher
from .models import Article, Feed, Subscription, metadata
from .repository import ArticleRepository, FeedRepository, SubscriptionRepository
from .service import FeedService
from .worker import Worker

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> config.Settings:
    return config.Settings()  # type: ignore


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    db = Database(settings.DB_URL)
    await db.connect()
    engine = sqlalchemy.create_engine(settings.DB_URL)
    metadata.create_all(engine)
    engine.dispose()

    fetcher = Fetcher(user_agent=settings.USER_AGENT, timeout=settings.FETCH_TIMEOUT_SEC)
    service = FeedService(
        feed_repo=FeedRepository(db),
        subscription_repo=SubscriptionRepository(db),
        article_repo=ArticleRepository(db),
        fetcher=fetcher,
    )
    app.state.db = db
    app.state.feed_service = service

    stop = asyncio.Event()
    worker_task = None
    if settings.WORKER_ENABLED:
        worker = Worker(service, settings.FETCH_INTERVAL_SEC, settings.FETCH_CONCURRENCY)
        worker_task = asyncio.create_task(worker.start(stop))

    yield

    stop.set()
    if worker_task is not None:
        await worker_task
    await fetcher.aclose()
    await db.disconnect()


async def get_service(request: Request) -> FeedService:
    return request.app.state.feed_service


Service = Annotated[FeedService, Depends(get_service)]


class FeedIn(BaseModel):
    feed_url: str
    site_url: str = ""
    title: str = ""
    description: str = ""


class SubscriptionIn(BaseModel):
    feed_id: str
    custom_title: str = ""


app = FastAPI(lifespan=lifespan)


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/feeds")
async def list_feeds(service: Service) -> List[Feed]:
    return await service.list_feeds()


@app.post("/feeds", status_code=status.HTTP_201_CREATED)
async def add_feed(body: FeedIn, service: Service) -> Feed:
    try:
        return await service.add_feed(
            body.feed_url, body.site_url, body.title, body.description
        )
    except FeedAlreadyExists as e:
        raise HTTPException(status.HTTP_409_CONFLICT, str(e))


@app.get("/feeds/due")
async def due_feeds(
    service: Service,
    settings: Annotated[config.Settings, Depends(get_settings)],
    limit: int = Query(default=50, ge=1),
) -> List[Feed]:
    return await service.get_next_feeds_to_fetch(limit, settings.FETCH_INTERVAL_SEC)


@app.post("/feeds/{feed_id}/refresh")
async def refresh_feed(feed_id: str, service: Service):
    try:
        feed = await service.get_feed_by_id(feed_id)
        stored = await service.fetch_and_store_feed(feed)
    except FeedNotFound as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    except FeedUnavailable as e:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(e))
    return {"feed_id": feed_id, "articles": stored}


@app.get("/users/{user_id}/subscriptions")
async def list_subscriptions(user_id: str, service: Service) -> List[Subscription]:
    return await service.list_subscriptions(user_id)


@app.post("/users/{user_id}/subscriptions", status_code=status.HTTP_201_CREATED)
async def subscribe(user_id: str, body: SubscriptionIn, service: Service) -> Subscription:
    try:
        return await service.subscribe_to_feed(user_id, body.feed_id, body.custom_title)
    except FeedNotFound as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    except AlreadySubscribed as e:
        raise HTTPException(status.HTTP_409_CONFLICT, str(e))


@app.delete(
    "/users/{user_id}/subscriptions/{feed_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def unsubscribe(user_id: str, feed_id: str, service: Service) -> None:
    try:
        await service.unsubscribe_from_feed(user_id, feed_id)
    except SubscriptionNotFound as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))


@app.get("/users/{user_id}/articles")
async def user_articles(
    user_id: str,
    service: Service,
    settings: Annotated[config.Settings, Depends(get_settings)],
    page: int = Query(default=1, ge=1),
) -> List[Article]:
    offset = (page - 1) * settings.ARTICLES_PER_PAGE
    return await service.fetch_user_subscribed_feeds(
        user_id, offset, settings.ARTICLES_PER_PAGE
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
