from dataclasses import replace
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from feedpipe.errors import AlreadySubscribed, FeedAlreadyExists, FeedNotFound, FeedUnavailable
from feedpipe.models import articles
from feedpipe.normalize import hash_link
from feedpipe.repository import ArticleRepository, FeedRepository, SubscriptionRepository
from feedpipe.service import FeedService


class StubFetcher:
    def __init__(self, entries=None, error=None):
        self.entries = entries or []
        self.error = error
        self.calls = []

    async def fetch(self, feed_url, stop=None, timeout=None):
        self.calls.append(feed_url)
        if self.error is not None:
            raise self.error
        return list(self.entries)


def _entry(**kwargs):
    defaults = dict(id=None, link=None, title="t", summary="", published_parsed=None, updated_parsed=None)
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


def _service(db, fetcher):
    return FeedService(
        feed_repo=FeedRepository(db),
        subscription_repo=SubscriptionRepository(db),
        article_repo=ArticleRepository(db),
        fetcher=fetcher,
    )


async def _stored(db):
    rows = await db.fetch_all(select(articles.c.guid).order_by(articles.c.guid))
    return [r["guid"] for r in rows]


class TestFetchAndStoreFeed:
    def test_reingest_does_not_duplicate(self, run_db):
        fetcher = StubFetcher(
            [_entry(id="a1", link="http://x/a"), _entry(link="http://x/b")]
        )

        async def scenario(db):
            service = _service(db, fetcher)
            feed = await service.add_feed("http://x/rss")
            first = await service.fetch_and_store_feed(feed)
            await service.fetch_and_store_feed(feed)
            count = await db.fetch_val(select(func.count()).select_from(articles))
            return first, count, await _stored(db)

        first, count, guids = run_db(scenario)
        assert first == 2
        assert count == 2
        assert sorted(guids) == sorted(["a1", hash_link("http://x/b")])

    def test_claim_kept_when_fetch_fails(self, run_db):
        fetcher = StubFetcher(error=FeedUnavailable("http://x/rss"))

        async def scenario(db):
            service = _service(db, fetcher)
            feed = await service.add_feed("http://x/rss")
            with pytest.raises(FeedUnavailable):
                await service.fetch_and_store_feed(feed)
            return await service.get_feed_by_id(feed.id), await _stored(db)

        feed, guids = run_db(scenario)
        assert feed.last_fetched_at is not None
        assert guids == []

    def test_empty_feed_succeeds(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher([]))
            feed = await service.add_feed("http://x/rss")
            stored = await service.fetch_and_store_feed(feed)
            return stored, await service.get_feed_by_id(feed.id)

        stored, feed = run_db(scenario)
        assert stored == 0
        assert feed.last_fetched_at is not None

    def test_unknown_feed_is_not_fetched(self, run_db):
        fetcher = StubFetcher([_entry(id="a1", link="http://x/a")])

        async def scenario(db):
            service = _service(db, fetcher)
            feed = await service.add_feed("http://x/rss")
            ghost = replace(feed, id="ghost")
            await service.fetch_and_store_feed(ghost)

        with pytest.raises(FeedNotFound):
            run_db(scenario)
        assert fetcher.calls == []

    def test_claimed_feed_no_longer_due(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher([]))
            feed = await service.add_feed("http://x/rss")
            before = await service.get_next_feeds_to_fetch(10, 60)
            await service.fetch_and_store_feed(feed)
            after = await service.get_next_feeds_to_fetch(10, 60)
            return before, after

        before, after = run_db(scenario)
        assert len(before) == 1
        assert after == []


class TestFeedRegistration:
    def test_add_feed_twice(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher())
            await service.add_feed("http://x/rss", title="X")
            await service.add_feed("http://x/rss")

        with pytest.raises(FeedAlreadyExists):
            run_db(scenario)

    def test_lookups(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher())
            feed = await service.add_feed("http://x/rss", title="X")
            by_url = await service.get_feed_by_url("http://x/rss")
            feeds = await service.list_feeds()
            await service.update_feed_last_fetched_at(feed.id)
            return feed, by_url, feeds, await service.get_feed_by_id(feed.id)

        feed, by_url, feeds, claimed = run_db(scenario)
        assert by_url.id == feed.id
        assert [f.id for f in feeds] == [feed.id]
        assert claimed.last_fetched_at is not None

    def test_missing_feed(self, run_db):
        async def scenario(db):
            await _service(db, StubFetcher()).get_feed_by_id("nope")

        with pytest.raises(FeedNotFound):
            run_db(scenario)


class TestSubscriptions:
    def test_subscribe_defaults_title_and_reads_articles(self, run_db):
        fetcher = StubFetcher([_entry(id="a1", link="http://x/a")])

        async def scenario(db):
            service = _service(db, fetcher)
            feed = await service.add_feed("http://x/rss", title="Feed X")
            sub = await service.subscribe_to_feed("u1", feed.id)
            await service.fetch_and_store_feed(feed)
            listed = await service.fetch_user_subscribed_feeds("u1", 0, 10)
            subs = await service.list_subscriptions("u1")
            return sub, listed, subs

        sub, listed, subs = run_db(scenario)
        assert sub.custom_title == "Feed X"
        assert [a.guid for a in listed] == ["a1"]
        assert [s.feed_id for s in subs] == [sub.feed_id]

    def test_subscribe_twice(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher())
            feed = await service.add_feed("http://x/rss")
            await service.subscribe_to_feed("u1", feed.id, "mine")
            await service.subscribe_to_feed("u1", feed.id)

        with pytest.raises(AlreadySubscribed):
            run_db(scenario)

    def test_subscribe_unknown_feed(self, run_db):
        async def scenario(db):
            await _service(db, StubFetcher()).subscribe_to_feed("u1", "nope")

        with pytest.raises(FeedNotFound):
            run_db(scenario)

    def test_unsubscribe(self, run_db):
        async def scenario(db):
            service = _service(db, StubFetcher())
            feed = await service.add_feed("http://x/rss")
            await service.subscribe_to_feed("u1", feed.id)
            await service.unsubscribe_from_feed("u1", feed.id)
            return await service.list_subscriptions("u1")

        assert run_db(scenario) == []
