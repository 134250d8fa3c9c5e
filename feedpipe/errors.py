"""Failure kinds raised by the ingestion pipeline and its store.

Callers branch on the exception class, never on the message.
"""


class FeedError(Exception):
    """Base class for every feed pipeline failure."""


class FeedUnavailable(FeedError):
    """The feed could not be retrieved or parsed this cycle. Transient."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"feed unavailable: {url}" + (f" ({reason})" if reason else ""))


class FeedAlreadyExists(FeedError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"feed already exists: {url}")


class FeedNotFound(FeedError):
    def __init__(self, feed_id: str):
        self.feed_id = feed_id
        super().__init__(f"feed not found: {feed_id}")


class AlreadySubscribed(FeedError):
    def __init__(self, user_id: str, feed_id: str):
        self.user_id = user_id
        self.feed_id = feed_id
        super().__init__(f"user {user_id} already subscribed to feed {feed_id}")


class SubscriptionNotFound(FeedError):
    def __init__(self, user_id: str, feed_id: str):
        self.user_id = user_id
        self.feed_id = feed_id
        super().__init__(f"user {user_id} is not subscribed to feed {feed_id}")
