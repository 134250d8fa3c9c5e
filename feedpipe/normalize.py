import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from .models import Article

logger = logging.getLogger(__name__)


def hash_link(link: str) -> str:
    return hashlib.sha256(link.encode("utf-8")).hexdigest()


def sanitize(value: Optional[str]) -> str:
    return (value or "").strip()


def resolve_guid(entry: Any) -> str:
    # feedparser exposes <guid> and atom <id> as entry.id
    guid = sanitize(getattr(entry, "id", None) or getattr(entry, "guid", None))
    if guid:
        return guid
    link = sanitize(getattr(entry, "link", None))
    if link:
        return hash_link(link)
    return ""


def _struct_to_datetime(st: Any) -> Optional[datetime]:
    try:
        return datetime(*st[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def resolve_published_at(entry: Any, fallback: datetime) -> datetime:
    for attr in ("published_parsed", "updated_parsed"):
        st = getattr(entry, attr, None)
        if st:
            dt = _struct_to_datetime(st)
            if dt is not None:
                return dt
    return fallback


def _author(entry: Any) -> str:
    author = getattr(entry, "author", None)
    if author:
        return sanitize(str(author))
    detail = getattr(entry, "author_detail", None)
    if detail:
        return sanitize(detail.get("name") if isinstance(detail, dict) else getattr(detail, "name", ""))
    return ""


def _content(entry: Any) -> str:
    content = getattr(entry, "content", None)
    if content and isinstance(content, list):
        first = content[0]
        value = first.get("value") if isinstance(first, dict) else getattr(first, "value", None)
        if value:
            return str(value)
    return ""


def normalize_items(items: Iterable[Any], feed_id: str, now: datetime) -> List[Article]:
    """Map raw feed entries to articles for one feed.

    Output keeps input order. Entries without a resolvable GUID or without a
    link are dropped silently. ``now`` is the published_at fallback, so the
    same batch normalizes identically for the same ``now``.
    """
    out: List[Article] = []
    dropped = 0
    for entry in items:
        if entry is None:
            dropped += 1
            continue

        guid = resolve_guid(entry)
        url = sanitize(getattr(entry, "link", None))
        if not guid or not url:
            dropped += 1
            continue

        out.append(
            Article(
                feed_id=feed_id,
                guid=guid,
                title=sanitize(getattr(entry, "title", None)),
                url=url,
                author=_author(entry),
                content=_content(entry),
                summary=sanitize(getattr(entry, "summary", None) or getattr(entry, "description", None)),
                published_at=resolve_published_at(entry, now),
            )
        )

    if dropped:
        logger.debug("Feed %s: dropped %d unusable item(s)", feed_id, dropped)
    return out
