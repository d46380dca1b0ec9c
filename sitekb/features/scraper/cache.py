"""Time-bounded page cache backed by Firestore."""

import hashlib
import logging
from datetime import datetime, timedelta

from sitekb.config import get_settings
from sitekb.core.firestore import FirestoreClient, get_firestore_client, utcnow

logger = logging.getLogger(__name__)


def cache_key(url: str) -> str:
    """Firestore-safe document id for a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class PageCache:
    """Raw page bodies keyed by URL, served until their expiry time."""

    def __init__(
        self,
        firestore: FirestoreClient | None = None,
        ttl: timedelta | None = None,
        clock=utcnow,
    ):
        self.firestore = firestore or get_firestore_client()
        self.ttl = ttl or timedelta(hours=get_settings().page_cache_ttl_hours)
        self.clock = clock

    async def get(self, url: str) -> str | None:
        """Cached body for ``url``, or None if absent or expired."""
        record = await self.firestore.get_cached_page(cache_key(url))
        if record is None:
            return None
        if record["expires_at"] <= self.clock():
            logger.debug(f"Cache entry for {url} expired at {record['expires_at']}")
            return None
        return record["content"]

    async def put(self, url: str, content: str, ttl: timedelta | None = None) -> None:
        now = self.clock()
        await self.firestore.set_cached_page(
            cache_key(url),
            {
                "url": url,
                "content": content,
                "fetched_at": now,
                "expires_at": now + (ttl or self.ttl),
            },
        )

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired entries and return how many were removed."""
        removed = await self.firestore.delete_expired_pages(now or self.clock())
        if removed:
            logger.info(f"Purged {removed} expired cached pages")
        return removed


def get_page_cache() -> PageCache:
    """Get page cache instance."""
    return PageCache()
