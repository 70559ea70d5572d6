"""Per-user response cache backed by the `cache_entries` table.

WHAT:
    Short-lived memoization of campaign responses, keyed by (key, user).

WHY:
    A dashboard reload should not cost one Graph API call per campaign.
    Entries live CACHE_TTL_MINUTES (15 by default).

    Freshness is decided at read time (`expires_at > now`); the arq sweep in
    workers/arq_worker.py only reclaims space. A stale row that has not been
    swept yet is still a miss.

    Cache failures never break a sync: read errors are a miss, write errors
    are logged and rolled back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from snapix.models import CacheEntry, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 15


class ResponseCache:
    """Key/value cache partitioned by user email."""

    def __init__(
        self,
        db: Session,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def get(self, key: str, user_email: str) -> Optional[Any]:
        """Return the stored payload, or None on miss/expiry/error."""
        try:
            entry = (
                self.db.query(CacheEntry)
                .filter(
                    CacheEntry.key == key,
                    CacheEntry.user_email == user_email,
                    CacheEntry.expires_at > self._clock(),
                )
                .first()
            )
        except Exception as e:
            logger.warning("[RESPONSE_CACHE] Cache read error for %s: %s", key, e)
            self.db.rollback()
            return None

        if entry is None:
            return None

        logger.debug("[RESPONSE_CACHE] Hit for %s (expires %s)", key, entry.expires_at)
        return entry.value

    def put(self, key: str, user_email: str, payload: Any) -> bool:
        """Upsert the (key, user) row and reset its expiry.

        Returns:
            True when the write committed, False when it was dropped.
        """
        expires_at = self._clock() + self.ttl
        try:
            entry = (
                self.db.query(CacheEntry)
                .filter(CacheEntry.key == key, CacheEntry.user_email == user_email)
                .first()
            )
            if entry is None:
                entry = CacheEntry(key=key, user_email=user_email, value=payload, expires_at=expires_at)
                self.db.add(entry)
            else:
                entry.value = payload
                entry.expires_at = expires_at
            self.db.commit()
        except Exception as e:
            logger.warning("[RESPONSE_CACHE] Cache write error for %s: %s", key, e)
            self.db.rollback()
            return False

        logger.info(
            "[RESPONSE_CACHE] Cached %s for %d minutes",
            key, int(self.ttl.total_seconds() // 60),
        )
        return True

    def purge_expired(self) -> int:
        """Delete every row whose expiry has passed. Returns the row count."""
        deleted = (
            self.db.query(CacheEntry)
            .filter(CacheEntry.expires_at <= self._clock())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("[RESPONSE_CACHE] Purged %d expired entries", deleted)
        return deleted
