"""
Context cache - per-owner pre-built memory context.

One row per owner. An entry is reusable only while ``invalidated_at`` is
NULL; writers push invalidations after every memory mutation.
"""

import logging
from typing import List, Optional

from diary_memory.clock import Clock, SystemClock, to_iso
from diary_memory.persist.sqlite_store import SQLiteStore
from .schemas import ContextCacheEntry, Memory

logger = logging.getLogger(__name__)

TABLE = "context_cache"


class ContextCache:
    """Read/write access to the ``context_cache`` table."""

    def __init__(self, db: SQLiteStore, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def get(self, owner: str) -> Optional[ContextCacheEntry]:
        """Cached entry for ``owner`` (valid or not), or None."""
        row = self.db.fetch_one(TABLE, {"owner": owner})
        return ContextCacheEntry.from_row(row) if row else None

    def get_valid(self, owner: str) -> Optional[ContextCacheEntry]:
        """Cached entry only if it has not been invalidated."""
        entry = self.get(owner)
        if entry is None or not entry.is_valid:
            return None
        return entry

    def is_valid(self, owner: str) -> bool:
        return self.get_valid(owner) is not None

    def upsert(self, owner: str, summary: str, memories: List[Memory]) -> ContextCacheEntry:
        """
        Store a freshly built context and clear any invalidation mark.

        Args:
            owner: User identifier
            summary: Formatted context text
            memories: Memories the summary was built from

        Returns:
            The stored entry
        """
        entry = ContextCacheEntry(
            owner=owner,
            context_summary=summary,
            memory_snapshot=list(memories),
            last_updated_at=self.clock.now(),
            invalidated_at=None,
        )
        self.db.upsert(TABLE, entry.to_row(), key="owner")
        return entry

    def invalidate(self, owner: str) -> bool:
        """
        Mark the owner's entry stale.

        Returns:
            True if an entry existed
        """
        changed = self.db.update(
            TABLE, {"invalidated_at": to_iso(self.clock.now())}, {"owner": owner}
        )
        if changed:
            logger.debug("Invalidated context cache for %s", owner)
        return changed > 0

    def delete(self, owner: str) -> bool:
        return self.db.delete(TABLE, {"owner": owner}) > 0

    def stats(self) -> dict:
        """Count of entries, how many are still valid, and payload size."""
        stats = self.db.stats(TABLE)
        stats["valid"] = self.db.count(TABLE, {"invalidated_at": None})
        return stats

    def purge(self) -> int:
        """Clear all cache entries."""
        return self.db.purge_table(TABLE)
