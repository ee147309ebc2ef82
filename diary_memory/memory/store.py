"""
Memory persistence layer on top of the relational store.

Handles CRUD and lifecycle transitions for individual memory records. The
store never touches the context cache except for the privacy wipe; callers
invalidate the cache after each mutation.
"""

import json
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from diary_memory.clock import Clock, SystemClock, to_iso
from diary_memory.errors import NotFoundError, ValidationError
from diary_memory.persist.sqlite_store import SQLiteStore, escape_like
from .schemas import Memory, MemoryCategory, MemoryType

logger = logging.getLogger(__name__)

TABLE = "memories"

# Canonical relevance order for active memories.
DEFAULT_ORDER = ("importance DESC", "last_confirmed_at DESC")


def new_memory_id() -> str:
    return f"mem_{uuid.uuid4().hex[:12]}"


class MemoryStore:
    """
    Persistent storage for user memories.

    Features:
    - Create / update / confirm / supersede / soft delete
    - Active-set queries by type, category and keyword
    - Privacy wipe (hard delete of every row for an owner)
    """

    def __init__(self, db: SQLiteStore, clock: Optional[Clock] = None):
        """
        Initialize memory store.

        Args:
            db: Relational store handle
            clock: Time source (default: system clock)
        """
        self.db = db
        self.clock = clock or SystemClock()

    def _now(self) -> str:
        return to_iso(self.clock.now())

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(
        self,
        owner: str,
        memory_type: MemoryType,
        content: str,
        category: Optional[MemoryCategory] = None,
        source_entry_ids: Optional[List[str]] = None,
        confidence: Optional[float] = None,
        importance: Optional[int] = None,
    ) -> Memory:
        """
        Create and store a new active memory.

        Args:
            owner: User identifier
            memory_type: fact, preference, pattern, relationship, goal, emotion_trigger
            content: Memory text (must not be blank)
            category: Category (default: general)
            source_entry_ids: Diary entries that produced this memory
            confidence: 0.0-1.0 (default: 1.0)
            importance: Retrieval priority (default: 5)

        Returns:
            Created Memory

        Raises:
            ValidationError: If content is empty
        """
        if not content or not content.strip():
            raise ValidationError(["memory content must not be empty"])

        now = self.clock.now()
        memory = Memory(
            id=new_memory_id(),
            owner=owner,
            memory_type=memory_type,
            category=category or "general",
            content=content,
            source_entry_ids=list(source_entry_ids) if source_entry_ids is not None else None,
            confidence=1.0 if confidence is None else confidence,
            importance=5 if importance is None else importance,
            first_observed_at=now,
            last_confirmed_at=now,
            mention_count=1,
            is_active=True,
            superseded_by=None,
            user_confirmed=False,
            created_at=now,
            updated_at=now,
        )
        self.db.insert(TABLE, memory.to_row())
        logger.debug("Created memory %s for %s", memory.id, owner)
        return memory

    def get(self, memory_id: str) -> Optional[Memory]:
        row = self.db.fetch_one(TABLE, {"id": memory_id})
        return Memory.from_row(row) if row else None

    def require(self, memory_id: str) -> Memory:
        """Like ``get`` but raises NotFoundError when missing."""
        memory = self.get(memory_id)
        if memory is None:
            raise NotFoundError("memory", memory_id)
        return memory

    def list_active(
        self,
        owner: str,
        types: Optional[Sequence[MemoryType]] = None,
        category: Optional[MemoryCategory] = None,
        order_by: Sequence[str] = DEFAULT_ORDER,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Active memories for an owner, optionally filtered by type(s)/category."""
        where: Dict[str, object] = {"owner": owner, "is_active": 1}
        if types is not None:
            where["memory_type"] = list(types)
        if category is not None:
            where["category"] = category
        rows = self.db.fetch_all(TABLE, where, order_by=order_by, limit=limit)
        return [Memory.from_row(r) for r in rows]

    def get_active(self, owner: str) -> List[Memory]:
        """All active memories, ordered by importance desc then last confirmation desc."""
        return self.list_active(owner)

    def get_by_type(self, owner: str, memory_type: MemoryType) -> List[Memory]:
        return self.list_active(owner, types=[memory_type], order_by=("importance DESC",))

    def get_by_category(self, owner: str, category: MemoryCategory) -> List[Memory]:
        return self.list_active(owner, category=category, order_by=("importance DESC",))

    def search(self, owner: str, query: str, limit: int = 10) -> List[Memory]:
        """Keyword match on content (case-insensitive for ASCII)."""
        rows = self.db.fetch_all(
            TABLE,
            {"owner": owner, "is_active": 1},
            order_by=("importance DESC",),
            limit=limit,
            like={"content": f"%{escape_like(query)}%"},
        )
        return [Memory.from_row(r) for r in rows]

    def count_active(self, owner: str) -> int:
        return self.db.count(TABLE, {"owner": owner, "is_active": 1})

    def owners_with_memories(self) -> List[str]:
        return self.db.distinct(TABLE, "owner", {"is_active": 1})

    def resolve_current(self, memory_id: str) -> Optional[Memory]:
        """
        Follow the superseded_by chain to the memory that replaced ``memory_id``.

        Returns the last memory in the chain (which may itself be inactive if it
        was deactivated outright), or None if ``memory_id`` does not exist.
        """
        memory = self.get(memory_id)
        seen = set()
        while memory is not None and memory.superseded_by and memory.id not in seen:
            seen.add(memory.id)
            successor = self.get(memory.superseded_by)
            if successor is None:
                break
            memory = successor
        return memory

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update(
        self,
        memory_id: str,
        content: Optional[str] = None,
        confidence: Optional[float] = None,
        importance: Optional[int] = None,
        category: Optional[MemoryCategory] = None,
        source_entry_ids: Optional[List[str]] = None,
    ) -> bool:
        """
        Update fields of a memory. Only provided fields change.

        Returns:
            True if a row was updated, False if the memory does not exist
        """
        values: Dict[str, object] = {}
        if content is not None:
            if not content.strip():
                raise ValidationError(["memory content must not be empty"])
            values["content"] = content
        if confidence is not None:
            if not 0.0 <= confidence <= 1.0:
                raise ValidationError([f"confidence out of range: {confidence}"])
            values["confidence"] = confidence
        if importance is not None:
            values["importance"] = importance
        if category is not None:
            values["category"] = category
        if source_entry_ids is not None:
            values["source_entry_ids"] = json.dumps(list(source_entry_ids))
        values["updated_at"] = self._now()
        return self.db.update(TABLE, values, {"id": memory_id}) > 0

    def confirm(self, memory_id: str) -> bool:
        """
        Record that a memory was seen again.

        Increments mention_count server-side in a single statement, so
        concurrent confirmations never lose an increment.
        """
        now = self._now()
        changed = self.db.update(
            TABLE,
            {"last_confirmed_at": now, "updated_at": now},
            {"id": memory_id},
            increments={"mention_count": 1},
        )
        return changed > 0

    def mark_user_confirmed(self, memory_id: str) -> bool:
        """Flag a memory as explicitly confirmed by the user."""
        return self.db.update(
            TABLE, {"user_confirmed": 1, "updated_at": self._now()}, {"id": memory_id}
        ) > 0

    def supersede(self, old_id: str, new_id: str) -> bool:
        """
        Deactivate ``old_id`` and link it to its replacement ``new_id``.

        ``new_id`` is not touched. A memory that is already superseded keeps
        its first successor (returns False); use ``resolve_current`` to
        follow chains.
        """
        if old_id == new_id:
            raise ValidationError([f"memory cannot supersede itself: {old_id}"])
        changed = self.db.update(
            TABLE,
            {"is_active": 0, "superseded_by": new_id, "updated_at": self._now()},
            {"id": old_id, "superseded_by": None},
        )
        return changed > 0

    def delete(self, memory_id: str) -> bool:
        """Soft delete (deactivate without a successor)."""
        return self.db.update(
            TABLE, {"is_active": 0, "updated_at": self._now()}, {"id": memory_id}
        ) > 0

    def clear_all(self, owner: str) -> int:
        """
        Hard-delete every memory row for ``owner`` and its cached context.

        Used only for explicit user-initiated wipes. Always succeeds, even
        when there is nothing to delete.

        Returns:
            Number of memory rows removed
        """
        removed = self.db.delete(TABLE, {"owner": owner})
        self.db.delete("context_cache", {"owner": owner})
        logger.info("Wiped %d memories for %s", removed, owner)
        return removed
