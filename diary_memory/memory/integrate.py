"""
Memory integration hooks for the diary service.

Provides the entry points the rest of the service calls: memory context
for reply generation, user-driven edits (each followed by a cache
invalidation), consolidation, and extraction dispatch.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from diary_memory.clock import Clock, SystemClock
from diary_memory.config.settings import Settings
from diary_memory.persist.sqlite_store import SQLiteStore
from .consolidation import ConsolidationEngine
from .context_cache import ContextCache
from .proposers import (
    BaseConsolidationProposer,
    BaseEntrySource,
    BaseExtractionProposer,
    InMemoryEntrySource,
    MockConsolidationProposer,
    MockExtractionProposer,
)
from .recall import MemoryRetrieval
from .schemas import ConsolidationResult, Memory, MemoryCategory, MemoryType, RetrievedMemoryContext
from .store import MemoryStore

if TYPE_CHECKING:
    from diary_memory.ops.jobs import ExtractionJobManager

logger = logging.getLogger(__name__)


class MemoryIntegration:
    """
    Integration layer for the memory subsystem.

    Provides:
    - Memory context for reply generation (never raises)
    - Create / update / confirm / forget / wipe with cache invalidation
    - Consolidation passes and extraction dispatch
    """

    def __init__(
        self,
        store: MemoryStore,
        cache: ContextCache,
        retrieval: MemoryRetrieval,
        consolidation: ConsolidationEngine,
        jobs: Optional["ExtractionJobManager"] = None,
    ):
        """
        Initialize memory integration.

        Args:
            store: Memory store
            cache: Context cache
            retrieval: Retrieval and summary builder
            consolidation: Consolidation engine
            jobs: Extraction job manager (optional)
        """
        self.store = store
        self.cache = cache
        self.retrieval = retrieval
        self.consolidation = consolidation
        self.jobs = jobs

    # ------------------------------------------------------------------
    # Reply generation
    # ------------------------------------------------------------------

    def context_for_reply(self, owner: str, max_tokens: Optional[int] = None) -> RetrievedMemoryContext:
        """
        Memory context to prepend to a reply prompt.

        Replies must not fail because of memory: any error is logged and
        an empty context is returned instead.
        """
        try:
            return self.retrieval.get_context(owner, max_tokens)
        except Exception:
            logger.exception("Memory context unavailable for %s", owner)
            return RetrievedMemoryContext()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def remember(
        self,
        owner: str,
        memory_type: MemoryType,
        content: str,
        category: Optional[MemoryCategory] = None,
        source_entry_ids: Optional[List[str]] = None,
        confidence: Optional[float] = None,
        importance: Optional[int] = None,
    ) -> Memory:
        memory = self.store.create(
            owner, memory_type, content, category, source_entry_ids, confidence, importance
        )
        self.cache.invalidate(owner)
        return memory

    def update(self, memory_id: str, **fields) -> Memory:
        """
        Edit a memory in place.

        Raises:
            NotFoundError: If the memory does not exist
            ValidationError: If a field value is rejected
        """
        memory = self.store.require(memory_id)
        self.store.update(memory_id, **fields)
        self.cache.invalidate(memory.owner)
        return self.store.require(memory_id)

    def confirm(self, memory_id: str) -> Memory:
        memory = self.store.require(memory_id)
        self.store.confirm(memory_id)
        self.cache.invalidate(memory.owner)
        return self.store.require(memory_id)

    def user_confirm(self, memory_id: str) -> Memory:
        """The user explicitly confirmed this memory is correct."""
        memory = self.store.require(memory_id)
        self.store.mark_user_confirmed(memory_id)
        self.cache.invalidate(memory.owner)
        return self.store.require(memory_id)

    def forget(self, memory_id: str) -> bool:
        """Deactivate a memory (kept for history, excluded from retrieval)."""
        memory = self.store.require(memory_id)
        changed = self.store.delete(memory_id)
        self.cache.invalidate(memory.owner)
        return changed

    def wipe(self, owner: str) -> int:
        """Hard-delete all memories and cached context of ``owner``."""
        return self.store.clear_all(owner)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    async def consolidate(self, owner: str) -> ConsolidationResult:
        return await self.consolidation.run(owner)

    def dispatch_extraction(self, owner: str, entry_id: str, immediate: Optional[bool] = None) -> Optional[str]:
        """
        Start extraction for a saved diary entry.

        Returns:
            Job ID, or None when a job is already in flight for the entry
        """
        if self.jobs is None:
            raise RuntimeError("No extraction job manager configured")
        return self.jobs.dispatch(owner, entry_id, immediate)


def create_memory_integration(
    settings: Optional[Settings] = None,
    extraction_proposer: Optional[BaseExtractionProposer] = None,
    consolidation_proposer: Optional[BaseConsolidationProposer] = None,
    entry_source: Optional[BaseEntrySource] = None,
    clock: Optional[Clock] = None,
    db: Optional[SQLiteStore] = None,
) -> MemoryIntegration:
    """
    Factory function to wire the memory subsystem.

    Args:
        settings: Application settings (default: built-in defaults)
        extraction_proposer: Extraction call (default: MockExtractionProposer)
        consolidation_proposer: Plan call (default: MockConsolidationProposer)
        entry_source: Diary entry source (default: empty in-memory source)
        clock: Time source
        db: Existing store handle (default: opened at settings.storage.db_path)

    Returns:
        MemoryIntegration with an attached ExtractionJobManager
    """
    from diary_memory.ops.jobs import ExtractionJobManager

    settings = settings or Settings()
    clock = clock or SystemClock()
    db = db or SQLiteStore(settings.storage.db_path)

    store = MemoryStore(db, clock)
    cache = ContextCache(db, clock)
    retrieval = MemoryRetrieval(store, cache, settings.retrieval, clock)
    consolidation = ConsolidationEngine(
        store, cache, consolidation_proposer or MockConsolidationProposer(), settings.consolidation
    )
    jobs = ExtractionJobManager(
        db,
        store,
        cache,
        extraction_proposer or MockExtractionProposer(),
        entry_source or InMemoryEntrySource(),
        cfg=settings.extraction,
        clock=clock,
        consolidation=consolidation,
    )

    logger.info("Memory subsystem ready (db=%s)", db.db_path)
    return MemoryIntegration(store, cache, retrieval, consolidation, jobs)
