"""
Shared fixtures for memory subsystem unit tests.
"""
import pytest

from diary_memory.config.settings import ExtractionCfg, RetrievalCfg
from diary_memory.memory.consolidation import ConsolidationEngine
from diary_memory.memory.proposers import (
    InMemoryEntrySource,
    MockConsolidationProposer,
    MockExtractionProposer,
)
from diary_memory.memory.recall import MemoryRetrieval
from diary_memory.memory.schemas import DiaryEntry
from diary_memory.ops.jobs import ExtractionJobManager


OWNER = "U123"


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def retrieval(store, cache, clock):
    return MemoryRetrieval(store, cache, RetrievalCfg(), clock)


@pytest.fixture
def engine(store, cache):
    return ConsolidationEngine(store, cache, MockConsolidationProposer())


@pytest.fixture
def entries():
    """Entry source with two diary entries for OWNER."""
    return InMemoryEntrySource([
        DiaryEntry(
            id="entry_01",
            owner=OWNER,
            entry_date="2025-01-08",
            detail="I love coffee in the morning. The weather was fine.",
        ),
        DiaryEntry(
            id="entry_02",
            owner=OWNER,
            entry_date="2025-01-09",
            detail="My sister called me about the holidays.",
        ),
    ])


@pytest.fixture
def make_jobs(db, store, cache, clock, entries):
    """Factory for a job manager with a chosen proposer."""
    def _make(proposer=None, consolidation=None, **cfg):
        return ExtractionJobManager(
            db,
            store,
            cache,
            proposer or MockExtractionProposer(),
            entries,
            cfg=ExtractionCfg(**cfg),
            clock=clock,
            consolidation=consolidation,
        )
    return _make


@pytest.fixture
def add_memories(store, owner):
    """Create ``n`` distinct active memories and return them."""
    def _add(n, **kwargs):
        return [
            store.create(owner, kwargs.get("memory_type", "fact"), f"memory number {i}", **{
                k: v for k, v in kwargs.items() if k != "memory_type"
            })
            for i in range(n)
        ]
    return _add
