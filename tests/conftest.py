"""Test configuration and fixtures."""

from datetime import datetime, timezone
from typing import Generator

import pytest

from diary_memory.clock import FixedClock
from diary_memory.memory.context_cache import ContextCache
from diary_memory.memory.store import MemoryStore
from diary_memory.persist.sqlite_store import SQLiteStore


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned at 2025-01-10 09:00 UTC."""
    return FixedClock(datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def db() -> Generator[SQLiteStore, None, None]:
    """In-memory relational store."""
    store = SQLiteStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def store(db, clock) -> MemoryStore:
    return MemoryStore(db, clock)


@pytest.fixture
def cache(db, clock) -> ContextCache:
    return ContextCache(db, clock)
