"""
Unit tests for the per-owner context cache table.
"""

from diary_memory.memory.context_cache import ContextCache


def test_upsert_and_get(store, cache, clock):
    memory = store.create("U", "fact", "Works as a nurse")

    cache.upsert("U", "summary text", [memory])
    entry = cache.get("U")

    assert entry.context_summary == "summary text"
    assert [m.id for m in entry.memory_snapshot] == [memory.id]
    assert entry.memory_snapshot[0].content == "Works as a nurse"
    assert entry.last_updated_at == clock.now()
    assert entry.is_valid is True


def test_missing_owner(cache):
    assert cache.get("nobody") is None
    assert cache.get_valid("nobody") is None
    assert cache.invalidate("nobody") is False


def test_invalidate_then_rebuild(cache, clock):
    cache.upsert("U", "v1", [])
    clock.advance(minutes=1)

    assert cache.invalidate("U") is True
    assert cache.is_valid("U") is False
    assert cache.get("U").invalidated_at == clock.now()

    cache.upsert("U", "v2", [])

    assert cache.is_valid("U") is True
    assert cache.get_valid("U").context_summary == "v2"


def test_one_row_per_owner(db, cache):
    cache.upsert("U", "v1", [])
    cache.upsert("U", "v2", [])
    cache.upsert("V", "other", [])

    assert db.count("context_cache") == 2


def test_stats_delete_and_purge(cache):
    cache.upsert("U", "u summary", [])
    cache.upsert("V", "v summary", [])
    cache.invalidate("V")

    stats = cache.stats()
    assert stats["count"] == 2
    assert stats["valid"] == 1
    assert stats["total_bytes"] > 0

    assert cache.delete("U") is True
    assert cache.purge() == 1
    assert cache.get("V") is None


def test_snapshot_survives_reopen(tmp_path, clock):
    from diary_memory.memory.store import MemoryStore
    from diary_memory.persist.sqlite_store import SQLiteStore

    with SQLiteStore(tmp_path / "m.db") as db:
        memory = MemoryStore(db, clock).create("U", "goal", "日本語を勉強する", source_entry_ids=["e1"])
        ContextCache(db, clock).upsert("U", "summary", [memory])

    with SQLiteStore(tmp_path / "m.db") as db:
        entry = ContextCache(db, clock).get("U")

    assert entry.memory_snapshot[0].content == "日本語を勉強する"
    assert entry.memory_snapshot[0].source_entry_ids == ["e1"]
