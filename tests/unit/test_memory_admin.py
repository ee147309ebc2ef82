"""
Unit tests for the memory_admin CLI.
"""

import importlib.util
from pathlib import Path

import pytest

from diary_memory.memory.store import MemoryStore
from diary_memory.persist.sqlite_store import SQLiteStore

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "memory_admin.py"


@pytest.fixture
def admin():
    spec = importlib.util.spec_from_file_location("memory_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def db_path(tmp_path, clock):
    path = tmp_path / "memory.db"
    with SQLiteStore(path) as db:
        store = MemoryStore(db, clock)
        store.create("U", "fact", "Works as a nurse")
        store.create("U", "goal", "Run a marathon")
        store.create("V", "fact", "Lives in Osaka")
    return path


def test_requires_an_action(admin, capsys):
    assert admin.main([]) == 1
    assert "Must specify" in capsys.readouterr().out


def test_missing_database(admin, tmp_path, capsys):
    assert admin.main(["--stats", "--db", str(tmp_path / "absent.db")]) == 1
    assert "not found" in capsys.readouterr().out


def test_stats(admin, db_path, capsys):
    assert admin.main(["--stats", "--db", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "Owners with memories: 2" in out
    assert "Active memories:      3" in out


def test_wipe(admin, db_path, clock):
    assert admin.main(["--wipe", "U", "--db", str(db_path)]) == 0

    with SQLiteStore(db_path) as db:
        store = MemoryStore(db, clock)
        assert store.count_active("U") == 0
        assert store.count_active("V") == 1


def test_cleanup_and_purge(admin, db_path, capsys):
    assert admin.main(["--cleanup-jobs", "--purge-cache", "--db", str(db_path)]) == 0

    out = capsys.readouterr().out
    assert "Removed 0 finished jobs" in out
    assert "Purged 0 cached contexts" in out


def test_format_bytes(admin):
    assert admin.format_bytes(512) == "512.0 B"
    assert admin.format_bytes(2048) == "2.0 KB"
