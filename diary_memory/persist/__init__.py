"""
Persistence layer.

Provides the SQLite-backed relational store shared by the memory store,
the context cache and the extraction job pipeline.
"""

from .sqlite_store import SQLiteStore, escape_like, TABLES

__all__ = ["SQLiteStore", "escape_like", "TABLES"]
