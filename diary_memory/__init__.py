"""
Diary memory: long-term per-user memory for a journaling companion.

Provides:
- Memory store with lifecycle transitions (confirm, supersede, soft delete, wipe)
- Consolidation plan validation and application
- Hybrid-scored retrieval with an invalidatable context cache
- Idempotent per-entry extraction jobs
"""

__version__ = "0.3.0"
