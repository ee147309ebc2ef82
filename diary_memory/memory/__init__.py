"""
Memory subsystem for long-term per-user recall.

Provides:
- Memory records with confirm / supersede / soft delete lifecycle
- Consolidation of oversized memory sets via validated plans
- Hybrid-scored retrieval with a per-owner context cache
"""

from .schemas import (
    Memory,
    MemoryType,
    MemoryCategory,
    ExtractedMemory,
    ExtractionJob,
    DiaryEntry,
    ContextCacheEntry,
    MergeGroup,
    ConsolidationPlan,
    ConsolidationResult,
    ValidationResult,
    RetrievedMemoryContext,
    MemoryStats,
)
from .store import MemoryStore
from .context_cache import ContextCache
from .recall import MemoryRetrieval, estimate_tokens, build_memory_summary, format_memory_for_display
from .consolidation import (
    CONSOLIDATION_THRESHOLD,
    CONSOLIDATION_TARGET,
    ConsolidationEngine,
    validate_plan,
)
from .proposers import (
    BaseExtractionProposer,
    BaseConsolidationProposer,
    BaseEntrySource,
    InMemoryEntrySource,
    MockExtractionProposer,
    MockConsolidationProposer,
)
from .integrate import MemoryIntegration, create_memory_integration

__all__ = [
    "Memory",
    "MemoryType",
    "MemoryCategory",
    "ExtractedMemory",
    "ExtractionJob",
    "DiaryEntry",
    "ContextCacheEntry",
    "MergeGroup",
    "ConsolidationPlan",
    "ConsolidationResult",
    "ValidationResult",
    "RetrievedMemoryContext",
    "MemoryStats",
    "MemoryStore",
    "ContextCache",
    "MemoryRetrieval",
    "estimate_tokens",
    "build_memory_summary",
    "format_memory_for_display",
    "CONSOLIDATION_THRESHOLD",
    "CONSOLIDATION_TARGET",
    "ConsolidationEngine",
    "validate_plan",
    "BaseExtractionProposer",
    "BaseConsolidationProposer",
    "BaseEntrySource",
    "InMemoryEntrySource",
    "MockExtractionProposer",
    "MockConsolidationProposer",
    "MemoryIntegration",
    "create_memory_integration",
]
