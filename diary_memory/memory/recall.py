"""
Memory recall for reply generation.

Ranks active memories with explicit structured scoring (no embeddings):
- Importance: 0.4 per point
- Mention frequency: 0.3 per mention
- Recency: +2 if confirmed within the last 7 days
- User confirmation: +1

The formatted summary is cached per owner and served until a write
invalidates it. Narrow read paths (by type, goals, patterns, relationships,
keyword search) go straight to the store.
"""

import logging
import math
import re
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from diary_memory.clock import Clock, SystemClock
from diary_memory.config.settings import RetrievalCfg
from .context_cache import ContextCache
from .schemas import (
    MEMORY_CATEGORIES,
    Memory,
    MemoryCategory,
    MemoryStats,
    MemoryType,
    RetrievedMemoryContext,
)
from .store import MemoryStore

logger = logging.getLogger(__name__)


SUMMARY_HEADER = "## What I know about this user"

CATEGORY_ORDER: List[MemoryCategory] = ["work", "family", "personal", "health", "hobby", "general"]

CATEGORY_LABELS: Dict[str, str] = {
    "work": "Work",
    "health": "Health",
    "hobby": "Hobbies",
    "family": "Family",
    "personal": "Personal",
    "general": "Other",
}

TYPE_LABELS: Dict[str, str] = {
    "fact": "fact",
    "preference": "preference",
    "pattern": "pattern",
    "relationship": "relationship",
    "goal": "goal",
    "emotion_trigger": "emotion trigger",
}

# Hiragana, katakana and CJK unified ideographs.
_WIDE_CHARS = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")


# ============================================================================
# Token budget helpers
# ============================================================================

def estimate_tokens(text: str) -> int:
    """
    Rough token count.

    Wide-script characters count ~1.5 tokens each, everything else ~0.25
    (four characters per token).
    """
    wide = len(_WIDE_CHARS.findall(text))
    other = len(text) - wide
    return math.ceil(wide * 1.5 + other * 0.25)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """
    Fit ``text`` into ``max_tokens`` by dropping whole trailing lines.

    A line is never cut in the middle.
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    kept: List[str] = []
    tokens = 0
    for line in text.split("\n"):
        line_tokens = estimate_tokens(line + "\n")
        if tokens + line_tokens > max_tokens:
            break
        kept.append(line)
        tokens += line_tokens

    return "\n".join(kept).rstrip()


def build_memory_summary(memories: Sequence[Memory], max_tokens: int) -> str:
    """
    Format memories as a prompt section grouped by category.

    Categories appear in fixed priority order; empty categories are omitted.
    """
    if not memories:
        return ""

    grouped: Dict[str, List[Memory]] = {}
    for memory in memories:
        grouped.setdefault(memory.category or "general", []).append(memory)

    summary = f"{SUMMARY_HEADER}\n"
    for category in CATEGORY_ORDER:
        items = grouped.get(category)
        if not items:
            continue
        summary += f"\n### {CATEGORY_LABELS[category]}\n"
        for memory in items:
            summary += f"- {memory.content}\n"

    return truncate_to_tokens(summary, max_tokens)


def format_memory_for_display(memory: Memory) -> str:
    """One-line rendering with type and category tags."""
    parts = [memory.content]
    type_label = TYPE_LABELS.get(memory.memory_type)
    if type_label:
        parts.append(f"[{type_label}]")
    category_label = CATEGORY_LABELS.get(memory.category)
    if category_label:
        parts.append(f"[{category_label}]")
    return " ".join(parts)


# ============================================================================
# Retrieval
# ============================================================================

class MemoryRetrieval:
    """
    Builds (and caches) the memory context used for reply generation.
    """

    def __init__(
        self,
        store: MemoryStore,
        cache: ContextCache,
        cfg: Optional[RetrievalCfg] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize retrieval.

        Args:
            store: MemoryStore instance
            cache: ContextCache instance
            cfg: Scoring weights and limits
            clock: Time source for the recency bonus
        """
        self.store = store
        self.cache = cache
        self.cfg = cfg or RetrievalCfg()
        self.clock = clock or store.clock or SystemClock()

    def score(self, memory: Memory) -> float:
        """Hybrid relevance score for one memory."""
        cutoff = self.clock.now() - timedelta(days=self.cfg.recency_days)
        score = memory.importance * self.cfg.importance_weight
        score += memory.mention_count * self.cfg.mention_weight
        if memory.last_confirmed_at > cutoff:
            score += self.cfg.recency_bonus
        if memory.user_confirmed:
            score += self.cfg.user_confirmed_bonus
        return score

    def rank(self, memories: Sequence[Memory], limit: Optional[int] = None) -> List[Memory]:
        """Sort by hybrid score (stable over the default store order)."""
        ranked = sorted(memories, key=self.score, reverse=True)
        return ranked[:limit] if limit is not None else ranked

    def get_context(self, owner: str, max_tokens: Optional[int] = None) -> RetrievedMemoryContext:
        """
        Memory context for reply generation.

        Serves the cached summary while it is valid; otherwise ranks the
        active memories, rebuilds the summary and stores it in the cache.

        Args:
            owner: User identifier
            max_tokens: Token budget for the summary (default from config)

        Returns:
            RetrievedMemoryContext
        """
        if max_tokens is None:
            max_tokens = self.cfg.max_tokens

        cached = self.cache.get_valid(owner)
        if cached is not None:
            # Built for a possibly larger budget; trimming keeps whole lines.
            summary = truncate_to_tokens(cached.context_summary, max_tokens)
            return RetrievedMemoryContext(
                summary=summary,
                memories=cached.memory_snapshot,
                token_estimate=estimate_tokens(summary),
                cache_hit=True,
            )

        memories = self.rank(self.store.get_active(owner), limit=self.cfg.candidate_limit)
        if not memories:
            return RetrievedMemoryContext()

        summary = build_memory_summary(memories, max_tokens)
        self.cache.upsert(owner, summary, memories)
        logger.info("Rebuilt memory context for %s (%d memories)", owner, len(memories))

        return RetrievedMemoryContext(
            summary=summary,
            memories=memories,
            token_estimate=estimate_tokens(summary),
            cache_hit=False,
        )

    # ------------------------------------------------------------------
    # Targeted reads (uncached)
    # ------------------------------------------------------------------

    def get_memories_for_types(
        self,
        owner: str,
        types: Sequence[MemoryType],
        limit: Optional[int] = None,
    ) -> List[Memory]:
        return self.store.list_active(
            owner, types=types, limit=limit if limit is not None else self.cfg.targeted_limit
        )

    def get_goal_memories(self, owner: str) -> List[Memory]:
        return self.store.list_active(owner, types=["goal"], order_by=("importance DESC",))

    def get_pattern_memories(self, owner: str) -> List[Memory]:
        """Patterns and emotion triggers, for proactive support."""
        return self.store.list_active(
            owner, types=["pattern", "emotion_trigger"], order_by=("importance DESC",)
        )

    def get_relationship_memories(self, owner: str) -> List[Memory]:
        return self.store.list_active(
            owner, types=["relationship"], order_by=("mention_count DESC",)
        )

    def search_memories(self, owner: str, query: str, limit: Optional[int] = None) -> List[Memory]:
        return self.store.search(
            owner, query, limit=limit if limit is not None else self.cfg.targeted_limit
        )

    def get_memories_grouped_by_category(self, owner: str) -> Dict[str, List[Memory]]:
        grouped: Dict[str, List[Memory]] = {c: [] for c in MEMORY_CATEGORIES}
        memories = self.store.list_active(owner, order_by=("category ASC", "importance DESC"))
        for memory in memories:
            grouped[memory.category or "general"].append(memory)
        return grouped

    def get_memory_stats(self, owner: str) -> MemoryStats:
        """Counts by type/category plus oldest and newest observation."""
        stats = MemoryStats()
        for memory in self.store.get_active(owner):
            stats.total_count += 1
            stats.by_type[memory.memory_type] = stats.by_type.get(memory.memory_type, 0) + 1
            stats.by_category[memory.category] = stats.by_category.get(memory.category, 0) + 1
            if stats.oldest_memory is None or memory.first_observed_at < stats.oldest_memory:
                stats.oldest_memory = memory.first_observed_at
            if stats.newest_memory is None or memory.last_confirmed_at > stats.newest_memory:
                stats.newest_memory = memory.last_confirmed_at
        return stats
