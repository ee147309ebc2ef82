"""
External collaborators of the memory subsystem.

The text-generation calls that propose memories and consolidation plans
live outside this package; they are consumed through the abstract
interfaces below. Mock implementations are deterministic and keyword based,
for local runs and tests.
"""

import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from .schemas import (
    ConsolidationPlan,
    DiaryEntry,
    ExtractedMemory,
    Memory,
    MergeGroup,
)


class BaseExtractionProposer(ABC):
    """Proposes candidate memories from diary text."""

    @abstractmethod
    async def propose_memories(
        self,
        owner: str,
        diary_text: str,
        recent_context: Sequence[DiaryEntry] = (),
        existing_memories: Sequence[Memory] = (),
    ) -> List[ExtractedMemory]:
        """
        Propose memories for one diary entry.

        May return an empty list. Failures should raise ExtractionFailed
        (any exception is recorded as a failed job).
        """
        pass


class BaseConsolidationProposer(ABC):
    """Proposes a keep/merge/deactivate plan over the active memory set."""

    @abstractmethod
    async def propose_consolidation_plan(
        self, owner: str, active_memories: Sequence[Memory], target: int
    ) -> ConsolidationPlan:
        """The returned plan is untrusted and is always validated before use."""
        pass


class BaseEntrySource(ABC):
    """Read access to diary entries (owned by the diary service)."""

    @abstractmethod
    def get_entry(self, owner: str, entry_id: str) -> Optional[DiaryEntry]:
        pass

    @abstractmethod
    def recent_entries(self, owner: str, exclude_id: str, limit: int = 5) -> List[DiaryEntry]:
        """Most recent entries first."""
        pass


class InMemoryEntrySource(BaseEntrySource):
    """Dict-backed entry source."""

    def __init__(self, entries: Optional[Sequence[DiaryEntry]] = None):
        self.entries: Dict[str, DiaryEntry] = {}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: DiaryEntry) -> None:
        self.entries[entry.id] = entry

    def get_entry(self, owner: str, entry_id: str) -> Optional[DiaryEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.owner != owner:
            return None
        return entry

    def recent_entries(self, owner: str, exclude_id: str, limit: int = 5) -> List[DiaryEntry]:
        others = [e for e in self.entries.values() if e.owner == owner and e.id != exclude_id]
        others.sort(key=lambda e: e.entry_date, reverse=True)
        return others[:limit]


def keep_all_plan(memories: Sequence[Memory]) -> ConsolidationPlan:
    """Plan that leaves every memory untouched."""
    return ConsolidationPlan(keep=[m.id for m in memories], merge=[], deactivate=[])


# ============================================================================
# Mock implementations
# ============================================================================

class MockExtractionProposer(BaseExtractionProposer):
    """
    Keyword-based extractor.

    Picks at most three sentences that look like durable statements
    ("I love ...", "my goal is ...", "my sister ...") and confirms an
    existing memory instead of creating a duplicate when the content matches.
    """

    RULES = [
        (re.compile(r"\b(i want to|my goal is|i plan to|i hope to)\b", re.I), "goal", 7),
        (re.compile(r"\b(i love|i like|i prefer|i enjoy|i hate)\b", re.I), "preference", 5),
        (re.compile(r"\b(every (day|morning|night|week|monday|weekend)|always|usually)\b", re.I), "pattern", 5),
        (re.compile(r"\b(my (wife|husband|partner|mother|mom|father|dad|sister|brother|friend|boss|son|daughter))\b", re.I), "relationship", 6),
        (re.compile(r"\b(makes me (anxious|angry|sad|stressed|nervous))\b", re.I), "emotion_trigger", 6),
        (re.compile(r"\b(i work|i am a|i'm a|i live)\b", re.I), "fact", 6),
    ]

    CATEGORY_HINTS = [
        (re.compile(r"\b(work|job|office|boss|meeting|project|colleague)\b", re.I), "work"),
        (re.compile(r"\b(wife|husband|partner|mother|mom|father|dad|sister|brother|son|daughter|family)\b", re.I), "family"),
        (re.compile(r"\b(run|running|gym|sleep|doctor|health|diet|walk)\b", re.I), "health"),
        (re.compile(r"\b(game|games|guitar|reading|book|movie|music|hobby|painting|cooking)\b", re.I), "hobby"),
        (re.compile(r"\b(coffee|tea|friend|home|weekend)\b", re.I), "personal"),
    ]

    max_memories = 3

    async def propose_memories(
        self,
        owner: str,
        diary_text: str,
        recent_context: Sequence[DiaryEntry] = (),
        existing_memories: Sequence[Memory] = (),
    ) -> List[ExtractedMemory]:
        existing = {m.content.strip().lower(): m for m in existing_memories}
        proposals: List[ExtractedMemory] = []

        for sentence in re.split(r"(?<=[.!?])\s+|\n+", diary_text):
            sentence = sentence.strip().rstrip(".!?")
            if len(sentence) < 3:
                continue

            memory_type = None
            importance = 5
            for pattern, mtype, imp in self.RULES:
                if pattern.search(sentence):
                    memory_type, importance = mtype, imp
                    break
            if memory_type is None:
                continue

            match = existing.get(sentence.lower())
            if match is not None:
                proposals.append(ExtractedMemory(
                    memory_type=match.memory_type,
                    category=match.category,
                    content=match.content,
                    confidence=1.0,
                    importance=match.importance,
                    action="confirm",
                    related_memory_id=match.id,
                ))
            else:
                proposals.append(ExtractedMemory(
                    memory_type=memory_type,
                    category=self._category(sentence),
                    content=sentence,
                    confidence=0.8,
                    importance=importance,
                    action="new",
                ))

            if len(proposals) >= self.max_memories:
                break

        return proposals

    def _category(self, sentence: str) -> str:
        for pattern, category in self.CATEGORY_HINTS:
            if pattern.search(sentence):
                return category
        return "general"


class MockConsolidationProposer(BaseConsolidationProposer):
    """
    Merges memories with identical (type, category, normalized content) and
    retires the least important leftovers until the target is reached.
    """

    async def propose_consolidation_plan(
        self, owner: str, active_memories: Sequence[Memory], target: int
    ) -> ConsolidationPlan:
        if len(active_memories) <= target:
            return keep_all_plan(active_memories)

        groups: Dict[tuple, List[Memory]] = {}
        for memory in active_memories:
            key = (memory.memory_type, memory.category, " ".join(memory.content.lower().split()))
            groups.setdefault(key, []).append(memory)

        plan = ConsolidationPlan()
        singles: List[Memory] = []
        for members in groups.values():
            if len(members) >= 2:
                plan.merge.append(MergeGroup(
                    source_ids=[m.id for m in members],
                    content=members[0].content,
                    memory_type=members[0].memory_type,
                    category=members[0].category,
                    importance=max(m.importance for m in members),
                ))
            else:
                singles.append(members[0])

        remaining = len(plan.merge) + len(singles)
        # Least valuable first; user-confirmed memories sort last.
        singles.sort(key=lambda m: (m.user_confirmed, m.importance, m.mention_count, m.last_confirmed_at))
        for memory in singles:
            if remaining > target and not memory.user_confirmed:
                plan.deactivate.append(memory.id)
                remaining -= 1
            else:
                plan.keep.append(memory.id)

        return plan
