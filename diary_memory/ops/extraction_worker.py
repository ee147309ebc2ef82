"""
Extraction worker - turns one diary entry into memory writes.

Steps:
    1. Load the entry, recent entries and existing memories
    2. Ask the extraction proposer for candidate memories
    3. Apply each valid candidate (new / update / confirm)
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from diary_memory.errors import ExtractionFailed, NotFoundError
from diary_memory.memory.schemas import ExtractedMemory, Memory
from diary_memory.memory.store import MemoryStore

if TYPE_CHECKING:
    from diary_memory.memory.schemas import ExtractionJob
    from .jobs import ExtractionJobManager

logger = logging.getLogger(__name__)


@dataclass
class ExtractionOutcome:
    """What one extraction run proposed and wrote."""

    proposals: List[ExtractedMemory] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    confirmed: List[str] = field(default_factory=list)
    skipped: int = 0
    note: Optional[str] = None

    @property
    def stored(self) -> int:
        """New rows written (creations and replacements)."""
        return len(self.created) + len(self.updated)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.confirmed)


def validate_extracted_memory(memory: ExtractedMemory) -> List[str]:
    """
    Problems that make a candidate unusable; empty list means valid.
    """
    problems = []
    if not memory.content or len(memory.content.strip()) < 3:
        problems.append("content too short")
    if not 0.0 <= memory.confidence <= 1.0:
        problems.append(f"confidence out of range: {memory.confidence}")
    if not 1 <= memory.importance <= 10:
        problems.append(f"importance out of range: {memory.importance}")
    if memory.action in ("update", "confirm") and not memory.related_memory_id:
        problems.append(f"{memory.action} without related memory id")
    return problems


def _resolve_related(store: MemoryStore, owner: str, memory_id: str) -> Optional[Memory]:
    related = store.resolve_current(memory_id)
    if related is None or related.owner != owner or not related.is_active:
        return None
    return related


def apply_extracted_memories(
    store: MemoryStore,
    owner: str,
    entry_id: str,
    proposals: Sequence[ExtractedMemory],
) -> ExtractionOutcome:
    """
    Write extracted candidates to the store.

    - new: create with provenance [entry_id]
    - update: create a replacement carrying the old provenance plus
      entry_id, then supersede the old memory
    - confirm: bump mention count of the existing memory

    Related ids are followed through the supersede chain. Invalid
    candidates are skipped with a warning; storage errors propagate.

    Args:
        store: MemoryStore instance
        owner: User identifier
        entry_id: Diary entry the candidates came from
        proposals: Candidates from the proposer

    Returns:
        ExtractionOutcome
    """
    outcome = ExtractionOutcome(proposals=list(proposals))

    for proposal in proposals:
        problems = validate_extracted_memory(proposal)
        if problems:
            logger.warning("Skipping invalid extracted memory (%s): %r", ", ".join(problems), proposal.content)
            outcome.skipped += 1
            continue

        if proposal.action == "new":
            memory = store.create(
                owner=owner,
                memory_type=proposal.memory_type,
                content=proposal.content.strip(),
                category=proposal.category,
                source_entry_ids=[entry_id],
                confidence=proposal.confidence,
                importance=proposal.importance,
            )
            outcome.created.append(memory.id)
            continue

        related = _resolve_related(store, owner, proposal.related_memory_id)
        if related is None:
            logger.warning("Related memory %s not usable for %s, skipping", proposal.related_memory_id, owner)
            outcome.skipped += 1
            continue

        if proposal.action == "update":
            sources = list(related.source_entry_ids or [])
            if entry_id not in sources:
                sources.append(entry_id)
            replacement = store.create(
                owner=owner,
                memory_type=proposal.memory_type,
                content=proposal.content.strip(),
                category=proposal.category,
                source_entry_ids=sources,
                confidence=proposal.confidence,
                importance=proposal.importance,
            )
            store.supersede(related.id, replacement.id)
            outcome.updated.append(replacement.id)
        else:
            store.confirm(related.id)
            outcome.confirmed.append(related.id)

    return outcome


async def run_extraction(job: "ExtractionJob", manager: "ExtractionJobManager") -> ExtractionOutcome:
    """
    Run extraction for a claimed job.

    Raises:
        NotFoundError: If the diary entry does not exist
        ExtractionFailed: If the proposer fails
    """
    entry = manager.entries.get_entry(job.owner, job.source_entry_id)
    if entry is None:
        raise NotFoundError("diary entry", job.source_entry_id)

    text = (entry.detail or "").strip()
    if len(text) < manager.cfg.min_entry_chars:
        return ExtractionOutcome(note="Entry too short for extraction")

    recent = manager.entries.recent_entries(
        job.owner, exclude_id=entry.id, limit=manager.cfg.recent_entries
    )
    existing = manager.store.get_active(job.owner)

    try:
        proposals = await manager.proposer.propose_memories(job.owner, text, recent, existing)
    except ExtractionFailed:
        raise
    except Exception as e:
        raise ExtractionFailed(f"extraction proposer failed: {e}") from e

    proposals = [
        p if isinstance(p, ExtractedMemory) else ExtractedMemory.model_validate(p)
        for p in proposals or []
    ]
    return apply_extracted_memories(manager.store, job.owner, entry.id, proposals)
