"""
Memory consolidation.

When a user's active memories grow past ``CONSOLIDATION_THRESHOLD``, a
proposer suggests which memories to keep, which groups to merge into one
richer memory and which to retire, aiming for about ``CONSOLIDATION_TARGET``.
The plan is untrusted: it is applied only if it partitions the active set
exactly.
"""

import logging
from typing import Dict, List, Optional, Sequence, Set

from diary_memory.config.settings import ConsolidationCfg
from diary_memory.errors import ConsolidationProposalFailed, ValidationError
from .context_cache import ContextCache
from .proposers import BaseConsolidationProposer, keep_all_plan
from .schemas import ConsolidationPlan, ConsolidationResult, Memory, ValidationResult
from .store import MemoryStore

logger = logging.getLogger(__name__)

# Trigger consolidation when the active count exceeds this.
CONSOLIDATION_THRESHOLD = 20

# Aim for roughly this many memories after a pass.
CONSOLIDATION_TARGET = 15


def validate_plan(plan: ConsolidationPlan, memories: Sequence[Memory]) -> ValidationResult:
    """
    Check that a plan is an exact partition of the active memory ids.

    Every check runs so all problems are reported together:
    1. membership - referenced ids must be active memories
    2. uniqueness - no id in more than one place
    3. completeness - every active id assigned exactly once
    4. merge shape - at least 2 sources and non-empty content per group

    Args:
        plan: Proposed plan
        memories: Current active memories of the owner

    Returns:
        ValidationResult(valid, errors)
    """
    errors: List[str] = []
    known: Set[str] = {m.id for m in memories}
    assigned: Set[str] = set()

    def claim(bucket: str, memory_id: str) -> None:
        if memory_id not in known:
            errors.append(f"{bucket} contains unknown ID: {memory_id}")
        if memory_id in assigned:
            errors.append(f"Duplicate ID across actions: {memory_id}")
        assigned.add(memory_id)

    for memory_id in plan.keep:
        claim("keep", memory_id)

    for group in plan.merge:
        if len(group.source_ids) < 2:
            errors.append("merge group must have at least 2 sources")
        for memory_id in group.source_ids:
            claim("merge", memory_id)
        if not group.content or not group.content.strip():
            errors.append("merge group has empty content")

    for memory_id in plan.deactivate:
        claim("deactivate", memory_id)

    for memory in memories:
        if memory.id not in assigned:
            errors.append(f"Memory {memory.id} not assigned to any action")

    return ValidationResult(valid=not errors, errors=errors)


def _union_source_entries(memories: Sequence[Memory]) -> List[str]:
    seen: Dict[str, None] = {}
    for memory in memories:
        for entry_id in memory.source_entry_ids or []:
            seen.setdefault(entry_id, None)
    return list(seen)


class ConsolidationEngine:
    """
    Validates and applies consolidation plans.

    Applying a plan is a sequence of single-row writes without a
    cross-record transaction; a later pass re-validates against current
    state, so an interrupted apply is never replayed from a stale plan.
    """

    def __init__(
        self,
        store: MemoryStore,
        cache: ContextCache,
        proposer: Optional[BaseConsolidationProposer] = None,
        cfg: Optional[ConsolidationCfg] = None,
    ):
        self.store = store
        self.cache = cache
        self.proposer = proposer
        self.cfg = cfg or ConsolidationCfg(
            threshold=CONSOLIDATION_THRESHOLD, target=CONSOLIDATION_TARGET
        )

    def needs_consolidation(self, owner: str) -> bool:
        return self.store.count_active(owner) > self.cfg.threshold

    def validate(self, plan: ConsolidationPlan, memories: Sequence[Memory]) -> ValidationResult:
        return validate_plan(plan, memories)

    def apply(
        self, owner: str, plan: ConsolidationPlan, memories: Sequence[Memory]
    ) -> ConsolidationResult:
        """
        Apply a plan after validating it.

        Each merge group becomes one new memory (source entries unioned,
        highest source confidence, user confirmation inherited) and every
        source is superseded by it. Deactivated ids are soft-deleted, except
        user-confirmed memories when ``protect_user_confirmed`` is set.
        Kept ids are not touched. The owner's cache is invalidated.

        Raises:
            ValidationError: If the plan is not a valid partition
        """
        validation = validate_plan(plan, memories)
        if not validation.valid:
            raise ValidationError(validation.errors)

        by_id = {m.id: m for m in memories}
        result = ConsolidationResult(owner=owner, active_before=len(memories))

        try:
            for group in plan.merge:
                sources = [by_id[i] for i in group.source_ids]
                merged = self.store.create(
                    owner=owner,
                    memory_type=group.memory_type,
                    content=group.content.strip(),
                    category=group.category,
                    source_entry_ids=_union_source_entries(sources),
                    confidence=max(m.confidence for m in sources),
                    importance=group.importance,
                )
                if any(m.user_confirmed for m in sources):
                    self.store.mark_user_confirmed(merged.id)
                for source in sources:
                    self.store.supersede(source.id, merged.id)

                result.merged_count += 1
                result.created_ids.append(merged.id)
                logger.info(
                    "Merged %d memories into %s for %s", len(sources), merged.id, owner
                )

            for memory_id in plan.deactivate:
                if self.cfg.protect_user_confirmed and by_id[memory_id].user_confirmed:
                    logger.info("Keeping user-confirmed memory %s", memory_id)
                    continue
                if self.store.delete(memory_id):
                    result.deactivated_count += 1
        finally:
            self.cache.invalidate(owner)

        return result

    async def propose(self, owner: str, memories: Sequence[Memory]) -> ConsolidationPlan:
        """
        Ask the proposer for a plan over ``memories``.

        Falls back to a keep-all plan when no proposer is configured.

        Raises:
            ConsolidationProposalFailed: the proposer call failed
        """
        if self.proposer is None:
            logger.warning("No consolidation proposer configured; keeping all memories")
            return keep_all_plan(memories)
        try:
            return await self.proposer.propose_consolidation_plan(owner, memories, self.cfg.target)
        except ConsolidationProposalFailed:
            raise
        except Exception as e:
            raise ConsolidationProposalFailed(f"proposal failed: {e}") from e

    async def run(self, owner: str) -> ConsolidationResult:
        """
        One consolidation pass for ``owner``.

        Skips when the active count is at or below the threshold. Proposer
        failures and invalid plans are recorded in the result; nothing is
        applied in either case.
        """
        memories = self.store.get_active(owner)
        if len(memories) <= self.cfg.threshold:
            logger.debug(
                "%s has %d memories (<= %d), skipping consolidation",
                owner, len(memories), self.cfg.threshold,
            )
            return ConsolidationResult(owner=owner, skipped=True, active_before=len(memories))

        logger.info("Consolidating %d memories for %s", len(memories), owner)

        try:
            plan = await self.propose(owner, memories)
        except ConsolidationProposalFailed as e:
            logger.exception("Consolidation proposal failed for %s", owner)
            return ConsolidationResult(
                owner=owner, active_before=len(memories), errors=[str(e)]
            )

        validation = validate_plan(plan, memories)
        if not validation.valid:
            logger.warning(
                "Rejected consolidation plan for %s: %s", owner, "; ".join(validation.errors)
            )
            return ConsolidationResult(
                owner=owner, active_before=len(memories), errors=validation.errors
            )

        result = self.apply(owner, plan, memories)
        logger.info(
            "Consolidation done for %s: %d merged, %d deactivated",
            owner, result.merged_count, result.deactivated_count,
        )
        return result
