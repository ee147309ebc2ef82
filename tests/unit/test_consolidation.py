"""
Unit tests for consolidation plan validation and application.
"""

import pytest

from diary_memory.config.settings import ConsolidationCfg
from diary_memory.errors import ConsolidationProposalFailed, ValidationError
from diary_memory.memory.consolidation import (
    CONSOLIDATION_TARGET,
    CONSOLIDATION_THRESHOLD,
    ConsolidationEngine,
    validate_plan,
)
from diary_memory.memory.proposers import BaseConsolidationProposer, MockConsolidationProposer
from diary_memory.memory.schemas import ConsolidationPlan, MergeGroup


def _memories(store, *names, owner="U"):
    """Create memories whose content is the given name; returns name -> Memory."""
    return {name: store.create(owner, "fact", name) for name in names}


def _plan(keep=(), merge=(), deactivate=()):
    return ConsolidationPlan(keep=list(keep), merge=list(merge), deactivate=list(deactivate))


# ============================================================================
# Validation
# ============================================================================

def test_thresholds_have_hysteresis():
    assert CONSOLIDATION_THRESHOLD > CONSOLIDATION_TARGET
    assert CONSOLIDATION_THRESHOLD == 20
    assert CONSOLIDATION_TARGET == 15


def test_valid_partition(store):
    m = _memories(store, "a", "b", "c", "d")
    plan = _plan(
        keep=[m["a"].id],
        merge=[MergeGroup(source_ids=[m["b"].id, m["c"].id], content="merged")],
        deactivate=[m["d"].id],
    )

    result = validate_plan(plan, list(m.values()))

    assert result.valid is True
    assert result.errors == []


def test_unknown_id_in_keep(store):
    m = _memories(store, "a")
    plan = _plan(keep=[m["a"].id, "unknown"])

    result = validate_plan(plan, list(m.values()))

    assert result.valid is False
    assert "keep contains unknown ID: unknown" in result.errors


def test_duplicate_across_buckets(store):
    m = _memories(store, "a", "b")
    a, b = m["a"].id, m["b"].id
    plan = _plan(keep=[a], deactivate=[a, b])

    result = validate_plan(plan, list(m.values()))

    assert result.valid is False
    assert f"Duplicate ID across actions: {a}" in result.errors


def test_duplicate_within_bucket(store):
    m = _memories(store, "a")
    a = m["a"].id

    result = validate_plan(_plan(keep=[a, a]), list(m.values()))

    assert result.errors == [f"Duplicate ID across actions: {a}"]


def test_unassigned_memory(store):
    m = _memories(store, "a", "b")

    result = validate_plan(_plan(keep=[m["a"].id]), list(m.values()))

    assert result.errors == [f"Memory {m['b'].id} not assigned to any action"]


def test_merge_group_shape(store):
    m = _memories(store, "a", "b")
    plan = _plan(
        keep=[m["b"].id],
        merge=[MergeGroup(source_ids=[m["a"].id], content="  ")],
    )

    result = validate_plan(plan, list(m.values()))

    assert "merge group must have at least 2 sources" in result.errors
    assert "merge group has empty content" in result.errors


def test_all_problems_reported_together(store):
    m = _memories(store, "a", "b", "c")
    a = m["a"].id
    plan = _plan(keep=[a, "ghost"], deactivate=[a])

    result = validate_plan(plan, list(m.values()))

    assert "keep contains unknown ID: ghost" in result.errors
    assert f"Duplicate ID across actions: {a}" in result.errors
    assert f"Memory {m['b'].id} not assigned to any action" in result.errors
    assert f"Memory {m['c'].id} not assigned to any action" in result.errors


def test_empty_plan_over_empty_set_is_valid():
    assert validate_plan(_plan(), []).valid is True


# ============================================================================
# Apply
# ============================================================================

def test_apply_merges_and_deactivates(store, cache):
    a = store.create("U", "fact", "a")
    b = store.create("U", "pattern", "b", source_entry_ids=["e1", "e2"], confidence=0.6)
    c = store.create("U", "pattern", "c", source_entry_ids=["e2", "e3"], confidence=0.9)
    d = store.create("U", "fact", "d")
    cache.upsert("U", "old summary", [a, b, c, d])
    engine = ConsolidationEngine(store, cache)
    plan = _plan(
        keep=[a.id],
        merge=[MergeGroup(
            source_ids=[b.id, c.id], content="Runs b and c",
            memory_type="pattern", category="health", importance=7,
        )],
        deactivate=[d.id],
    )

    result = engine.apply("U", plan, [a, b, c, d])

    assert result.merged_count == 1
    assert result.deactivated_count == 1
    merged = store.require(result.created_ids[0])
    assert merged.content == "Runs b and c"
    assert merged.memory_type == "pattern"
    assert merged.category == "health"
    assert merged.importance == 7
    assert merged.confidence == 0.9
    assert merged.source_entry_ids == ["e1", "e2", "e3"]
    assert store.require(b.id).superseded_by == merged.id
    assert store.require(c.id).superseded_by == merged.id
    assert store.require(d.id).is_active is False
    assert store.require(d.id).superseded_by is None
    assert {m.id for m in store.get_active("U")} == {a.id, merged.id}
    assert cache.get_valid("U") is None


def test_apply_rejects_invalid_plan_without_writes(store, cache):
    m = _memories(store, "a", "b")
    engine = ConsolidationEngine(store, cache)

    with pytest.raises(ValidationError) as exc_info:
        engine.apply("U", _plan(keep=[m["a"].id]), list(m.values()))

    assert exc_info.value.errors == [f"Memory {m['b'].id} not assigned to any action"]
    assert store.count_active("U") == 2


def test_apply_protects_user_confirmed(store, cache):
    keep = store.create("U", "fact", "keep")
    precious = store.create("U", "fact", "precious")
    store.mark_user_confirmed(precious.id)
    memories = store.get_active("U")
    engine = ConsolidationEngine(store, cache)

    result = engine.apply("U", _plan(keep=[keep.id], deactivate=[precious.id]), memories)

    assert result.deactivated_count == 0
    assert store.require(precious.id).is_active is True


def test_merge_inherits_user_confirmation(store, cache):
    x = store.create("U", "fact", "x")
    y = store.create("U", "fact", "y")
    store.mark_user_confirmed(y.id)
    memories = store.get_active("U")
    engine = ConsolidationEngine(store, cache)

    result = engine.apply(
        "U", _plan(merge=[MergeGroup(source_ids=[x.id, y.id], content="x and y")]), memories
    )

    assert store.require(result.created_ids[0]).user_confirmed is True


# ============================================================================
# Run
# ============================================================================

class FailingProposer(BaseConsolidationProposer):
    async def propose_consolidation_plan(self, owner, active_memories, target):
        raise RuntimeError("model unavailable")


class BadPlanProposer(BaseConsolidationProposer):
    async def propose_consolidation_plan(self, owner, active_memories, target):
        return ConsolidationPlan(keep=["ghost"])


@pytest.mark.asyncio
async def test_run_skips_at_threshold(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD)
    engine = ConsolidationEngine(store, cache, MockConsolidationProposer())

    result = await engine.run("U123")

    assert result.skipped is True
    assert store.count_active("U123") == CONSOLIDATION_THRESHOLD


@pytest.mark.asyncio
async def test_run_reduces_to_target(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD + 5)
    engine = ConsolidationEngine(store, cache, MockConsolidationProposer())

    result = await engine.run("U123")

    assert result.skipped is False
    assert result.errors == []
    assert result.deactivated_count == 10
    assert store.count_active("U123") == CONSOLIDATION_TARGET


@pytest.mark.asyncio
async def test_run_merges_duplicates(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD)
    store.create("U123", "fact", "memory number 0", source_entry_ids=["e9"])
    engine = ConsolidationEngine(store, cache, MockConsolidationProposer())

    result = await engine.run("U123")

    assert result.merged_count == 1
    merged = store.require(result.created_ids[0])
    assert merged.content == "memory number 0"
    assert merged.source_entry_ids == ["e9"]


@pytest.mark.asyncio
async def test_run_records_proposer_failure(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD + 1)
    engine = ConsolidationEngine(store, cache, FailingProposer())

    result = await engine.run("U123")

    assert result.errors == ["proposal failed: model unavailable"]
    assert store.count_active("U123") == CONSOLIDATION_THRESHOLD + 1


@pytest.mark.asyncio
async def test_propose_wraps_proposer_errors(store, cache, add_memories):
    memories = add_memories(3)
    engine = ConsolidationEngine(store, cache, FailingProposer())

    with pytest.raises(ConsolidationProposalFailed, match="model unavailable") as exc_info:
        await engine.propose("U123", memories)

    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_propose_without_proposer_keeps_all(store, cache, add_memories):
    memories = add_memories(3)
    engine = ConsolidationEngine(store, cache, None)

    plan = await engine.propose("U123", memories)

    assert sorted(plan.keep) == sorted(m.id for m in memories)
    assert plan.merge == [] and plan.deactivate == []


@pytest.mark.asyncio
async def test_run_rejects_invalid_plan(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD + 1)
    engine = ConsolidationEngine(store, cache, BadPlanProposer())

    result = await engine.run("U123")

    assert "keep contains unknown ID: ghost" in result.errors
    assert result.merged_count == 0
    assert store.count_active("U123") == CONSOLIDATION_THRESHOLD + 1


@pytest.mark.asyncio
async def test_run_without_proposer_keeps_everything(store, cache, add_memories):
    add_memories(CONSOLIDATION_THRESHOLD + 1)
    engine = ConsolidationEngine(store, cache)

    result = await engine.run("U123")

    assert result.errors == []
    assert result.merged_count == 0
    assert result.deactivated_count == 0


def test_custom_thresholds_are_honoured(store, cache, add_memories):
    add_memories(6)
    engine = ConsolidationEngine(store, cache, cfg=ConsolidationCfg(threshold=5, target=3))

    assert engine.needs_consolidation("U123") is True
