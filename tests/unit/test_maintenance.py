"""
Unit tests for the periodic maintenance cycle.
"""
import pytest

from diary_memory.memory.consolidation import CONSOLIDATION_TARGET, ConsolidationEngine
from diary_memory.memory.proposers import MockConsolidationProposer
from diary_memory.ops.maintenance import run_memory_maintenance

pytestmark = pytest.mark.asyncio


async def test_maintenance_runs_all_phases(make_jobs, store, cache, clock, owner, add_memories):
    jobs = make_jobs(immediate=False)
    engine = ConsolidationEngine(store, cache, MockConsolidationProposer())

    old = jobs.dispatch(owner, "entry_01")
    await jobs.sweep_pending()
    clock.advance(days=31)
    add_memories(21)
    store.create("V", "fact", "Only memory of V")
    jobs.dispatch(owner, "entry_02")

    report = await run_memory_maintenance(jobs, engine)

    assert report.jobs_removed == 1
    assert jobs.get(old) is None
    assert report.jobs_swept == 1
    assert report.owners_consolidated == [owner]
    assert report.memories_deactivated > 0
    assert report.errors == {}
    assert store.count_active(owner) == CONSOLIDATION_TARGET
    assert store.count_active("V") == 1


async def test_failing_phase_does_not_stop_others(make_jobs, store, cache, owner, add_memories, monkeypatch):
    jobs = make_jobs(immediate=False)
    engine = ConsolidationEngine(store, cache, MockConsolidationProposer())
    add_memories(21)

    def broken_cleanup(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(jobs, "cleanup_old_jobs", broken_cleanup)

    report = await run_memory_maintenance(jobs, engine)

    assert report.errors == {"cleanup": "disk full"}
    assert report.owners_consolidated == [owner]


async def test_rejected_plan_is_reported(make_jobs, store, cache, owner, add_memories):
    from diary_memory.memory.proposers import BaseConsolidationProposer
    from diary_memory.memory.schemas import ConsolidationPlan

    class EmptyPlan(BaseConsolidationProposer):
        async def propose_consolidation_plan(self, owner, active_memories, target):
            return ConsolidationPlan()

    add_memories(21)
    report = await run_memory_maintenance(make_jobs(), ConsolidationEngine(store, cache, EmptyPlan()))

    assert report.owners_consolidated == []
    assert "not assigned to any action" in report.errors[f"consolidation:{owner}"]
