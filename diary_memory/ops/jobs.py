"""
Extraction job management.

One job per diary entry, persisted in the ``extraction_jobs`` table.
Immediate dispatch schedules the work on the running event loop and
returns at once; deferred dispatch leaves a pending job for the periodic
sweep.
"""

import asyncio
import json
import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Set

from diary_memory.clock import Clock, SystemClock, to_iso
from diary_memory.config.settings import ExtractionCfg
from diary_memory.memory.context_cache import ContextCache
from diary_memory.memory.proposers import BaseEntrySource, BaseExtractionProposer
from diary_memory.memory.schemas import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    ExtractedMemory,
    ExtractionJob,
    JobStatus,
)
from diary_memory.memory.store import MemoryStore
from diary_memory.persist.sqlite_store import SQLiteStore
from .extraction_worker import run_extraction

logger = logging.getLogger(__name__)

TABLE = "extraction_jobs"


class ExtractionJobManager:
    """
    In-process extraction runner with persistent job state.

    At most one job per (owner, entry) is in flight: a dispatch while one
    is pending or processing is a no-op. The check is not a lock, so
    truly concurrent dispatches may both proceed; later confirmation and
    consolidation collapse any duplicates that result.
    """

    def __init__(
        self,
        db: SQLiteStore,
        store: MemoryStore,
        cache: ContextCache,
        proposer: BaseExtractionProposer,
        entries: BaseEntrySource,
        cfg: Optional[ExtractionCfg] = None,
        clock: Optional[Clock] = None,
        consolidation=None,
    ):
        """
        Initialize job manager.

        Args:
            db: Relational store handle
            store: MemoryStore the extracted memories are written to
            cache: ContextCache to invalidate after writes
            proposer: External extraction call
            entries: Diary entry source
            cfg: Extraction settings
            clock: Time source
            consolidation: Optional ConsolidationEngine run after a job
                pushes the owner over the threshold
        """
        self.db = db
        self.store = store
        self.cache = cache
        self.proposer = proposer
        self.entries = entries
        self.cfg = cfg or ExtractionCfg()
        self.clock = clock or SystemClock()
        self.consolidation = consolidation

        # Strong references so scheduled tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def find_in_flight(self, owner: str, entry_id: str) -> Optional[ExtractionJob]:
        row = self.db.fetch_one(
            TABLE,
            {"owner": owner, "source_entry_id": entry_id, "status": list(IN_FLIGHT_STATUSES)},
        )
        return ExtractionJob.from_row(row) if row else None

    def dispatch(self, owner: str, entry_id: str, immediate: Optional[bool] = None) -> Optional[str]:
        """
        Create an extraction job for a diary entry.

        Args:
            owner: User identifier
            entry_id: Diary entry identifier
            immediate: Start now (processing) or leave pending for the
                sweep (default from config)

        Returns:
            Job ID, or None if a job for this entry is already in flight
        """
        if immediate is None:
            immediate = self.cfg.immediate

        existing = self.find_in_flight(owner, entry_id)
        if existing is not None:
            logger.info("Extraction already in flight for entry %s (job %s), skipping", entry_id, existing.id)
            return None

        job = ExtractionJob(
            id=f"job_{uuid.uuid4().hex[:12]}",
            owner=owner,
            source_entry_id=entry_id,
            status="processing" if immediate else "pending",
            created_at=self.clock.now(),
        )
        self.db.insert(TABLE, job.to_row())

        if not immediate:
            logger.info("Queued extraction job %s for entry %s", job.id, entry_id)
            return job.id

        try:
            self._schedule(self._run_job(job))
        except RuntimeError as e:
            # No running event loop to hand the work to
            logger.error("Failed to start extraction job %s: %s", job.id, e)
            self._mark_failed(job.id, f"dispatch failed: {e}")
            return job.id

        logger.info("Started extraction job %s for entry %s", job.id, entry_id)
        return job.id

    def _schedule(self, coro) -> asyncio.Task:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self) -> None:
        """Wait until every scheduled job (and follow-up) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def process_job(self, job_id: str) -> Optional[ExtractionJob]:
        """
        Claim a pending job and run it to a terminal state.

        Returns:
            The finished job, or None if it was not pending
        """
        claimed = self.db.update(TABLE, {"status": "processing"}, {"id": job_id, "status": "pending"})
        if not claimed:
            return None
        job = self.get(job_id)
        await self._run_job(job)
        return self.get(job_id)

    async def _run_job(self, job: ExtractionJob) -> None:
        """Execute extraction with state tracking. Never raises."""
        try:
            outcome = await run_extraction(job, self)
        except Exception as e:
            logger.exception("Extraction job %s failed", job.id)
            self._fail_job(job, str(e) or e.__class__.__name__)
            return

        notes = outcome.note or (
            f"Processed {outcome.stored} memories "
            f"({len(outcome.confirmed)} confirmed, {outcome.skipped} skipped)"
        )
        try:
            if outcome.changed:
                self.cache.invalidate(job.owner)
            self._mark_completed(job.id, outcome.proposals, notes)
        except Exception as e:
            logger.exception("Could not record completion of extraction job %s", job.id)
            self._fail_job(job, f"completion failed: {e}")
            return

        logger.info(
            "Extraction job %s completed: %d proposed, %d stored",
            job.id, len(outcome.proposals), outcome.stored,
        )

        try:
            if self.consolidation is not None and self.consolidation.needs_consolidation(job.owner):
                self._schedule(self._run_consolidation(job.owner))
        except Exception:
            logger.exception("Consolidation check after extraction job %s failed", job.id)

    def _fail_job(self, job: ExtractionJob, error: str) -> None:
        """Record a terminal failure and drop the owner's cached context."""
        try:
            self._mark_failed(job.id, error)
        except Exception:
            logger.exception("Could not record failure of extraction job %s", job.id)
        # Some candidates may have been written before the failure.
        try:
            self.cache.invalidate(job.owner)
        except Exception:
            logger.exception("Could not invalidate context cache for %s", job.owner)

    async def _run_consolidation(self, owner: str) -> None:
        try:
            await self.consolidation.run(owner)
        except Exception:
            logger.exception("Consolidation after extraction failed for %s", owner)

    def _mark_completed(self, job_id: str, proposals: List[ExtractedMemory], notes: Optional[str]) -> None:
        self.db.update(
            TABLE,
            {
                "status": "completed",
                "extracted_memories": json.dumps([p.model_dump() for p in proposals]),
                "notes": notes,
                "processed_at": to_iso(self.clock.now()),
            },
            {"id": job_id},
        )

    def _mark_failed(self, job_id: str, error: str) -> None:
        self.db.update(
            TABLE,
            {"status": "failed", "notes": error, "processed_at": to_iso(self.clock.now())},
            {"id": job_id},
        )

    async def sweep_pending(self, limit: Optional[int] = None) -> List[str]:
        """
        Process the oldest pending jobs.

        Args:
            limit: Batch size (default from config)

        Returns:
            IDs of the jobs this sweep processed
        """
        if limit is None:
            limit = self.cfg.sweep_batch_size
        rows = self.db.fetch_all(
            TABLE, {"status": "pending"}, order_by=("created_at ASC",), limit=limit
        )
        processed = []
        for row in rows:
            if await self.process_job(row["id"]) is not None:
                processed.append(row["id"])
        return processed

    # ------------------------------------------------------------------
    # Queries and housekeeping
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        row = self.db.fetch_one(TABLE, {"id": job_id})
        return ExtractionJob.from_row(row) if row else None

    def list_jobs(
        self,
        owner: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: Optional[int] = None,
    ) -> List[ExtractionJob]:
        """Jobs, most recent first."""
        where = {}
        if owner is not None:
            where["owner"] = owner
        if status is not None:
            where["status"] = status
        rows = self.db.fetch_all(TABLE, where, order_by=("created_at DESC",), limit=limit)
        return [ExtractionJob.from_row(r) for r in rows]

    def cleanup_old_jobs(self, retention_days: Optional[int] = None) -> int:
        """
        Remove completed/failed jobs older than the retention window.

        Pending and processing jobs are never removed.

        Returns:
            Number of jobs removed
        """
        days = retention_days if retention_days is not None else self.cfg.retention_days
        cutoff = to_iso(self.clock.now() - timedelta(days=days))
        removed = self.db.delete(
            TABLE, {"status": list(TERMINAL_STATUSES)}, before={"created_at": cutoff}
        )
        if removed:
            logger.info("Cleaned up %d old extraction jobs", removed)
        return removed
