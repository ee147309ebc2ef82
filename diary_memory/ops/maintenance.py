"""
Periodic memory maintenance.

Meant to be called from a scheduler heartbeat. Phases run independently;
a failure in one is logged and reported without stopping the others.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from diary_memory.memory.consolidation import ConsolidationEngine
from .jobs import ExtractionJobManager

logger = logging.getLogger(__name__)


class MaintenanceReport(BaseModel):
    """Per-phase counts of one maintenance run."""

    jobs_removed: int = 0
    jobs_swept: int = 0
    owners_consolidated: List[str] = Field(default_factory=list)
    memories_merged: int = 0
    memories_deactivated: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)


async def run_memory_maintenance(
    jobs: ExtractionJobManager,
    consolidation: ConsolidationEngine,
    sweep_limit: Optional[int] = None,
) -> MaintenanceReport:
    """
    Run one maintenance cycle.

    1. Remove finished jobs past the retention window
    2. Process pending extraction jobs
    3. Consolidate every owner above the threshold

    Args:
        jobs: Extraction job manager
        consolidation: Consolidation engine
        sweep_limit: Max pending jobs to process (default from config)

    Returns:
        MaintenanceReport
    """
    report = MaintenanceReport()

    try:
        report.jobs_removed = jobs.cleanup_old_jobs()
    except Exception as e:
        logger.exception("Job cleanup failed")
        report.errors["cleanup"] = str(e)

    try:
        report.jobs_swept = len(await jobs.sweep_pending(sweep_limit))
    except Exception as e:
        logger.exception("Pending job sweep failed")
        report.errors["sweep"] = str(e)

    try:
        owners = consolidation.store.owners_with_memories()
    except Exception as e:
        logger.exception("Listing owners for consolidation failed")
        report.errors["consolidation"] = str(e)
        owners = []

    for owner in owners:
        try:
            if not consolidation.needs_consolidation(owner):
                continue
            result = await consolidation.run(owner)
        except Exception as e:
            logger.exception("Consolidation failed for %s", owner)
            report.errors[f"consolidation:{owner}"] = str(e)
            continue
        if result.errors:
            report.errors[f"consolidation:{owner}"] = "; ".join(result.errors)
            continue
        report.owners_consolidated.append(owner)
        report.memories_merged += result.merged_count
        report.memories_deactivated += result.deactivated_count

    logger.info(
        "Maintenance done: %d jobs removed, %d swept, %d owners consolidated",
        report.jobs_removed, report.jobs_swept, len(report.owners_consolidated),
    )
    return report
