"""
Background work for the memory subsystem.

Provides per-entry extraction jobs with persistent state and the periodic
maintenance cycle.
"""

from .jobs import ExtractionJobManager
from .extraction_worker import apply_extracted_memories, run_extraction
from .maintenance import MaintenanceReport, run_memory_maintenance

__all__ = [
    "ExtractionJobManager",
    "apply_extracted_memories",
    "run_extraction",
    "MaintenanceReport",
    "run_memory_maintenance",
]
