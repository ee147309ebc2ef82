"""Configuration for the memory subsystem."""

from .settings import (
    Settings,
    StorageCfg,
    RetrievalCfg,
    ConsolidationCfg,
    ExtractionCfg,
    LoggingCfg,
    configure_logging,
)

__all__ = [
    "Settings",
    "StorageCfg",
    "RetrievalCfg",
    "ConsolidationCfg",
    "ExtractionCfg",
    "LoggingCfg",
    "configure_logging",
]
