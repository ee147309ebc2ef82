"""Application settings and configuration schema."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, model_validator


class StorageCfg(BaseModel):
    """Relational store location."""
    db_path: str = "data/memory/memory.db"


class RetrievalCfg(BaseModel):
    """Hybrid scoring and context budget."""
    max_tokens: int = 500
    candidate_limit: int = 20
    targeted_limit: int = 10
    recency_days: int = 7
    importance_weight: float = 0.4
    mention_weight: float = 0.3
    recency_bonus: float = 2.0
    user_confirmed_bonus: float = 1.0


class ConsolidationCfg(BaseModel):
    """Consolidation trigger (threshold) and goal (target) sizes."""
    threshold: int = 20
    target: int = 15
    protect_user_confirmed: bool = True

    @model_validator(mode="after")
    def _check_hysteresis(self) -> "ConsolidationCfg":
        if self.threshold <= self.target:
            raise ValueError(
                f"consolidation threshold ({self.threshold}) must be greater "
                f"than target ({self.target})"
            )
        return self


class ExtractionCfg(BaseModel):
    """Extraction job pipeline."""
    retention_days: int = 30
    sweep_batch_size: int = 10
    min_entry_chars: int = 10
    recent_entries: int = 5
    immediate: bool = True


class LoggingCfg(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    """Main application settings."""
    storage: StorageCfg = StorageCfg()
    retrieval: RetrievalCfg = RetrievalCfg()
    consolidation: ConsolidationCfg = ConsolidationCfg()
    extraction: ExtractionCfg = ExtractionCfg()
    logging: LoggingCfg = LoggingCfg()

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]]) -> "Settings":
        """
        Load settings from a JSON file.

        Missing keys fall back to defaults; a missing file yields defaults.
        """
        if path is None:
            return cls()
        path = Path(path)
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            return cls.model_validate(json.load(f))


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging once (no-op if handlers are already installed)."""
    cfg = (settings or Settings()).logging
    logging.basicConfig(level=cfg.level.upper(), format=cfg.format)
