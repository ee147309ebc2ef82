"""
Memory system data models.

Defines Memory, ExtractionJob, ContextCacheEntry and the consolidation plan
types. Serialization to storage rows happens only in ``to_row``/``from_row``;
everywhere else the typed models are passed around.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, Field

from diary_memory.clock import from_iso, to_iso


# Type aliases
MemoryType = Literal["fact", "preference", "pattern", "relationship", "goal", "emotion_trigger"]
MemoryCategory = Literal["work", "health", "hobby", "family", "personal", "general"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
MemoryAction = Literal["new", "update", "confirm"]

MEMORY_TYPES: List[str] = list(get_args(MemoryType))
MEMORY_CATEGORIES: List[str] = list(get_args(MemoryCategory))
IN_FLIGHT_STATUSES = ("pending", "processing")
TERMINAL_STATUSES = ("completed", "failed")


class Memory(BaseModel):
    """
    A single durable thing known about a user.

    Invariant: a memory with ``superseded_by`` set is inactive. An inactive
    memory without ``superseded_by`` was deactivated outright.
    """

    id: str = Field(..., description="Unique identifier")
    owner: str = Field(..., description="User the memory belongs to")
    memory_type: MemoryType
    category: MemoryCategory = "general"
    content: str

    # Provenance
    source_entry_ids: Optional[List[str]] = Field(None, description="Originating diary entries, in order")
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    importance: int = 5

    # Lifecycle
    first_observed_at: datetime
    last_confirmed_at: datetime
    mention_count: int = Field(1, ge=1)
    is_active: bool = True
    superseded_by: Optional[str] = None
    user_confirmed: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "id": "mem_3f9a1c2b7d4e",
                "owner": "U123",
                "memory_type": "preference",
                "category": "personal",
                "content": "Drinks coffee every morning",
                "source_entry_ids": ["entry_01"],
                "confidence": 0.9,
                "importance": 5,
                "first_observed_at": "2025-01-01T08:00:00.000000+00:00",
                "last_confirmed_at": "2025-01-03T08:00:00.000000+00:00",
                "mention_count": 2,
                "is_active": True,
                "superseded_by": None,
                "user_confirmed": False,
                "created_at": "2025-01-01T08:00:00.000000+00:00",
                "updated_at": "2025-01-03T08:00:00.000000+00:00",
            }
        }

    def to_row(self) -> Dict[str, Any]:
        """Convert to a storage row (JSON list, integer flags, ISO timestamps)."""
        return {
            "id": self.id,
            "owner": self.owner,
            "memory_type": self.memory_type,
            "category": self.category,
            "content": self.content,
            "source_entry_ids": (
                json.dumps(self.source_entry_ids) if self.source_entry_ids is not None else None
            ),
            "confidence": self.confidence,
            "importance": self.importance,
            "first_observed_at": to_iso(self.first_observed_at),
            "last_confirmed_at": to_iso(self.last_confirmed_at),
            "mention_count": self.mention_count,
            "is_active": int(self.is_active),
            "superseded_by": self.superseded_by,
            "user_confirmed": int(self.user_confirmed),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Memory":
        """Load from a storage row."""
        data = dict(row)
        raw_ids = data.get("source_entry_ids")
        data["source_entry_ids"] = json.loads(raw_ids) if raw_ids else None
        data["is_active"] = bool(data["is_active"])
        data["user_confirmed"] = bool(data["user_confirmed"])
        data["category"] = data.get("category") or "general"
        for key in ("first_observed_at", "last_confirmed_at", "created_at", "updated_at"):
            data[key] = from_iso(data[key])
        return cls(**data)


class ExtractedMemory(BaseModel):
    """Candidate memory proposed by the extraction proposer."""

    memory_type: MemoryType
    category: MemoryCategory = "general"
    content: str
    confidence: float = 1.0
    importance: int = 5
    action: MemoryAction = "new"
    related_memory_id: Optional[str] = None


class DiaryEntry(BaseModel):
    """Minimal view of a diary entry as needed for extraction."""

    id: str
    owner: str
    entry_date: str
    detail: Optional[str] = None
    mood_label: Optional[str] = None


class ExtractionJob(BaseModel):
    """
    Asynchronous unit of work turning one diary entry into memories.

    Transitions: pending -> processing -> completed | failed. Immediate
    dispatch starts directly in processing.
    """

    id: str
    owner: str
    source_entry_id: str
    status: JobStatus = "pending"
    extracted_memories: Optional[List[ExtractedMemory]] = None
    notes: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "source_entry_id": self.source_entry_id,
            "status": self.status,
            "extracted_memories": (
                json.dumps([m.model_dump() for m in self.extracted_memories])
                if self.extracted_memories is not None else None
            ),
            "notes": self.notes,
            "created_at": to_iso(self.created_at),
            "processed_at": to_iso(self.processed_at) if self.processed_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExtractionJob":
        data = dict(row)
        raw = data.get("extracted_memories")
        data["extracted_memories"] = (
            [ExtractedMemory(**m) for m in json.loads(raw)] if raw is not None else None
        )
        data["created_at"] = from_iso(data["created_at"])
        data["processed_at"] = from_iso(data["processed_at"]) if data.get("processed_at") else None
        return cls(**data)


class ContextCacheEntry(BaseModel):
    """Per-owner pre-built context; reusable iff ``invalidated_at`` is None."""

    owner: str
    context_summary: str
    memory_snapshot: List[Memory] = Field(default_factory=list)
    last_updated_at: datetime
    invalidated_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return self.invalidated_at is None

    def to_row(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "context_summary": self.context_summary,
            "memory_snapshot": json.dumps(
                [m.model_dump(mode="json") for m in self.memory_snapshot],
                ensure_ascii=False,
            ),
            "last_updated_at": to_iso(self.last_updated_at),
            "invalidated_at": to_iso(self.invalidated_at) if self.invalidated_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ContextCacheEntry":
        return cls(
            owner=row["owner"],
            context_summary=row["context_summary"],
            memory_snapshot=[Memory(**m) for m in json.loads(row["memory_snapshot"])],
            last_updated_at=from_iso(row["last_updated_at"]),
            invalidated_at=from_iso(row["invalidated_at"]) if row.get("invalidated_at") else None,
        )


class MergeGroup(BaseModel):
    """Memories to fold into a single new memory."""

    source_ids: List[str] = Field(default_factory=list)
    content: str = ""
    memory_type: MemoryType = "fact"
    category: MemoryCategory = "general"
    importance: int = 5


class ConsolidationPlan(BaseModel):
    """
    Proposed keep/merge/deactivate split of a user's active memories.

    Untrusted: must pass ``validate_plan`` before it is applied.
    """

    keep: List[str] = Field(default_factory=list)
    merge: List[MergeGroup] = Field(default_factory=list)
    deactivate: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "keep": ["a"],
                "merge": [
                    {
                        "source_ids": ["b", "c"],
                        "content": "Runs every weekend with a friend",
                        "memory_type": "pattern",
                        "category": "hobby",
                        "importance": 6,
                    }
                ],
                "deactivate": ["d"],
            }
        }


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class ConsolidationResult(BaseModel):
    """Outcome of one consolidation pass."""

    owner: str
    skipped: bool = False
    active_before: int = 0
    merged_count: int = 0
    deactivated_count: int = 0
    created_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class RetrievedMemoryContext(BaseModel):
    """Memory context handed to the reply generator."""

    summary: str = ""
    memories: List[Memory] = Field(default_factory=list)
    token_estimate: int = 0
    cache_hit: bool = False


class MemoryStats(BaseModel):
    total_count: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None
