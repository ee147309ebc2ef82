"""Request and response models for the memory API."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from diary_memory.memory.schemas import DiaryEntry, Memory, MemoryCategory, MemoryType


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Package version")
    components: Dict[str, bool] = Field(default_factory=dict, description="Component availability")


class ContextResponse(BaseModel):
    """Memory context prepared for reply generation."""

    owner: str
    summary: str = Field(..., description="Formatted memory section for the prompt")
    memory_ids: List[str] = Field(default_factory=list, description="Memories the summary was built from")
    token_estimate: int = Field(0, description="Estimated tokens of the summary")
    cache_hit: bool = Field(False, description="Whether the cached summary was served")


class MemoryListResponse(BaseModel):
    memories: List[Memory]
    count: int


class CreateMemoryRequest(BaseModel):
    """Request to store a memory directly."""

    memory_type: MemoryType = Field(..., description="Kind of memory")
    content: str = Field(..., description="Memory text", min_length=1, max_length=2000)
    category: MemoryCategory = Field("general", description="Category used for grouping")
    source_entry_ids: Optional[List[str]] = Field(None, description="Originating diary entries")
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    importance: int = Field(5, ge=1, le=10)

    class Config:
        json_schema_extra = {
            "example": {
                "memory_type": "preference",
                "content": "Drinks coffee every morning",
                "category": "personal",
                "confidence": 0.9,
                "importance": 5,
            }
        }


class UpdateMemoryRequest(BaseModel):
    """Fields to change; omitted fields stay as they are."""

    content: Optional[str] = Field(None, max_length=2000)
    confidence: Optional[float] = None
    importance: Optional[int] = Field(None, ge=1, le=10)
    category: Optional[MemoryCategory] = None


class DeleteMemoryResponse(BaseModel):
    deleted: bool = Field(..., description="Whether the memory was deactivated")
    message: str


class WipeResponse(BaseModel):
    owner: str
    removed: int = Field(..., description="Memory rows hard-deleted")


class DispatchRequest(BaseModel):
    """Start extraction for a diary entry."""

    entry_id: str = Field(..., description="Diary entry identifier")
    immediate: Optional[bool] = Field(None, description="Run now instead of waiting for the sweep")
    entry: Optional[DiaryEntry] = Field(None, description="Entry body, registered with the entry source if given")


class DispatchResponse(BaseModel):
    job_id: Optional[str] = Field(None, description="New job ID, or null when one is already in flight")
    started: bool
    message: str
