"""
Memory API endpoints.

Read access for the reply generator, user-driven edits, the privacy wipe,
and extraction/consolidation triggers. ValidationError and NotFoundError
are mapped to 422/404 by the handlers registered in ``main``.
"""

import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from diary_memory.config.settings import Settings
from diary_memory.memory.integrate import MemoryIntegration, create_memory_integration
from diary_memory.memory.schemas import (
    ConsolidationResult,
    ExtractionJob,
    Memory,
    MemoryCategory,
    MemoryStats,
    MemoryType,
)
from .schemas import (
    ContextResponse,
    CreateMemoryRequest,
    DeleteMemoryResponse,
    DispatchRequest,
    DispatchResponse,
    MemoryListResponse,
    UpdateMemoryRequest,
    WipeResponse,
)


router = APIRouter(prefix="/memory", tags=["memory"])


# Process-wide integration (overridable via dependency_overrides)
_integration: Optional[MemoryIntegration] = None


def get_settings() -> Settings:
    """Settings from the file named by DIARY_MEMORY_SETTINGS, or defaults."""
    return Settings.from_file(os.environ.get("DIARY_MEMORY_SETTINGS"))


def get_memory_integration() -> MemoryIntegration:
    """Get or create the memory integration singleton."""
    global _integration
    if _integration is None:
        _integration = create_memory_integration(get_settings())
    return _integration


# ============================================================================
# Reads
# ============================================================================

@router.get("/owners/{owner}/context", response_model=ContextResponse)
async def get_context(
    owner: str,
    max_tokens: Optional[int] = Query(None, ge=1, description="Token budget for the summary"),
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    """
    Memory context for reply generation.

    Served from the per-owner cache when it is valid. Never fails because
    of memory problems: an empty summary is returned instead.
    """
    context = memory.context_for_reply(owner, max_tokens)
    return ContextResponse(
        owner=owner,
        summary=context.summary,
        memory_ids=[m.id for m in context.memories],
        token_estimate=context.token_estimate,
        cache_hit=context.cache_hit,
    )


@router.get("/owners/{owner}/memories", response_model=MemoryListResponse)
async def list_memories(
    owner: str,
    memory_type: Optional[MemoryType] = None,
    category: Optional[MemoryCategory] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    """Active memories, most important first."""
    memories = memory.store.list_active(
        owner,
        types=[memory_type] if memory_type else None,
        category=category,
        limit=limit,
    )
    return MemoryListResponse(memories=memories, count=len(memories))


@router.get("/owners/{owner}/search", response_model=MemoryListResponse)
async def search_memories(
    owner: str,
    q: str = Query(..., min_length=1, description="Keyword to match in memory content"),
    limit: int = Query(10, ge=1, le=100),
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    memories = memory.retrieval.search_memories(owner, q, limit)
    return MemoryListResponse(memories=memories, count=len(memories))


@router.get("/owners/{owner}/stats", response_model=MemoryStats)
async def memory_stats(owner: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    return memory.retrieval.get_memory_stats(owner)


@router.get("/memories/{memory_id}", response_model=Memory)
async def get_memory(memory_id: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    return memory.store.require(memory_id)


# ============================================================================
# Edits
# ============================================================================

@router.post("/owners/{owner}/memories", response_model=Memory, status_code=201)
async def create_memory(
    owner: str,
    request: CreateMemoryRequest,
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    """
    Store a memory directly (e.g. the user told us something explicitly).

    Example:
        POST /api/memory/owners/U123/memories
        {"memory_type": "preference", "content": "Drinks coffee every morning"}
    """
    return memory.remember(
        owner,
        request.memory_type,
        request.content,
        category=request.category,
        source_entry_ids=request.source_entry_ids,
        confidence=request.confidence,
        importance=request.importance,
    )


@router.patch("/memories/{memory_id}", response_model=Memory)
async def update_memory(
    memory_id: str,
    request: UpdateMemoryRequest,
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    fields = request.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=422, detail=["no fields to update"])
    return memory.update(memory_id, **fields)


@router.post("/memories/{memory_id}/confirm", response_model=Memory)
async def confirm_memory(memory_id: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    """Record another sighting (mention count +1)."""
    return memory.confirm(memory_id)


@router.post("/memories/{memory_id}/user-confirm", response_model=Memory)
async def user_confirm_memory(memory_id: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    """The user confirmed the memory is correct."""
    return memory.user_confirm(memory_id)


@router.delete("/memories/{memory_id}", response_model=DeleteMemoryResponse)
async def delete_memory(memory_id: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    deleted = memory.forget(memory_id)
    return DeleteMemoryResponse(
        deleted=deleted,
        message=f"Memory {memory_id} deactivated" if deleted else f"Memory {memory_id} unchanged",
    )


@router.delete("/owners/{owner}", response_model=WipeResponse)
async def wipe_owner(owner: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    """Hard-delete every memory and the cached context of an owner."""
    return WipeResponse(owner=owner, removed=memory.wipe(owner))


# ============================================================================
# Background work
# ============================================================================

@router.post("/owners/{owner}/extract", response_model=DispatchResponse, status_code=202)
async def dispatch_extraction(
    owner: str,
    request: DispatchRequest,
    memory: MemoryIntegration = Depends(get_memory_integration),
):
    """
    Start extraction for a saved diary entry.

    Returns at once; poll ``/jobs/{job_id}`` for the outcome.
    """
    if memory.jobs is None:
        raise HTTPException(status_code=503, detail="Extraction jobs not configured")

    if request.entry is not None:
        if request.entry.owner != owner or request.entry.id != request.entry_id:
            raise HTTPException(status_code=422, detail=["entry does not match owner/entry_id"])
        add = getattr(memory.jobs.entries, "add", None)
        if add is None:
            raise HTTPException(status_code=422, detail=["entry source does not accept entries"])
        add(request.entry)

    job_id = memory.dispatch_extraction(owner, request.entry_id, request.immediate)
    if job_id is None:
        return DispatchResponse(job_id=None, started=False, message="Extraction already in flight")
    return DispatchResponse(job_id=job_id, started=True, message="Extraction job created")


@router.get("/jobs/{job_id}", response_model=ExtractionJob)
async def job_status(job_id: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    if memory.jobs is None:
        raise HTTPException(status_code=503, detail="Extraction jobs not configured")
    job = memory.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


@router.post("/owners/{owner}/consolidate", response_model=ConsolidationResult)
async def consolidate(owner: str, memory: MemoryIntegration = Depends(get_memory_integration)):
    """Run a consolidation pass now (skipped when at or below the threshold)."""
    return await memory.consolidate(owner)
