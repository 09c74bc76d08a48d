"""Insight endpoints — save, list, fetch, edit and unsave cached analyses."""

from fastapi import APIRouter, Query, status

from app.deps import Cache, CallerId
from app.schemas.insight import (
    CacheEntryRead,
    InsightBatchRequest,
    InsightPageRead,
    InsightSave,
    InsightUpdate,
)

router = APIRouter()


@router.get("", response_model=InsightPageRead)
async def list_insights(
    caller_id: CallerId,
    cache: Cache,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: str | None = Query(None, max_length=200),
) -> InsightPageRead:
    """List the caller's saved insights, newest first."""
    page = await cache.list(caller_id, limit=limit, offset=offset, search=search)
    return InsightPageRead(
        items=[CacheEntryRead.model_validate(entry) for entry in page.items],
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.post("", response_model=CacheEntryRead)
async def save_insight(
    data: InsightSave,
    caller_id: CallerId,
    cache: Cache,
) -> CacheEntryRead:
    """Save a cached analysis as a permanent insight (idempotent)."""
    entry = await cache.save(data.signature, caller_id, title=data.title, tags=data.tags)
    return CacheEntryRead.model_validate(entry)


@router.post("/batch", response_model=dict[str, CacheEntryRead])
async def get_insights_batch(
    data: InsightBatchRequest,
    caller_id: CallerId,
    cache: Cache,
) -> dict[str, CacheEntryRead]:
    """Resolve many signatures at once; unknown or foreign ones are omitted."""
    entries = await cache.get_many(data.signatures, caller_id)
    return {sig: CacheEntryRead.model_validate(entry) for sig, entry in entries.items()}


@router.get("/{signature}", response_model=CacheEntryRead)
async def get_insight(
    signature: str,
    caller_id: CallerId,
    cache: Cache,
) -> CacheEntryRead:
    entry = await cache.get_insight(signature, caller_id)
    return CacheEntryRead.model_validate(entry)


@router.patch("/{signature}", response_model=CacheEntryRead)
async def update_insight(
    signature: str,
    data: InsightUpdate,
    caller_id: CallerId,
    cache: Cache,
) -> CacheEntryRead:
    """Update title and/or tags of a saved insight."""
    entry = await cache.update_metadata(signature, caller_id, title=data.title, tags=data.tags)
    return CacheEntryRead.model_validate(entry)


@router.delete("/{signature}", status_code=status.HTTP_204_NO_CONTENT)
async def unsave_insight(
    signature: str,
    caller_id: CallerId,
    cache: Cache,
) -> None:
    """Unsave an insight; it reverts to an ordinary cache entry with a fresh TTL."""
    await cache.unsave(signature, caller_id)
