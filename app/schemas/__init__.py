"""Pydantic schemas for API request/response validation."""

from app.schemas.insight import (
    AnalyzeRequestInput,
    CacheEntryCreate,
    CacheEntryRead,
    InsightBatchRequest,
    InsightPageRead,
    InsightSave,
    InsightUpdate,
    NormalizedInput,
)

__all__ = [
    "AnalyzeRequestInput",
    "CacheEntryCreate",
    "CacheEntryRead",
    "InsightBatchRequest",
    "InsightPageRead",
    "InsightSave",
    "InsightUpdate",
    "NormalizedInput",
]
