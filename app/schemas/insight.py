"""Insight schemas — analyze request input, cache entries, saved insights."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ── Analyze request (signature input) ────────────────────────────────


class AnalyzeRequestInput(BaseModel):
    """Fields of an analyze request that make up its signature."""

    model_config = ConfigDict(populate_by_name=True)

    profile_id: str = Field(..., alias="profileId", min_length=1)
    situation: str = ""
    goal: str = ""
    constraints: str = ""
    current_steps: str = Field("", alias="currentSteps")
    deadline: str | None = None
    stakeholders: str | None = None
    resources: str | None = None


class NormalizedInput(BaseModel):
    situation: str = ""
    goal: str = ""
    constraints: list[str] = Field(default_factory=list)
    current_steps: str = ""
    deadline: str = ""
    stakeholders: str = ""
    resources: str = ""


# ── Cache entries ────────────────────────────────────────────────────


class CacheEntryCreate(BaseModel):
    """A freshly computed analysis to cache under its signature."""

    signature: str = Field(..., min_length=64, max_length=64, pattern=r"^[a-f0-9]+$")
    profile_id: str = Field(..., min_length=1)
    response: dict[str, Any]
    normalized_input: NormalizedInput = Field(default_factory=NormalizedInput)
    baseline_ipp: float = 50.0
    baseline_but: float = 50.0
    user_id: str | None = None


class CacheEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    signature: str
    profile_id: str
    response: dict[str, Any]
    normalized_input: dict[str, Any]
    baseline_ipp: float
    baseline_but: float
    created_at: datetime
    expires_at: datetime | None = None
    user_id: str | None = None
    is_saved: bool = False
    title: str | None = None
    tags: list[str] = Field(default_factory=list)


# ── Saved insights ───────────────────────────────────────────────────


class InsightSave(BaseModel):
    signature: str = Field(..., min_length=64, max_length=64, pattern=r"^[a-f0-9]+$")
    title: str | None = Field(None, max_length=200)
    tags: list[str] | None = Field(None, max_length=20)


class InsightUpdate(BaseModel):
    """Partial metadata update; omitted fields are left untouched."""

    title: str | None = Field(None, max_length=200)
    tags: list[str] | None = Field(None, max_length=20)


class InsightBatchRequest(BaseModel):
    signatures: list[str] = Field(..., max_length=200)


class InsightPageRead(BaseModel):
    items: list[CacheEntryRead]
    limit: int
    offset: int
    has_more: bool
