"""Signature cache service — content-addressed analysis cache.

Analyses are stored under the signature of their normalized request. Fresh
results live for a TTL; a caller can pin one as a saved insight (permanent,
at most ``saved_insights_limit`` per caller), unpin it, edit its title/tags,
look many up at once, and list their saved insights. Entries are purged by
signature, by profile, or when a profile's baseline shifts sharply.

The service keeps no state between calls: every operation re-reads the
store, and the store's guarded single-row updates are the only
synchronization point between concurrent workers.

Usage::

    cache = get_signature_cache()
    signature = build_signature(request)
    entry = await cache.get(signature)
    if entry is None:
        await cache.create(CacheEntryCreate(signature=signature, ...))
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.core.signature import build_signature
from app.models.signature_cache import SignatureCacheEntry
from app.schemas.insight import CacheEntryCreate
from app.services.insights.batch import BatchEngine, EntryPage
from app.services.insights.invalidation import InvalidationPolicy
from app.services.insights.lifecycle import LifecycleManager
from app.services.insights.repository import EntryRepository


class SignatureCache:
    """Facade over the repository, lifecycle, batch and invalidation parts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = settings or get_settings()
        clock = clock or (lambda: datetime.now(UTC))

        self.repository = EntryRepository(
            session_factory,
            timeout_seconds=settings.cache_store_timeout_seconds,
            max_retries=settings.cache_store_max_retries,
            retry_base_delay=settings.cache_store_retry_base_delay,
            retry_max_delay=settings.cache_store_retry_max_delay,
        )
        self.lifecycle = LifecycleManager(
            self.repository,
            ttl=timedelta(hours=settings.signature_cache_ttl_hours),
            saved_limit=settings.saved_insights_limit,
            clock=clock,
        )
        self.batch = BatchEngine(
            self.repository,
            max_signatures=settings.signature_cache_batch_limit,
            default_limit=settings.signature_cache_list_default_limit,
            max_limit=settings.signature_cache_list_max_limit,
            clock=clock,
        )
        self.invalidation = InvalidationPolicy(
            self.repository,
            shift_threshold=settings.baseline_shift_threshold,
            sweep_grace=timedelta(hours=settings.signature_cache_sweep_grace_hours),
            clock=clock,
        )

    # ── Signatures ───────────────────────────────────────────────

    @staticmethod
    def build_signature(request: Any) -> str:
        return build_signature(request)

    # ── Single entry ─────────────────────────────────────────────

    async def get(
        self,
        signature: str,
        *,
        include_saved: bool = False,
        caller_id: str | None = None,
    ) -> SignatureCacheEntry | None:
        return await self.lifecycle.get(signature, include_saved=include_saved, caller_id=caller_id)

    async def get_insight(self, signature: str, caller_id: str) -> SignatureCacheEntry:
        return await self.lifecycle.get_insight(signature, caller_id)

    async def create(self, entry: CacheEntryCreate) -> bool:
        return await self.lifecycle.create(entry)

    async def save(
        self,
        signature: str,
        caller_id: str,
        *,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> SignatureCacheEntry:
        return await self.lifecycle.save(signature, caller_id, title=title, tags=tags)

    async def unsave(self, signature: str, caller_id: str) -> SignatureCacheEntry:
        return await self.lifecycle.unsave(signature, caller_id)

    async def update_metadata(
        self,
        signature: str,
        caller_id: str,
        *,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> SignatureCacheEntry:
        return await self.lifecycle.update_metadata(signature, caller_id, title=title, tags=tags)

    # ── Many entries ─────────────────────────────────────────────

    async def get_many(
        self,
        signatures: Iterable[str],
        caller_id: str,
    ) -> dict[str, SignatureCacheEntry]:
        return await self.batch.get_many(signatures, caller_id)

    async def list(
        self,
        caller_id: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        search: str | None = None,
    ) -> EntryPage:
        return await self.batch.list(caller_id, limit=limit, offset=offset, search=search)

    # ── Invalidation ─────────────────────────────────────────────

    async def invalidate(self, signature: str) -> int:
        return await self.invalidation.invalidate(signature)

    async def invalidate_profile(self, profile_id: str) -> int:
        return await self.invalidation.invalidate_profile(profile_id)

    async def invalidate_on_baseline_shift(self, profile_id: str, shift: float) -> int:
        return await self.invalidation.invalidate_on_baseline_shift(profile_id, shift)

    async def clear_expired(self) -> int:
        return await self.invalidation.clear_expired()


@lru_cache
def get_signature_cache() -> SignatureCache:
    """Process-wide cache bound to the application session factory."""
    from app.database import async_session_maker

    return SignatureCache(async_session_maker)
