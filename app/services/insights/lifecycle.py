"""Lifecycle manager — state transitions of a single cache entry.

States::

    (absent) --create--> ephemeral --save--> permanent
                            ^                   |
                            +------unsave-------+

An ephemeral entry carries ``expires_at``; a permanent one has
``expires_at = NULL`` and ``is_saved = True``. Ownership (``user_id``) is
claimed exactly once from NULL, always through a guarded update so two
callers can never both win.

Read failures degrade to a miss and ``create`` failures are logged and
dropped. ``save``/``unsave``/``update_metadata`` surface every failure.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_

from app.core.logging import get_logger
from app.models.signature_cache import SignatureCacheEntry
from app.schemas.insight import CacheEntryCreate
from app.services.insights.errors import EntryNotFound, OwnershipConflict, QuotaExceeded
from app.services.insights.repository import (
    EntryRepository,
    ephemeral,
    owned_by,
    owner_unset,
    owner_unset_or,
    permanent,
    unexpired,
)
from app.services.insights.titles import derive_title

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleManager:
    """Creation, lookup, save/unsave and metadata edits of one entry."""

    def __init__(
        self,
        repository: EntryRepository,
        *,
        ttl: timedelta = timedelta(hours=24),
        saved_limit: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self.ttl = ttl
        self.saved_limit = saved_limit
        self._clock = clock

    # ── Reads ────────────────────────────────────────────────────

    async def get(
        self,
        signature: str,
        *,
        include_saved: bool = False,
        caller_id: str | None = None,
    ) -> SignatureCacheEntry | None:
        """Look up an entry; any store failure is reported as a miss.

        Default mode only sees unexpired ephemeral entries. With
        ``include_saved`` a permanent entry is returned to its owner, and an
        unowned permanent entry is claimed for the caller on the way.
        """
        try:
            if not include_saved:
                entry = await self._repo.fetch_by_signature(signature, unexpired(self._clock()))
            else:
                entry = await self._get_including_saved(signature, caller_id)
        except Exception as e:
            logger.warning("signature_cache_get_failed", signature=signature, error=repr(e))
            return None

        logger.debug(
            "signature_cache_hit" if entry is not None else "signature_cache_miss",
            signature=signature,
            include_saved=include_saved,
        )
        return entry

    async def _get_including_saved(
        self,
        signature: str,
        caller_id: str | None,
    ) -> SignatureCacheEntry | None:
        saved = await self._repo.fetch_by_signature(signature, permanent())
        if saved is not None:
            if not caller_id:
                return None
            if saved.user_id == caller_id:
                return saved
            if saved.user_id is not None:
                return None  # belongs to another caller
            return await self._claim(saved, caller_id)

        entry = await self._repo.fetch_by_signature(signature, ephemeral())
        if entry is None:
            return None
        if not entry.is_expired(self._clock()):
            return entry
        # An expired entry stays visible to its owner so it can still be saved
        if caller_id and entry.user_id == caller_id:
            return entry
        return None

    async def _claim(
        self,
        entry: SignatureCacheEntry,
        caller_id: str,
    ) -> SignatureCacheEntry | None:
        """Take ownership of an unowned permanent entry, or lose the race."""
        claimed = await self._repo.update_fields(
            entry.signature,
            {"user_id": caller_id},
            owner_unset(),
        )
        if claimed:
            entry.user_id = caller_id
            logger.info("insight_claimed", signature=entry.signature, user_id=caller_id)
            return entry

        fresh = await self._repo.fetch_by_signature(entry.signature)
        if fresh is not None and fresh.user_id == caller_id:
            return fresh
        logger.info(
            "insight_claim_lost",
            signature=entry.signature,
            user_id=caller_id,
            owner=fresh.user_id if fresh is not None else None,
        )
        return None

    async def get_insight(self, signature: str, caller_id: str) -> SignatureCacheEntry:
        """A permanent entry owned by the caller, or ``EntryNotFound``."""
        entry = await self.get(signature, include_saved=True, caller_id=caller_id)
        if entry is None or not entry.is_permanent or entry.user_id != caller_id:
            raise EntryNotFound("Insight not found", signature=signature)
        return entry

    # ── Writes ───────────────────────────────────────────────────

    async def create(self, data: CacheEntryCreate) -> bool:
        """Cache a fresh analysis as an ephemeral entry (best effort).

        An existing ephemeral entry at the signature is replaced; a
        permanent one is kept as is. Returns False when nothing was written.
        """
        now = self._clock()
        values = {
            "signature": data.signature,
            "profile_id": data.profile_id,
            "response": data.response,
            "normalized_input": data.normalized_input.model_dump(),
            "baseline_ipp": data.baseline_ipp,
            "baseline_but": data.baseline_but,
            "created_at": now,
            "expires_at": now + self.ttl,
            "user_id": data.user_id,
            "is_saved": False,
            "title": None,
            "tags": [],
        }
        try:
            written = await self._repo.insert_or_replace(values)
        except Exception as e:
            logger.warning("signature_cache_set_failed", signature=data.signature, error=repr(e))
            return False

        if not written:
            logger.info("signature_cache_set_skipped_permanent", signature=data.signature)
        else:
            logger.debug("signature_cache_set", signature=data.signature, profile_id=data.profile_id)
        return written

    async def save(
        self,
        signature: str,
        caller_id: str,
        *,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> SignatureCacheEntry:
        """Promote an entry to permanent storage for the caller (idempotent).

        Raises:
            EntryNotFound: nothing cached at this signature
            OwnershipConflict: owned by another caller, or a concurrent
                saver won the claim
            QuotaExceeded: the caller already holds the maximum number of
                saved insights
        """
        current = await self._repo.fetch_by_signature(signature)
        if current is None:
            raise EntryNotFound("Analysis not found. Please run analysis first.", signature=signature)

        if current.user_id is not None and current.user_id != caller_id:
            logger.info("insight_save_forbidden", signature=signature, user_id=caller_id)
            raise OwnershipConflict("This analysis belongs to another user.", signature=signature)

        if current.is_permanent and current.user_id == caller_id:
            if title is not None or tags is not None:
                return await self.update_metadata(signature, caller_id, title=title, tags=tags)
            return current

        saved_count = await self._repo.count_saved(caller_id)
        if saved_count >= self.saved_limit:
            logger.info("insight_quota_exceeded", user_id=caller_id, saved=saved_count)
            raise QuotaExceeded(self.saved_limit, signature=signature)

        if title is None:
            title = current.title or derive_title(current.summary)
        values = {
            "is_saved": True,
            "expires_at": None,
            "user_id": caller_id,
            "title": title,
            "tags": list(tags) if tags is not None else list(current.tags or []),
        }
        updated = await self._repo.update_fields(signature, values, owner_unset_or(caller_id))
        if not updated:
            return await self._resolve_lost_save(signature, caller_id)

        await self._enforce_quota(current, caller_id)

        saved = await self._refetch(signature)
        logger.info(
            "insight_saved",
            signature=signature,
            user_id=caller_id,
            title=title,
            tags_count=len(values["tags"]),
        )
        return saved

    async def _resolve_lost_save(self, signature: str, caller_id: str) -> SignatureCacheEntry:
        # A repeated save by the same caller lands here too and is a no-op
        fresh = await self._repo.fetch_by_signature(signature)
        if fresh is None:
            raise EntryNotFound("Analysis not found. Please run analysis first.", signature=signature)
        if fresh.is_permanent and fresh.user_id == caller_id:
            return fresh
        logger.info(
            "insight_save_race_lost",
            signature=signature,
            user_id=caller_id,
            owner=fresh.user_id,
        )
        raise OwnershipConflict("This analysis belongs to another user.", signature=signature)

    async def _enforce_quota(self, previous: SignatureCacheEntry, caller_id: str) -> None:
        """Undo a promotion that pushed the caller past the limit.

        Two concurrent saves of different signatures can both pass the
        pre-check; the recount after the write catches that. Each save only
        sees the total, not which promotion landed last, so when both
        recounts observe the overflow both are reverted and both raise
        ``QuotaExceeded``. The caller may end below the limit and has to
        retry one of them; the limit itself is never exceeded.
        """
        saved_count = await self._repo.count_saved(caller_id)
        if saved_count <= self.saved_limit:
            return

        await self._repo.update_fields(
            previous.signature,
            {
                "is_saved": previous.is_saved,
                "expires_at": previous.expires_at,
                "user_id": previous.user_id,
                "title": previous.title,
                "tags": list(previous.tags or []),
            },
            and_(owned_by(caller_id), permanent()),
        )
        logger.warning(
            "insight_quota_race_reverted",
            signature=previous.signature,
            user_id=caller_id,
            saved=saved_count,
        )
        raise QuotaExceeded(self.saved_limit, signature=previous.signature)

    async def unsave(self, signature: str, caller_id: str) -> SignatureCacheEntry:
        """Demote the caller's saved entry back to an ephemeral one with a fresh TTL.

        Only permanent entries can be unsaved; an ephemeral entry keeps its
        current expiry and ``OwnershipConflict`` is raised.
        """
        now = self._clock()
        updated = await self._repo.update_fields(
            signature,
            {"is_saved": False, "expires_at": now + self.ttl},
            and_(owned_by(caller_id), permanent()),
        )
        if not updated:
            await self._raise_for_missing_or_foreign(signature)

        logger.info("insight_unsaved", signature=signature, user_id=caller_id)
        return await self._refetch(signature)

    async def update_metadata(
        self,
        signature: str,
        caller_id: str,
        *,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> SignatureCacheEntry:
        """Edit title and/or tags of a permanent entry owned by the caller."""
        values: dict[str, Any] = {}
        if title is not None:
            values["title"] = title
        if tags is not None:
            values["tags"] = list(tags)

        if not values:
            entry = await self._repo.fetch_by_signature(signature)
            if entry is None:
                raise EntryNotFound("Insight not found", signature=signature)
            if not entry.is_permanent or entry.user_id != caller_id:
                raise OwnershipConflict("Insight is not saved by this user.", signature=signature)
            return entry

        updated = await self._repo.update_fields(
            signature,
            values,
            and_(owned_by(caller_id), permanent()),
        )
        if not updated:
            await self._raise_for_missing_or_foreign(signature)

        logger.info(
            "insight_updated",
            signature=signature,
            user_id=caller_id,
            fields=sorted(values),
        )
        return await self._refetch(signature)

    # ── Helpers ──────────────────────────────────────────────────

    async def _raise_for_missing_or_foreign(self, signature: str) -> None:
        if await self._repo.fetch_by_signature(signature) is None:
            raise EntryNotFound("Insight not found", signature=signature)
        raise OwnershipConflict("Insight is not saved by this user.", signature=signature)

    async def _refetch(self, signature: str) -> SignatureCacheEntry:
        entry = await self._repo.fetch_by_signature(signature)
        if entry is None:
            # Invalidated between the write and this read
            raise EntryNotFound("Insight not found", signature=signature)
        return entry
