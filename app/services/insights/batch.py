"""Batch lookup and listing of cache entries.

``get_many`` runs two independent queries over the requested signatures,
one for permanent entries and one for ephemeral ones, then merges them with
permanent entries winning. Visibility per branch:

- permanent: only when owned by the caller. Batch reads never claim.
- ephemeral: unowned or owned by the caller, and unexpired unless the
  caller owns it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import and_, or_

from app.core.logging import get_logger
from app.models.signature_cache import SignatureCacheEntry
from app.services.insights.repository import (
    EntryRepository,
    ephemeral,
    owned_by,
    permanent,
    unexpired,
)

logger = get_logger(__name__)


@dataclass
class EntryPage:
    """One window of a caller's saved insights."""

    items: list[SignatureCacheEntry] = field(default_factory=list)
    limit: int = 20
    offset: int = 0
    has_more: bool = False  # the store window was full, before search narrowing


def _matches(entry: SignatureCacheEntry, needle: str) -> bool:
    if entry.title and needle in entry.title.lower():
        return True
    if any(needle in tag.lower() for tag in entry.tags or []):
        return True
    snapshot = entry.normalized_input or {}
    for key in ("situation", "goal"):
        value = snapshot.get(key)
        if isinstance(value, str) and needle in value.lower():
            return True
    summary = entry.summary
    return bool(summary and needle in summary.lower())


class BatchEngine:
    """Multi-signature reads and paginated listing."""

    def __init__(
        self,
        repository: EntryRepository,
        *,
        max_signatures: int = 200,
        default_limit: int = 20,
        max_limit: int = 100,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._repo = repository
        self.max_signatures = max_signatures
        self.default_limit = default_limit
        self.max_limit = max_limit
        self._clock = clock

    async def get_many(
        self,
        signatures: Iterable[str],
        caller_id: str,
    ) -> dict[str, SignatureCacheEntry]:
        """Map of signature -> entry visible to the caller.

        Raises ``ValueError`` when more signatures are requested than the
        batch limit; store failures degrade to an empty map.
        """
        keys = list(dict.fromkeys(s for s in signatures if s))
        if len(keys) > self.max_signatures:
            raise ValueError(
                f"At most {self.max_signatures} signatures per batch (got {len(keys)})"
            )
        if not keys:
            return {}

        now = self._clock()
        try:
            saved_rows = await self._repo.fetch_many(keys, and_(permanent(), owned_by(caller_id)))
            cached_rows = await self._repo.fetch_many(
                keys,
                and_(ephemeral(), or_(unexpired(now), owned_by(caller_id))),
            )
        except Exception as e:
            logger.warning(
                "signature_cache_batch_failed",
                user_id=caller_id,
                requested=len(keys),
                error=repr(e),
            )
            return {}

        merged: dict[str, SignatureCacheEntry] = {}
        for entry in cached_rows:
            if entry.user_id is not None and entry.user_id != caller_id:
                continue
            if entry.is_expired(now) and entry.user_id != caller_id:
                continue
            merged[entry.signature] = entry
        # Permanent entries take precedence over ephemeral ones
        for entry in saved_rows:
            if entry.user_id == caller_id:
                merged[entry.signature] = entry

        logger.debug(
            "signature_cache_batch",
            user_id=caller_id,
            requested=len(keys),
            found=len(merged),
        )
        return merged

    async def list(
        self,
        caller_id: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        search: str | None = None,
    ) -> EntryPage:
        """Caller's saved insights, newest first.

        The window ``[offset, offset + limit)`` is taken at the store; a
        search term then narrows that window (case-insensitive substring on
        title, tags, situation, goal and summary).
        """
        limit = min(limit or self.default_limit, self.max_limit)
        limit = max(limit, 1)
        offset = max(offset, 0)

        rows = await self._repo.list_saved(caller_id, limit=limit, offset=offset)
        page = EntryPage(items=rows, limit=limit, offset=offset, has_more=len(rows) == limit)

        needle = (search or "").strip().lower()
        if needle:
            page.items = [entry for entry in rows if _matches(entry, needle)]

        logger.debug(
            "insights_listed",
            user_id=caller_id,
            count=len(page.items),
            limit=limit,
            offset=offset,
            has_search=bool(needle),
        )
        return page
