"""Invalidation policy — purging cache entries by signature or profile."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from app.core.logging import get_logger
from app.services.insights.repository import EntryRepository

logger = get_logger(__name__)


class InvalidationPolicy:
    """Deletes entries regardless of state. Failures are surfaced."""

    def __init__(
        self,
        repository: EntryRepository,
        *,
        shift_threshold: float = 8.0,
        sweep_grace: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._repo = repository
        self.shift_threshold = shift_threshold
        self.sweep_grace = sweep_grace
        self._clock = clock

    async def invalidate(self, signature: str) -> int:
        deleted = await self._repo.delete_by_signature(signature)
        logger.debug("signature_cache_invalidated", signature=signature, deleted=deleted)
        return deleted

    async def invalidate_profile(self, profile_id: str) -> int:
        deleted = await self._repo.delete_by_profile(profile_id)
        logger.info("signature_cache_profile_invalidated", profile_id=profile_id, deleted=deleted)
        return deleted

    async def invalidate_on_baseline_shift(self, profile_id: str, shift: float) -> int:
        """Drop every entry of the profile once its baseline moved far enough."""
        if abs(shift) < self.shift_threshold:
            return 0
        logger.info("baseline_shift_invalidation", profile_id=profile_id, shift=shift)
        return await self.invalidate_profile(profile_id)

    async def clear_expired(self) -> int:
        """Physically remove ephemeral entries past expiry plus the grace period."""
        cutoff = self._clock() - self.sweep_grace
        cleared = await self._repo.delete_expired(cutoff)
        if cleared:
            logger.info("signature_cache_expired_cleared", cleared=cleared, cutoff=cutoff.isoformat())
        return cleared
