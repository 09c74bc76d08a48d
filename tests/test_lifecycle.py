"""Tests for single-entry lifecycle: create, get, save, unsave, metadata."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.services.insights.errors import (
    CacheErrorCode,
    EntryNotFound,
    OwnershipConflict,
    QuotaExceeded,
)
from app.services.insights.lifecycle import LifecycleManager
from tests.conftest import make_entry, make_signature

SIG = make_signature(1)


# ── create / get ────────────────────────────────────────────────────


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_then_get(self, cache, clock):
        assert await cache.create(make_entry(SIG)) is True

        entry = await cache.get(SIG)
        assert entry is not None
        assert entry.signature == SIG
        assert entry.response == {"summary": "Ship the pilot first. Then scale."}
        assert entry.baseline_ipp == 62.5
        assert entry.is_saved is False
        assert entry.expires_at == clock.now + cache.lifecycle.ttl
        assert entry.tags == []

    @pytest.mark.asyncio
    async def test_get_unknown_is_miss(self, cache):
        assert await cache.get(make_signature(99)) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_miss(self, cache, clock):
        await cache.create(make_entry(SIG))
        clock.advance(hours=25)
        assert await cache.get(SIG) is None

    @pytest.mark.asyncio
    async def test_expired_entry_visible_to_owner_only(self, cache, clock):
        await cache.create(make_entry(SIG, user_id="alice"))
        clock.advance(hours=25)

        assert await cache.get(SIG, include_saved=True, caller_id="alice") is not None
        assert await cache.get(SIG, include_saved=True, caller_id="bob") is None
        assert await cache.get(SIG, include_saved=True) is None

    @pytest.mark.asyncio
    async def test_create_replaces_ephemeral(self, cache, clock):
        await cache.create(make_entry(SIG, summary="First."))
        clock.advance(hours=1)
        await cache.create(make_entry(SIG, summary="Second."))

        entry = await cache.get(SIG)
        assert entry.response["summary"] == "Second."
        assert entry.expires_at == clock.now + cache.lifecycle.ttl

    @pytest.mark.asyncio
    async def test_create_keeps_permanent_entry(self, cache):
        await cache.create(make_entry(SIG, summary="Original."))
        await cache.save(SIG, "alice")

        assert await cache.create(make_entry(SIG, summary="Overwrite.")) is False

        entry = await cache.get(SIG, include_saved=True, caller_id="alice")
        assert entry.is_permanent
        assert entry.response["summary"] == "Original."

    @pytest.mark.asyncio
    async def test_default_get_hides_permanent(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        assert await cache.get(SIG) is None

    @pytest.mark.asyncio
    async def test_store_failure_degrades(self):
        repo = AsyncMock()
        repo.fetch_by_signature.side_effect = RuntimeError("boom")
        repo.insert_or_replace.side_effect = RuntimeError("boom")
        manager = LifecycleManager(repo)

        assert await manager.get(SIG) is None
        assert await manager.create(make_entry(SIG)) is False


# ── save ────────────────────────────────────────────────────────────


class TestSave:
    @pytest.mark.asyncio
    async def test_save_promotes_to_permanent(self, cache):
        await cache.create(make_entry(SIG))
        entry = await cache.save(SIG, "alice", tags=["growth"])

        assert entry.is_saved is True
        assert entry.expires_at is None
        assert entry.user_id == "alice"
        assert entry.title == "Ship the pilot first"
        assert entry.tags == ["growth"]

    @pytest.mark.asyncio
    async def test_save_with_explicit_title(self, cache):
        await cache.create(make_entry(SIG))
        entry = await cache.save(SIG, "alice", title="My plan")
        assert entry.title == "My plan"

    @pytest.mark.asyncio
    async def test_save_without_summary_uses_fallback_title(self, cache):
        await cache.create(make_entry(SIG, summary=None))
        entry = await cache.save(SIG, "alice")
        assert entry.title == "Untitled Analysis"

    @pytest.mark.asyncio
    async def test_save_is_idempotent(self, cache):
        await cache.create(make_entry(SIG))
        first = await cache.save(SIG, "alice")
        second = await cache.save(SIG, "alice")

        assert second.signature == first.signature
        assert second.title == first.title
        assert await cache.repository.count_saved("alice") == 1

    @pytest.mark.asyncio
    async def test_resave_with_metadata_updates(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        entry = await cache.save(SIG, "alice", title="Renamed")
        assert entry.title == "Renamed"

    @pytest.mark.asyncio
    async def test_save_missing_raises_not_found(self, cache):
        with pytest.raises(EntryNotFound) as exc_info:
            await cache.save(SIG, "alice")
        assert exc_info.value.code == CacheErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_save_foreign_entry_forbidden(self, cache):
        await cache.create(make_entry(SIG, user_id="alice"))
        with pytest.raises(OwnershipConflict) as exc_info:
            await cache.save(SIG, "bob")
        assert exc_info.value.code == CacheErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_owner_can_save_expired_entry(self, cache, clock):
        await cache.create(make_entry(SIG, user_id="alice"))
        clock.advance(hours=30)
        entry = await cache.save(SIG, "alice")
        assert entry.is_permanent

    @pytest.mark.asyncio
    async def test_quota(self, cache):
        for n in range(6):
            await cache.create(make_entry(make_signature(n)))
        for n in range(5):
            await cache.save(make_signature(n), "alice")

        with pytest.raises(QuotaExceeded) as exc_info:
            await cache.save(make_signature(5), "alice")
        assert exc_info.value.code == CacheErrorCode.QUOTA_EXCEEDED
        assert exc_info.value.limit == 5

        await cache.unsave(make_signature(0), "alice")
        entry = await cache.save(make_signature(5), "alice")
        assert entry.is_permanent
        assert await cache.repository.count_saved("alice") == 5

    @pytest.mark.asyncio
    async def test_quota_is_per_caller(self, cache):
        for n in range(6):
            await cache.create(make_entry(make_signature(n)))
        for n in range(5):
            await cache.save(make_signature(n), "alice")
        entry = await cache.save(make_signature(5), "bob")
        assert entry.user_id == "bob"

    @pytest.mark.asyncio
    async def test_concurrent_saves_have_one_winner(self, cache):
        await cache.create(make_entry(SIG))

        results = await asyncio.gather(
            cache.save(SIG, "alice"),
            cache.save(SIG, "bob"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], OwnershipConflict)

        stored = await cache.repository.fetch_by_signature(SIG)
        assert stored.user_id == winners[0].user_id

    @pytest.mark.asyncio
    async def test_lost_save_race_is_forbidden(self, cache):
        """Guarded update touches nothing because another caller claimed first."""
        await cache.create(make_entry(SIG))
        repo = cache.repository
        real_update = repo.update_fields

        async def claim_then_update(signature, values, precondition=None):
            await real_update(signature, {"user_id": "bob"})
            return await real_update(signature, values, precondition)

        repo.update_fields = claim_then_update
        with pytest.raises(OwnershipConflict):
            await cache.save(SIG, "alice")

        stored = await repo.fetch_by_signature(SIG)
        assert stored.user_id == "bob"
        assert stored.is_permanent is False

    @pytest.mark.asyncio
    async def test_quota_race_reverted(self, cache):
        await cache.create(make_entry(SIG))
        repo = cache.repository
        counts = iter([0, 6])

        async def racing_count(user_id):
            return next(counts)

        repo.count_saved = racing_count
        with pytest.raises(QuotaExceeded):
            await cache.save(SIG, "alice")

        stored = await repo.fetch_by_signature(SIG)
        assert stored.is_permanent is False
        assert stored.user_id is None
        assert stored.is_saved is False

    @pytest.mark.asyncio
    async def test_concurrent_saves_never_exceed_quota(self, cache):
        for n in range(6):
            await cache.create(make_entry(make_signature(n)))
        for n in range(4):
            await cache.save(make_signature(n), "alice")

        results = await asyncio.gather(
            cache.save(make_signature(4), "alice"),
            cache.save(make_signature(5), "alice"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(f, QuotaExceeded) for f in failures)
        saved = await cache.repository.count_saved("alice")
        assert saved <= 5
        assert saved == 4 + len(results) - len(failures)


# ── claim on read ───────────────────────────────────────────────────


class TestClaimOnRead:
    @pytest.mark.asyncio
    async def test_unowned_permanent_entry_claimed(self, cache):
        await cache.create(make_entry(SIG))
        await cache.repository.update_fields(
            SIG, {"is_saved": True, "expires_at": None}
        )

        entry = await cache.get(SIG, include_saved=True, caller_id="alice")
        assert entry is not None
        assert entry.user_id == "alice"

        assert await cache.get(SIG, include_saved=True, caller_id="bob") is None
        stored = await cache.repository.fetch_by_signature(SIG)
        assert stored.user_id == "alice"

    @pytest.mark.asyncio
    async def test_permanent_without_caller_is_miss(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        assert await cache.get(SIG, include_saved=True) is None

    @pytest.mark.asyncio
    async def test_lost_claim_returns_miss(self, cache):
        """Another caller takes ownership between the read and the guarded claim."""
        await cache.create(make_entry(SIG))
        repo = cache.repository
        await repo.update_fields(SIG, {"is_saved": True, "expires_at": None})
        real_update = repo.update_fields

        async def claim_then_update(signature, values, precondition=None):
            await real_update(signature, {"user_id": "bob"})
            return await real_update(signature, values, precondition)

        repo.update_fields = claim_then_update
        assert await cache.get(SIG, include_saved=True, caller_id="alice") is None
        repo.update_fields = real_update

        entry = await cache.get(SIG, include_saved=True, caller_id="bob")
        assert entry is not None
        assert entry.user_id == "bob"
        assert entry.is_permanent


# ── get_insight ─────────────────────────────────────────────────────


class TestGetInsight:
    @pytest.mark.asyncio
    async def test_owner_gets_saved(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        entry = await cache.get_insight(SIG, "alice")
        assert entry.is_permanent

    @pytest.mark.asyncio
    async def test_ephemeral_is_not_an_insight(self, cache):
        await cache.create(make_entry(SIG, user_id="alice"))
        with pytest.raises(EntryNotFound):
            await cache.get_insight(SIG, "alice")

    @pytest.mark.asyncio
    async def test_other_caller_not_found(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        with pytest.raises(EntryNotFound):
            await cache.get_insight(SIG, "bob")


# ── unsave ──────────────────────────────────────────────────────────


class TestUnsave:
    @pytest.mark.asyncio
    async def test_unsave_reverts_to_ephemeral(self, cache, clock):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        clock.advance(hours=2)

        entry = await cache.unsave(SIG, "alice")
        assert entry.is_saved is False
        assert entry.expires_at == clock.now + cache.lifecycle.ttl
        assert entry.user_id == "alice"

        assert await cache.get(SIG) is not None

    @pytest.mark.asyncio
    async def test_unsave_missing(self, cache):
        with pytest.raises(EntryNotFound):
            await cache.unsave(SIG, "alice")

    @pytest.mark.asyncio
    async def test_unsave_foreign(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        with pytest.raises(OwnershipConflict):
            await cache.unsave(SIG, "bob")

    @pytest.mark.asyncio
    async def test_unsave_ephemeral_keeps_expiry(self, cache, clock):
        await cache.create(make_entry(SIG, user_id="alice"))
        original = await cache.repository.fetch_by_signature(SIG)
        clock.advance(hours=3)

        with pytest.raises(OwnershipConflict):
            await cache.unsave(SIG, "alice")

        stored = await cache.repository.fetch_by_signature(SIG)
        assert stored.expires_at == original.expires_at


# ── update_metadata ─────────────────────────────────────────────────


class TestUpdateMetadata:
    @pytest.mark.asyncio
    async def test_update_title_and_tags(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice", tags=["old"])

        entry = await cache.update_metadata(SIG, "alice", title="New title")
        assert entry.title == "New title"
        assert entry.tags == ["old"]

        entry = await cache.update_metadata(SIG, "alice", tags=["a", "b"])
        assert entry.title == "New title"
        assert entry.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_noop_update_returns_entry(self, cache):
        await cache.create(make_entry(SIG))
        saved = await cache.save(SIG, "alice")
        entry = await cache.update_metadata(SIG, "alice")
        assert entry.title == saved.title

    @pytest.mark.asyncio
    async def test_update_ephemeral_forbidden(self, cache):
        await cache.create(make_entry(SIG, user_id="alice"))
        with pytest.raises(OwnershipConflict):
            await cache.update_metadata(SIG, "alice", title="x")

    @pytest.mark.asyncio
    async def test_update_missing(self, cache):
        with pytest.raises(EntryNotFound):
            await cache.update_metadata(SIG, "alice", title="x")
        with pytest.raises(EntryNotFound):
            await cache.update_metadata(SIG, "alice")

    @pytest.mark.asyncio
    async def test_update_foreign(self, cache):
        await cache.create(make_entry(SIG))
        await cache.save(SIG, "alice")
        with pytest.raises(OwnershipConflict):
            await cache.update_metadata(SIG, "bob", tags=["x"])
