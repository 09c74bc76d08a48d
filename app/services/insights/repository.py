"""Entry repository — the only code that talks to the signature_cache table.

Each operation runs in its own short session (and transaction, for writes),
bounded by a timeout. Transient failures (timeouts, dropped connections,
locked databases) are retried with exponential backoff; integrity errors are
surfaced immediately as ``ConstraintViolation`` and never retried.

Conditional writes take a SQL precondition and report the number of rows
they touched. A zero means the precondition no longer held at write time;
the caller must re-read and decide, not retry.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models.signature_cache import SignatureCacheEntry as Entry
from app.services.insights.errors import ConstraintViolation, TransientStoreError

logger = get_logger(__name__)

T = TypeVar("T")

# Columns rewritten when an ephemeral entry is replaced. created_at is
# set once on insert and never rewritten.
_REPLACE_COLUMNS = (
    "profile_id",
    "response",
    "normalized_input",
    "baseline_ipp",
    "baseline_but",
    "expires_at",
    "user_id",
    "is_saved",
    "title",
    "tags",
)


# ── Predicates ──────────────────────────────────────────────────────


def permanent() -> ColumnElement[bool]:
    return and_(Entry.is_saved.is_(True), Entry.expires_at.is_(None))


def ephemeral() -> ColumnElement[bool]:
    return Entry.expires_at.is_not(None)


def unexpired(now: datetime) -> ColumnElement[bool]:
    return and_(Entry.expires_at.is_not(None), Entry.expires_at > now)


def owner_unset() -> ColumnElement[bool]:
    return Entry.user_id.is_(None)


def owned_by(user_id: str) -> ColumnElement[bool]:
    return Entry.user_id == user_id


def owner_unset_or(user_id: str) -> ColumnElement[bool]:
    return or_(Entry.user_id.is_(None), Entry.user_id == user_id)


# ── Error classification ────────────────────────────────────────────


def is_transient(exc: BaseException) -> bool:
    """Timeouts and connectivity problems are worth another attempt."""
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


# ── Repository ──────────────────────────────────────────────────────


class EntryRepository:
    """CRUD surface over signature_cache used by the cache components."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 2.0,
    ) -> None:
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    async def _run(
        self,
        operation: str,
        fn: Callable[[AsyncSession], Awaitable[T]],
        *,
        write: bool = False,
    ) -> T:
        attempt = 0
        while True:
            start = time.monotonic()
            try:
                return await asyncio.wait_for(
                    self._in_session(fn, write=write),
                    timeout=self.timeout_seconds,
                )
            except IntegrityError as e:
                logger.warning("cache_store_constraint_violation", operation=operation, error=str(e.orig))
                raise ConstraintViolation(f"{operation}: {e.orig}") from e
            except Exception as e:
                if not is_transient(e):
                    raise
                duration_ms = int((time.monotonic() - start) * 1000)
                if attempt >= self.max_retries:
                    logger.warning(
                        "cache_store_retries_exhausted",
                        operation=operation,
                        attempts=attempt + 1,
                        duration_ms=duration_ms,
                        error=repr(e),
                    )
                    raise TransientStoreError(f"{operation} failed: {e!r}") from e
                delay = min(self.retry_base_delay * 2**attempt, self.retry_max_delay)
                logger.warning(
                    "cache_store_retry",
                    operation=operation,
                    attempt=attempt + 1,
                    delay=delay,
                    duration_ms=duration_ms,
                    error=repr(e),
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _in_session(
        self,
        fn: Callable[[AsyncSession], Awaitable[T]],
        *,
        write: bool,
    ) -> T:
        async with self._session_factory() as db:
            result = await fn(db)
            if write:
                await db.commit()
            return result

    # ── Writes ───────────────────────────────────────────────────

    async def insert_or_replace(self, values: dict[str, Any]) -> bool:
        """Upsert by signature, replacing only ephemeral rows.

        A permanent row at the same signature is left untouched. Returns
        True when a row was inserted or replaced.
        """

        async def op(db: AsyncSession) -> bool:
            dialect = db.get_bind().dialect.name
            insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert_fn(Entry).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Entry.signature],
                set_={col: stmt.excluded[col] for col in _REPLACE_COLUMNS if col in values},
                where=Entry.expires_at.is_not(None),
            )
            result = await db.execute(stmt)
            return result.rowcount != 0

        return await self._run("insert_or_replace", op, write=True)

    async def update_fields(
        self,
        signature: str,
        values: dict[str, Any],
        precondition: ColumnElement[bool] | None = None,
    ) -> int:
        """Single-row update, optionally guarded. Returns rows affected."""

        async def op(db: AsyncSession) -> int:
            stmt = update(Entry).where(Entry.signature == signature)
            if precondition is not None:
                stmt = stmt.where(precondition)
            stmt = stmt.values(**values).execution_options(synchronize_session=False)
            result = await db.execute(stmt)
            return result.rowcount

        return await self._run("update_fields", op, write=True)

    async def delete_by_signature(self, signature: str) -> int:
        async def op(db: AsyncSession) -> int:
            result = await db.execute(delete(Entry).where(Entry.signature == signature))
            return result.rowcount

        return await self._run("delete_by_signature", op, write=True)

    async def delete_by_profile(self, profile_id: str) -> int:
        async def op(db: AsyncSession) -> int:
            result = await db.execute(delete(Entry).where(Entry.profile_id == profile_id))
            return result.rowcount

        return await self._run("delete_by_profile", op, write=True)

    async def delete_expired(self, before: datetime) -> int:
        """Physically remove ephemeral rows that expired before ``before``."""

        async def op(db: AsyncSession) -> int:
            result = await db.execute(
                delete(Entry)
                .where(Entry.expires_at.is_not(None))
                .where(Entry.expires_at < before)
            )
            return result.rowcount

        return await self._run("delete_expired", op, write=True)

    # ── Reads ────────────────────────────────────────────────────

    async def fetch_by_signature(
        self,
        signature: str,
        *predicates: ColumnElement[bool],
    ) -> Entry | None:
        async def op(db: AsyncSession) -> Entry | None:
            result = await db.execute(
                select(Entry).where(Entry.signature == signature, *predicates)
            )
            return result.scalar_one_or_none()

        return await self._run("fetch_by_signature", op)

    async def fetch_many(
        self,
        signatures: Iterable[str],
        predicate: ColumnElement[bool] | None = None,
    ) -> list[Entry]:
        keys = list(signatures)
        if not keys:
            return []

        async def op(db: AsyncSession) -> list[Entry]:
            stmt = select(Entry).where(Entry.signature.in_(keys))
            if predicate is not None:
                stmt = stmt.where(predicate)
            result = await db.execute(stmt)
            return list(result.scalars().all())

        return await self._run("fetch_many", op)

    async def count_saved(self, user_id: str) -> int:
        async def op(db: AsyncSession) -> int:
            result = await db.execute(
                select(func.count()).select_from(Entry).where(owned_by(user_id), permanent())
            )
            return int(result.scalar_one())

        return await self._run("count_saved", op)

    async def list_saved(self, user_id: str, *, limit: int, offset: int) -> list[Entry]:
        """Permanent entries of one owner, newest first."""

        async def op(db: AsyncSession) -> list[Entry]:
            result = await db.execute(
                select(Entry)
                .where(owned_by(user_id), permanent())
                .order_by(Entry.created_at.desc(), Entry.signature)
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self._run("list_saved", op)
