"""Shared fixtures: a throwaway SQLite store and a cache with a movable clock."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.config import Settings
from app.database import Base
from app.schemas.insight import CacheEntryCreate, NormalizedInput
from app.services.signature_cache import SignatureCache

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that tests advance explicitly."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_signature(n: int) -> str:
    return f"{n:064x}"


def make_entry(
    signature: str,
    *,
    profile_id: str = "profile-1",
    summary: str | None = "Ship the pilot first. Then scale.",
    user_id: str | None = None,
    situation: str = "launching a new product",
) -> CacheEntryCreate:
    response = {"summary": summary} if summary is not None else {}
    return CacheEntryCreate(
        signature=signature,
        profile_id=profile_id,
        response=response,
        normalized_input=NormalizedInput(situation=situation, goal="grow revenue"),
        baseline_ipp=62.5,
        baseline_but=48.0,
        user_id=user_id,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        cache_store_max_retries=2,
        cache_store_retry_base_delay=0,
        cache_store_retry_max_delay=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def cache(session_factory, settings, clock) -> SignatureCache:
    return SignatureCache(session_factory, settings, clock=clock)
