"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from accumulation_tracker.config import DetectionConfig, clear_settings_cache
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry
from accumulation_tracker.storage.database import DatabaseManager
from accumulation_tracker.storage.models import Base

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def now() -> datetime:
    """Fixed sweep time; the default window is [NOW - 24h, NOW - 1h)."""
    return NOW


@pytest.fixture
def in_window(now: datetime) -> datetime:
    """A timestamp safely inside the default sweep window."""
    return now - timedelta(hours=6)


@pytest.fixture
def token() -> Token:
    return Token(
        id="token_t",
        chain="ethereum",
        symbol="TKN",
        name="Test Token",
        contract_address="0x" + "1" * 40,
        decimals=0,
        metadata={"price_usd": "2", "market_cap": "500000"},
        created_at=NOW - timedelta(days=3),
    )


@pytest.fixture
def config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture
def registry() -> WalletRegistry:
    return WalletRegistry()


@pytest.fixture
def make_transfer(in_window: datetime) -> Callable[..., Transfer]:
    """Build transfers with unique hashes and increasing block numbers."""
    sequence = count(1)

    def _make(
        from_address: str,
        to_address: str,
        amount: int,
        *,
        token_id: str = "token_t",
        timestamp: datetime | None = None,
        tx_hash: str | None = None,
        raw: dict[str, Any] | None = None,
    ) -> Transfer:
        n = next(sequence)
        return Transfer(
            tx_hash=tx_hash or f"0x{n:064x}",
            from_address=from_address.lower(),
            to_address=to_address.lower(),
            token_id=token_id,
            amount=amount,
            block_number=1_000 + n,
            timestamp=timestamp or in_window + timedelta(minutes=n),
            raw=raw or {},
        )

    return _make


@pytest.fixture
async def async_engine(tmp_path):
    """Create a file-backed async SQLite engine for testing.

    A file keeps every session on the same database, unlike ``:memory:``.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db(async_engine) -> DatabaseManager:
    return DatabaseManager.from_engine(async_engine)


@pytest.fixture
async def async_session(db: DatabaseManager) -> AsyncSession:
    """Create a session that commits when the test finishes."""
    async with db.get_async_session() as session:
        yield session
