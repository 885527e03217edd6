"""Tests for the wallet profiling service."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from accumulation_tracker.profiler.models import WalletPerformance
from accumulation_tracker.profiler.profiler import WalletProfiler
from accumulation_tracker.storage.repos import WalletRepository

WALLET = "0x" + "7a" * 20
MARKET = "0x" + "9" * 40


@pytest.fixture
def history(make_transfer):
    return [
        make_transfer(MARKET, WALLET, 1000, raw={"value_usd": "1000"}),
        make_transfer(WALLET, MARKET, 1000, raw={"value_usd": "1500"}),
    ]


@pytest.fixture
def mock_store(history) -> AsyncMock:
    store = AsyncMock()
    store.get_transfers_for_address = AsyncMock(return_value=history)
    return store


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    return redis


class TestGetPerformance:
    async def test_computes_and_caches(self, mock_store, mock_redis) -> None:
        profiler = WalletProfiler(mock_store, redis=mock_redis, history_limit=50, cache_ttl_seconds=60)

        performance = await profiler.get_performance(WALLET.upper())

        assert performance.address == WALLET
        assert performance.win_rate == 100.0
        mock_store.get_transfers_for_address.assert_awaited_once_with(WALLET, 50)
        key, payload = mock_redis.set.call_args.args
        assert key == f"wallet_performance:{WALLET}"
        assert json.loads(payload)["totalTrades"] == 1
        assert mock_redis.set.call_args.kwargs == {"ex": 60}

    async def test_cache_hit_skips_store(self, mock_store, mock_redis) -> None:
        cached = WalletPerformance(address=WALLET, win_rate=42.0, total_trades=7)
        mock_redis.get = AsyncMock(return_value=json.dumps(cached.to_dict()).encode())
        profiler = WalletProfiler(mock_store, redis=mock_redis)

        performance = await profiler.get_performance(WALLET)

        assert performance == cached
        mock_store.get_transfers_for_address.assert_not_awaited()

    async def test_force_refresh_bypasses_cache(self, mock_store, mock_redis) -> None:
        cached = WalletPerformance(address=WALLET, win_rate=42.0, total_trades=7)
        mock_redis.get = AsyncMock(return_value=json.dumps(cached.to_dict()))
        profiler = WalletProfiler(mock_store, redis=mock_redis)

        performance = await profiler.get_performance(WALLET, force_refresh=True)

        assert performance.total_trades == 1
        mock_store.get_transfers_for_address.assert_awaited_once()

    async def test_redis_errors_are_not_fatal(self, mock_store, mock_redis) -> None:
        mock_redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        mock_redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        profiler = WalletProfiler(mock_store, redis=mock_redis)

        performance = await profiler.get_performance(WALLET)

        assert performance.total_trades == 1

    async def test_cache_disabled(self, mock_store, mock_redis) -> None:
        profiler = WalletProfiler(mock_store, redis=mock_redis, cache_ttl_seconds=0)

        await profiler.get_performance(WALLET)

        mock_redis.get.assert_not_awaited()
        mock_redis.set.assert_not_awaited()


class TestScoreWallet:
    async def test_persists_score(self, mock_store, db) -> None:
        profiler = WalletProfiler(mock_store, db=db)

        result = await profiler.score_wallet(WALLET)

        assert result.address == WALLET
        assert result.is_smart_money(70)
        async with db.get_async_session() as session:
            wallet = await WalletRepository(session).get_by_address(WALLET)
        assert wallet is not None
        assert wallet.score == result.score
        assert wallet.total_trades == 1
        assert wallet.win_rate == Decimal("100.00")
        assert wallet.score_updated_at is not None

    async def test_score_wallets_skips_failures(self, mock_store, history) -> None:
        async def _history(address: str, limit: int):
            if address == MARKET:
                raise RuntimeError("store exploded")
            return history

        mock_store.get_transfers_for_address = AsyncMock(side_effect=_history)
        profiler = WalletProfiler(mock_store)

        results = await profiler.score_wallets([WALLET, MARKET])

        assert [r.address for r in results] == [WALLET]
