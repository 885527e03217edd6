"""Wallet profiling service.

Reads a bounded transfer history per wallet, computes performance and
score, caches the result in Redis and writes the score back onto the wallet
row so the screener can count smart-money wallets.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from accumulation_tracker.profiler.models import WalletPerformance, WalletScore
from accumulation_tracker.profiler.performance import WalletPerformanceCalculator
from accumulation_tracker.storage.repos import WalletRepository

if TYPE_CHECKING:
    from accumulation_tracker.storage.database import DatabaseManager
    from accumulation_tracker.storage.store import TransferStore

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_HISTORY_LIMIT = 5000
DEFAULT_PROFILE_CACHE_TTL = 300  # 5 minutes


class WalletProfiler:
    """Computes, caches and persists wallet scores."""

    def __init__(
        self,
        store: TransferStore,
        *,
        db: DatabaseManager | None = None,
        redis: Redis | None = None,
        calculator: WalletPerformanceCalculator | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        cache_ttl_seconds: int = DEFAULT_PROFILE_CACHE_TTL,
    ) -> None:
        self._store = store
        self._db = db
        self._redis = redis
        self._calculator = calculator or WalletPerformanceCalculator()
        self._history_limit = history_limit
        self._cache_ttl = cache_ttl_seconds
        self._cache_prefix = "wallet_performance:"

    def _cache_key(self, address: str) -> str:
        return f"{self._cache_prefix}{address.lower()}"

    async def _get_cached(self, address: str) -> WalletPerformance | None:
        if not self._redis or self._cache_ttl <= 0:
            return None
        try:
            cached = await self._redis.get(self._cache_key(address))
            if cached is None:
                return None
            return WalletPerformance.from_dict(json.loads(cached if isinstance(cached, str) else cached.decode()))
        except Exception as e:
            logger.warning("Failed to parse cached wallet performance for %s: %s", address, e)
            return None

    async def _cache(self, performance: WalletPerformance) -> None:
        if not self._redis or self._cache_ttl <= 0:
            return
        try:
            await self._redis.set(
                self._cache_key(performance.address),
                json.dumps(performance.to_dict()),
                ex=self._cache_ttl,
            )
        except Exception as e:
            logger.warning("Failed to cache wallet performance for %s: %s", performance.address, e)

    async def get_performance(self, address: str, *, force_refresh: bool = False) -> WalletPerformance:
        """Performance over the wallet's most recent ``history_limit`` transfers."""
        normalized = address.lower()
        if not force_refresh:
            cached = await self._get_cached(normalized)
            if cached is not None:
                return cached

        transfers = await self._store.get_transfers_for_address(normalized, self._history_limit)
        if len(transfers) >= self._history_limit:
            logger.info(
                "Wallet %s history truncated to the most recent %d transfers",
                normalized,
                self._history_limit,
            )
        performance = self._calculator.calculate_performance(normalized, transfers)
        await self._cache(performance)
        return performance

    async def score_wallet(self, address: str, *, force_refresh: bool = False) -> WalletScore:
        """Compute and persist the wallet's score."""
        performance = await self.get_performance(address, force_refresh=force_refresh)
        score = self._calculator.calculate_wallet_score(performance)

        if self._db is not None:
            async with self._db.get_async_session() as session:
                await WalletRepository(session).update_score(
                    performance.address,
                    score=score,
                    win_rate=Decimal(str(performance.win_rate)),
                    total_trades=performance.total_trades,
                    at=datetime.now(UTC),
                )

        logger.info(
            "Scored wallet %s: score=%d win_rate=%.2f trades=%d",
            performance.address,
            score,
            performance.win_rate,
            performance.total_trades,
        )
        return WalletScore(address=performance.address, score=score, performance=performance)

    async def score_wallets(self, addresses: Sequence[str], *, force_refresh: bool = False) -> list[WalletScore]:
        """Score many wallets sequentially, skipping ones that fail."""
        results: list[WalletScore] = []
        for address in addresses:
            try:
                results.append(await self.score_wallet(address, force_refresh=force_refresh))
            except Exception as e:
                logger.warning("Failed to score wallet %s: %s", address, e)
        return results

    async def rescore_stale(
        self,
        *,
        max_age_seconds: int,
        limit: int,
        now: datetime | None = None,
    ) -> list[WalletScore]:
        """Re-score tracked wallets never scored or scored over ``max_age_seconds`` ago."""
        if self._db is None:
            return []
        before = (now or datetime.now(UTC)) - timedelta(seconds=max_age_seconds)
        async with self._db.get_async_session() as session:
            stale = await WalletRepository(session).list_stale_scores(before=before, limit=limit)
        if not stale:
            return []
        logger.info("Re-scoring %d tracked wallets with stale scores", len(stale))
        return await self.score_wallets(stale, force_refresh=True)
