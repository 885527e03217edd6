"""Transfer store boundary used by the detectors and the aggregator.

``SqlTransferStore`` opens one transactional session per call and
translates connectivity failures into ``TransientStoreError`` so callers can
retry the affected token on the next sweep.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import InterfaceError, OperationalError

from accumulation_tracker.detector.models import AccumulationSignal, SignalType
from accumulation_tracker.errors import DataIntegrityError, TransientStoreError
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry
from accumulation_tracker.screener.models import TokenMetrics
from accumulation_tracker.storage.repos import (
    EXCHANGE_LABEL,
    LIQUIDITY_POOL_LABEL,
    PositionRepository,
    ScreenerRepository,
    SignalRepository,
    SweepLockRepository,
    TokenRepository,
    TransferRepository,
    WalletRepository,
    transfer_from_model,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from accumulation_tracker.storage.database import DatabaseManager
    from accumulation_tracker.storage.models import TransferModel

logger = logging.getLogger(__name__)


class TransferStore(Protocol):
    """Read/write surface the engine needs from storage."""

    async def get_transfers(self, token_id: str, from_time: datetime, to_time: datetime) -> list[Transfer]:
        raise NotImplementedError

    async def get_transfers_for_address(self, address: str, limit: int) -> list[Transfer]:
        raise NotImplementedError

    async def upsert_position(self, wallet_id: int, token_id: str, balance: int) -> None:
        raise NotImplementedError

    async def insert_signal(self, signal: AccumulationSignal) -> str:
        raise NotImplementedError

    async def list_signals_overlapping(
        self,
        token_id: str,
        signal_type: SignalType,
        start: datetime,
        end: datetime,
    ) -> list[AccumulationSignal]:
        raise NotImplementedError

    async def list_active_tokens(self) -> list[Token]:
        raise NotImplementedError

    async def activate_recent_tokens(self, since: datetime) -> list[str]:
        raise NotImplementedError

    async def acquire_sweep_lock(self, name: str, owner: str, ttl_seconds: int) -> bool:
        raise NotImplementedError

    async def release_sweep_lock(self, name: str, owner: str) -> None:
        raise NotImplementedError

    async def load_wallet_registry(
        self,
        extra_exchanges: Iterable[str] = (),
        extra_pools: Iterable[str] = (),
    ) -> WalletRegistry:
        raise NotImplementedError


class SqlTransferStore:
    """``TransferStore`` over SQLAlchemy async sessions."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db
        self.skipped_rows = 0

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.get_async_session() as session:
                yield session
        except (OperationalError, InterfaceError, TimeoutError, ConnectionError) as e:
            raise TransientStoreError(f"Transfer store unavailable: {e}") from e

    def _convert(self, rows: Iterable[TransferModel]) -> list[Transfer]:
        transfers: list[Transfer] = []
        for row in rows:
            try:
                transfers.append(transfer_from_model(row))
            except DataIntegrityError as e:
                self.skipped_rows += 1
                logger.warning("Skipping malformed transfer row: %s", e)
        return transfers

    async def get_transfers(self, token_id: str, from_time: datetime, to_time: datetime) -> list[Transfer]:
        """Transfers of ``token_id`` in ``[from_time, to_time)``, oldest first.

        Malformed rows are logged and skipped; ``skipped_rows`` counts them.
        """
        async with self._session() as session:
            rows = await TransferRepository(session).list_for_token(token_id, start=from_time, end=to_time)
        return self._convert(rows)

    async def get_transfers_for_address(self, address: str, limit: int) -> list[Transfer]:
        if limit <= 0:
            return []
        async with self._session() as session:
            rows = await TransferRepository(session).list_for_address(address, limit=limit)
        return self._convert(rows)

    async def upsert_position(self, wallet_id: int, token_id: str, balance: int) -> None:
        async with self._session() as session:
            await PositionRepository(session).upsert(wallet_id, token_id, balance)

    async def insert_signal(self, signal: AccumulationSignal) -> str:
        """Persist a signal atomically.

        Raises:
            ConflictError: If the natural key is already taken.
            TransientStoreError: If the store is unavailable.
        """
        async with self._session() as session:
            return await SignalRepository(session).insert(signal)

    async def list_signals_overlapping(
        self,
        token_id: str,
        signal_type: SignalType,
        start: datetime,
        end: datetime,
    ) -> list[AccumulationSignal]:
        async with self._session() as session:
            return await SignalRepository(session).list_overlapping(token_id, signal_type, start=start, end=end)

    async def list_active_tokens(self) -> list[Token]:
        async with self._session() as session:
            return await TokenRepository(session).list_active()

    async def activate_recent_tokens(self, since: datetime) -> list[str]:
        """Switch inactive tokens with transfers since ``since`` back on."""
        async with self._session() as session:
            activated = await TokenRepository(session).activate_recently_traded(since=since)
        for token_id in activated:
            logger.info("Activated token %s after recent transfer activity", token_id)
        return activated

    async def acquire_sweep_lock(self, name: str, owner: str, ttl_seconds: int) -> bool:
        """Take an expiring lease; committed before returning so other workers see it."""
        async with self._session() as session:
            return await SweepLockRepository(session).acquire(name, owner, ttl_seconds=ttl_seconds)

    async def release_sweep_lock(self, name: str, owner: str) -> None:
        async with self._session() as session:
            await SweepLockRepository(session).release(name, owner)

    async def load_wallet_registry(
        self,
        extra_exchanges: Iterable[str] = (),
        extra_pools: Iterable[str] = (),
    ) -> WalletRegistry:
        """Snapshot address labels, merged with statically configured venues."""
        async with self._session() as session:
            wallets = WalletRepository(session)
            tracked = await wallets.list_addresses(tracked=True)
            exchanges = await wallets.list_addresses(label=EXCHANGE_LABEL)
            pools = await wallets.list_addresses(label=LIQUIDITY_POOL_LABEL)
        return WalletRegistry.from_addresses(
            tracked=tracked,
            exchanges=[*exchanges, *extra_exchanges],
            liquidity_pools=[*pools, *extra_pools],
        )


class ScreenerMetricsLoader:
    """Loads screener metrics for active tokens in one session."""

    def __init__(self, db: DatabaseManager, *, smart_wallet_min_score: int = 70, chain: str | None = None) -> None:
        self._db = db
        self._smart_wallet_min_score = smart_wallet_min_score
        self._chain = chain

    async def __call__(self, now: datetime) -> list[TokenMetrics]:
        try:
            async with self._db.get_async_session() as session:
                return await ScreenerRepository(session).load_token_metrics(
                    now=now,
                    smart_wallet_min_score=self._smart_wallet_min_score,
                    chain=self._chain,
                )
        except (OperationalError, InterfaceError, TimeoutError, ConnectionError) as e:
            raise TransientStoreError(f"Screener metrics unavailable: {e}") from e
