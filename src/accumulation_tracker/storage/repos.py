"""Repository pattern implementations for data access.

This module provides data access abstractions for tokens, wallets,
transfers, positions, accumulation signals, subscribers, alerts, sweep lock
leases and the screener's per-token aggregates.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from accumulation_tracker.alerter.models import (
    Alert,
    AlertChannels,
    AlertStatus,
    Subscriber,
    SubscriptionPlan,
)
from accumulation_tracker.detector.models import AccumulationSignal, SignalType
from accumulation_tracker.errors import ConflictError, DataIntegrityError
from accumulation_tracker.ingestor.models import Token, Transfer
from accumulation_tracker.screener.models import LatestSignal, TokenMetrics
from accumulation_tracker.storage.models import (
    AccumulationSignalModel,
    AlertModel,
    SweepLockModel,
    TokenModel,
    TransferModel,
    UserModel,
    WalletModel,
    WalletPositionModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EXCHANGE_LABEL = "exchange"
LIQUIDITY_POOL_LABEL = "liquidity_pool"

# Rows per multi-row INSERT; asyncpg caps a statement at 32767 bind parameters.
INSERT_CHUNK_SIZE = 1000


def _dialect_insert(session: AsyncSession, model: Any) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _loads(raw: str | None) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise DataIntegrityError(f"Corrupt JSON column: {e}") from e


def _decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ============================================================================
# Model <-> domain conversion
# ============================================================================


def token_from_model(model: TokenModel) -> Token:
    return Token(
        id=model.id,
        chain=model.chain,
        symbol=model.symbol,
        name=model.name,
        contract_address=model.contract_address,
        decimals=model.decimals,
        active=model.active,
        metadata=_loads(model.metadata_json),
        created_at=model.created_at,
    )


def transfer_from_model(model: TransferModel) -> Transfer:
    """Convert a stored row, validating it on the way out.

    Raises:
        DataIntegrityError: For negative/fractional amounts or missing references.
    """
    if not model.token_id:
        raise DataIntegrityError(f"Transfer {model.id} is missing a token reference")
    amount = _decimal(model.amount)
    if amount < 0 or amount != amount.to_integral_value():
        raise DataIntegrityError(f"Transfer {model.id} has an invalid amount: {model.amount}")
    return Transfer(
        id=model.id,
        tx_hash=model.tx_hash,
        from_address=model.from_address,
        to_address=model.to_address,
        token_id=model.token_id,
        amount=int(amount),
        block_number=model.block_number,
        timestamp=model.timestamp,
        raw=_loads(model.raw_json),
    )


def signal_from_model(model: AccumulationSignalModel) -> AccumulationSignal:
    return AccumulationSignal(
        id=model.id,
        token_id=model.token_id,
        signal_type=SignalType.parse(model.signal_type),
        score=_decimal(model.score).quantize(Decimal("0.01")),
        window_start=model.window_start,
        window_end=model.window_end,
        wallets_involved=tuple(json.loads(model.wallets_json or "[]")),
        metadata=_loads(model.metadata_json),
        created_at=model.created_at,
    )


def alert_from_model(model: AlertModel) -> Alert:
    return Alert(
        id=model.id,
        user_id=model.user_id,
        signal_id=model.signal_id,
        channels=AlertChannels(telegram=model.telegram, email=model.email),
        status=AlertStatus.parse(model.status),
        created_at=model.created_at,
        delivered_at=model.delivered_at,
    )


def subscriber_from_model(model: UserModel) -> Subscriber:
    return Subscriber(
        id=model.id,
        email=model.email,
        plan=SubscriptionPlan.parse(model.plan),
        alert_threshold=_decimal(model.alert_threshold),
        channels=AlertChannels(telegram=model.telegram_enabled, email=model.email_enabled),
    )


@dataclass
class WalletDTO:
    """Data transfer object for wallets."""

    id: int
    address: str
    label: str | None
    tracked: bool
    score: int | None = None
    win_rate: Decimal | None = None
    total_trades: int = 0
    score_updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletModel) -> WalletDTO:
        return cls(
            id=model.id,
            address=model.address,
            label=model.label,
            tracked=model.tracked,
            score=model.score,
            win_rate=model.win_rate,
            total_trades=model.total_trades,
            score_updated_at=model.score_updated_at,
        )


# ============================================================================
# Repositories
# ============================================================================


class TokenRepository:
    """Repository for tracked tokens."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, token: Token) -> Token:
        values = {
            "id": token.id,
            "chain": token.chain.lower(),
            "symbol": token.symbol,
            "name": token.name,
            "contract_address": token.contract_address.lower(),
            "decimals": token.decimals,
            "active": token.active,
            "metadata_json": json.dumps(token.metadata),
            "created_at": token.created_at or datetime.now(UTC),
        }
        stmt = _dialect_insert(self.session, TokenModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "active": stmt.excluded.active,
                "metadata_json": stmt.excluded.metadata_json,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return token

    async def get(self, token_id: str) -> Token | None:
        result = await self.session.execute(select(TokenModel).where(TokenModel.id == token_id))
        model = result.scalar_one_or_none()
        return token_from_model(model) if model else None

    async def get_many(self, token_ids: Sequence[str]) -> dict[str, Token]:
        if not token_ids:
            return {}
        result = await self.session.execute(select(TokenModel).where(TokenModel.id.in_(list(token_ids))))
        return {m.id: token_from_model(m) for m in result.scalars().all()}

    async def list_active(self, *, chain: str | None = None) -> list[Token]:
        stmt = select(TokenModel).where(TokenModel.active.is_(True))
        if chain is not None:
            stmt = stmt.where(TokenModel.chain == chain.lower())
        result = await self.session.execute(stmt.order_by(TokenModel.id.asc()))
        return [token_from_model(m) for m in result.scalars().all()]

    async def activate_recently_traded(self, *, since: datetime) -> list[str]:
        """Re-activate inactive tokens with transfers at or after ``since``.

        Returns:
            Ids of the tokens that were switched back on.
        """
        recent = select(TransferModel.token_id).where(TransferModel.timestamp >= since).distinct()
        result = await self.session.execute(
            select(TokenModel.id)
            .where(TokenModel.active.is_(False), TokenModel.id.in_(recent))
            .order_by(TokenModel.id.asc())
        )
        token_ids = list(result.scalars().all())
        if token_ids:
            await self.session.execute(update(TokenModel).where(TokenModel.id.in_(token_ids)).values(active=True))
            await self.session.flush()
        return token_ids


class WalletRepository:
    """Repository for wallets, created lazily and keyed by lower-cased address."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def ensure_many(self, addresses: Iterable[str]) -> dict[str, int]:
        """Create any missing wallets and return ``{address: wallet_id}``."""
        normalized = sorted({a.lower() for a in addresses if a})
        if not normalized:
            return {}
        now = datetime.now(UTC)
        wallet_ids: dict[str, int] = {}
        for chunk in _chunked(normalized, INSERT_CHUNK_SIZE):
            stmt = _dialect_insert(self.session, WalletModel).values(
                [{"address": a, "tracked": False, "total_trades": 0, "created_at": now} for a in chunk]
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["address"])
            await self.session.execute(stmt)
            await self.session.flush()

            result = await self.session.execute(
                select(WalletModel.address, WalletModel.id).where(WalletModel.address.in_(list(chunk)))
            )
            wallet_ids.update({address: wallet_id for address, wallet_id in result.all()})
        return wallet_ids

    async def ensure(self, address: str) -> WalletDTO:
        await self.ensure_many([address])
        wallet = await self.get_by_address(address)
        if wallet is None:
            raise DataIntegrityError(f"Wallet {address} vanished after insert")
        return wallet

    async def upsert_labeled(self, address: str, *, label: str | None = None, tracked: bool | None = None) -> WalletDTO:
        """Create or relabel a wallet (exchange, liquidity_pool, tracked whale)."""
        wallet = await self.ensure(address)
        values: dict[str, Any] = {}
        if label is not None:
            values["label"] = label
        if tracked is not None:
            values["tracked"] = tracked
        if values:
            await self.session.execute(update(WalletModel).where(WalletModel.id == wallet.id).values(**values))
            await self.session.flush()
        return await self.ensure(address)

    async def get_by_address(self, address: str) -> WalletDTO | None:
        result = await self.session.execute(select(WalletModel).where(WalletModel.address == address.lower()))
        model = result.scalar_one_or_none()
        return WalletDTO.from_model(model) if model else None

    async def list_addresses(self, *, tracked: bool | None = None, label: str | None = None) -> list[str]:
        stmt = select(WalletModel.address)
        if tracked is not None:
            stmt = stmt.where(WalletModel.tracked.is_(tracked))
        if label is not None:
            stmt = stmt.where(WalletModel.label == label)
        result = await self.session.execute(stmt.order_by(WalletModel.address.asc()))
        return list(result.scalars().all())

    async def update_score(
        self,
        address: str,
        *,
        score: int,
        win_rate: Decimal,
        total_trades: int,
        at: datetime,
    ) -> None:
        wallet = await self.ensure(address)
        await self.session.execute(
            update(WalletModel)
            .where(WalletModel.id == wallet.id)
            .values(score=score, win_rate=win_rate, total_trades=total_trades, score_updated_at=at)
        )
        await self.session.flush()

    async def leaderboard(self, *, limit: int = 20, min_trades: int = 1) -> list[WalletDTO]:
        """Highest-scoring wallets with enough closed trades."""
        result = await self.session.execute(
            select(WalletModel)
            .where(WalletModel.score.is_not(None), WalletModel.total_trades >= min_trades)
            .order_by(WalletModel.score.desc(), WalletModel.address.asc())
            .limit(limit)
        )
        return [WalletDTO.from_model(m) for m in result.scalars().all()]

    async def list_stale_scores(self, *, before: datetime, limit: int) -> list[str]:
        """Tracked wallets never scored, or last scored before ``before``, stalest first."""
        result = await self.session.execute(
            select(WalletModel.address)
            .where(
                WalletModel.tracked.is_(True),
                or_(WalletModel.score_updated_at.is_(None), WalletModel.score_updated_at < before),
            )
            .order_by(WalletModel.score_updated_at.asc().nulls_first(), WalletModel.address.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class TransferRepository:
    """Repository for append-only transfers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, transfers: Sequence[Transfer], *, chunk_size: int | None = None) -> int:
        """Insert transfers, ignoring ones already stored.

        Rows are written in chunks of ``chunk_size`` (``INSERT_CHUNK_SIZE``
        by default) inside the caller's transaction.

        Returns:
            Number of newly inserted rows.
        """
        if not transfers:
            return 0
        size = chunk_size or INSERT_CHUNK_SIZE
        now = datetime.now(UTC)
        rows = [
            {
                "tx_hash": t.tx_hash.lower(),
                "token_id": t.token_id,
                "from_address": t.from_address.lower(),
                "to_address": t.to_address.lower(),
                "amount": Decimal(t.amount),
                "block_number": t.block_number,
                "timestamp": t.timestamp,
                "raw_json": json.dumps(t.raw, default=str),
                "created_at": now,
            }
            for t in transfers
        ]
        inserted = 0
        for chunk in _chunked(rows, size):
            stmt = _dialect_insert(self.session, TransferModel).values(list(chunk))
            stmt = stmt.on_conflict_do_nothing(index_elements=["tx_hash", "token_id"])
            result = await self.session.execute(stmt)
            inserted += max(0, result.rowcount or 0)
        await self.session.flush()
        return inserted

    async def list_for_token(
        self,
        token_id: str,
        *,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> list[TransferModel]:
        """Raw rows for ``token_id`` with ``start <= timestamp < end``."""
        stmt = (
            select(TransferModel)
            .where(TransferModel.token_id == token_id)
            .where((TransferModel.timestamp >= start) & (TransferModel.timestamp < end))
            .order_by(
                TransferModel.timestamp.asc(),
                TransferModel.block_number.asc(),
                TransferModel.id.asc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_address(self, address: str, *, limit: int) -> list[TransferModel]:
        """Most recent ``limit`` rows touching ``address``, returned oldest first."""
        normalized = address.lower()
        result = await self.session.execute(
            select(TransferModel)
            .where(or_(TransferModel.from_address == normalized, TransferModel.to_address == normalized))
            .order_by(TransferModel.timestamp.desc(), TransferModel.block_number.desc(), TransferModel.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def net_flow(self, address: str, token_id: str) -> tuple[int, int]:
        """Total (incoming, outgoing) amounts of ``token_id`` for ``address``."""
        normalized = address.lower()
        incoming = await self.session.scalar(
            select(func.coalesce(func.sum(TransferModel.amount), 0)).where(
                TransferModel.token_id == token_id, TransferModel.to_address == normalized
            )
        )
        outgoing = await self.session.scalar(
            select(func.coalesce(func.sum(TransferModel.amount), 0)).where(
                TransferModel.token_id == token_id, TransferModel.from_address == normalized
            )
        )
        return int(_decimal(incoming)), int(_decimal(outgoing))


class PositionRepository:
    """Repository for wallet position snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, wallet_id: int, token_id: str, balance: int, *, at: datetime | None = None) -> None:
        if balance < 0:
            raise DataIntegrityError(f"Negative balance for wallet {wallet_id} / token {token_id}")
        stmt = _dialect_insert(self.session, WalletPositionModel).values(
            wallet_id=wallet_id,
            token_id=token_id,
            balance=Decimal(balance),
            last_updated_at=at or datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["wallet_id", "token_id"],
            set_={"balance": stmt.excluded.balance, "last_updated_at": stmt.excluded.last_updated_at},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get(self, wallet_id: int, token_id: str) -> int | None:
        value = await self.session.scalar(
            select(WalletPositionModel.balance).where(
                WalletPositionModel.wallet_id == wallet_id, WalletPositionModel.token_id == token_id
            )
        )
        return int(_decimal(value)) if value is not None else None


class SignalRepository:
    """Repository for immutable accumulation signals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, signal: AccumulationSignal) -> str:
        """Insert a signal.

        Raises:
            ConflictError: If (token_id, signal_type, window_start) already exists.
        """
        stmt = _dialect_insert(self.session, AccumulationSignalModel).values(
            id=signal.id,
            token_id=signal.token_id,
            signal_type=signal.signal_type.value,
            score=signal.score,
            window_start=signal.window_start,
            window_end=signal.window_end,
            wallets_json=json.dumps(list(signal.wallets_involved)),
            metadata_json=json.dumps(signal.metadata, default=str),
            created_at=signal.created_at,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["token_id", "signal_type", "window_start"]).returning(
            AccumulationSignalModel.id
        )
        try:
            result = await self.session.execute(stmt)
            inserted = result.scalar_one_or_none()
        except IntegrityError as e:
            raise ConflictError(f"Signal {signal.id} conflicts with an existing row") from e
        if inserted is None:
            raise ConflictError(
                f"Signal already recorded for {signal.token_id}/{signal.signal_type.value}"
                f" starting {signal.window_start.isoformat()}"
            )
        await self.session.flush()
        return str(inserted)

    async def get(self, signal_id: str) -> AccumulationSignal | None:
        result = await self.session.execute(
            select(AccumulationSignalModel).where(AccumulationSignalModel.id == signal_id)
        )
        model = result.scalar_one_or_none()
        return signal_from_model(model) if model else None

    async def list_overlapping(
        self,
        token_id: str,
        signal_type: SignalType,
        *,
        start: datetime,
        end: datetime,
    ) -> list[AccumulationSignal]:
        """Signals of the same (token, type) whose window intersects ``[start, end)``."""
        result = await self.session.execute(
            select(AccumulationSignalModel)
            .where(
                AccumulationSignalModel.token_id == token_id,
                AccumulationSignalModel.signal_type == signal_type.value,
                AccumulationSignalModel.window_start < end,
                AccumulationSignalModel.window_end > start,
            )
            .order_by(AccumulationSignalModel.window_end.desc(), AccumulationSignalModel.created_at.desc())
        )
        return [signal_from_model(m) for m in result.scalars().all()]

    async def list_recent(
        self,
        *,
        since: datetime,
        min_score: Decimal | None = None,
        chain: str | None = None,
        limit: int = 100,
    ) -> list[AccumulationSignal]:
        """Recent signals ordered by score desc, then recency."""
        stmt = select(AccumulationSignalModel).where(AccumulationSignalModel.created_at >= since)
        if min_score is not None:
            stmt = stmt.where(AccumulationSignalModel.score >= min_score)
        if chain is not None:
            stmt = stmt.join(TokenModel, TokenModel.id == AccumulationSignalModel.token_id).where(
                TokenModel.chain == chain.lower()
            )
        stmt = stmt.order_by(
            AccumulationSignalModel.score.desc(), AccumulationSignalModel.created_at.desc()
        ).limit(limit)
        result = await self.session.execute(stmt)
        return [signal_from_model(m) for m in result.scalars().all()]

    async def latest_by_token(self, token_ids: Sequence[str]) -> dict[str, AccumulationSignal]:
        """Most recent signal per token (by window end, then creation time)."""
        if not token_ids:
            return {}
        ranked = (
            select(
                AccumulationSignalModel.id.label("id"),
                func.row_number()
                .over(
                    partition_by=AccumulationSignalModel.token_id,
                    order_by=(
                        AccumulationSignalModel.window_end.desc(),
                        AccumulationSignalModel.created_at.desc(),
                    ),
                )
                .label("rn"),
            )
            .where(AccumulationSignalModel.token_id.in_(list(token_ids)))
            .subquery()
        )
        result = await self.session.execute(
            select(AccumulationSignalModel).join(ranked, ranked.c.id == AccumulationSignalModel.id).where(ranked.c.rn == 1)
        )
        return {m.token_id: signal_from_model(m) for m in result.scalars().all()}


class UserRepository:
    """Repository for alert subscribers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, subscriber: Subscriber) -> Subscriber:
        stmt = _dialect_insert(self.session, UserModel).values(
            id=subscriber.id,
            email=subscriber.email.lower(),
            plan=subscriber.plan.value,
            alert_threshold=subscriber.alert_threshold,
            telegram_enabled=subscriber.channels.telegram,
            email_enabled=subscriber.channels.email,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "plan": stmt.excluded.plan,
                "alert_threshold": stmt.excluded.alert_threshold,
                "telegram_enabled": stmt.excluded.telegram_enabled,
                "email_enabled": stmt.excluded.email_enabled,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return subscriber

    async def list_eligible(self, *, plans: Sequence[str], score: Decimal) -> list[Subscriber]:
        """Subscribers on ``plans`` whose personal threshold ``score`` meets."""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.plan.in_([p.upper() for p in plans]), UserModel.alert_threshold <= score)
            .order_by(UserModel.id.asc())
        )
        return [subscriber_from_model(m) for m in result.scalars().all()]


class AlertRepository:
    """Repository for alert records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, alert: Alert) -> bool:
        """Insert unless (user_id, signal_id) already has an alert.

        Returns:
            True if a new row was created.
        """
        stmt = _dialect_insert(self.session, AlertModel).values(
            id=alert.id,
            user_id=alert.user_id,
            signal_id=alert.signal_id,
            telegram=alert.channels.telegram,
            email=alert.channels.email,
            status=alert.status.value,
            created_at=alert.created_at,
            delivered_at=alert.delivered_at,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "signal_id"]).returning(AlertModel.id)
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none()
        await self.session.flush()
        return inserted is not None

    async def get(self, alert_id: str) -> Alert | None:
        result = await self.session.execute(select(AlertModel).where(AlertModel.id == alert_id))
        model = result.scalar_one_or_none()
        return alert_from_model(model) if model else None

    async def list_for_signal(self, signal_id: str) -> list[Alert]:
        result = await self.session.execute(
            select(AlertModel).where(AlertModel.signal_id == signal_id).order_by(AlertModel.user_id.asc())
        )
        return [alert_from_model(m) for m in result.scalars().all()]

    async def list_pending(self, *, limit: int, after_id: str | None = None) -> list[Alert]:
        """Oldest pending alerts first, keyset-paginated by id."""
        stmt = select(AlertModel).where(AlertModel.status == AlertStatus.PENDING.value)
        if after_id is not None:
            stmt = stmt.where(AlertModel.id > after_id)
        result = await self.session.execute(stmt.order_by(AlertModel.id.asc()).limit(limit))
        return [alert_from_model(m) for m in result.scalars().all()]

    async def save_status(self, alert: Alert) -> None:
        """Persist a transitioned alert, only if the stored row is still PENDING."""
        result = await self.session.execute(
            update(AlertModel)
            .where(AlertModel.id == alert.id, AlertModel.status == AlertStatus.PENDING.value)
            .values(status=alert.status.value, delivered_at=alert.delivered_at)
        )
        if (result.rowcount or 0) == 0:
            raise ConflictError(f"Alert {alert.id} is no longer pending")
        await self.session.flush()


class SweepLockRepository:
    """Expiring named leases, the database counterpart of Redis ``SET NX EX``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def acquire(self, name: str, owner: str, *, ttl_seconds: int, now: datetime | None = None) -> bool:
        """Take the lease unless another owner holds an unexpired one.

        Returns:
            True if ``owner`` holds the lease after this call.
        """
        now = now or datetime.now(UTC)
        stmt = _dialect_insert(self.session, SweepLockModel).values(
            name=name,
            owner=owner,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={"owner": stmt.excluded.owner, "expires_at": stmt.excluded.expires_at},
            where=SweepLockModel.expires_at <= now,
        )
        await self.session.execute(stmt)
        await self.session.flush()
        holder = await self.session.scalar(select(SweepLockModel.owner).where(SweepLockModel.name == name))
        return holder == owner

    async def release(self, name: str, owner: str) -> bool:
        """Drop the lease if ``owner`` still holds it."""
        result = await self.session.execute(
            delete(SweepLockModel).where(SweepLockModel.name == name, SweepLockModel.owner == owner)
        )
        await self.session.flush()
        return (result.rowcount or 0) > 0


class ScreenerRepository:
    """Per-token aggregates backing the alpha screener."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _sum_by_token(self, token_ids: list[str], *, start: datetime, end: datetime) -> dict[str, Decimal]:
        result = await self.session.execute(
            select(TransferModel.token_id, func.sum(TransferModel.amount))
            .where(
                TransferModel.token_id.in_(token_ids),
                TransferModel.timestamp >= start,
                TransferModel.timestamp < end,
            )
            .group_by(TransferModel.token_id)
        )
        return {token_id: _decimal(total) for token_id, total in result.all()}

    async def load_token_metrics(
        self,
        *,
        now: datetime,
        smart_wallet_min_score: int,
        chain: str | None = None,
    ) -> list[TokenMetrics]:
        tokens = await TokenRepository(self.session).list_active(chain=chain)
        if not tokens:
            return []
        token_ids = [t.id for t in tokens]
        since = now - timedelta(hours=24)

        volume = await self._sum_by_token(token_ids, start=since, end=now)
        previous = await self._sum_by_token(token_ids, start=since - timedelta(hours=24), end=since)

        whale_rows = await self.session.execute(
            select(TransferModel.token_id, func.sum(TransferModel.amount))
            .join(WalletModel, WalletModel.address == TransferModel.to_address)
            .where(
                TransferModel.token_id.in_(token_ids),
                TransferModel.timestamp >= since,
                TransferModel.timestamp < now,
                WalletModel.tracked.is_(True),
            )
            .group_by(TransferModel.token_id)
        )
        whale = {token_id: _decimal(total) for token_id, total in whale_rows.all()}

        smart_rows = await self.session.execute(
            select(TransferModel.token_id, func.count(func.distinct(TransferModel.to_address)))
            .join(WalletModel, WalletModel.address == TransferModel.to_address)
            .where(
                TransferModel.token_id.in_(token_ids),
                TransferModel.timestamp >= since,
                TransferModel.timestamp < now,
                WalletModel.score >= smart_wallet_min_score,
            )
            .group_by(TransferModel.token_id)
        )
        smart = {token_id: int(count) for token_id, count in smart_rows.all()}

        latest = await SignalRepository(self.session).latest_by_token(token_ids)

        metrics: list[TokenMetrics] = []
        for token in tokens:
            signal = latest.get(token.id)
            price = token.price_usd

            def valued(totals: dict[str, Decimal], token: Token = token, price: Decimal | None = price) -> Decimal:
                units = token.to_units(totals.get(token.id, Decimal(0)))
                return units * price if price is not None else units

            metrics.append(
                TokenMetrics(
                    token_id=token.id,
                    symbol=token.symbol,
                    name=token.name,
                    chain=token.chain,
                    contract_address=token.contract_address,
                    launched_at=token.launched_at,
                    volume_24h=valued(volume),
                    previous_volume_24h=valued(previous),
                    whale_inflow_volume=valued(whale),
                    smart_wallets_count=smart.get(token.id, 0),
                    market_cap=token.market_cap,
                    price=price,
                    price_change_24h=token.price_change_24h,
                    latest_signal=LatestSignal(
                        score=signal.score,
                        signal_type=signal.signal_type.value,
                        created_at=signal.created_at,
                    )
                    if signal
                    else None,
                )
            )
        return metrics
