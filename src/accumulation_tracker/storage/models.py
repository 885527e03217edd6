"""SQLAlchemy models for persistent storage.

This module defines the database schema for tokens, wallets, transfers,
wallet positions, accumulation signals, alert subscribers, alerts and the
sweep lock leases.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from accumulation_tracker.storage.types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenModel(Base):
    """Tracked token on one chain."""

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(128), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=18)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("chain", "contract_address", name="uq_tokens_chain_contract"),
        Index("idx_tokens_active", "active"),
    )


class WalletModel(Base):
    """Wallet under observation, created lazily on first sight."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    win_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("address", name="uq_wallets_address"),
        Index("idx_wallets_tracked", "tracked"),
        Index("idx_wallets_label", "label"),
    )


class TransferModel(Base):
    """Append-only token transfers (the detectors' only source of truth)."""

    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    token_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_address: Mapped[str] = mapped_column(String(128), nullable=False)
    to_address: Mapped[str] = mapped_column(String(128), nullable=False)

    # Smallest-unit integer amount (uint256 range).
    amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("tx_hash", "token_id", name="uq_transfers_tx_token"),
        Index("idx_transfers_token_time", "token_id", "timestamp"),
        Index("idx_transfers_from", "from_address"),
        Index("idx_transfers_to", "to_address"),
    )


class WalletPositionModel(Base):
    """Current balance snapshot per (wallet, token)."""

    __tablename__ = "wallet_positions"

    wallet_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_wallet_positions_token", "token_id"),)


class AccumulationSignalModel(Base):
    """Immutable accumulation signals."""

    __tablename__ = "accumulation_signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token_id: Mapped[str] = mapped_column(String(64), nullable=False)
    signal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    window_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    wallets_json: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("token_id", "signal_type", "window_start", name="uq_signals_token_type_start"),
        Index("idx_signals_token_type_end", "token_id", "signal_type", "window_end"),
        Index("idx_signals_created_at", "created_at"),
        Index("idx_signals_score", "score"),
    )


class UserModel(Base):
    """Alert subscriber (account management lives elsewhere)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="FREE")
    alert_threshold: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("75"))
    telegram_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_plan", "plan"),
    )


class AlertModel(Base):
    """Alert records created for subscribers when a signal qualifies."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    signal_id: Mapped[str] = mapped_column(String(36), nullable=False)
    telegram: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "signal_id", name="uq_alerts_user_signal"),
        Index("idx_alerts_status_created", "status", "created_at"),
        Index("idx_alerts_signal", "signal_id"),
    )


class SweepLockModel(Base):
    """Expiring per-token lease serializing dedup and insert across workers."""

    __tablename__ = "sweep_locks"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner: Mapped[str] = mapped_column(String(36), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
