"""Data models for the profiler module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class ClosedTrade:
    """One SELL matched against the running average buy price of its token."""

    token_id: str
    tx_hash: str
    amount: int
    cost: Decimal
    proceeds: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    closed_at: datetime

    @property
    def is_win(self) -> bool:
        return self.pnl_percent > 0

    @property
    def is_loss(self) -> bool:
        return self.pnl_percent < 0


@dataclass(frozen=True)
class WalletPerformance:
    """Average-cost performance approximation for one wallet.

    Without a price oracle the transfer amount doubles as its value unless
    the ingestion source attached ``value_usd``, so PnL is relative rather
    than a real dollar figure.
    """

    address: str
    total_pnl: Decimal = Decimal(0)
    total_pnl_percent: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    tokens_traded: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def empty(cls, address: str) -> WalletPerformance:
        return cls(address=address.lower())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (camelCase keys as exposed to API consumers)."""
        return {
            "address": self.address,
            "totalPnL": str(self.total_pnl),
            "totalPnLPercent": self.total_pnl_percent,
            "winRate": self.win_rate,
            "totalTrades": self.total_trades,
            "winningTrades": self.winning_trades,
            "losingTrades": self.losing_trades,
            "avgWin": self.avg_win,
            "avgLoss": self.avg_loss,
            "tokensTraded": self.tokens_traded,
            "computedAt": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletPerformance:
        return cls(
            address=data["address"],
            total_pnl=Decimal(data["totalPnL"]),
            total_pnl_percent=float(data["totalPnLPercent"]),
            win_rate=float(data["winRate"]),
            total_trades=int(data["totalTrades"]),
            winning_trades=int(data["winningTrades"]),
            losing_trades=int(data["losingTrades"]),
            avg_win=float(data["avgWin"]),
            avg_loss=float(data["avgLoss"]),
            tokens_traded=int(data.get("tokensTraded", 0)),
            computed_at=datetime.fromisoformat(data["computedAt"]),
        )


@dataclass(frozen=True)
class WalletScore:
    """Persisted wallet score together with the performance that produced it."""

    address: str
    score: int
    performance: WalletPerformance

    def is_smart_money(self, min_score: int) -> bool:
        return self.score >= min_score
