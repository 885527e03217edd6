"""Data models for the alpha screener."""

from __future__ import annotations

import operator
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class SortField(str, Enum):
    ACCUMULATION_SCORE = "accumulation_score"
    WHALE_INFLOW_PERCENT = "whale_inflow_percent"
    VOLUME_24H = "volume_24h"
    MARKET_CAP = "market_cap"
    AGE = "age"
    SMART_WALLETS_COUNT = "smart_wallets_count"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


@dataclass(frozen=True)
class Predicate:
    """One comparison against a TokenSummary field.

    A missing (None) metric never satisfies a predicate.
    """

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unknown predicate operator: {self.op}")

    def matches(self, summary: TokenSummary) -> bool:
        actual = getattr(summary, self.field)
        if actual is None:
            return False
        if isinstance(actual, str):
            return _OPERATORS[self.op](actual.lower(), str(self.value).lower())
        return _OPERATORS[self.op](actual, self.value)


@dataclass(frozen=True)
class LatestSignal:
    score: Decimal
    signal_type: str
    created_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "score": float(self.score),
            "signal_type": self.signal_type,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TokenMetrics:
    """Raw per-token aggregates loaded from storage."""

    token_id: str
    symbol: str
    name: str
    chain: str
    contract_address: str
    launched_at: datetime | None
    volume_24h: Decimal
    previous_volume_24h: Decimal
    whale_inflow_volume: Decimal
    smart_wallets_count: int
    market_cap: Decimal | None = None
    price: Decimal | None = None
    price_change_24h: Decimal | None = None
    latest_signal: LatestSignal | None = None


@dataclass(frozen=True)
class TokenSummary:
    """Screener row for one token."""

    token_id: str
    symbol: str
    name: str
    chain: str
    contract_address: str
    age_minutes: float | None
    age_formatted: str
    volume_24h: Decimal
    market_cap: Decimal | None
    whale_inflow_percent: float
    accumulation_score: float
    smart_wallets_count: int
    price: Decimal | None = None
    latest_signal: LatestSignal | None = None
    is_breakout: bool = False

    @property
    def age(self) -> float | None:
        return self.age_minutes

    def to_dict(self) -> dict[str, object]:
        return {
            "token_id": self.token_id,
            "symbol": self.symbol,
            "name": self.name,
            "chain": self.chain,
            "contract_address": self.contract_address,
            "age": self.age_minutes,
            "age_formatted": self.age_formatted,
            "volume_24h": str(self.volume_24h),
            "market_cap": str(self.market_cap) if self.market_cap is not None else None,
            "whale_inflow_percent": self.whale_inflow_percent,
            "accumulation_score": self.accumulation_score,
            "smart_wallets_count": self.smart_wallets_count,
            "price": str(self.price) if self.price is not None else None,
            "latest_signal": self.latest_signal.to_dict() if self.latest_signal else None,
            "is_breakout": self.is_breakout,
        }


@dataclass(frozen=True)
class ScreenerFilters:
    """Ad-hoc filter set; every populated field adds one predicate."""

    chain: str | None = None
    min_age: float | None = None
    max_age: float | None = None
    min_volume_24h: Decimal | None = None
    max_volume_24h: Decimal | None = None
    min_market_cap: Decimal | None = None
    max_market_cap: Decimal | None = None
    min_whale_inflow_percent: float | None = None
    min_accumulation_score: float | None = None
    min_smart_wallets: int | None = None
    breakout_only: bool = False
    preset: str | None = None
    extra: tuple[Predicate, ...] = field(default_factory=tuple)

    def to_predicates(self) -> list[Predicate]:
        bounds: list[tuple[str, str, Any]] = [
            ("chain", "eq", self.chain),
            ("age_minutes", "gte", self.min_age),
            ("age_minutes", "lte", self.max_age),
            ("volume_24h", "gte", self.min_volume_24h),
            ("volume_24h", "lte", self.max_volume_24h),
            ("market_cap", "gte", self.min_market_cap),
            ("market_cap", "lte", self.max_market_cap),
            ("whale_inflow_percent", "gte", self.min_whale_inflow_percent),
            ("accumulation_score", "gte", self.min_accumulation_score),
            ("smart_wallets_count", "gte", self.min_smart_wallets),
        ]
        predicates = [Predicate(f, op, v) for f, op, v in bounds if v is not None]
        if self.breakout_only:
            predicates.append(Predicate("is_breakout", "eq", True))
        predicates.extend(self.extra)
        return predicates
