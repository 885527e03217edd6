"""Data models for the detector module."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from accumulation_tracker.errors import DataIntegrityError


class SignalType(str, Enum):
    """Closed set of accumulation heuristics."""

    WHALE_INFLOW = "WHALE_INFLOW"
    EXCHANGE_OUTFLOW = "EXCHANGE_OUTFLOW"
    CONCENTRATED_BUYS = "CONCENTRATED_BUYS"
    HOLDING_PATTERNS = "HOLDING_PATTERNS"
    LP_INCREASE = "LP_INCREASE"

    @classmethod
    def parse(cls, value: str) -> SignalType:
        """Parse a stored value, rejecting anything outside the enum.

        Raises:
            DataIntegrityError: If the value is not a known signal type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise DataIntegrityError(f"Unknown signal type: {value!r}") from e

    @property
    def label(self) -> str:
        """Human-readable form, e.g. ``whale inflow``."""
        return self.value.replace("_", " ").lower()


@dataclass(frozen=True)
class SweepWindow:
    """Half-open time range ``[start, end)`` scored by one sweep."""

    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600


@dataclass(frozen=True)
class CandidateSignal:
    """Output of a single detector for one token window.

    Attributes:
        signal_type: Which heuristic fired.
        score: Score within the configured band, 2 decimal places.
        wallets_involved: Contributing addresses, largest contributor first.
        metadata: ``transactionCount``, ``totalVolume``, ``averageBuySize`` plus
            detector-specific diagnostics.
    """

    signal_type: SignalType
    score: Decimal
    wallets_involved: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def total_volume(self) -> Decimal:
        return Decimal(str(self.metadata.get("totalVolume", "0")))

    @property
    def transaction_count(self) -> int:
        return int(self.metadata.get("transactionCount", 0))


@dataclass(frozen=True)
class AccumulationSignal:
    """A persisted, immutable accumulation claim for one token window."""

    id: str
    token_id: str
    signal_type: SignalType
    score: Decimal
    window_start: datetime
    window_end: datetime
    wallets_involved: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateSignal,
        *,
        token_id: str,
        window: SweepWindow,
        created_at: datetime | None = None,
    ) -> AccumulationSignal:
        return cls(
            id=str(uuid.uuid4()),
            token_id=token_id,
            signal_type=candidate.signal_type,
            score=candidate.score,
            window_start=window.start,
            window_end=window.end,
            wallets_involved=candidate.wallets_involved,
            metadata=dict(candidate.metadata),
            created_at=created_at or datetime.now(UTC),
        )

    @property
    def total_volume(self) -> Decimal:
        return Decimal(str(self.metadata.get("totalVolume", "0")))

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for Redis stream publishing."""
        return {
            "id": self.id,
            "token_id": self.token_id,
            "signal_type": self.signal_type.value,
            "score": str(self.score),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "wallets_involved": list(self.wallets_involved),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TokenSweepResult:
    """Outcome of sweeping a single token.

    ``window`` is the main window; ``windows`` lists every window that held
    transfers. ``matched`` holds stored signals that new candidates
    duplicated.
    """

    token_id: str
    window: SweepWindow
    windows: list[SweepWindow] = field(default_factory=list)
    candidates: list[CandidateSignal] = field(default_factory=list)
    persisted: list[AccumulationSignal] = field(default_factory=list)
    matched: list[AccumulationSignal] = field(default_factory=list)
    suppressed: int = 0
    conflicts: int = 0
    skipped_transfers: int = 0
    detector_errors: int = 0
    alerts_created: int = 0
    composite_score: float = 0.0
    high_conviction: bool = False


@dataclass
class SweepReport:
    """Outcome of one sweep across many tokens."""

    started_at: datetime
    finished_at: datetime | None = None
    results: list[TokenSweepResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    tokens_activated: list[str] = field(default_factory=list)

    @property
    def tokens_processed(self) -> int:
        return len(self.results)

    @property
    def tokens_failed(self) -> int:
        return len(self.failures)

    @property
    def signals_created(self) -> int:
        return sum(len(r.persisted) for r in self.results)

    @property
    def alerts_created(self) -> int:
        return sum(r.alerts_created for r in self.results)
