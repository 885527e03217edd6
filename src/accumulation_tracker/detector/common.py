"""Shared scoring helpers for the accumulation detectors.

Every detector maps a ``strength`` in [0, 1] onto the configured score band
``[signal_threshold, max_signal_score]`` so that a firing detector always
clears the persistence floor.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from accumulation_tracker.detector.models import CandidateSignal

if TYPE_CHECKING:
    from accumulation_tracker.config import DetectionConfig
    from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry

SCORE_QUANTUM = Decimal("0.01")

Detector = Callable[
    ["Token", Sequence["Transfer"], "WalletRegistry", "DetectionConfig"],
    CandidateSignal | None,
]


def saturate(x: float) -> float:
    """Clamp to [0, 1]."""
    return min(1.0, max(0.0, x))


def log_ratio_strength(volume: int | Decimal, threshold: Decimal, *, decades: float = 2.0) -> float:
    """Strength growing with log10(volume / threshold), saturating after ``decades``."""
    if threshold <= 0 or volume <= threshold:
        return 0.0
    ratio = Decimal(volume) / threshold
    return saturate(math.log10(float(ratio)) / decades)


def count_strength(count: int, *, full_at: int) -> float:
    """0 for a single participant, 1 at ``full_at`` participants."""
    if full_at <= 1:
        return 1.0 if count >= 1 else 0.0
    return saturate((count - 1) / (full_at - 1))


def band_score(strength: float, config: DetectionConfig) -> Decimal:
    """Map a [0, 1] strength onto the configured score band, 2 decimal places."""
    span = config.max_signal_score - config.signal_threshold
    raw = config.signal_threshold + saturate(strength) * span
    return Decimal(str(raw)).quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)


def volume_by_address(transfers: Iterable[Transfer], *, key: str) -> dict[str, int]:
    """Sum transfer amounts grouped by ``from_address`` or ``to_address``."""
    totals: dict[str, int] = defaultdict(int)
    for transfer in transfers:
        totals[getattr(transfer, key)] += transfer.amount
    return dict(totals)


def rank_wallets(volumes: Mapping[str, int], *, limit: int) -> tuple[str, ...]:
    """Addresses ordered by contributed volume desc, then address asc."""
    ranked = sorted(volumes.items(), key=lambda item: (-item[1], item[0]))
    return tuple(address for address, _ in ranked[:limit])


def window_metadata(transfers: Sequence[Transfer], **extra: Any) -> dict[str, Any]:
    """Standard signal metadata computed from the contributing transfers."""
    total = sum(t.amount for t in transfers)
    count = len(transfers)
    average = Decimal(total) / Decimal(count) if count else Decimal(0)
    metadata: dict[str, Any] = {
        "transactionCount": count,
        "totalVolume": str(total),
        "averageBuySize": str(average.quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP))
        if average.adjusted() < 24
        else str(average),
    }
    metadata.update(extra)
    return metadata
