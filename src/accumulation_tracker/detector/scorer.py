"""Composite accumulation scorer blending detector outputs.

This module provides the CompositeScorer that folds the candidate signals
of one token sweep into a single comparable 0-100 score with tunable
per-type weights.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from accumulation_tracker.detector.models import CandidateSignal, SignalType

logger = logging.getLogger(__name__)

# Default weights for each signal type
DEFAULT_WEIGHTS: dict[SignalType, float] = {
    SignalType.CONCENTRATED_BUYS: 0.25,
    SignalType.WHALE_INFLOW: 0.25,
    SignalType.EXCHANGE_OUTFLOW: 0.20,
    SignalType.HOLDING_PATTERNS: 0.15,
    SignalType.LP_INCREASE: 0.15,
}

# Multi-signal bonuses
MULTI_SIGNAL_BONUS_2 = 1.05  # 5% bonus for 2 signal types
MULTI_SIGNAL_BONUS_3 = 1.10  # 10% bonus for 3+ signal types

MAX_SCORE = 100.0


class CompositeScorer:
    """Blends heterogeneous detector scores into one token-level score.

    Scoring Formula:
        composite = sum(score[t] * weight[t]) / sum(weight[t])   # firing types only

        if types >= 2: composite *= 1.05
        if types >= 3: composite *= 1.10

        final = min(composite, 100)

    A type with zero weight still counts toward the multi-signal bonus but
    does not move the weighted mean.
    """

    def __init__(
        self,
        *,
        weights: dict[SignalType, float] | dict[str, float] | None = None,
        high_conviction_threshold: float = 80.0,
    ) -> None:
        self._weights = self._normalize_weights(weights) if weights else dict(DEFAULT_WEIGHTS)
        self._high_conviction_threshold = high_conviction_threshold

    @staticmethod
    def _normalize_weights(weights: dict[SignalType, float] | dict[str, float]) -> dict[SignalType, float]:
        normalized = dict(DEFAULT_WEIGHTS)
        for key, value in weights.items():
            signal_type = SignalType.parse(key)
            if value < 0:
                raise ValueError(f"Weight for {signal_type.value} must be >= 0")
            normalized[signal_type] = float(value)
        return normalized

    def score(self, candidates: Sequence[CandidateSignal]) -> float:
        """Return the composite score for one token sweep (0 when nothing fired)."""
        best: dict[SignalType, float] = {}
        for candidate in candidates:
            value = float(candidate.score)
            if value > best.get(candidate.signal_type, -1.0):
                best[candidate.signal_type] = value
        if not best:
            return 0.0

        total_weight = sum(self._weights[t] for t in best)
        if total_weight > 0:
            composite = sum(score * self._weights[t] for t, score in best.items()) / total_weight
        else:
            composite = sum(best.values()) / len(best)

        if len(best) >= 3:
            composite *= MULTI_SIGNAL_BONUS_3
        elif len(best) >= 2:
            composite *= MULTI_SIGNAL_BONUS_2

        return round(min(composite, MAX_SCORE), 2)

    def is_high_conviction(self, composite: float, *, threshold: float | None = None) -> bool:
        limit = self._high_conviction_threshold if threshold is None else threshold
        return composite >= limit

    def get_weights(self) -> dict[SignalType, float]:
        """Get current signal weights.

        Returns:
            Copy of the weights dictionary.
        """
        return self._weights.copy()

    def set_weights(self, weights: dict[SignalType, float] | dict[str, float]) -> None:
        """Update signal weights.

        Args:
            weights: Weights to merge over the defaults.
        """
        self._weights = self._normalize_weights(weights)
        logger.info("Updated composite weights: %s", {t.value: w for t, w in self._weights.items()})
