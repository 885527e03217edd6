"""Concentrated buying detector.

Looks for a small cohort of wallets absorbing a disproportionate share of
the window's buy volume. Concentration is measured with the Gini
coefficient over per-buyer volume.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import Decimal

import numpy as np

from accumulation_tracker.config import DetectionConfig
from accumulation_tracker.detector.common import (
    band_score,
    rank_wallets,
    saturate,
    volume_by_address,
    window_metadata,
)
from accumulation_tracker.detector.models import CandidateSignal, SignalType
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry, unique_transfers

GINI_WEIGHT = 0.6
SHARE_WEIGHT = 0.4


def gini_coefficient(volumes: Sequence[int]) -> float:
    """Gini coefficient of non-negative volumes (0 = equal, ->1 = concentrated)."""
    if not volumes:
        return 0.0
    total = sum(volumes)
    if total <= 0:
        return 0.0
    # Shares keep float magnitudes bounded for very large raw amounts.
    shares = np.sort(np.array([float(Decimal(v) / Decimal(total)) for v in volumes], dtype=np.float64))
    n = shares.size
    ranks = np.arange(1, n + 1, dtype=np.float64)
    gini = (2.0 * float(np.sum(ranks * shares))) / (n * float(np.sum(shares))) - (n + 1.0) / n
    return saturate(gini)


def detect_concentrated_buys(
    token: Token,
    transfers: Sequence[Transfer],
    wallets: WalletRegistry,
    config: DetectionConfig,
) -> CandidateSignal | None:
    buys = [
        t for t in unique_transfers(transfers) if not wallets.is_venue(t.to_address) and t.amount > 0
    ]
    buyer_volumes = volume_by_address(buys, key="to_address")
    if len(buyer_volumes) < config.concentration_min_buyers:
        return None

    total = sum(buyer_volumes.values())
    if total < config.concentration_min_volume:
        return None

    cohort_size = max(1, math.ceil(config.concentration_cohort_fraction * len(buyer_volumes)))
    cohort = rank_wallets(buyer_volumes, limit=cohort_size)
    cohort_volume = sum(buyer_volumes[a] for a in cohort)
    share = float(Decimal(cohort_volume) / Decimal(total))
    threshold = config.concentrated_buys_threshold / 100.0
    if share * 100.0 < config.concentrated_buys_threshold:
        return None

    gini = gini_coefficient(list(buyer_volumes.values()))
    excess = saturate((share - threshold) / (1.0 - threshold)) if threshold < 1.0 else 1.0
    strength = GINI_WEIGHT * gini + SHARE_WEIGHT * excess

    cohort_set = set(cohort)
    return CandidateSignal(
        signal_type=SignalType.CONCENTRATED_BUYS,
        score=band_score(strength, config),
        wallets_involved=cohort[: config.max_wallets_involved],
        metadata=window_metadata(
            [t for t in buys if t.to_address in cohort_set],
            gini=round(gini, 4),
            cohortShare=round(share, 4),
            distinctBuyers=len(buyer_volumes),
            windowBuyVolume=str(total),
        ),
    )
