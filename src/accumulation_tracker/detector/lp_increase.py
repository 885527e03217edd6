"""Liquidity-pool increase detector."""

from __future__ import annotations

from collections.abc import Sequence

from accumulation_tracker.config import DetectionConfig
from accumulation_tracker.detector.common import (
    band_score,
    count_strength,
    log_ratio_strength,
    rank_wallets,
    volume_by_address,
    window_metadata,
)
from accumulation_tracker.detector.models import CandidateSignal, SignalType
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry, unique_transfers

DEPOSITS_FOR_FULL_CREDIT = 5


def detect_lp_increase(
    token: Token,
    transfers: Sequence[Transfer],
    wallets: WalletRegistry,
    config: DetectionConfig,
) -> CandidateSignal | None:
    if not wallets.liquidity_pools:
        return None

    window = unique_transfers(transfers)
    deposits = [
        t
        for t in window
        if wallets.is_liquidity_pool(t.to_address) and not wallets.is_liquidity_pool(t.from_address)
    ]
    if not deposits:
        return None

    inflow = sum(t.amount for t in deposits)
    outflow = sum(
        t.amount
        for t in window
        if wallets.is_liquidity_pool(t.from_address) and not wallets.is_liquidity_pool(t.to_address)
    )
    net_increase = inflow - outflow
    if net_increase <= config.lp_increase_threshold:
        return None

    providers = volume_by_address(deposits, key="from_address")
    strength = 0.7 * log_ratio_strength(net_increase, config.lp_increase_threshold) + 0.3 * count_strength(
        len(deposits), full_at=DEPOSITS_FOR_FULL_CREDIT
    )

    return CandidateSignal(
        signal_type=SignalType.LP_INCREASE,
        score=band_score(strength, config),
        wallets_involved=rank_wallets(providers, limit=config.max_wallets_involved),
        metadata=window_metadata(
            deposits,
            lpOutflow=str(outflow),
            netIncrease=str(net_increase),
            pools=len({t.to_address for t in deposits}),
        ),
    )
