"""Whale inflow detector.

Fires when tracked or whale-sized wallets absorb more than
``whale_buy_threshold`` of a token within the window.
"""

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

VOLUME_WEIGHT = 0.7
WALLET_WEIGHT = 0.3
WALLETS_FOR_FULL_CREDIT = 5


def detect_whale_inflow(
    token: Token,
    transfers: Sequence[Transfer],
    wallets: WalletRegistry,
    config: DetectionConfig,
) -> CandidateSignal | None:
    window = unique_transfers(transfers)
    if not window:
        return None

    buy_volumes = volume_by_address(
        (t for t in window if not wallets.is_venue(t.to_address)),
        key="to_address",
    )
    whales = {
        address
        for address, volume in buy_volumes.items()
        if wallets.is_tracked(address) or volume >= config.whale_buy_threshold
    }
    if not whales:
        return None

    buys = [t for t in window if t.to_address in whales and t.from_address not in whales]
    buy_volume = sum(t.amount for t in buys)
    if buy_volume <= config.whale_buy_threshold:
        return None

    sell_volume = sum(t.amount for t in window if t.from_address in whales and t.to_address not in whales)
    if sell_volume >= config.whale_sell_threshold and sell_volume >= buy_volume:
        return None

    contributed = volume_by_address(buys, key="to_address")
    strength = VOLUME_WEIGHT * log_ratio_strength(
        buy_volume, config.whale_buy_threshold
    ) + WALLET_WEIGHT * count_strength(len(contributed), full_at=WALLETS_FOR_FULL_CREDIT)

    return CandidateSignal(
        signal_type=SignalType.WHALE_INFLOW,
        score=band_score(strength, config),
        wallets_involved=rank_wallets(contributed, limit=config.max_wallets_involved),
        metadata=window_metadata(
            buys,
            whaleSellVolume=str(sell_volume),
            trackedWallets=sum(1 for a in contributed if wallets.is_tracked(a)),
        ),
    )
