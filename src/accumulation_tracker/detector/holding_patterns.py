"""Holding pattern detector: wallets that buy and never sell within the window."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from decimal import Decimal

from accumulation_tracker.config import DetectionConfig
from accumulation_tracker.detector.common import band_score, rank_wallets, volume_by_address, window_metadata
from accumulation_tracker.detector.models import CandidateSignal, SignalType
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry, unique_transfers


def detect_holding_patterns(
    token: Token,
    transfers: Sequence[Transfer],
    wallets: WalletRegistry,
    config: DetectionConfig,
) -> CandidateSignal | None:
    window = unique_transfers(transfers)
    buys = [t for t in window if not wallets.is_venue(t.to_address) and t.amount > 0]
    if not buys:
        return None

    sellers = {t.from_address for t in window if t.amount > 0}
    buy_volumes = volume_by_address(buys, key="to_address")
    holders = {address: volume for address, volume in buy_volumes.items() if address not in sellers}
    if len(holders) < config.holding_min_wallets:
        return None

    held_volume = sum(holders.values())
    total_buy_volume = sum(buy_volumes.values())
    if held_volume < config.holding_min_volume:
        return None
    held_fraction = float(Decimal(held_volume) / Decimal(total_buy_volume))
    if held_fraction < config.holding_min_fraction:
        return None

    buy_counts = Counter(t.to_address for t in buys if t.to_address in holders)
    persistent = [a for a in holders if buy_counts[a] >= config.holding_min_repeat_buys]
    persistent_volume = sum(holders[a] for a in persistent)
    persistent_share = float(Decimal(persistent_volume) / Decimal(held_volume))

    strength = 0.5 * held_fraction + 0.5 * persistent_share

    return CandidateSignal(
        signal_type=SignalType.HOLDING_PATTERNS,
        score=band_score(strength, config),
        wallets_involved=rank_wallets(holders, limit=config.max_wallets_involved),
        metadata=window_metadata(
            [t for t in buys if t.to_address in holders],
            heldFraction=round(held_fraction, 4),
            persistentWallets=len(persistent),
            holders=len(holders),
        ),
    )
