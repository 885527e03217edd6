"""Exchange outflow detector.

Tokens leaving exchange wallets for self-custody reduce available sell-side
supply; sustained net withdrawals are read as accumulation.
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

RECIPIENTS_FOR_FULL_CREDIT = 10


def detect_exchange_outflow(
    token: Token,
    transfers: Sequence[Transfer],
    wallets: WalletRegistry,
    config: DetectionConfig,
) -> CandidateSignal | None:
    if not wallets.exchanges:
        return None

    window = unique_transfers(transfers)
    withdrawals = [
        t for t in window if wallets.is_exchange(t.from_address) and not wallets.is_venue(t.to_address)
    ]
    if not withdrawals:
        return None

    withdrawn = sum(t.amount for t in withdrawals)
    if withdrawn <= config.exchange_withdrawal_threshold:
        return None

    deposited = sum(
        t.amount for t in window if wallets.is_exchange(t.to_address) and not wallets.is_exchange(t.from_address)
    )
    net_outflow = withdrawn - deposited
    if net_outflow <= 0:
        return None

    # Heavy deposits offset withdrawals; only the net leaves the venue.
    effective = net_outflow if deposited >= config.exchange_deposit_threshold else withdrawn
    recipients = volume_by_address(withdrawals, key="to_address")
    strength = 0.7 * log_ratio_strength(effective, config.exchange_withdrawal_threshold) + 0.3 * count_strength(
        len(recipients), full_at=RECIPIENTS_FOR_FULL_CREDIT
    )

    return CandidateSignal(
        signal_type=SignalType.EXCHANGE_OUTFLOW,
        score=band_score(strength, config),
        wallets_involved=rank_wallets(recipients, limit=config.max_wallets_involved),
        metadata=window_metadata(
            withdrawals,
            depositVolume=str(deposited),
            netOutflow=str(net_outflow),
            exchanges=len({t.from_address for t in withdrawals}),
        ),
    )
