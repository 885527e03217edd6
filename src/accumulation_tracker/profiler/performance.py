"""Wallet performance calculation from raw transfer history.

PnL is approximated with a running average buy price per token. There is no
price feed: a transfer's value is its attached ``value_usd`` when present and
its amount otherwise, so the figures rank wallets against each other rather
than report real returns.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext

from accumulation_tracker.ingestor.models import Transfer, unique_transfers
from accumulation_tracker.profiler.models import ClosedTrade, WalletPerformance

logger = logging.getLogger(__name__)

# Score composition (max 100 after clamping)
BASE_SCORE = 50.0
WIN_RATE_POINTS = 30.0
PNL_POINTS = 20.0
PNL_PERCENT_CAP = 1000.0
TRADE_COUNT_POINTS = 20.0
TRADE_COUNT_CAP = 100
CONSISTENCY_BONUS = 10.0
CONSISTENCY_MIN_TRADES = 10
CONSISTENCY_MIN_WIN_RATE = 60.0

# uint256 amounts multiplied by prices need far more than the default 28 digits
_DECIMAL_PRECISION = 120
_TWO_PLACES = Decimal("0.01")


def _round2(value: Decimal) -> float:
    return float(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


@dataclass
class _CostBasis:
    quantity: int = 0
    value: Decimal = Decimal(0)

    @property
    def average_price(self) -> Decimal:
        return self.value / Decimal(self.quantity)


class WalletPerformanceCalculator:
    """Computes win rate, PnL and a 0-100 score for one wallet."""

    def closed_trades(self, address: str, transfers: Sequence[Transfer]) -> list[ClosedTrade]:
        """Match every SELL against the average buy price seen so far.

        Transfers are processed in (timestamp, block_number) order. Sells of a
        token the wallet never bought are skipped, as are self-transfers.
        """
        normalized = address.lower()
        relevant = [t for t in unique_transfers(transfers) if t.involves(normalized)]
        ordered = sorted(relevant, key=lambda t: (t.timestamp, t.block_number))

        basis: dict[str, _CostBasis] = defaultdict(_CostBasis)
        trades: list[ClosedTrade] = []
        with localcontext() as ctx:
            ctx.prec = _DECIMAL_PRECISION
            for transfer in ordered:
                is_buy = transfer.to_address == normalized
                is_sell = transfer.from_address == normalized
                if is_buy and is_sell:
                    continue

                position = basis[transfer.token_id]
                if is_buy:
                    position.quantity += transfer.amount
                    position.value += transfer.value
                    continue

                if position.quantity == 0:
                    logger.debug(
                        "Skipping sell %s of %s by %s: no prior buys",
                        transfer.tx_hash,
                        transfer.token_id,
                        normalized,
                    )
                    continue

                cost = Decimal(transfer.amount) * position.average_price
                proceeds = transfer.value
                pnl = proceeds - cost
                pnl_percent = pnl / cost * 100 if cost > 0 else Decimal(0)
                trades.append(
                    ClosedTrade(
                        token_id=transfer.token_id,
                        tx_hash=transfer.tx_hash,
                        amount=transfer.amount,
                        cost=cost,
                        proceeds=proceeds,
                        pnl=pnl,
                        pnl_percent=pnl_percent,
                        closed_at=transfer.timestamp,
                    )
                )
        return trades

    def calculate_performance(
        self,
        address: str,
        transfers: Sequence[Transfer],
        *,
        now: datetime | None = None,
    ) -> WalletPerformance:
        """Aggregate closed trades into wallet-level performance.

        Zero-PnL sells count toward ``total_trades`` but are neither wins nor
        losses. With no trades every metric is zero.
        """
        computed_at = now or datetime.now(UTC)
        trades = self.closed_trades(address, transfers)
        if not trades:
            return WalletPerformance(address=address.lower(), computed_at=computed_at)

        wins = [t for t in trades if t.is_win]
        losses = [t for t in trades if t.is_loss]

        with localcontext() as ctx:
            ctx.prec = _DECIMAL_PRECISION
            total_pnl = sum((t.pnl for t in trades), Decimal(0))
            total_cost = sum((t.cost for t in trades), Decimal(0))
            total_pnl_percent = total_pnl / total_cost * 100 if total_cost > 0 else Decimal(0)
            avg_win = sum((t.pnl_percent for t in wins), Decimal(0)) / len(wins) if wins else Decimal(0)
            avg_loss = sum((abs(t.pnl_percent) for t in losses), Decimal(0)) / len(losses) if losses else Decimal(0)
            win_rate = Decimal(len(wins)) / Decimal(len(trades)) * 100

        return WalletPerformance(
            address=address.lower(),
            total_pnl=total_pnl,
            total_pnl_percent=_round2(total_pnl_percent),
            win_rate=_round2(win_rate),
            total_trades=len(trades),
            winning_trades=len(wins),
            losing_trades=len(losses),
            avg_win=_round2(avg_win),
            avg_loss=_round2(avg_loss),
            tokens_traded=len({t.token_id for t in trades}),
            computed_at=computed_at,
        )

    def calculate_wallet_score(self, performance: WalletPerformance) -> int:
        """Score a wallet in [0, 100].

        Scoring Formula:
            score = 50
                  + win_rate / 100 * 30
                  +/- min(|pnl%|, 1000) / 1000 * 20     (sign of total PnL)
                  + min(trades, 100) / 100 * 20
                  + 10 if trades > 10 and win_rate > 60

        The result is clamped and rounded half-up.
        """
        score = BASE_SCORE
        score += performance.win_rate / 100 * WIN_RATE_POINTS

        pnl_points = min(abs(performance.total_pnl_percent), PNL_PERCENT_CAP) / PNL_PERCENT_CAP * PNL_POINTS
        if performance.total_pnl_percent > 0:
            score += pnl_points
        elif performance.total_pnl_percent < 0:
            score -= pnl_points

        score += min(performance.total_trades, TRADE_COUNT_CAP) / TRADE_COUNT_CAP * TRADE_COUNT_POINTS

        if (
            performance.total_trades > CONSISTENCY_MIN_TRADES
            and performance.win_rate > CONSISTENCY_MIN_WIN_RATE
        ):
            score += CONSISTENCY_BONUS

        clamped = min(100.0, max(0.0, score))
        return int(Decimal(str(clamped)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
