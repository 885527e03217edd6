"""Tests for wallet performance calculation and scoring."""

from __future__ import annotations

import random
from datetime import timedelta
from decimal import Decimal

import pytest

from accumulation_tracker.profiler.models import WalletPerformance
from accumulation_tracker.profiler.performance import WalletPerformanceCalculator

WALLET = "0x" + "7a" * 20
MARKET = "0x" + "9" * 40

# 6 winning, 3 losing and 1 flat round trip, one token each
SELL_VALUES = [1500, 1500, 1500, 1500, 1500, 1500, 500, 500, 500, 1000]


@pytest.fixture
def calculator() -> WalletPerformanceCalculator:
    return WalletPerformanceCalculator()


@pytest.fixture
def round_trips(make_transfer, in_window):
    transfers = []
    for i, sell_value in enumerate(SELL_VALUES):
        token_id = f"token_{i}"
        bought_at = in_window + timedelta(hours=i)
        transfers.append(
            make_transfer(MARKET, WALLET, 1000, token_id=token_id, timestamp=bought_at, raw={"value_usd": "1000"})
        )
        transfers.append(
            make_transfer(
                WALLET,
                MARKET,
                1000,
                token_id=token_id,
                timestamp=bought_at + timedelta(minutes=30),
                raw={"value_usd": str(sell_value)},
            )
        )
    return transfers


class TestCalculatePerformance:
    def test_win_rate_counts_flat_trades(self, calculator, round_trips) -> None:
        performance = calculator.calculate_performance(WALLET, round_trips)

        assert performance.total_trades == 10
        assert performance.winning_trades == 6
        assert performance.losing_trades == 3
        assert performance.win_rate == 60.0
        assert performance.total_pnl == Decimal(1500)
        assert performance.total_pnl_percent == 15.0
        assert performance.avg_win == 50.0
        assert performance.avg_loss == 50.0
        assert performance.tokens_traded == 10

    def test_independent_of_input_order(self, calculator, round_trips, now) -> None:
        shuffled = list(round_trips)
        random.Random(7).shuffle(shuffled)

        ordered = calculator.calculate_performance(WALLET, round_trips, now=now)
        assert calculator.calculate_performance(WALLET, shuffled, now=now) == ordered

    def test_flat_round_trip_has_zero_win_rate(self, calculator, make_transfer) -> None:
        transfers = [make_transfer(MARKET, WALLET, 1000), make_transfer(WALLET, MARKET, 1000)]

        performance = calculator.calculate_performance(WALLET, transfers)

        assert performance.total_pnl == Decimal(0)
        assert performance.total_pnl_percent == 0.0
        assert performance.total_trades == 1
        assert performance.winning_trades == 0
        assert performance.losing_trades == 0
        assert performance.win_rate == 0.0

    def test_no_trades(self, calculator, make_transfer) -> None:
        performance = calculator.calculate_performance(WALLET, [make_transfer(MARKET, WALLET, 1000)])

        assert performance.total_trades == 0
        assert performance.win_rate == 0.0
        assert performance.total_pnl == Decimal(0)

    def test_address_is_normalized(self, calculator, round_trips) -> None:
        performance = calculator.calculate_performance(WALLET.upper(), round_trips)

        assert performance.address == WALLET
        assert performance.total_trades == 10


class TestClosedTrades:
    def test_average_cost_basis(self, calculator, make_transfer) -> None:
        transfers = [
            make_transfer(MARKET, WALLET, 1000, raw={"value_usd": "1000"}),
            make_transfer(MARKET, WALLET, 1000, raw={"value_usd": "3000"}),
            make_transfer(WALLET, MARKET, 1000, raw={"value_usd": "2500"}),
        ]

        (trade,) = calculator.closed_trades(WALLET, transfers)

        assert trade.cost == Decimal(2000)
        assert trade.pnl == Decimal(500)
        assert trade.pnl_percent == Decimal(25)
        assert trade.is_win

    def test_sell_without_buys_is_skipped(self, calculator, make_transfer) -> None:
        assert calculator.closed_trades(WALLET, [make_transfer(WALLET, MARKET, 100)]) == []

    def test_self_transfer_is_ignored(self, calculator, make_transfer) -> None:
        transfers = [make_transfer(MARKET, WALLET, 1000), make_transfer(WALLET, WALLET, 1000)]

        assert calculator.closed_trades(WALLET, transfers) == []

    def test_duplicates_counted_once(self, calculator, make_transfer) -> None:
        buy = make_transfer(MARKET, WALLET, 1000)
        sell = make_transfer(WALLET, MARKET, 500)

        assert len(calculator.closed_trades(WALLET, [buy, sell, sell, buy])) == 1

    def test_uint256_amounts(self, calculator, make_transfer) -> None:
        huge = 2**255
        transfers = [
            make_transfer(MARKET, WALLET, huge),
            make_transfer(WALLET, MARKET, huge, raw={"value_usd": str(huge * 2)}),
        ]

        (trade,) = calculator.closed_trades(WALLET, transfers)

        assert trade.pnl == Decimal(huge)
        assert trade.pnl_percent == Decimal(100)


class TestWalletScore:
    def test_round_trips_score(self, calculator, round_trips) -> None:
        performance = calculator.calculate_performance(WALLET, round_trips)

        # 50 + 18 (win rate) + 0.3 (pnl) + 2 (trades)
        assert calculator.calculate_wallet_score(performance) == 70

    def test_flat_wallet_scores_near_base(self, calculator) -> None:
        performance = WalletPerformance(address=WALLET, total_trades=1)

        assert calculator.calculate_wallet_score(performance) == 50

    def test_clamped_to_100(self, calculator) -> None:
        performance = WalletPerformance(
            address=WALLET,
            win_rate=100.0,
            total_pnl_percent=5000.0,
            total_trades=500,
        )

        assert calculator.calculate_wallet_score(performance) == 100

    def test_losses_reduce_score(self, calculator) -> None:
        losing = WalletPerformance(address=WALLET, total_pnl_percent=-5000.0)
        winning = WalletPerformance(address=WALLET, total_pnl_percent=5000.0)

        assert calculator.calculate_wallet_score(losing) == 30
        assert calculator.calculate_wallet_score(winning) == 70

    def test_consistency_bonus(self, calculator) -> None:
        base = WalletPerformance(address=WALLET, win_rate=70.0, total_trades=10)
        consistent = WalletPerformance(address=WALLET, win_rate=70.0, total_trades=11)

        assert calculator.calculate_wallet_score(consistent) - calculator.calculate_wallet_score(base) >= 10

    @pytest.mark.parametrize("win_rate", [0.0, 33.33, 100.0])
    @pytest.mark.parametrize("pnl_percent", [-1e9, 0.0, 1e9])
    @pytest.mark.parametrize("trades", [0, 10_000])
    def test_always_within_bounds(self, calculator, win_rate, pnl_percent, trades) -> None:
        performance = WalletPerformance(
            address=WALLET,
            win_rate=win_rate,
            total_pnl_percent=pnl_percent,
            total_trades=trades,
        )

        assert 0 <= calculator.calculate_wallet_score(performance) <= 100


class TestWalletPerformanceModel:
    def test_dict_round_trip_uses_camel_case(self, calculator, round_trips) -> None:
        performance = calculator.calculate_performance(WALLET, round_trips)
        payload = performance.to_dict()

        assert payload["winRate"] == 60.0
        assert Decimal(payload["totalPnL"]) == 1500
        assert WalletPerformance.from_dict(payload) == performance
