"""Tests for the signal aggregator."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from accumulation_tracker.config import DetectionConfig, SweepSettings
from accumulation_tracker.detector.aggregator import (
    LOCK_KEY_PREFIX,
    SignalAggregator,
    relative_difference,
    wallet_overlap,
)
from accumulation_tracker.detector.models import AccumulationSignal, CandidateSignal, SignalType
from accumulation_tracker.detector.whale_inflow import detect_whale_inflow
from accumulation_tracker.errors import ConflictError, TransientStoreError
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry

SELLER = "0x" + "5" * 40
WHALE_A = "0x" + "a" * 40
WHALE_B = "0x" + "b" * 40


class FakeStore:
    """In-memory transfer store with the natural-key constraint on signals."""

    def __init__(self, transfers: list[Transfer], tokens: list[Token], tracked: Iterable[str] = ()) -> None:
        self.transfers = transfers
        self.tokens = tokens
        self.tracked = list(tracked)
        self.signals: list[AccumulationSignal] = []
        self.failing_tokens: set[str] = set()
        self.slow_tokens: set[str] = set()
        self.leases: dict[str, str] = {}
        self.released: list[str] = []

    async def get_transfers(self, token_id: str, from_time: datetime, to_time: datetime) -> list[Transfer]:
        if token_id in self.failing_tokens:
            raise TransientStoreError("connection reset")
        if token_id in self.slow_tokens:
            await asyncio.sleep(5)
        return [t for t in self.transfers if t.token_id == token_id and from_time <= t.timestamp < to_time]

    async def get_transfers_for_address(self, address: str, limit: int) -> list[Transfer]:
        return [t for t in self.transfers if t.involves(address)][-limit:]

    async def upsert_position(self, wallet_id: int, token_id: str, balance: int) -> None:
        return None

    async def insert_signal(self, signal: AccumulationSignal) -> str:
        for existing in self.signals:
            if (existing.token_id, existing.signal_type, existing.window_start) == (
                signal.token_id,
                signal.signal_type,
                signal.window_start,
            ):
                raise ConflictError("duplicate natural key")
        self.signals.append(signal)
        return signal.id

    async def list_signals_overlapping(
        self,
        token_id: str,
        signal_type: SignalType,
        start: datetime,
        end: datetime,
    ) -> list[AccumulationSignal]:
        return [
            s
            for s in self.signals
            if s.token_id == token_id and s.signal_type is signal_type and s.window_start < end and start < s.window_end
        ]

    async def list_active_tokens(self) -> list[Token]:
        return [t for t in self.tokens if t.active]

    async def activate_recent_tokens(self, since: datetime) -> list[str]:
        recent = {t.token_id for t in self.transfers if t.timestamp >= since}
        activated = [t.id for t in self.tokens if not t.active and t.id in recent]
        self.tokens = [dataclasses.replace(t, active=True) if t.id in activated else t for t in self.tokens]
        return activated

    async def acquire_sweep_lock(self, name: str, owner: str, ttl_seconds: int) -> bool:
        return self.leases.setdefault(name, owner) == owner

    async def release_sweep_lock(self, name: str, owner: str) -> None:
        if self.leases.get(name) == owner:
            del self.leases[name]
            self.released.append(name)

    async def load_wallet_registry(self, extra_exchanges=(), extra_pools=()) -> WalletRegistry:
        return WalletRegistry.from_addresses(
            tracked=self.tracked, exchanges=extra_exchanges, liquidity_pools=extra_pools
        )


def whale_only() -> dict[SignalType, object]:
    return {SignalType.WHALE_INFLOW: detect_whale_inflow}


@pytest.fixture
def whale_transfers(make_transfer) -> list[Transfer]:
    return [
        make_transfer(SELLER, WHALE_A, 200_000),
        make_transfer(SELLER, WHALE_A, 100_000),
        make_transfer(SELLER, WHALE_B, 200_000),
    ]


@pytest.fixture
def store(token, whale_transfers) -> FakeStore:
    return FakeStore(list(whale_transfers), [token], tracked=[WHALE_A, WHALE_B])


def make_aggregator(store, **kwargs) -> SignalAggregator:
    kwargs.setdefault("settings", SweepSettings(SWEEP_SUB_WINDOW_HOURS=""))
    kwargs.setdefault("config_provider", DetectionConfig)
    kwargs.setdefault("detectors", whale_only())
    return SignalAggregator(store, **kwargs)


class TestHelpers:
    def test_wallet_overlap(self) -> None:
        assert wallet_overlap([], []) == 1.0
        assert wallet_overlap(["a", "b"], ["a", "b"]) == 1.0
        assert wallet_overlap(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)

    def test_relative_difference(self) -> None:
        assert relative_difference(Decimal(0), Decimal(0)) == 0.0
        assert relative_difference(Decimal(100), Decimal(90)) == pytest.approx(0.1)

    def test_compute_window_aligns_and_excludes_cooldown(self, store) -> None:
        aggregator = make_aggregator(store)
        window = aggregator.compute_window(datetime(2026, 3, 1, 12, 0, 42, tzinfo=UTC))

        assert window.end == datetime(2026, 3, 1, 11, 0, tzinfo=UTC)
        assert window.start == datetime(2026, 2, 28, 12, 0, tzinfo=UTC)

    def test_compute_window_rejects_naive_time(self, store) -> None:
        with pytest.raises(ValueError):
            make_aggregator(store).compute_window(datetime(2026, 3, 1, 12, 0))


class TestSweepToken:
    async def test_persists_whale_signal(self, store, token, now) -> None:
        aggregator = make_aggregator(store)

        result = await aggregator.sweep_token(token, now=now)

        assert len(result.persisted) == 1
        signal = result.persisted[0]
        assert signal.signal_type == SignalType.WHALE_INFLOW
        assert signal.metadata["transactionCount"] == 3
        assert set(signal.wallets_involved) == {WHALE_A, WHALE_B}
        assert signal.window_end == now - timedelta(hours=1)
        assert result.composite_score == float(signal.score)
        assert store.signals == [signal]

    async def test_repeat_sweep_is_deduplicated(self, store, token, now) -> None:
        aggregator = make_aggregator(store)
        await aggregator.sweep_token(token, now=now)

        again = await aggregator.sweep_token(token, now=now)
        shifted = await aggregator.sweep_token(token, now=now + timedelta(minutes=5))

        assert again.persisted == []
        assert again.suppressed == 1
        assert shifted.persisted == []
        assert shifted.suppressed == 1
        assert len(store.signals) == 1

    async def test_materially_different_volume_is_new_signal(self, store, token, now, make_transfer) -> None:
        aggregator = make_aggregator(store)
        await aggregator.sweep_token(token, now=now)

        store.transfers.append(make_transfer(SELLER, WHALE_A, 200_000))
        result = await aggregator.sweep_token(token, now=now + timedelta(minutes=5))

        assert len(result.persisted) == 1
        assert len(store.signals) == 2

    async def test_conflict_on_insert_is_absorbed(self, store, token, now) -> None:
        store.list_signals_overlapping = AsyncMock(return_value=[])
        store.insert_signal = AsyncMock(side_effect=ConflictError("duplicate"))
        aggregator = make_aggregator(store)

        result = await aggregator.sweep_token(token, now=now)

        assert result.persisted == []
        assert result.conflicts == 1

    async def test_detector_failure_does_not_block_others(self, store, token, now) -> None:
        def broken(*_args):
            raise RuntimeError("boom")

        aggregator = make_aggregator(
            store,
            detectors={SignalType.WHALE_INFLOW: detect_whale_inflow, SignalType.LP_INCREASE: broken},
        )

        result = await aggregator.sweep_token(token, now=now)

        assert result.detector_errors == 1
        assert [s.signal_type for s in result.persisted] == [SignalType.WHALE_INFLOW]

    async def test_mistyped_candidate_is_discarded(self, store, token, now) -> None:
        def mislabelled(*_args):
            return CandidateSignal(signal_type=SignalType.WHALE_INFLOW, score=Decimal("90"), wallets_involved=())

        aggregator = make_aggregator(store, detectors={SignalType.LP_INCREASE: mislabelled})

        result = await aggregator.sweep_token(token, now=now)

        assert result.detector_errors == 1
        assert result.persisted == []

    async def test_candidates_below_floor_are_dropped(self, store, token, now) -> None:
        def weak(*_args):
            return CandidateSignal(signal_type=SignalType.LP_INCREASE, score=Decimal("10"), wallets_involved=())

        aggregator = make_aggregator(store, detectors={SignalType.LP_INCREASE: weak})

        result = await aggregator.sweep_token(token, now=now)

        assert result.candidates == []
        assert result.persisted == []
        assert store.signals == []

    async def test_out_of_window_transfers_are_skipped(self, token, now, make_transfer) -> None:
        transfers = [
            make_transfer(SELLER, WHALE_A, 500_000),
            make_transfer(SELLER, WHALE_A, 500_000, timestamp=now - timedelta(minutes=30)),
        ]
        store = FakeStore(transfers, [token], tracked=[WHALE_A])
        store.get_transfers = AsyncMock(return_value=transfers)
        aggregator = make_aggregator(store)

        result = await aggregator.sweep_token(token, now=now)

        assert result.skipped_transfers == 1
        assert result.persisted[0].metadata["transactionCount"] == 1

    async def test_empty_window(self, token, now) -> None:
        aggregator = make_aggregator(FakeStore([], [token]))

        result = await aggregator.sweep_token(token, now=now)

        assert result.candidates == []
        assert result.composite_score == 0.0

    async def test_lock_held_elsewhere_skips_persistence(self, store, token, now) -> None:
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=None)
        aggregator = make_aggregator(store, redis=redis)

        result = await aggregator.sweep_token(token, now=now)

        assert result.persisted == []
        assert len(result.candidates) == 1
        assert store.signals == []
        key, _owner = redis.set.call_args.args
        assert key == f"{LOCK_KEY_PREFIX}{token.id}"
        assert redis.set.call_args.kwargs == {"nx": True, "ex": 120}

    async def test_lock_released_by_owner(self, store, token, now) -> None:
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)

        async def _get(_key):
            return redis.set.call_args.args[1].encode()

        redis.get = AsyncMock(side_effect=_get)
        aggregator = make_aggregator(store, redis=redis)

        result = await aggregator.sweep_token(token, now=now)

        assert len(result.persisted) == 1
        redis.delete.assert_awaited_once_with(f"{LOCK_KEY_PREFIX}{token.id}")

    async def test_redis_failure_falls_back_to_store_lease(self, store, token, now) -> None:
        redis = AsyncMock()
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        aggregator = make_aggregator(store, redis=redis)

        result = await aggregator.sweep_token(token, now=now)

        assert len(result.persisted) == 1
        assert store.released == [f"{LOCK_KEY_PREFIX}{token.id}"]
        assert store.leases == {}

    async def test_store_lease_held_by_other_worker_skips_persistence(self, store, token, now) -> None:
        store.leases[f"{LOCK_KEY_PREFIX}{token.id}"] = "other-worker"
        aggregator = make_aggregator(store)

        result = await aggregator.sweep_token(token, now=now)

        assert result.persisted == []
        assert len(result.candidates) == 1
        assert store.signals == []
        assert store.leases == {f"{LOCK_KEY_PREFIX}{token.id}": "other-worker"}

    async def test_alerts_dispatched_for_qualifying_signals(self, store, token, now) -> None:
        dispatcher = MagicMock()
        dispatcher.min_score = Decimal("60")
        dispatcher.create_alerts_for_signal = AsyncMock(return_value=[object(), object()])
        aggregator = make_aggregator(store, dispatcher=dispatcher)

        result = await aggregator.sweep_token(token, now=now)

        assert result.alerts_created == 2
        dispatcher.create_alerts_for_signal.assert_awaited_once_with(result.persisted[0], token)

    async def test_failed_alert_creation_is_retried_next_sweep(self, store, token, now) -> None:
        dispatcher = MagicMock()
        dispatcher.min_score = Decimal("60")
        dispatcher.create_alerts_for_signal = AsyncMock(side_effect=[RuntimeError("db blip"), [object()]])
        aggregator = make_aggregator(store, dispatcher=dispatcher)

        first = await aggregator.sweep_token(token, now=now)
        second = await aggregator.sweep_token(token, now=now + timedelta(minutes=5))

        assert len(first.persisted) == 1
        assert first.alerts_created == 0
        assert second.persisted == []
        assert second.suppressed == 1
        assert second.matched == first.persisted
        assert second.alerts_created == 1
        assert dispatcher.create_alerts_for_signal.await_count == 2
        dispatcher.create_alerts_for_signal.assert_awaited_with(first.persisted[0], token)

    async def test_signals_below_alert_minimum_not_dispatched(self, store, token, now) -> None:
        dispatcher = MagicMock()
        dispatcher.min_score = Decimal("99")
        dispatcher.create_alerts_for_signal = AsyncMock(return_value=[])
        aggregator = make_aggregator(store, dispatcher=dispatcher)

        await aggregator.sweep_token(token, now=now)
        await aggregator.sweep_token(token, now=now + timedelta(minutes=5))

        dispatcher.create_alerts_for_signal.assert_not_awaited()


class TestSubWindows:
    def test_compute_windows_longest_first(self, store, now) -> None:
        settings = SweepSettings(SWEEP_SUB_WINDOW_HOURS="1,6,30")
        aggregator = make_aggregator(store, settings=settings)

        windows = aggregator.compute_windows(now)

        main = aggregator.compute_window(now)
        assert windows[0] == main
        assert [w.duration_hours for w in windows[1:]] == [6.0, 1.0]
        assert all(w.end == main.end for w in windows)

    async def test_sub_window_with_distinct_wallets_is_new_signal(self, token, now, make_transfer) -> None:
        transfers = [
            make_transfer(SELLER, WHALE_A, 300_000, timestamp=now - timedelta(hours=20)),
            make_transfer(SELLER, WHALE_B, 300_000, timestamp=now - timedelta(hours=3)),
        ]
        store = FakeStore(transfers, [token], tracked=[WHALE_A, WHALE_B])
        aggregator = make_aggregator(store, settings=SweepSettings(SWEEP_SUB_WINDOW_HOURS="6"))

        result = await aggregator.sweep_token(token, now=now)

        assert len(result.windows) == 2
        assert len(result.persisted) == 2
        main_signal, recent_signal = result.persisted
        assert set(main_signal.wallets_involved) == {WHALE_A, WHALE_B}
        assert recent_signal.wallets_involved == (WHALE_B,)
        assert recent_signal.window_start == now - timedelta(hours=7)
        assert main_signal.window_end == recent_signal.window_end

    async def test_sub_window_repeating_main_window_is_suppressed(self, store, token, now) -> None:
        dispatcher = MagicMock()
        dispatcher.min_score = Decimal("60")
        dispatcher.create_alerts_for_signal = AsyncMock(return_value=[object()])
        aggregator = make_aggregator(store, dispatcher=dispatcher, settings=SweepSettings(SWEEP_SUB_WINDOW_HOURS="6"))

        result = await aggregator.sweep_token(token, now=now)

        assert len(result.persisted) == 1
        assert result.suppressed == 1
        assert result.matched == []
        dispatcher.create_alerts_for_signal.assert_awaited_once()

    async def test_empty_sub_window_is_skipped(self, token, now, make_transfer) -> None:
        transfers = [make_transfer(SELLER, WHALE_A, 300_000, timestamp=now - timedelta(hours=20))]
        store = FakeStore(transfers, [token], tracked=[WHALE_A])
        aggregator = make_aggregator(store, settings=SweepSettings(SWEEP_SUB_WINDOW_HOURS="6,1"))

        result = await aggregator.sweep_token(token, now=now)

        assert result.windows == [result.window]
        assert len(result.persisted) == 1


class TestSweep:
    async def test_sweeps_active_tokens(self, store, token, now) -> None:
        inactive = Token(
            id="token_off",
            chain="ethereum",
            symbol="OFF",
            name="Inactive",
            contract_address="0x" + "2" * 40,
            active=False,
        )
        store.tokens.append(inactive)
        aggregator = make_aggregator(store)

        report = await aggregator.sweep(now=now)

        assert report.tokens_processed == 1
        assert report.signals_created == 1
        assert report.failures == {}
        assert report.finished_at is not None

    async def test_transient_failure_recorded_per_token(self, store, token, now) -> None:
        other = Token(id="token_u", chain="solana", symbol="U", name="Other", contract_address="u" * 32)
        store.tokens.append(other)
        store.failing_tokens.add("token_u")
        aggregator = make_aggregator(store)

        report = await aggregator.sweep(now=now)

        assert report.tokens_processed == 1
        assert "connection reset" in report.failures["token_u"]
        assert report.signals_created == 1

    async def test_timeout_recorded_per_token(self, store, token, now) -> None:
        other = Token(id="token_slow", chain="solana", symbol="S", name="Slow", contract_address="s" * 32)
        store.tokens.append(other)
        store.slow_tokens.add("token_slow")
        settings = SweepSettings(SWEEP_TOKEN_TIMEOUT_SECONDS=0.2, SWEEP_SUB_WINDOW_HOURS="")
        aggregator = make_aggregator(store, settings=settings)

        report = await aggregator.sweep(now=now)

        assert report.failures == {"token_slow": "timeout"}
        assert report.tokens_processed == 1

    async def test_explicit_token_list(self, store, token, now) -> None:
        aggregator = make_aggregator(store)

        report = await aggregator.sweep([token], now=now)
        second = await aggregator.sweep([token], now=now)

        assert report.signals_created == 1
        assert second.signals_created == 0
        assert second.results[0].suppressed == 1

    async def test_config_provider_errors_propagate(self, store, now) -> None:
        from accumulation_tracker.errors import ConfigurationError

        def bad_config() -> DetectionConfig:
            raise ConfigurationError("DETECTION_SIGNAL_THRESHOLD must be below DETECTION_MAX_SIGNAL_SCORE")

        aggregator = make_aggregator(store, config_provider=bad_config)

        with pytest.raises(ConfigurationError):
            await aggregator.sweep(now=now)

    async def test_recently_traded_inactive_token_is_reactivated(self, store, token, now, make_transfer) -> None:
        dormant = Token(
            id="token_d",
            chain="ethereum",
            symbol="DRM",
            name="Dormant",
            contract_address="0x" + "3" * 40,
            active=False,
        )
        store.tokens.append(dormant)
        store.transfers.append(make_transfer(SELLER, WHALE_A, 400_000, token_id="token_d"))
        aggregator = make_aggregator(store)

        report = await aggregator.sweep(now=now)

        assert report.tokens_activated == ["token_d"]
        assert {r.token_id for r in report.results} == {"token_t", "token_d"}
        assert report.signals_created == 2

    async def test_discovery_can_be_disabled(self, store, token, now, make_transfer) -> None:
        dormant = Token(
            id="token_d",
            chain="ethereum",
            symbol="DRM",
            name="Dormant",
            contract_address="0x" + "3" * 40,
            active=False,
        )
        store.tokens.append(dormant)
        store.transfers.append(make_transfer(SELLER, WHALE_A, 400_000, token_id="token_d"))
        settings = SweepSettings(SWEEP_SUB_WINDOW_HOURS="", SWEEP_DISCOVERY_LOOKBACK_HOURS=0)
        aggregator = make_aggregator(store, settings=settings)

        report = await aggregator.sweep(now=now)

        assert report.tokens_activated == []
        assert [r.token_id for r in report.results] == ["token_t"]

    async def test_discovery_failure_does_not_block_sweep(self, store, token, now) -> None:
        store.activate_recent_tokens = AsyncMock(side_effect=TransientStoreError("connection reset"))
        aggregator = make_aggregator(store)

        report = await aggregator.sweep(now=now)

        assert report.tokens_activated == []
        assert report.signals_created == 1
