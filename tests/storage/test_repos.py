"""Tests for storage repositories."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from accumulation_tracker.alerter.models import Alert, AlertChannels, AlertStatus, Subscriber, SubscriptionPlan
from accumulation_tracker.detector.models import AccumulationSignal, SignalType
from accumulation_tracker.errors import ConflictError, DataIntegrityError
from accumulation_tracker.ingestor.models import Token
from accumulation_tracker.storage.models import AccumulationSignalModel, TransferModel
from accumulation_tracker.storage.repos import (
    AlertRepository,
    PositionRepository,
    ScreenerRepository,
    SignalRepository,
    SweepLockRepository,
    TokenRepository,
    TransferRepository,
    UserRepository,
    WalletRepository,
    transfer_from_model,
)

WHALE = "0x" + "a" * 40
OTHER = "0x" + "b" * 40
SELLER = "0x" + "5" * 40
WINDOW_END = datetime(2026, 3, 1, 11, 0, tzinfo=UTC)
EARLIEST = datetime(2000, 1, 1, tzinfo=UTC)
LATEST = datetime(2100, 1, 1, tzinfo=UTC)


def make_signal(
    token_id: str = "token_t",
    *,
    signal_type: SignalType = SignalType.WHALE_INFLOW,
    window_start: datetime | None = None,
    window_end: datetime = WINDOW_END,
    score: str = "82.50",
) -> AccumulationSignal:
    return AccumulationSignal(
        id=str(uuid.uuid4()),
        token_id=token_id,
        signal_type=signal_type,
        score=Decimal(score),
        window_start=window_start or window_end - timedelta(hours=23),
        window_end=window_end,
        wallets_involved=(WHALE, OTHER),
        metadata={"transactionCount": 3, "totalVolume": "500000"},
        created_at=window_end,
    )


# ============================================================================
# TokenRepository Tests
# ============================================================================


class TestTokenRepository:
    async def test_upsert_and_get(self, async_session, token) -> None:
        repo = TokenRepository(async_session)
        await repo.upsert(token)

        stored = await repo.get(token.id)

        assert stored is not None
        assert stored.symbol == "TKN"
        assert stored.price_usd == Decimal("2")
        assert stored.created_at == token.created_at

    async def test_upsert_updates_metadata(self, async_session, token) -> None:
        repo = TokenRepository(async_session)
        await repo.upsert(token)
        await repo.upsert(
            Token(
                id=token.id,
                chain=token.chain,
                symbol=token.symbol,
                name=token.name,
                contract_address=token.contract_address,
                metadata={"price_usd": "3"},
            )
        )

        stored = await repo.get(token.id)
        assert stored is not None
        assert stored.price_usd == Decimal("3")

    async def test_list_active(self, async_session, token) -> None:
        repo = TokenRepository(async_session)
        await repo.upsert(token)
        await repo.upsert(
            Token(id="sol_1", chain="Solana", symbol="S", name="S", contract_address="S" * 32, active=False)
        )

        assert [t.id for t in await repo.list_active()] == [token.id]
        assert await repo.list_active(chain="solana") == []
        assert set(await repo.get_many([token.id, "sol_1", "missing"])) == {token.id, "sol_1"}

    async def test_activate_recently_traded(self, async_session, make_transfer, now) -> None:
        repo = TokenRepository(async_session)
        for token_id in ("recent", "stale", "quiet"):
            await repo.upsert(
                Token(
                    id=token_id,
                    chain="ethereum",
                    symbol=token_id.upper(),
                    name=token_id,
                    contract_address=f"0x{token_id}",
                    active=False,
                )
            )
        await TransferRepository(async_session).insert_many(
            [
                make_transfer(SELLER, WHALE, 100, token_id="recent"),
                make_transfer(SELLER, WHALE, 100, token_id="stale", timestamp=now - timedelta(days=30)),
            ]
        )

        activated = await repo.activate_recently_traded(since=now - timedelta(days=7))

        assert activated == ["recent"]
        assert [t.id for t in await repo.list_active()] == ["recent"]
        assert await repo.activate_recently_traded(since=now - timedelta(days=7)) == []


# ============================================================================
# WalletRepository Tests
# ============================================================================


class TestWalletRepository:
    async def test_ensure_many_is_idempotent(self, async_session) -> None:
        repo = WalletRepository(async_session)

        first = await repo.ensure_many([WHALE.upper(), OTHER])
        second = await repo.ensure_many([WHALE])

        assert set(first) == {WHALE, OTHER}
        assert second[WHALE] == first[WHALE]

    async def test_ensure_many_spans_insert_chunks(self, async_session, monkeypatch) -> None:
        monkeypatch.setattr("accumulation_tracker.storage.repos.INSERT_CHUNK_SIZE", 2)
        addresses = [f"0x{n:040x}" for n in range(5)]

        wallet_ids = await WalletRepository(async_session).ensure_many(addresses)

        assert sorted(wallet_ids) == addresses
        assert len(set(wallet_ids.values())) == 5

    async def test_list_stale_scores(self, async_session) -> None:
        repo = WalletRepository(async_session)
        fresh_at = datetime(2026, 3, 1, 12, tzinfo=UTC)
        third = "0x" + "c" * 40
        for address in (WHALE, OTHER, third):
            await repo.upsert_labeled(address, tracked=True)
        await repo.upsert_labeled(SELLER)
        await repo.update_score(WHALE, score=70, win_rate=Decimal("50"), total_trades=4, at=fresh_at)
        await repo.update_score(OTHER, score=70, win_rate=Decimal("50"), total_trades=4, at=fresh_at - timedelta(days=2))

        stale = await repo.list_stale_scores(before=fresh_at - timedelta(hours=1), limit=10)

        assert stale == [third, OTHER]
        assert await repo.list_stale_scores(before=fresh_at - timedelta(hours=1), limit=1) == [third]

    async def test_labels(self, async_session) -> None:
        repo = WalletRepository(async_session)
        await repo.upsert_labeled(WHALE, tracked=True)
        await repo.upsert_labeled(OTHER, label="exchange")

        assert await repo.list_addresses(tracked=True) == [WHALE]
        assert await repo.list_addresses(label="exchange") == [OTHER]

    async def test_update_score_and_leaderboard(self, async_session) -> None:
        repo = WalletRepository(async_session)
        at = datetime(2026, 3, 1, tzinfo=UTC)
        await repo.update_score(WHALE, score=88, win_rate=Decimal("72.5"), total_trades=20, at=at)
        await repo.update_score(OTHER, score=40, win_rate=Decimal("10"), total_trades=0, at=at)

        leaders = await repo.leaderboard()

        assert [w.address for w in leaders] == [WHALE]
        assert leaders[0].score == 88
        assert leaders[0].score_updated_at == at


# ============================================================================
# TransferRepository / PositionRepository Tests
# ============================================================================


class TestTransferRepository:
    async def test_insert_many_ignores_duplicates(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        transfers = [make_transfer(SELLER, WHALE, 100), make_transfer(SELLER, OTHER, 200)]

        assert await repo.insert_many(transfers) == 2
        assert await repo.insert_many(transfers) == 0
        assert len(await repo.list_for_token("token_t", start=EARLIEST, end=LATEST)) == 2

    async def test_insert_many_in_chunks(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        transfers = [make_transfer(SELLER, WHALE, 100 + n) for n in range(5)]

        assert await repo.insert_many(transfers[:2], chunk_size=2) == 2
        assert await repo.insert_many(transfers, chunk_size=2) == 3
        assert len(await repo.list_for_token("token_t", start=EARLIEST, end=LATEST)) == 5

    async def test_same_hash_different_token_is_distinct(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        transfers = [
            make_transfer(SELLER, WHALE, 100, tx_hash="0xdead"),
            make_transfer(SELLER, WHALE, 100, tx_hash="0xdead", token_id="token_u"),
        ]

        assert await repo.insert_many(transfers) == 2

    async def test_list_for_token_is_half_open_and_ordered(self, async_session, make_transfer, in_window) -> None:
        repo = TransferRepository(async_session)
        late = make_transfer(SELLER, WHALE, 1, timestamp=in_window + timedelta(hours=2))
        early = make_transfer(SELLER, WHALE, 2, timestamp=in_window)
        edge = make_transfer(SELLER, WHALE, 3, timestamp=in_window + timedelta(hours=3))
        await repo.insert_many([late, early, edge])

        rows = await repo.list_for_token("token_t", start=in_window, end=in_window + timedelta(hours=3))

        assert [int(r.amount) for r in rows] == [2, 1]

    async def test_list_for_address_returns_most_recent_oldest_first(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        transfers = [make_transfer(SELLER, WHALE, n) for n in (1, 2, 3)]
        await repo.insert_many(transfers)

        rows = await repo.list_for_address(WHALE, limit=2)

        assert [int(r.amount) for r in rows] == [2, 3]

    async def test_net_flow(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        await repo.insert_many(
            [
                make_transfer(SELLER, WHALE, 500),
                make_transfer(SELLER, WHALE, 250),
                make_transfer(WHALE, OTHER, 100),
            ]
        )

        assert await repo.net_flow(WHALE, "token_t") == (750, 100)
        assert await repo.net_flow(WHALE, "token_u") == (0, 0)

    async def test_malformed_row_is_rejected_on_read(self, async_session, make_transfer) -> None:
        repo = TransferRepository(async_session)
        await repo.insert_many([make_transfer(SELLER, WHALE, 100)])
        await async_session.execute(update(TransferModel).values(amount=Decimal(-5)))

        (row,) = await repo.list_for_address(WHALE, limit=10)
        with pytest.raises(DataIntegrityError):
            transfer_from_model(row)


class TestPositionRepository:
    async def test_upsert_overwrites(self, async_session) -> None:
        wallet_id = (await WalletRepository(async_session).ensure_many([WHALE]))[WHALE]
        repo = PositionRepository(async_session)

        await repo.upsert(wallet_id, "token_t", 100)
        await repo.upsert(wallet_id, "token_t", 40)

        assert await repo.get(wallet_id, "token_t") == 40
        assert await repo.get(wallet_id, "token_u") is None

    async def test_negative_balance_rejected(self, async_session) -> None:
        with pytest.raises(DataIntegrityError):
            await PositionRepository(async_session).upsert(1, "token_t", -1)


# ============================================================================
# SignalRepository Tests
# ============================================================================


class TestSignalRepository:
    async def test_insert_and_get(self, async_session) -> None:
        repo = SignalRepository(async_session)
        signal = make_signal()

        assert await repo.insert(signal) == signal.id
        stored = await repo.get(signal.id)

        assert stored is not None
        assert stored.score == Decimal("82.50")
        assert stored.signal_type is SignalType.WHALE_INFLOW
        assert stored.wallets_involved == (WHALE, OTHER)
        assert stored.metadata["transactionCount"] == 3

    async def test_natural_key_conflict(self, async_session) -> None:
        repo = SignalRepository(async_session)
        first = make_signal()
        await repo.insert(first)

        with pytest.raises(ConflictError):
            await repo.insert(make_signal(window_start=first.window_start))

    async def test_list_overlapping(self, async_session) -> None:
        repo = SignalRepository(async_session)
        signal = make_signal()
        await repo.insert(signal)
        await repo.insert(make_signal(signal_type=SignalType.LP_INCREASE))

        overlapping = await repo.list_overlapping(
            "token_t",
            SignalType.WHALE_INFLOW,
            start=WINDOW_END - timedelta(hours=1),
            end=WINDOW_END + timedelta(hours=1),
        )
        disjoint = await repo.list_overlapping(
            "token_t",
            SignalType.WHALE_INFLOW,
            start=WINDOW_END,
            end=WINDOW_END + timedelta(hours=1),
        )

        assert [s.id for s in overlapping] == [signal.id]
        assert disjoint == []

    async def test_unknown_signal_type_rejected_on_read(self, async_session) -> None:
        repo = SignalRepository(async_session)
        signal = make_signal()
        await repo.insert(signal)
        await async_session.execute(update(AccumulationSignalModel).values(signal_type="MOON"))

        with pytest.raises(DataIntegrityError):
            await repo.get(signal.id)

    async def test_latest_by_token_and_recent(self, async_session, token) -> None:
        await TokenRepository(async_session).upsert(token)
        repo = SignalRepository(async_session)
        older = make_signal(window_end=WINDOW_END - timedelta(hours=5), score="90")
        newer = make_signal(signal_type=SignalType.CONCENTRATED_BUYS, score="65")
        other_token = make_signal("token_u", score="70")
        for signal in (older, newer, other_token):
            await repo.insert(signal)

        latest = await repo.latest_by_token(["token_t", "token_u", "token_x"])
        recent = await repo.list_recent(since=WINDOW_END - timedelta(days=1), min_score=Decimal("66"), chain="ethereum")

        assert latest["token_t"].id == newer.id
        assert latest["token_u"].id == other_token.id
        assert "token_x" not in latest
        assert [s.id for s in recent] == [older.id]


# ============================================================================
# UserRepository / AlertRepository Tests
# ============================================================================


class TestAlertRepositories:
    async def test_list_eligible(self, async_session) -> None:
        users = UserRepository(async_session)
        await users.upsert(Subscriber(id="u1", email="A@example.com", plan=SubscriptionPlan.PRO, alert_threshold=Decimal("70")))
        await users.upsert(Subscriber(id="u2", email="b@example.com", plan=SubscriptionPlan.PRO, alert_threshold=Decimal("85")))
        await users.upsert(Subscriber(id="u3", email="c@example.com", plan=SubscriptionPlan.FREE, alert_threshold=Decimal("10")))

        eligible = await users.list_eligible(plans=["pro"], score=Decimal("80"))

        assert [s.id for s in eligible] == ["u1"]
        assert eligible[0].email == "a@example.com"

    async def test_insert_if_absent(self, async_session) -> None:
        repo = AlertRepository(async_session)
        channels = AlertChannels(telegram=True, email=True)

        assert await repo.insert_if_absent(Alert.pending(user_id="u1", signal_id="s1", channels=channels))
        assert not await repo.insert_if_absent(Alert.pending(user_id="u1", signal_id="s1", channels=channels))
        assert len(await repo.list_for_signal("s1")) == 1

    async def test_save_status_only_from_pending(self, async_session) -> None:
        repo = AlertRepository(async_session)
        alert = Alert.pending(user_id="u1", signal_id="s1", channels=AlertChannels())
        await repo.insert_if_absent(alert)

        await repo.save_status(alert.transition(AlertStatus.FAILED))

        stored = await repo.get(alert.id)
        assert stored is not None and stored.status is AlertStatus.FAILED
        with pytest.raises(ConflictError):
            await repo.save_status(alert.transition(AlertStatus.DELIVERED))

    async def test_list_pending_keyset(self, async_session) -> None:
        repo = AlertRepository(async_session)
        alerts = [Alert.pending(user_id=f"u{i}", signal_id="s1", channels=AlertChannels()) for i in range(3)]
        for alert in alerts:
            await repo.insert_if_absent(alert)
        ordered = sorted(a.id for a in alerts)

        first = await repo.list_pending(limit=2)
        rest = await repo.list_pending(limit=2, after_id=first[-1].id)

        assert [a.id for a in first] == ordered[:2]
        assert [a.id for a in rest] == ordered[2:]


# ============================================================================
# ScreenerRepository Tests
# ============================================================================


class TestScreenerRepository:
    async def test_load_token_metrics(self, async_session, token, make_transfer, now) -> None:
        await TokenRepository(async_session).upsert(token)
        wallets = WalletRepository(async_session)
        await wallets.upsert_labeled(WHALE, tracked=True)
        await wallets.update_score(WHALE, score=90, win_rate=Decimal("80"), total_trades=30, at=now)
        await wallets.update_score(OTHER, score=50, win_rate=Decimal("20"), total_trades=30, at=now)
        await TransferRepository(async_session).insert_many(
            [
                make_transfer(SELLER, WHALE, 600, timestamp=now - timedelta(hours=2)),
                make_transfer(SELLER, OTHER, 400, timestamp=now - timedelta(hours=3)),
                make_transfer(SELLER, OTHER, 250, timestamp=now - timedelta(hours=30)),
            ]
        )
        signal = make_signal()
        await SignalRepository(async_session).insert(signal)

        (metrics,) = await ScreenerRepository(async_session).load_token_metrics(now=now, smart_wallet_min_score=70)

        # price_usd is 2 and decimals is 0, so volumes are doubled
        assert metrics.volume_24h == Decimal(2000)
        assert metrics.previous_volume_24h == Decimal(500)
        assert metrics.whale_inflow_volume == Decimal(1200)
        assert metrics.smart_wallets_count == 1
        assert metrics.market_cap == Decimal(500000)
        assert metrics.latest_signal is not None
        assert metrics.latest_signal.score == Decimal("82.50")

    async def test_no_active_tokens(self, async_session, now) -> None:
        assert await ScreenerRepository(async_session).load_token_metrics(now=now, smart_wallet_min_score=70) == []


# ============================================================================
# SweepLockRepository Tests
# ============================================================================


class TestSweepLockRepository:
    async def test_lease_is_exclusive_until_released(self, async_session, now) -> None:
        repo = SweepLockRepository(async_session)

        assert await repo.acquire("sweep:token_t", "worker-1", ttl_seconds=60, now=now)
        assert not await repo.acquire("sweep:token_t", "worker-2", ttl_seconds=60, now=now)
        assert not await repo.release("sweep:token_t", "worker-2")
        assert await repo.release("sweep:token_t", "worker-1")
        assert await repo.acquire("sweep:token_t", "worker-2", ttl_seconds=60, now=now)

    async def test_expired_lease_is_taken_over(self, async_session, now) -> None:
        repo = SweepLockRepository(async_session)
        await repo.acquire("sweep:token_t", "worker-1", ttl_seconds=60, now=now)

        assert not await repo.acquire("sweep:token_t", "worker-2", ttl_seconds=60, now=now + timedelta(seconds=30))
        assert await repo.acquire("sweep:token_t", "worker-2", ttl_seconds=60, now=now + timedelta(seconds=61))
        assert not await repo.release("sweep:token_t", "worker-1")
