"""Signal aggregator running the detector set over sliding token windows.

Each sweep re-evaluates the main window and its shorter trailing
sub-windows for every token. Persisted signals are immutable, so the
aggregator deduplicates new candidates against overlapping signals of the
same type before inserting, under a per-token lock held in Redis or, without
Redis, as a lease row in the store.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from accumulation_tracker.config import DetectionConfig, SweepSettings, load_detection_config
from accumulation_tracker.detector.common import Detector
from accumulation_tracker.detector.models import (
    AccumulationSignal,
    CandidateSignal,
    SignalType,
    SweepReport,
    SweepWindow,
    TokenSweepResult,
)
from accumulation_tracker.detector.registry import DETECTORS
from accumulation_tracker.detector.scorer import CompositeScorer
from accumulation_tracker.errors import ConflictError, TransientStoreError
from accumulation_tracker.ingestor.models import Token, Transfer, WalletRegistry

if TYPE_CHECKING:
    from accumulation_tracker.alerter.dispatcher import AlertDispatcher
    from accumulation_tracker.storage.store import TransferStore

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "accumulation:sweep_lock:"


def wallet_overlap(a: Sequence[str], b: Sequence[str]) -> float:
    """Jaccard overlap of two wallet sets (1.0 when both are empty)."""
    left, right = set(a), set(b)
    union = left | right
    if not union:
        return 1.0
    return len(left & right) / len(union)


def relative_difference(a: Decimal, b: Decimal) -> float:
    """|a - b| relative to the larger of the two (0.0 when both are zero)."""
    largest = max(a, b)
    if largest <= 0:
        return 0.0
    return float(abs(a - b) / largest)


class SignalAggregator:
    """Sweeps tokens through the detector set and persists deduplicated signals.

    Example:
        ```python
        aggregator = SignalAggregator(store, dispatcher=dispatcher, redis=redis)
        report = await aggregator.sweep()
        print(report.signals_created)
        ```
    """

    def __init__(
        self,
        store: TransferStore,
        *,
        dispatcher: AlertDispatcher | None = None,
        redis: Redis | None = None,
        scorer: CompositeScorer | None = None,
        settings: SweepSettings | None = None,
        config_provider: Callable[[], DetectionConfig] = load_detection_config,
        detectors: Mapping[SignalType, Detector] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._redis = redis
        self._settings = settings or SweepSettings()
        self._scorer = scorer or CompositeScorer(weights=self._settings.composite_weights)
        self._config_provider = config_provider
        self._detectors = dict(detectors) if detectors is not None else dict(DETECTORS)
        self._locks: dict[str, asyncio.Lock] = {}

    def compute_window(self, now: datetime) -> SweepWindow:
        """``[align(now) - lookback, align(now) - cooldown)``."""
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        align = self._settings.window_align_seconds
        epoch = int(now.timestamp())
        aligned = datetime.fromtimestamp(epoch - epoch % align, tz=UTC)
        return SweepWindow(
            start=aligned - timedelta(hours=self._settings.lookback_hours),
            end=aligned - timedelta(hours=self._settings.cooldown_hours),
        )

    def compute_windows(self, now: datetime) -> list[SweepWindow]:
        """The main window followed by its trailing sub-windows, longest first.

        Sub-windows share the main window's end; ones that would reach back
        past its start are dropped.
        """
        main = self.compute_window(now)
        windows = [main]
        for hours in sorted(set(self._settings.sub_window_hours), reverse=True):
            start = main.end - timedelta(hours=hours)
            if start > main.start:
                windows.append(SweepWindow(start=start, end=main.end))
        return windows

    async def load_registry(self) -> WalletRegistry:
        return await self._store.load_wallet_registry(
            self._settings.exchange_addresses,
            self._settings.liquidity_pool_addresses,
        )

    async def _acquire_redis_lock(self, key: str, owner: str) -> bool | None:
        """``None`` when Redis is not configured or unreachable."""
        if self._redis is None:
            return None
        try:
            return bool(await self._redis.set(key, owner, nx=True, ex=self._settings.lock_ttl_seconds))
        except Exception as e:
            logger.warning("Redis sweep lock unavailable for %s, using the store lease: %s", key, e)
            return None

    async def _release_redis_lock(self, key: str, owner: str) -> None:
        assert self._redis is not None
        try:
            current = await self._redis.get(key)
            if current is not None and (current if isinstance(current, str) else current.decode()) == owner:
                await self._redis.delete(key)
        except Exception as e:
            logger.warning("Failed to release sweep lock %s: %s", key, e)

    async def _release_store_lock(self, key: str, owner: str) -> None:
        try:
            await self._store.release_sweep_lock(key, owner)
        except TransientStoreError as e:
            logger.warning("Failed to release sweep lease %s (expires on its own): %s", key, e)

    @asynccontextmanager
    async def _token_lock(self, token_id: str) -> AsyncGenerator[bool, None]:
        """Serialize dedup+persist per token across tasks and workers.

        Yields False when another worker holds the lock.
        """
        lock = self._locks.setdefault(token_id, asyncio.Lock())
        async with lock:
            key = f"{LOCK_KEY_PREFIX}{token_id}"
            owner = str(uuid.uuid4())
            acquired = await self._acquire_redis_lock(key, owner)
            use_redis = acquired is not None
            if not use_redis:
                acquired = await self._store.acquire_sweep_lock(key, owner, self._settings.lock_ttl_seconds)

            if not acquired:
                yield False
                return
            try:
                yield True
            finally:
                if use_redis:
                    await self._release_redis_lock(key, owner)
                else:
                    await self._release_store_lock(key, owner)

    async def _run_detectors(
        self,
        token: Token,
        transfers: Sequence[Transfer],
        registry: WalletRegistry,
        config: DetectionConfig,
    ) -> tuple[list[CandidateSignal], int]:
        signal_types = list(self._detectors)
        outcomes = await asyncio.gather(
            *(
                asyncio.to_thread(self._detectors[t], token, transfers, registry, config)
                for t in signal_types
            ),
            return_exceptions=True,
        )

        candidates: list[CandidateSignal] = []
        errors = 0
        for signal_type, outcome in zip(signal_types, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                errors += 1
                logger.warning(
                    "Detector %s failed for token %s: %s: %s",
                    signal_type.value,
                    token.id,
                    outcome.__class__.__name__,
                    outcome,
                )
                continue
            if outcome is None:
                continue
            if outcome.signal_type is not signal_type:
                errors += 1
                logger.warning(
                    "Detector %s returned a %s candidate for token %s; discarding",
                    signal_type.value,
                    outcome.signal_type.value,
                    token.id,
                )
                continue
            candidates.append(outcome)
        return candidates, errors

    def _is_duplicate(self, candidate: CandidateSignal, existing: AccumulationSignal, window: SweepWindow) -> bool:
        """Same accumulation if windows overlap and wallets and volume are near-identical."""
        if existing.signal_type is not candidate.signal_type:
            return False
        if not window.overlaps(existing.window_start, existing.window_end):
            return False
        overlap = wallet_overlap(candidate.wallets_involved, existing.wallets_involved)
        if overlap < self._settings.dedup_wallet_overlap:
            return False
        return relative_difference(candidate.total_volume, existing.total_volume) <= self._settings.dedup_volume_tolerance

    async def _persist(
        self,
        token: Token,
        candidates: Sequence[CandidateSignal],
        window: SweepWindow,
        result: TokenSweepResult,
        now: datetime,
    ) -> None:
        for candidate in candidates:
            existing = await self._store.list_signals_overlapping(
                token.id, candidate.signal_type, window.start, window.end
            )
            match = next((s for s in existing if self._is_duplicate(candidate, s, window)), None)
            if match is not None:
                result.suppressed += 1
                if all(s.id != match.id for s in (*result.persisted, *result.matched)):
                    result.matched.append(match)
                logger.debug(
                    "Suppressed duplicate %s signal for token %s (window %s - %s, matches %s)",
                    candidate.signal_type.value,
                    token.id,
                    window.start.isoformat(),
                    window.end.isoformat(),
                    match.id,
                )
                continue

            signal = AccumulationSignal.from_candidate(candidate, token_id=token.id, window=window, created_at=now)
            try:
                await self._store.insert_signal(signal)
            except ConflictError as e:
                result.conflicts += 1
                logger.debug("Signal insert deduplicated by natural key: %s", e)
                continue

            result.persisted.append(signal)
            logger.info(
                "Accumulation signal: token=%s type=%s score=%s wallets=%d window=%.1fh",
                token.id,
                signal.signal_type.value,
                signal.score,
                len(signal.wallets_involved),
                window.duration_hours,
            )

    async def _dispatch_alerts(self, token: Token, result: TokenSweepResult) -> None:
        """Create alerts for new signals and for stored ones this sweep matched.

        Alert creation skips subscribers already alerted for a signal, so
        re-offering a matched signal only fills in alerts a failed or
        interrupted earlier sweep never created.
        """
        if self._dispatcher is None:
            return
        for signal in (*result.persisted, *result.matched):
            if signal.score < self._dispatcher.min_score:
                continue
            try:
                alerts = await self._dispatcher.create_alerts_for_signal(signal, token)
            except Exception as e:
                logger.warning("Failed to create alerts for signal %s (retried next sweep): %s", signal.id, e)
                continue
            result.alerts_created += len(alerts)

    async def sweep_token(
        self,
        token: Token,
        *,
        now: datetime | None = None,
        config: DetectionConfig | None = None,
        registry: WalletRegistry | None = None,
    ) -> TokenSweepResult:
        """Run every detector over the token's windows and persist new signals.

        Raises:
            TransientStoreError: If the store is unavailable.
            ConfigurationError: If the threshold set is inconsistent.
        """
        now = now or datetime.now(UTC)
        config = config or self._config_provider()
        registry = registry or await self.load_registry()
        windows = self.compute_windows(now)
        main = windows[0]
        result = TokenSweepResult(token_id=token.id, window=main)

        fetched = await self._store.get_transfers(token.id, main.start, main.end)
        transfers = [t for t in fetched if t.token_id == token.id and main.contains(t.timestamp)]
        result.skipped_transfers = len(fetched) - len(transfers)
        if result.skipped_transfers:
            logger.warning(
                "Skipped %d transfers outside token %s window",
                result.skipped_transfers,
                token.id,
            )
        if not transfers:
            return result

        floor = Decimal(str(config.signal_threshold))
        scored: list[tuple[SweepWindow, list[CandidateSignal]]] = []
        for window in windows:
            in_window = [t for t in transfers if window.contains(t.timestamp)]
            if not in_window:
                continue
            result.windows.append(window)
            candidates, errors = await self._run_detectors(token, in_window, registry, config)
            result.detector_errors += errors
            kept = [c for c in candidates if c.score >= floor]
            if not kept:
                continue
            scored.append((window, kept))
            result.candidates.extend(kept)
            result.composite_score = max(result.composite_score, self._scorer.score(kept))

        result.high_conviction = self._scorer.is_high_conviction(
            result.composite_score, threshold=config.whale_inflow_threshold
        )
        if not scored:
            return result

        async with self._token_lock(token.id) as acquired:
            if not acquired:
                logger.info("Token %s is being swept by another worker; skipping persistence", token.id)
                return result
            for window, kept in scored:
                await self._persist(token, kept, window, result, now)

        await self._dispatch_alerts(token, result)

        if result.high_conviction:
            logger.info(
                "High-conviction accumulation: token=%s composite=%.2f types=%s",
                token.id,
                result.composite_score,
                ",".join(sorted({c.signal_type.value for c in result.candidates})),
            )
        return result

    async def _discover_tokens(self, now: datetime) -> list[str]:
        """Re-activate known tokens with recent transfers; failures never block the sweep."""
        hours = self._settings.discovery_lookback_hours
        if hours <= 0:
            return []
        try:
            return await self._store.activate_recent_tokens(now - timedelta(hours=hours))
        except TransientStoreError as e:
            logger.warning("Token discovery failed: %s", e)
            return []

    async def sweep(
        self,
        tokens: Sequence[Token] | None = None,
        *,
        now: datetime | None = None,
    ) -> SweepReport:
        """Sweep many tokens in parallel.

        When no token list is given, known tokens with recent transfers are
        re-activated first and every active token is swept. Transient store
        failures and per-token timeouts are recorded in the report; the
        affected tokens are picked up again by the next sweep.

        Raises:
            ConfigurationError: If the threshold set cannot be loaded.
        """
        now = now or datetime.now(UTC)
        config = self._config_provider()
        report = SweepReport(started_at=now)
        if tokens is None:
            report.tokens_activated = await self._discover_tokens(now)
            tokens = await self._store.list_active_tokens()
        registry = await self.load_registry()

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def _bounded(token: Token) -> TokenSweepResult:
            async with semaphore:
                return await asyncio.wait_for(
                    self.sweep_token(token, now=now, config=config, registry=registry),
                    timeout=self._settings.token_timeout_seconds,
                )

        outcomes = await asyncio.gather(*(_bounded(t) for t in tokens), return_exceptions=True)
        for token, outcome in zip(tokens, outcomes, strict=True):
            if isinstance(outcome, TimeoutError):
                report.failures[token.id] = "timeout"
                logger.warning(
                    "Sweep of token %s exceeded %.1fs; retrying next cycle",
                    token.id,
                    self._settings.token_timeout_seconds,
                )
            elif isinstance(outcome, TransientStoreError):
                report.failures[token.id] = str(outcome)
                logger.warning("Transient store failure sweeping token %s: %s", token.id, outcome)
            elif isinstance(outcome, BaseException):
                report.failures[token.id] = f"{outcome.__class__.__name__}: {outcome}"
                logger.warning("Sweep of token %s failed: %s", token.id, outcome)
            else:
                report.results.append(outcome)

        report.finished_at = datetime.now(UTC)
        logger.info(
            "Sweep finished: tokens=%d failed=%d activated=%d signals=%d alerts=%d",
            report.tokens_processed,
            report.tokens_failed,
            len(report.tokens_activated),
            report.signals_created,
            report.alerts_created,
        )
        return report
