"""Sweep scheduler for the accumulation tracker.

This module wires the transfer store, aggregator, alert dispatcher, wallet
profiler and Redis together. It re-runs the token sweep on a fixed interval
until stopped and scores the wallets behind new signals after each sweep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from accumulation_tracker.alerter.dispatcher import AlertDispatcher
from accumulation_tracker.alerter.sinks import AlertSink, LoggingAlertSink, RedisStreamAlertSink
from accumulation_tracker.config import DetectionConfig, Settings, get_settings, load_detection_config
from accumulation_tracker.detector.aggregator import SignalAggregator
from accumulation_tracker.detector.models import SweepReport
from accumulation_tracker.profiler.profiler import WalletProfiler
from accumulation_tracker.storage.database import DatabaseManager
from accumulation_tracker.storage.store import SqlTransferStore

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Scheduler lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    started_at: datetime | None = None
    sweeps_completed: int = 0
    signals_created: int = 0
    alerts_created: int = 0
    wallets_scored: int = 0
    token_failures: int = 0
    errors: int = 0
    last_sweep_at: datetime | None = None
    last_error: str | None = None


class SweepScheduler:
    """Periodic sweep orchestrator.

    Example:
        ```python
        from accumulation_tracker.scheduler import SweepScheduler

        async with SweepScheduler() as scheduler:
            await scheduler.run_once()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db_manager: DatabaseManager | None = None,
        redis: Redis | None = None,
        sink: AlertSink | None = None,
        config_provider: Callable[[], DetectionConfig] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alert emissions instead of publishing them.
            db_manager: Pre-built database manager (tests).
            redis: Pre-built Redis client (tests).
            sink: Alert sink overriding the one derived from settings.
            config_provider: Per-sweep threshold loader.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._config_provider = config_provider or load_detection_config

        self._state = SchedulerState.STOPPED
        self._stats = SchedulerStats()

        self._db_manager = db_manager
        self._owns_db = db_manager is None
        self._redis = redis
        self._owns_redis = redis is None
        self._sink = sink
        self._aggregator: SignalAggregator | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._profiler: WalletProfiler | None = None

        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SchedulerState:
        """Current scheduler state."""
        return self._state

    @property
    def stats(self) -> SchedulerStats:
        """Current scheduler statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def dispatcher(self) -> AlertDispatcher | None:
        return self._dispatcher

    async def _initialize_components(self) -> None:
        settings = self._settings

        # Fail fast on an inconsistent threshold set.
        self._config_provider()

        if self._redis is None and settings.redis.enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)

        if self._sink is None:
            if self._dry_run or self._redis is None:
                self._sink = LoggingAlertSink()
            else:
                self._sink = RedisStreamAlertSink(
                    self._redis,
                    stream_name=settings.alerts.stream_name,
                    maxlen=settings.alerts.stream_maxlen,
                )

        self._dispatcher = AlertDispatcher(
            self._db_manager,
            self._sink,
            min_score=settings.alerts.min_score,
            eligible_plans=settings.alerts.eligible_plans,
            batch_size=settings.alerts.batch_size,
        )
        self._aggregator = SignalAggregator(
            SqlTransferStore(self._db_manager),
            dispatcher=self._dispatcher,
            redis=self._redis,
            settings=settings.sweep,
            config_provider=self._config_provider,
        )
        self._profiler = WalletProfiler(
            SqlTransferStore(self._db_manager),
            db=self._db_manager,
            redis=self._redis,
            history_limit=settings.profiler.history_limit,
            cache_ttl_seconds=settings.profiler.cache_ttl_seconds,
        )

    async def start(self) -> None:
        """Initialize components and begin sweeping in the background.

        Raises:
            RuntimeError: If the scheduler is not stopped.
            ConfigurationError: If thresholds are invalid.
        """
        if self._state != SchedulerState.STOPPED:
            raise RuntimeError(f"Cannot start scheduler in state {self._state}")

        self._state = SchedulerState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting sweep scheduler...")

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._loop_task = asyncio.create_task(self._sweep_loop())
            self._state = SchedulerState.RUNNING
            logger.info(
                "Sweep scheduler started (interval=%ss, dry_run=%s)",
                self._settings.sweep.interval_seconds,
                self._dry_run,
            )
        except Exception as e:
            self._state = SchedulerState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start sweep scheduler: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._state == SchedulerState.STOPPED:
            return

        self._state = SchedulerState.STOPPING
        logger.info("Stopping sweep scheduler...")

        if self._stop_event:
            self._stop_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        await self._cleanup()
        self._state = SchedulerState.STOPPED
        logger.info("Sweep scheduler stopped")

    async def close(self) -> None:
        """Release resources acquired by ``run_once`` outside of start/stop."""
        if self._state == SchedulerState.STOPPED:
            await self._cleanup()

    async def _cleanup(self) -> None:
        if self._owns_db and self._db_manager is not None:
            await self._db_manager.dispose_async()
            self._db_manager = None
        if self._owns_redis and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._aggregator = None
        self._dispatcher = None
        self._profiler = None

    async def run_once(self) -> SweepReport:
        """Run a single sweep over all active tokens."""
        if self._aggregator is None:
            await self._initialize_components()
        assert self._aggregator is not None

        try:
            report = await self._aggregator.sweep()
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise

        self._stats.sweeps_completed += 1
        self._stats.signals_created += report.signals_created
        self._stats.alerts_created += report.alerts_created
        self._stats.token_failures += report.tokens_failed
        self._stats.last_sweep_at = report.finished_at

        try:
            self._stats.wallets_scored += await self.score_wallets(report)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.warning("Wallet scoring after sweep failed: %s", e)
        return report

    async def score_wallets(self, report: SweepReport | None = None) -> int:
        """Score the wallets behind newly persisted signals and stale tracked wallets.

        Returns:
            Number of wallets scored.
        """
        if self._profiler is None:
            await self._initialize_components()
        assert self._profiler is not None
        profiler_settings = self._settings.profiler

        addresses: dict[str, None] = {}
        if report is not None:
            for result in report.results:
                for signal in result.persisted:
                    addresses.update(dict.fromkeys(a.lower() for a in signal.wallets_involved))
        scored = await self._profiler.score_wallets(list(addresses), force_refresh=True)

        if profiler_settings.rescore_interval_seconds > 0:
            scored += await self._profiler.rescore_stale(
                max_age_seconds=profiler_settings.rescore_interval_seconds,
                limit=profiler_settings.rescore_batch_size,
            )
        if scored:
            logger.info("Scored %d wallets after sweep", len(scored))
        return len(scored)

    async def _sweep_loop(self) -> None:
        assert self._stop_event is not None
        interval = self._settings.sweep.interval_seconds

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Sweep failed: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass
            except asyncio.CancelledError:
                break

    async def run(self) -> None:
        """Start the scheduler and block until stopped or cancelled."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> SweepScheduler:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
