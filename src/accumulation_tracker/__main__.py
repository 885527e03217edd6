"""Command-line entrypoint: ``python -m accumulation_tracker <command>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from redis.asyncio import Redis

from accumulation_tracker.alerter.dispatcher import AlertDispatcher
from accumulation_tracker.alerter.sinks import AlertSink, LoggingAlertSink, RedisStreamAlertSink
from accumulation_tracker.config import Settings, get_settings
from accumulation_tracker.errors import AccumulationTrackerError, ConfigurationError
from accumulation_tracker.profiler.profiler import WalletProfiler
from accumulation_tracker.scheduler import SweepScheduler
from accumulation_tracker.screener.engine import AlphaScreener
from accumulation_tracker.screener.models import ScreenerFilters, SortField, SortOrder
from accumulation_tracker.storage.database import DatabaseManager
from accumulation_tracker.storage.repos import SignalRepository, WalletRepository
from accumulation_tracker.storage.store import ScreenerMetricsLoader, SqlTransferStore

logger = logging.getLogger("accumulation_tracker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accumulation_tracker",
        description="Smart-money accumulation signals from on-chain token transfers",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema")

    sweep = sub.add_parser("sweep", help="Sweep active tokens on the configured interval")
    sweep.add_argument("--dry-run", action="store_true", help="Log alert emissions instead of publishing")

    once = sub.add_parser("sweep-once", help="Run a single sweep and print a summary")
    once.add_argument("--dry-run", action="store_true", help="Log alert emissions instead of publishing")

    screen = sub.add_parser("screen", help="Rank tokens by accumulation metrics")
    screen.add_argument("--chain")
    screen.add_argument("--min-age", type=float, help="Minutes since launch")
    screen.add_argument("--max-age", type=float, help="Minutes since launch")
    screen.add_argument("--min-volume", type=Decimal)
    screen.add_argument("--max-volume", type=Decimal)
    screen.add_argument("--min-market-cap", type=Decimal)
    screen.add_argument("--max-market-cap", type=Decimal)
    screen.add_argument("--min-whale-inflow", type=float, help="Whale inflow percent")
    screen.add_argument("--min-score", type=float, help="Minimum accumulation score")
    screen.add_argument("--min-smart-wallets", type=int)
    screen.add_argument("--breakout", action="store_true", help="Only volume/price breakouts")
    screen.add_argument("--preset")
    screen.add_argument("--sort-by", choices=[f.value for f in SortField], default=SortField.ACCUMULATION_SCORE.value)
    screen.add_argument("--order", choices=[o.value for o in SortOrder], default=SortOrder.DESC.value)
    screen.add_argument("--limit", type=int, default=50)
    screen.add_argument("--offset", type=int, default=0)

    wallet = sub.add_parser("wallet-score", help="Compute and store a wallet's performance score")
    wallet.add_argument("address")
    wallet.add_argument("--force", action="store_true", help="Bypass the performance cache")

    score = sub.add_parser("score-wallets", help="Score wallets (stale tracked wallets when none are given)")
    score.add_argument("addresses", nargs="*")
    score.add_argument("--force", action="store_true", help="Bypass the performance cache")

    leaders = sub.add_parser("leaderboard", help="List the highest-scoring wallets")
    leaders.add_argument("--limit", type=int, default=20)
    leaders.add_argument("--min-trades", type=int, default=1)

    signals = sub.add_parser("signals", help="List recent accumulation signals")
    signals.add_argument("--hours", type=float, default=24.0, help="Look back this many hours")
    signals.add_argument("--min-score", type=Decimal)
    signals.add_argument("--chain")
    signals.add_argument("--limit", type=int, default=50)

    alerts = sub.add_parser("process-alerts", help="Re-emit pending alerts")
    alerts.add_argument("--batch-size", type=int)
    alerts.add_argument("--dry-run", action="store_true", help="Log alert emissions instead of publishing")

    return parser


def _filters_from_args(args: argparse.Namespace) -> ScreenerFilters:
    return ScreenerFilters(
        chain=args.chain,
        min_age=args.min_age,
        max_age=args.max_age,
        min_volume_24h=args.min_volume,
        max_volume_24h=args.max_volume,
        min_market_cap=args.min_market_cap,
        max_market_cap=args.max_market_cap,
        min_whale_inflow_percent=args.min_whale_inflow,
        min_accumulation_score=args.min_score,
        min_smart_wallets=args.min_smart_wallets,
        breakout_only=args.breakout,
        preset=args.preset,
    )


def _print_json(payload: object) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _sweep(settings: Settings, *, dry_run: bool) -> None:
    scheduler = SweepScheduler(settings, dry_run=dry_run or None)
    await scheduler.run()


async def _sweep_once(settings: Settings, *, dry_run: bool) -> None:
    scheduler = SweepScheduler(settings, dry_run=dry_run or None)
    try:
        report = await scheduler.run_once()
    finally:
        await scheduler.close()
    _print_json(
        {
            "started_at": report.started_at.isoformat(),
            "finished_at": report.finished_at.isoformat() if report.finished_at else None,
            "tokens_processed": report.tokens_processed,
            "tokens_failed": report.tokens_failed,
            "signals_created": report.signals_created,
            "alerts_created": report.alerts_created,
            "wallets_scored": scheduler.stats.wallets_scored,
            "tokens_activated": report.tokens_activated,
            "failures": report.failures,
            "tokens": [
                {
                    "token_id": r.token_id,
                    "composite_score": r.composite_score,
                    "high_conviction": r.high_conviction,
                    "signals": [s.to_dict() for s in r.persisted],
                    "suppressed": r.suppressed + r.conflicts,
                }
                for r in report.results
            ],
        }
    )


async def _screen(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    try:
        screener = AlphaScreener(
            ScreenerMetricsLoader(db, smart_wallet_min_score=settings.profiler.smart_wallet_min_score),
            config=settings.detection_config(),
        )
        rows = await screener.screen(
            _filters_from_args(args),
            sort_by=args.sort_by,
            order=args.order,
            limit=args.limit,
            offset=args.offset,
        )
    finally:
        await db.dispose_async()
    _print_json([row.to_dict() for row in rows])


async def _wallet_score(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    redis = Redis.from_url(settings.redis.url) if settings.redis.enabled else None
    try:
        profiler = WalletProfiler(
            SqlTransferStore(db),
            db=db,
            redis=redis,
            history_limit=settings.profiler.history_limit,
            cache_ttl_seconds=settings.profiler.cache_ttl_seconds,
        )
        result = await profiler.score_wallet(args.address, force_refresh=args.force)
    finally:
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
    _print_json({"address": result.address, "score": result.score, **result.performance.to_dict()})


async def _score_wallets(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    redis = Redis.from_url(settings.redis.url) if settings.redis.enabled else None
    try:
        profiler = WalletProfiler(
            SqlTransferStore(db),
            db=db,
            redis=redis,
            history_limit=settings.profiler.history_limit,
            cache_ttl_seconds=settings.profiler.cache_ttl_seconds,
        )
        if args.addresses:
            results = await profiler.score_wallets(args.addresses, force_refresh=args.force)
        else:
            results = await profiler.rescore_stale(
                max_age_seconds=settings.profiler.rescore_interval_seconds,
                limit=settings.profiler.rescore_batch_size,
            )
    finally:
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
    _print_json([{"address": r.address, "score": r.score} for r in results])


async def _leaderboard(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    try:
        async with db.get_async_session() as session:
            wallets = await WalletRepository(session).leaderboard(limit=args.limit, min_trades=args.min_trades)
    finally:
        await db.dispose_async()
    _print_json(
        [
            {
                "address": w.address,
                "score": w.score,
                "win_rate": w.win_rate,
                "total_trades": w.total_trades,
                "tracked": w.tracked,
                "score_updated_at": w.score_updated_at,
            }
            for w in wallets
        ]
    )


async def _signals(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    try:
        async with db.get_async_session() as session:
            signals = await SignalRepository(session).list_recent(
                since=datetime.now(UTC) - timedelta(hours=args.hours),
                min_score=args.min_score,
                chain=args.chain,
                limit=args.limit,
            )
    finally:
        await db.dispose_async()
    _print_json([s.to_dict() for s in signals])


async def _process_alerts(settings: Settings, args: argparse.Namespace) -> None:
    db = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
    redis = None if args.dry_run or settings.dry_run else Redis.from_url(settings.redis.url)
    sink: AlertSink
    if redis is None:
        sink = LoggingAlertSink()
    else:
        sink = RedisStreamAlertSink(
            redis,
            stream_name=settings.alerts.stream_name,
            maxlen=settings.alerts.stream_maxlen,
        )
    try:
        dispatcher = AlertDispatcher(
            db,
            sink,
            min_score=settings.alerts.min_score,
            eligible_plans=settings.alerts.eligible_plans,
            batch_size=settings.alerts.batch_size,
        )
        emitted = await dispatcher.process_pending(args.batch_size)
    finally:
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
    _print_json({"emitted": emitted})


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", e)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        if args.command == "init-db":
            asyncio.run(_init_db(settings))
        elif args.command in ("sweep", "sweep-once"):
            if not args.dry_run:
                settings.validate_requirements(command="sweep")
            else:
                settings.detection_config()
            if args.command == "sweep":
                asyncio.run(_sweep(settings, dry_run=args.dry_run))
            else:
                asyncio.run(_sweep_once(settings, dry_run=args.dry_run))
        elif args.command == "screen":
            settings.validate_requirements(command="screen")
            asyncio.run(_screen(settings, args))
        elif args.command == "wallet-score":
            settings.validate_requirements(command="wallet-score")
            asyncio.run(_wallet_score(settings, args))
        elif args.command == "score-wallets":
            settings.validate_requirements(command="wallet-score")
            asyncio.run(_score_wallets(settings, args))
        elif args.command == "leaderboard":
            asyncio.run(_leaderboard(settings, args))
        elif args.command == "signals":
            asyncio.run(_signals(settings, args))
        elif args.command == "process-alerts":
            if not args.dry_run:
                settings.validate_requirements(command="alerts")
            asyncio.run(_process_alerts(settings, args))
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except ValueError as e:
        logger.error("%s", e)
        return 2
    except AccumulationTrackerError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
