"""Alpha screener query engine.

Ranks active tokens by derived metrics. Filters and named presets compile
into one conjunction of predicates, so presets are plain predicate bundles
and never a separate code path.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from accumulation_tracker.config import DetectionConfig
from accumulation_tracker.screener.models import (
    Predicate,
    ScreenerFilters,
    SortField,
    SortOrder,
    TokenMetrics,
    TokenSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50

PRESETS: dict[str, tuple[Predicate, ...]] = {
    "low-mcap-high-smart": (
        Predicate("market_cap", "lt", Decimal("1000000")),
        Predicate("smart_wallets_count", "gt", 5),
    ),
    "new-solana-whale": (
        Predicate("chain", "eq", "solana"),
        Predicate("age_minutes", "lt", 10),
        Predicate("whale_inflow_percent", "gt", 0),
    ),
    "eth-winning-wallets": (
        Predicate("chain", "eq", "ethereum"),
        Predicate("smart_wallets_count", "gt", 10),
    ),
}

MetricsLoader = Callable[[datetime], Awaitable[Sequence[TokenMetrics]]]


def format_age(minutes: float | None) -> str:
    if minutes is None:
        return "unknown"
    total = int(minutes)
    if total < 1:
        return "<1m"
    if total < 60:
        return f"{total}m"
    hours, mins = divmod(total, 60)
    if hours < 24:
        return f"{hours}h {mins}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def is_breakout(metrics: TokenMetrics, config: DetectionConfig) -> bool:
    """Volume expansion over the previous 24h, confirmed by price when known."""
    if metrics.previous_volume_24h <= 0 or metrics.volume_24h <= 0:
        return False
    expansion = metrics.volume_24h / metrics.previous_volume_24h
    if expansion < Decimal(str(config.breakout_volume_threshold)):
        return False
    if metrics.price_change_24h is None:
        return True
    return metrics.price_change_24h >= Decimal(str(config.breakout_price_change_threshold))


def summarize(metrics: TokenMetrics, *, now: datetime, config: DetectionConfig) -> TokenSummary:
    age_minutes: float | None = None
    if metrics.launched_at is not None:
        age_minutes = max(0.0, (now - metrics.launched_at).total_seconds() / 60)

    whale_inflow_percent = 0.0
    if metrics.volume_24h > 0:
        whale_inflow_percent = round(float(metrics.whale_inflow_volume / metrics.volume_24h * 100), 2)

    return TokenSummary(
        token_id=metrics.token_id,
        symbol=metrics.symbol,
        name=metrics.name,
        chain=metrics.chain,
        contract_address=metrics.contract_address,
        age_minutes=age_minutes,
        age_formatted=format_age(age_minutes),
        volume_24h=metrics.volume_24h,
        market_cap=metrics.market_cap,
        whale_inflow_percent=whale_inflow_percent,
        accumulation_score=float(metrics.latest_signal.score) if metrics.latest_signal else 0.0,
        smart_wallets_count=metrics.smart_wallets_count,
        price=metrics.price,
        latest_signal=metrics.latest_signal,
        is_breakout=is_breakout(metrics, config),
    )


def resolve_predicates(filters: ScreenerFilters | None) -> list[Predicate]:
    """Ad-hoc filters AND-ed with the named preset, if any.

    Raises:
        ValueError: If the preset name is unknown.
    """
    if filters is None:
        return []
    predicates = filters.to_predicates()
    if filters.preset:
        preset = PRESETS.get(filters.preset)
        if preset is None:
            raise ValueError(f"Unknown screener preset: {filters.preset}")
        predicates.extend(preset)
    return predicates


def _sort_value(summary: TokenSummary, field: SortField) -> Any:
    if field is SortField.AGE:
        return summary.age_minutes
    return getattr(summary, field.value)


def sort_summaries(
    summaries: Sequence[TokenSummary],
    sort_by: SortField | str = SortField.ACCUMULATION_SCORE,
    order: SortOrder | str = SortOrder.DESC,
) -> list[TokenSummary]:
    """Stable sort by ``sort_by``; ties by token id ascending, missing values last."""
    field = SortField(sort_by)
    direction = SortOrder(order)
    by_id = sorted(summaries, key=lambda s: s.token_id)
    present = [s for s in by_id if _sort_value(s, field) is not None]
    missing = [s for s in by_id if _sort_value(s, field) is None]
    present.sort(key=lambda s: _sort_value(s, field), reverse=direction is SortOrder.DESC)
    return present + missing


def rank(
    summaries: Sequence[TokenSummary],
    filters: ScreenerFilters | None = None,
    *,
    sort_by: SortField | str = SortField.ACCUMULATION_SCORE,
    order: SortOrder | str = SortOrder.DESC,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[TokenSummary]:
    """Filter, sort and paginate summaries."""
    if limit < 0 or offset < 0:
        raise ValueError("limit and offset must be >= 0")
    predicates = resolve_predicates(filters)
    matching = [s for s in summaries if all(p.matches(s) for p in predicates)]
    ordered = sort_summaries(matching, sort_by, order)
    return ordered[offset : offset + limit]


class AlphaScreener:
    """Stateless screener over per-token metrics.

    Example:
        ```python
        screener = AlphaScreener(loader, config=settings.detection_config())
        rows = await screener.screen(ScreenerFilters(preset="low-mcap-high-smart"))
        ```
    """

    def __init__(self, metrics_loader: MetricsLoader, *, config: DetectionConfig | None = None) -> None:
        self._load_metrics = metrics_loader
        self._config = config or DetectionConfig()

    async def screen(
        self,
        filters: ScreenerFilters | None = None,
        *,
        sort_by: SortField | str = SortField.ACCUMULATION_SCORE,
        order: SortOrder | str = SortOrder.DESC,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[TokenSummary]:
        # Validate before touching storage.
        resolve_predicates(filters)
        now = now or datetime.now(UTC)
        metrics = await self._load_metrics(now)
        summaries = [summarize(m, now=now, config=self._config) for m in metrics]
        results = rank(summaries, filters, sort_by=sort_by, order=order, limit=limit, offset=offset)
        logger.info("Screener matched %d of %d tokens", len(results), len(summaries))
        return results
