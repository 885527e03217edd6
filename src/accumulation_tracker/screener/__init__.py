"""Alpha screener - Token ranking by derived accumulation metrics."""

from accumulation_tracker.screener.engine import PRESETS, AlphaScreener, rank, summarize
from accumulation_tracker.screener.models import (
    Predicate,
    ScreenerFilters,
    SortField,
    SortOrder,
    TokenMetrics,
    TokenSummary,
)

__all__ = [
    "PRESETS",
    "AlphaScreener",
    "Predicate",
    "ScreenerFilters",
    "SortField",
    "SortOrder",
    "TokenMetrics",
    "TokenSummary",
    "rank",
    "summarize",
]
