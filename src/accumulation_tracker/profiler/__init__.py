"""Wallet profiler - performance and smart-money scoring from transfer history."""

from accumulation_tracker.profiler.models import ClosedTrade, WalletPerformance, WalletScore
from accumulation_tracker.profiler.performance import WalletPerformanceCalculator
from accumulation_tracker.profiler.profiler import WalletProfiler

__all__ = [
    "ClosedTrade",
    "WalletPerformance",
    "WalletPerformanceCalculator",
    "WalletProfiler",
    "WalletScore",
]
