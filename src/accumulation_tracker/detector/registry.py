"""Dispatch table mapping every signal type to its detector."""

from __future__ import annotations

from accumulation_tracker.detector.common import Detector
from accumulation_tracker.detector.concentrated_buys import detect_concentrated_buys
from accumulation_tracker.detector.exchange_outflow import detect_exchange_outflow
from accumulation_tracker.detector.holding_patterns import detect_holding_patterns
from accumulation_tracker.detector.lp_increase import detect_lp_increase
from accumulation_tracker.detector.models import SignalType
from accumulation_tracker.detector.whale_inflow import detect_whale_inflow

DETECTORS: dict[SignalType, Detector] = {
    SignalType.WHALE_INFLOW: detect_whale_inflow,
    SignalType.EXCHANGE_OUTFLOW: detect_exchange_outflow,
    SignalType.CONCENTRATED_BUYS: detect_concentrated_buys,
    SignalType.HOLDING_PATTERNS: detect_holding_patterns,
    SignalType.LP_INCREASE: detect_lp_increase,
}

_missing = set(SignalType) - set(DETECTORS)
if _missing:
    raise RuntimeError(f"No detector registered for: {sorted(s.value for s in _missing)}")
