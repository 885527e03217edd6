"""Detection layer - Accumulation heuristics and scoring."""

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

__all__ = [
    "DETECTORS",
    "AccumulationSignal",
    "CandidateSignal",
    "CompositeScorer",
    "SignalType",
    "SweepReport",
    "SweepWindow",
    "TokenSweepResult",
]
