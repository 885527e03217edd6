"""Error taxonomy shared by the storage, detection and alerting layers."""

from __future__ import annotations


class AccumulationTrackerError(Exception):
    """Base class for all accumulation tracker errors."""


class TransientStoreError(AccumulationTrackerError):
    """The transfer store is unavailable or timed out.

    The affected token is retried on the next scheduled sweep.
    """


class ConflictError(AccumulationTrackerError):
    """A natural-key uniqueness constraint was violated on insert."""


class DataIntegrityError(AccumulationTrackerError):
    """A stored or ingested record is malformed (negative amount, missing reference)."""


class ConfigurationError(AccumulationTrackerError):
    """Required configuration is missing or inconsistent."""


class AlertStateError(AccumulationTrackerError):
    """An alert status transition was attempted out of a terminal state."""
