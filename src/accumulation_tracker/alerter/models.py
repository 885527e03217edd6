"""Data models for the alerter module."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from accumulation_tracker.errors import AlertStateError, DataIntegrityError


class AlertStatus(str, Enum):
    """Alert lifecycle. DELIVERED and FAILED are terminal."""

    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, value: str) -> AlertStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise DataIntegrityError(f"Unknown alert status: {value!r}") from e

    @property
    def is_terminal(self) -> bool:
        return self is not AlertStatus.PENDING


class SubscriptionPlan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"

    @classmethod
    def parse(cls, value: str) -> SubscriptionPlan:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise DataIntegrityError(f"Unknown subscription plan: {value!r}") from e


@dataclass(frozen=True)
class AlertChannels:
    telegram: bool = False
    email: bool = True

    @property
    def any_enabled(self) -> bool:
        return self.telegram or self.email

    def to_dict(self) -> dict[str, bool]:
        return {"telegram": self.telegram, "email": self.email}


@dataclass(frozen=True)
class Subscriber:
    """Minimal view of a user needed to decide alert eligibility."""

    id: str
    email: str
    plan: SubscriptionPlan = SubscriptionPlan.FREE
    alert_threshold: Decimal = Decimal("75")
    channels: AlertChannels = field(default_factory=AlertChannels)


@dataclass(frozen=True)
class Alert:
    id: str
    user_id: str
    signal_id: str
    channels: AlertChannels
    status: AlertStatus = AlertStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    delivered_at: datetime | None = None

    @classmethod
    def pending(cls, *, user_id: str, signal_id: str, channels: AlertChannels) -> Alert:
        return cls(id=str(uuid.uuid4()), user_id=user_id, signal_id=signal_id, channels=channels)

    def transition(self, status: AlertStatus, *, at: datetime | None = None) -> Alert:
        """Return a copy moved to ``status``.

        Raises:
            AlertStateError: If the alert is already terminal or the target is PENDING.
        """
        if self.status.is_terminal:
            raise AlertStateError(f"Alert {self.id} is already {self.status.value}")
        if status is AlertStatus.PENDING:
            raise AlertStateError("Alerts cannot transition back to PENDING")
        delivered_at = (at or datetime.now(UTC)) if status is AlertStatus.DELIVERED else None
        return Alert(
            id=self.id,
            user_id=self.user_id,
            signal_id=self.signal_id,
            channels=self.channels,
            status=status,
            created_at=self.created_at,
            delivered_at=delivered_at,
        )


@dataclass(frozen=True)
class AlertEmission:
    """The ``(user_id, signal_id, channels)`` tuple handed to the notification subsystem."""

    alert_id: str
    user_id: str
    signal_id: str
    channels: AlertChannels
    message: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize to flat string fields for Redis stream publishing."""
        return {
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "signal_id": self.signal_id,
            "telegram": "1" if self.channels.telegram else "0",
            "email": "1" if self.channels.email else "0",
            "message": self.message,
        }
