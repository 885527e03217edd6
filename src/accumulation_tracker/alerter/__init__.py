"""Alerting layer - Subscriber alerts for qualifying accumulation signals."""

from accumulation_tracker.alerter.formatter import format_alert_message, truncate_address
from accumulation_tracker.alerter.models import (
    Alert,
    AlertChannels,
    AlertEmission,
    AlertStatus,
    Subscriber,
    SubscriptionPlan,
)
from accumulation_tracker.alerter.sinks import AlertSink, LoggingAlertSink, RedisStreamAlertSink

__all__ = [
    "Alert",
    "AlertChannels",
    "AlertEmission",
    "AlertSink",
    "AlertStatus",
    "LoggingAlertSink",
    "RedisStreamAlertSink",
    "Subscriber",
    "SubscriptionPlan",
    "format_alert_message",
    "truncate_address",
]
