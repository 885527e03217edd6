"""Alert dispatcher.

Creates PENDING alert records for subscribers whose plan and personal
threshold qualify a newly persisted signal, emits them to the configured
sink, and owns the PENDING -> DELIVERED / FAILED transitions.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from accumulation_tracker.alerter.formatter import format_alert_message
from accumulation_tracker.alerter.models import Alert, AlertEmission, AlertStatus
from accumulation_tracker.alerter.sinks import AlertSink
from accumulation_tracker.detector.models import AccumulationSignal
from accumulation_tracker.errors import AlertStateError, ConflictError
from accumulation_tracker.ingestor.models import Token
from accumulation_tracker.storage.repos import (
    AlertRepository,
    SignalRepository,
    TokenRepository,
    UserRepository,
)

if TYPE_CHECKING:
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_SCORE = Decimal("75")
DEFAULT_ELIGIBLE_PLANS = ("PRO",)
DEFAULT_BATCH_SIZE = 100


class AlertDispatcher:
    """Turns qualifying signals into per-subscriber alerts."""

    def __init__(
        self,
        db: DatabaseManager,
        sink: AlertSink,
        *,
        min_score: Decimal | float = DEFAULT_MIN_SCORE,
        eligible_plans: Sequence[str] = DEFAULT_ELIGIBLE_PLANS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._db = db
        self._sink = sink
        self._min_score = Decimal(str(min_score))
        self._eligible_plans = tuple(p.upper() for p in eligible_plans)
        self._batch_size = batch_size

    @property
    def min_score(self) -> Decimal:
        return self._min_score

    async def _emit(self, alert: Alert, message: str) -> bool:
        emission = AlertEmission(
            alert_id=alert.id,
            user_id=alert.user_id,
            signal_id=alert.signal_id,
            channels=alert.channels,
            message=message,
        )
        try:
            await self._sink.emit(emission)
        except Exception as e:
            logger.warning("Failed to emit alert %s (left PENDING): %s", alert.id, e)
            return False
        return True

    async def create_alerts_for_signal(self, signal: AccumulationSignal, token: Token) -> list[Alert]:
        """Create and emit alerts for every eligible subscriber.

        Subscribers who already have an alert for this signal are skipped, so
        calling this twice for the same signal creates nothing new.

        Returns:
            Alerts created by this call.
        """
        if signal.score < self._min_score:
            logger.debug("Signal %s below alert floor (%s < %s)", signal.id, signal.score, self._min_score)
            return []

        created: list[Alert] = []
        async with self._db.get_async_session() as session:
            subscribers = await UserRepository(session).list_eligible(
                plans=self._eligible_plans,
                score=signal.score,
            )
            alerts = AlertRepository(session)
            alerted = {a.user_id for a in await alerts.list_for_signal(signal.id)} if subscribers else set()
            for subscriber in subscribers:
                if subscriber.id in alerted:
                    continue
                if not subscriber.channels.any_enabled:
                    logger.debug("Subscriber %s has no alert channels enabled", subscriber.id)
                    continue
                alert = Alert.pending(user_id=subscriber.id, signal_id=signal.id, channels=subscriber.channels)
                if await alerts.insert_if_absent(alert):
                    created.append(alert)

        if not created:
            logger.debug("No new alerts for signal %s", signal.id)
            return []

        message = format_alert_message(signal, token)
        for alert in created:
            await self._emit(alert, message)

        logger.info("Created %d alerts for signal %s (token %s)", len(created), signal.id, token.id)
        return created

    async def _transition(self, alert_id: str, status: AlertStatus, *, at: datetime | None = None) -> Alert:
        async with self._db.get_async_session() as session:
            repo = AlertRepository(session)
            alert = await repo.get(alert_id)
            if alert is None:
                raise AlertStateError(f"Alert {alert_id} does not exist")
            updated = alert.transition(status, at=at)
            try:
                await repo.save_status(updated)
            except ConflictError as e:
                raise AlertStateError(str(e)) from e
        logger.info("Alert %s marked %s", alert_id, status.value)
        return updated

    async def mark_delivered(self, alert_id: str, *, at: datetime | None = None) -> Alert:
        """Move a PENDING alert to DELIVERED.

        Raises:
            AlertStateError: If the alert is missing or already terminal.
        """
        return await self._transition(alert_id, AlertStatus.DELIVERED, at=at)

    async def mark_failed(self, alert_id: str) -> Alert:
        """Move a PENDING alert to FAILED.

        Raises:
            AlertStateError: If the alert is missing or already terminal.
        """
        return await self._transition(alert_id, AlertStatus.FAILED)

    async def process_pending(self, batch_size: int | None = None) -> int:
        """Re-emit every PENDING alert, one batch at a time.

        Returns:
            Number of alerts emitted successfully.
        """
        size = batch_size or self._batch_size
        emitted = 0
        after_id: str | None = None
        messages: dict[str, str] = {}

        while True:
            async with self._db.get_async_session() as session:
                batch = await AlertRepository(session).list_pending(limit=size, after_id=after_id)
                signal_ids = {a.signal_id for a in batch} - set(messages)
                signals = SignalRepository(session)
                tokens = TokenRepository(session)
                for signal_id in signal_ids:
                    signal = await signals.get(signal_id)
                    if signal is None:
                        logger.warning("Pending alerts reference missing signal %s", signal_id)
                        continue
                    token = await tokens.get(signal.token_id)
                    if token is None:
                        logger.warning("Signal %s references missing token %s", signal_id, signal.token_id)
                        continue
                    messages[signal_id] = format_alert_message(signal, token)

            if not batch:
                break

            logger.info("Processing %d pending alerts", len(batch))
            for alert in batch:
                message = messages.get(alert.signal_id)
                if message is None:
                    continue
                if await self._emit(alert, message):
                    emitted += 1

            after_id = batch[-1].id
            if len(batch) < size:
                break

        logger.info("Pending alerts processing completed: emitted=%d", emitted)
        return emitted
