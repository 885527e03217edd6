"""Alert emission sinks.

The dispatcher hands each new alert to an ``AlertSink``. Delivery over
Telegram or email happens downstream of the sink.
"""

from __future__ import annotations

import logging
from typing import Protocol

from redis.asyncio import Redis

from accumulation_tracker.alerter.models import AlertEmission

logger = logging.getLogger(__name__)

DEFAULT_STREAM_NAME = "accumulation:alerts"
DEFAULT_STREAM_MAXLEN = 10_000


class AlertSink(Protocol):
    async def emit(self, emission: AlertEmission) -> None:
        raise NotImplementedError


class RedisStreamAlertSink:
    """Publishes emissions to a capped Redis stream."""

    def __init__(
        self,
        redis: Redis,
        *,
        stream_name: str = DEFAULT_STREAM_NAME,
        maxlen: int = DEFAULT_STREAM_MAXLEN,
    ) -> None:
        self._redis = redis
        self._stream_name = stream_name
        self._maxlen = maxlen

    @property
    def stream_name(self) -> str:
        return self._stream_name

    async def emit(self, emission: AlertEmission) -> None:
        message_id = await self._redis.xadd(
            self._stream_name,
            emission.to_dict(),  # type: ignore[arg-type]
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(
            "Published alert %s to %s as %s",
            emission.alert_id,
            self._stream_name,
            message_id,
        )


class LoggingAlertSink:
    """Logs emissions instead of publishing them (dry runs)."""

    def __init__(self) -> None:
        self.emitted: list[AlertEmission] = []

    async def emit(self, emission: AlertEmission) -> None:
        self.emitted.append(emission)
        logger.info(
            "[dry-run] alert=%s user=%s signal=%s channels=%s",
            emission.alert_id,
            emission.user_id,
            emission.signal_id,
            emission.channels.to_dict(),
        )
