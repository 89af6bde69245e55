"""Fire-and-forget deployment telemetry.

Events are POSTed as JSON to a configured webhook. Delivery is best effort:
failures are logged and dropped, nothing is retried and nothing reaches the
caller.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import aiohttp
from pydantic import BaseModel, field_validator

from .configuration.models import MetricsConfig
from .constants import MetricsDefaults
from .error_handling import TelemetryError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MetricEvent:
    event_type: str
    app_name: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    vps_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "event_type": self.event_type,
            "timestamp": self.timestamp.astimezone(timezone.utc).strftime(MetricsDefaults.TIMESTAMP_FORMAT),
            "app_name": self.app_name,
            "data": self.data,
        }
        if self.vps_id:
            payload["vps_id"] = self.vps_id
        return payload


class TrackMetricRequest(BaseModel):
    """Body of ``POST /metrics/track``."""

    event_type: str = ""
    app_name: str = ""
    data: Optional[Dict[str, Any]] = None

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return value if value is not None else {}


class MetricsSink:
    """Asynchronous, best-effort telemetry emitter.

    Args:
        config: Returns the current metrics configuration, or None when
            telemetry is disabled
        session: Shared aiohttp session; a short-lived one is opened per
            event when omitted
        timeout: Total timeout of one delivery in seconds
    """

    def __init__(
        self,
        config: Callable[[], Optional[MetricsConfig]],
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = MetricsDefaults.TIMEOUT_SECONDS,
    ):
        self._config = config
        self.session = session
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, event_type: str, app_name: str, data: Optional[Dict[str, Any]] = None) -> Optional[asyncio.Task]:
        """Schedule delivery of one event and return immediately.

        Returns the delivery task, or None when telemetry is disabled or no
        event loop is running.
        """
        config = self._config()
        if config is None or not config.enabled:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping metric {event_type}")
            return None

        event = MetricEvent(
            event_type=event_type,
            app_name=app_name,
            data=dict(data or {}),
            vps_id=config.vps_id,
        )
        task = loop.create_task(self.send(event, config.webhook_url))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, event: MetricEvent, url: str) -> bool:
        """Deliver one event; returns False instead of raising on failure."""
        try:
            await self._post(url, event.to_payload())
        except TelemetryError as e:
            logger.warning(f"⚠️  Failed to send metrics: {e}")
            return False
        return True

    async def _post(self, url: str, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, default=str)
        headers = {"Content-Type": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self.session is not None:
                await self._deliver(self.session, url, body, headers, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    await self._deliver(session, url, body, headers, timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TelemetryError(f"{type(e).__name__}: {e}") from e

    @staticmethod
    async def _deliver(session, url, body, headers, timeout) -> None:
        async with session.post(url, data=body, headers=headers, timeout=timeout) as response:
            if response.status < 200 or response.status >= 300:
                text = await response.text()
                raise TelemetryError(f"Metrics webhook returned error (status {response.status}): {text}")

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
