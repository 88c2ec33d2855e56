"""Publishes decisions and engine status to MQTT."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Coroutine

from solar_autopilot.control.engine import EngineStatus
from solar_autopilot.control.hooks import TickResult
from solar_autopilot.mqtt.topics import build_status_topics

logger = logging.getLogger(__name__)

# Type for async publish function: (topic, payload, retain) -> None
PublishFn = Callable[[str, str, bool], Coroutine[Any, Any, None]]


class DecisionPublisher:
    """Post-tick hook mirroring each decision onto status topics."""

    def __init__(
        self,
        publish_fn: PublishFn,
        status_prefix: str = "solar/autopilot",
        status_fn: Callable[[], EngineStatus] | None = None,
    ) -> None:
        self._publish = publish_fn
        self._topics = build_status_topics(status_prefix)
        self._status_fn = status_fn

    async def after_tick(self, result: TickResult) -> None:
        decision = result.decision
        payload = {
            "tick": result.tick,
            "action": decision.action.value,
            "reasons": list(decision.reasons),
            "strategy": decision.strategy.value if decision.strategy else None,
            "source": decision.source,
            "timestamp": decision.timestamp.isoformat(),
            "commands": len(result.commands),
        }
        await self._publish(self._topics["decision"], json.dumps(payload), True)
        await self._publish(self._topics["action"], decision.action.value, True)
        await self._publish(self._topics["reasons"], json.dumps(list(decision.reasons)), False)
        if result.current_price is not None:
            await self._publish(self._topics["price_current"], f"{result.current_price:.2f}", True)
        if self._status_fn is not None:
            await self.publish_engine_status(self._status_fn())

    async def publish_status(self, online: bool = True) -> None:
        """Publish engine online/offline status."""
        await self._publish(self._topics["status"], "online" if online else "offline", True)

    async def publish_engine_status(self, status: EngineStatus) -> None:
        await self._publish(self._topics["strategy"], status.strategy.strategy.value, True)
        await self._publish(
            self._topics["battery_capacity"], f"{status.battery_profile.capacity_kwh:.2f}", True,
        )
