"""MQTT subscriber for engine control commands."""

from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable

from solar_autopilot.config.manager import ConfigManager
from solar_autopilot.control.engine import ChargingEngine
from solar_autopilot.mqtt.topics import capacity_command_topic, engine_command_topic

logger = logging.getLogger(__name__)

_ENABLE = frozenset({"ON", "ENABLE", "START"})
_DISABLE = frozenset({"OFF", "DISABLE", "STOP"})


class EngineCommandSubscriber:
    """Routes command topics under the status prefix to the engine.

    ``{prefix}/engine/set`` takes ON/OFF. OFF runs the engine's stop path,
    which puts every inverter into the safe state.
    ``{prefix}/battery/capacity_kwh/set`` takes a capacity in kWh or "auto";
    the value is persisted to the user config when a manager is given.
    """

    def __init__(
        self,
        engine: ChargingEngine,
        status_prefix: str = "solar/autopilot",
        config_manager: ConfigManager | None = None,
    ) -> None:
        self._engine = engine
        self._config_manager = config_manager
        self._handlers: dict[str, Callable[[str], Awaitable[None]]] = {
            engine_command_topic(status_prefix): self._on_engine_command,
            capacity_command_topic(status_prefix): self._on_capacity_command,
        }

    @property
    def topics(self) -> list[str]:
        """All command topics to subscribe to."""
        return list(self._handlers.keys())

    async def handle_message(self, topic: str, payload: str) -> None:
        """Route an incoming MQTT message to the correct handler."""
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("Unhandled MQTT message: %s", topic)
            return
        logger.info("Engine command received: %s → %s", topic, payload)
        await handler(payload.strip())

    async def _on_engine_command(self, payload: str) -> None:
        command = payload.upper()
        if command in _ENABLE:
            await self._engine.start()
        elif command in _DISABLE:
            await self._engine.stop()
        else:
            logger.warning("Unknown engine command %r (expected ON or OFF)", payload)

    async def _on_capacity_command(self, payload: str) -> None:
        capacity: float | None = None
        if payload.lower() not in ("", "auto"):
            try:
                capacity = float(payload)
            except ValueError:
                logger.warning("Ignoring non-numeric battery capacity %r", payload)
                return
            if not math.isfinite(capacity) or capacity <= 0:
                logger.warning("Ignoring invalid battery capacity %r", payload)
                return

        profile = self._engine.set_manual_capacity(capacity)
        logger.info(
            "Battery profile now %.2f kWh (%s)", profile.capacity_kwh, profile.detection_method.value,
        )
        if self._config_manager is not None:
            self._config_manager.save_user_config({"battery": {"capacity_kwh": capacity}})
