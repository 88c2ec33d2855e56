"""Live system state assembled from inverter MQTT state topics."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from solar_autopilot.hardware.telemetry import SystemSnapshot

logger = logging.getLogger(__name__)

_BATTERY_PACK_CAPACITY = re.compile(r"battery_(\d+)/capacity/state$")

# (topic fragment, state key); first match wins
_TOPIC_FIELDS: tuple[tuple[str, str], ...] = (
    ("total/battery_state_of_charge", "battery_soc"),
    ("total/pv_power", "pv_power"),
    ("total/load_power", "load"),
    ("total/grid_voltage", "grid_voltage"),
    ("total/grid_power", "grid_power"),
    ("total/battery_power", "battery_power"),
    ("total/bus_voltage", "total_battery_voltage"),
    ("battery_voltage/state", "battery_voltage"),
)


class TelemetryCollector:
    """TelemetrySource fed by MQTT state messages.

    Readings accumulate as they arrive; get_snapshot() freezes whatever is
    known at that moment. Unknown or missing readings read as 0.
    """

    def __init__(self, topic_prefix: str = "solar") -> None:
        self._prefix = topic_prefix
        self._state: dict[str, Any] = {}
        self._last_update: datetime | None = None

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    async def handle_message(self, topic: str, payload: str) -> None:
        """Record one state message; non-numeric payloads are ignored."""
        if topic.endswith("/set"):
            return
        key = self._key_for(topic)
        if key is None:
            return
        try:
            value = float(payload)
        except ValueError:
            logger.debug("Ignoring non-numeric payload on %s: %r", topic, payload)
            return
        self._state[key] = value
        self._last_update = datetime.now(timezone.utc)

    def _key_for(self, topic: str) -> str | None:
        match = _BATTERY_PACK_CAPACITY.search(topic)
        if match:
            return f"battery_{match.group(1)}_capacity_ah"
        for fragment, key in _TOPIC_FIELDS:
            if fragment in topic:
                return key
        return None

    async def get_snapshot(self) -> SystemSnapshot:
        data = dict(self._state)
        if self._last_update is not None:
            data["timestamp"] = self._last_update
        return SystemSnapshot.from_mapping(data)
