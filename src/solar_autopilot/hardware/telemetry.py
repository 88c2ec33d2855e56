"""System telemetry snapshot consumed by the decision engine."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

_BATTERY_CAPACITY_KEY = re.compile(r"^battery_\d+_capacity_ah$")


def _as_float(value: Any) -> float:
    """Coerce a telemetry value to float; missing or garbage reads as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


@dataclass(frozen=True)
class SystemSnapshot:
    """Immutable view of the system taken at the start of a tick.

    A field of 0 means "no signal" rather than a measured zero wherever the
    distinction matters (grid voltage, battery voltage, capacity).
    """

    battery_soc: float = 0.0  # percent, 0-100
    pv_power: float = 0.0  # W
    load: float = 0.0  # W
    grid_power: float = 0.0  # W, positive = importing
    grid_voltage: float = 0.0  # V
    battery_voltage: float = 0.0  # V
    battery_capacity_ah: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pv_surplus(self) -> float:
        return self.pv_power - self.load

    @property
    def net_load(self) -> float:
        return self.load - self.pv_power

    @property
    def is_importing(self) -> bool:
        return self.grid_power > 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SystemSnapshot:
        """Build a snapshot from a loose key/value state dict.

        Numbered battery packs (``battery_1_capacity_ah``...) take precedence
        over the generic ``battery_capacity_ah``; the first positive pack wins.
        ``total_battery_voltage`` stands in when ``battery_voltage`` is absent.
        """
        capacity_ah = 0.0
        pack_keys = sorted(
            (key for key in data if _BATTERY_CAPACITY_KEY.match(key)),
            key=lambda k: int(k.split("_")[1]),
        )
        for key in pack_keys:
            value = _as_float(data[key])
            if value > 0:
                capacity_ah = value
                break
        if capacity_ah <= 0:
            capacity_ah = _as_float(data.get("battery_capacity_ah"))

        battery_voltage = _as_float(data.get("battery_voltage"))
        if battery_voltage <= 0:
            battery_voltage = _as_float(data.get("total_battery_voltage"))

        kwargs: dict[str, Any] = {}
        timestamp = data.get("timestamp")
        if isinstance(timestamp, datetime):
            kwargs["timestamp"] = timestamp

        return cls(
            battery_soc=min(max(_as_float(data.get("battery_soc")), 0.0), 100.0),
            pv_power=max(_as_float(data.get("pv_power")), 0.0),
            load=max(_as_float(data.get("load")), 0.0),
            grid_power=_as_float(data.get("grid_power")),
            grid_voltage=_as_float(data.get("grid_voltage")),
            battery_voltage=battery_voltage,
            battery_capacity_ah=max(capacity_ah, 0.0),
            **kwargs,
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "battery_soc": self.battery_soc,
            "pv_power": self.pv_power,
            "load": self.load,
            "grid_power": self.grid_power,
            "grid_voltage": self.grid_voltage,
            "battery_voltage": self.battery_voltage,
            "battery_capacity_ah": self.battery_capacity_ah,
        }
