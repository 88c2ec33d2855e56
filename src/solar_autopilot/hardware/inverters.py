"""Inverter topology: the two supported command dialects."""

from __future__ import annotations

from dataclasses import dataclass

from solar_autopilot.config.schema import HardwareConfig


@dataclass(frozen=True)
class PriorityListInverter:
    """Inverter driven by charger/output source priority lists."""

    inverter_id: str
    battery_capacity_kwh: float | None = None


@dataclass(frozen=True)
class LegacyInverter:
    """Inverter driven by a grid-charge flag plus an energy pattern."""

    inverter_id: str
    battery_capacity_kwh: float | None = None


InverterProfile = PriorityListInverter | LegacyInverter

_KIND_TO_PROFILE: dict[str, type[PriorityListInverter] | type[LegacyInverter]] = {
    "priority_list": PriorityListInverter,
    "legacy": LegacyInverter,
}


def inverters_from_config(config: HardwareConfig) -> list[InverterProfile]:
    """Build inverter profiles in configuration order."""
    return [
        _KIND_TO_PROFILE[spec.type](
            inverter_id=inverter_id,
            battery_capacity_kwh=spec.battery_capacity_kwh,
        )
        for inverter_id, spec in config.inverters.items()
    ]
