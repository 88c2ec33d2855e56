"""Battery capacity detection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from solar_autopilot.config.schema import BatteryConfig
from solar_autopilot.hardware.inverters import InverterProfile
from solar_autopilot.hardware.telemetry import SystemSnapshot

logger = logging.getLogger(__name__)

TELEMETRY_CONFIDENCE = 0.98
INVERTER_SPEC_CONFIDENCE = 0.95
PV_ESTIMATE_CONFIDENCE = 0.30
PV_ESTIMATE_KWH_PER_KW = 1.5


class DetectionMethod(str, Enum):
    MANUAL = "manual"
    MQTT_BATTERY_DATA = "mqtt_battery_data"
    INVERTER_SPECS = "inverter_specs"
    PV_ESTIMATE = "pv_estimate"
    DEFAULT = "default"


@dataclass(frozen=True)
class BatteryProfile:
    capacity_kwh: float
    detection_method: DetectionMethod
    confidence: float

    def __post_init__(self) -> None:
        if self.capacity_kwh <= 0:
            raise ValueError(f"Battery capacity must be positive, got {self.capacity_kwh}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")


class BatteryProfileDetector:
    """Resolves battery capacity from the best available signal.

    Sources, most to least reliable: telemetry Ah x V, per-inverter spec,
    PV array size. A manual capacity beats all of them.
    """

    def __init__(
        self,
        config: BatteryConfig,
        inverters: Sequence[InverterProfile] = (),
    ) -> None:
        self._config = config
        self._inverters: list[InverterProfile] = list(inverters)
        self._manual_kwh: float | None = config.capacity_kwh

    @property
    def manual_override(self) -> float | None:
        return self._manual_kwh

    def set_manual_capacity(self, capacity_kwh: float | None) -> None:
        """Pin the capacity (None returns to auto-detection)."""
        if capacity_kwh is not None and capacity_kwh <= 0:
            raise ValueError(f"Battery capacity must be positive, got {capacity_kwh}")
        self._manual_kwh = capacity_kwh
        logger.info(
            "Battery capacity %s",
            f"pinned to {capacity_kwh:g} kWh" if capacity_kwh is not None else "returned to auto-detection",
        )

    def update_inverters(self, inverters: Sequence[InverterProfile]) -> None:
        self._inverters = list(inverters)

    def initial_profile(self) -> BatteryProfile:
        if self._manual_kwh is not None:
            return BatteryProfile(self._manual_kwh, DetectionMethod.MANUAL, 1.0)
        return BatteryProfile(self._config.default_capacity_kwh, DetectionMethod.DEFAULT, 0.0)

    def refresh(self, snapshot: SystemSnapshot, previous: BatteryProfile) -> BatteryProfile:
        """Re-derive the profile for this tick.

        Never raises: when nothing can be detected (or detection blows up)
        the previous profile is kept.
        """
        if self._manual_kwh is not None:
            return BatteryProfile(self._manual_kwh, DetectionMethod.MANUAL, 1.0)

        try:
            detected = self.detect(snapshot)
        except Exception:
            logger.exception("Battery detection failed, keeping %.1f kWh", previous.capacity_kwh)
            return previous

        if detected is None:
            return previous
        if detected != previous:
            logger.info(
                "Battery capacity detected: %.2f kWh (%s, %.0f%% confidence)",
                detected.capacity_kwh, detected.detection_method.value, detected.confidence * 100,
            )
        return detected

    def detect(self, snapshot: SystemSnapshot) -> BatteryProfile | None:
        """Try each source in priority order; first success wins."""
        sources: list[Callable[[SystemSnapshot], BatteryProfile | None]] = [
            self._from_telemetry,
            self._from_inverter_specs,
            self._from_pv_estimate,
        ]
        for source in sources:
            profile = source(snapshot)
            if profile is not None:
                return profile
        return None

    def _from_telemetry(self, snapshot: SystemSnapshot) -> BatteryProfile | None:
        if snapshot.battery_capacity_ah <= 0:
            return None
        voltage = snapshot.battery_voltage if snapshot.battery_voltage > 0 else self._config.nominal_voltage
        capacity = round(snapshot.battery_capacity_ah * voltage / 1000, 2)
        if capacity <= 0:
            return None
        return BatteryProfile(capacity, DetectionMethod.MQTT_BATTERY_DATA, TELEMETRY_CONFIDENCE)

    def _from_inverter_specs(self, snapshot: SystemSnapshot) -> BatteryProfile | None:
        for inverter in self._inverters:
            if inverter.battery_capacity_kwh:
                return BatteryProfile(
                    inverter.battery_capacity_kwh,
                    DetectionMethod.INVERTER_SPECS,
                    INVERTER_SPEC_CONFIDENCE,
                )
        return None

    def _from_pv_estimate(self, snapshot: SystemSnapshot) -> BatteryProfile | None:
        # Half-up rounding: 3 kW of PV estimates 5 kWh, not 4
        estimate = math.floor(snapshot.pv_power / 1000 * PV_ESTIMATE_KWH_PER_KW + 0.5)
        if estimate <= 0:
            return None
        return BatteryProfile(float(estimate), DetectionMethod.PV_ESTIMATE, PV_ESTIMATE_CONFIDENCE)
