"""Safety constraints evaluated ahead of any economic logic.

A tripped constraint always becomes STOP_CHARGING; neither the learned
predictor nor the price rules can override it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from solar_autopilot.config.schema import SafetyConfig
from solar_autopilot.hardware.telemetry import SystemSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyViolation:
    """A tripped safety bound."""

    rule: str  # target_soc, grid_voltage
    reason: str


def check_safety(
    snapshot: SystemSnapshot,
    target_soc: float,
    config: SafetyConfig,
) -> list[SafetyViolation]:
    """Return every tripped safety bound, in evaluation order."""
    violations: list[SafetyViolation] = []

    if snapshot.battery_soc >= target_soc:
        violations.append(SafetyViolation(
            rule="target_soc",
            reason=f"Target SOC reached: {snapshot.battery_soc:g}% >= {target_soc:g}%",
        ))

    # 0 V is "no reading", not a collapsed grid
    voltage = snapshot.grid_voltage
    if voltage > 0 and not config.grid_voltage_min <= voltage <= config.grid_voltage_max:
        violations.append(SafetyViolation(
            rule="grid_voltage",
            reason=(
                f"Grid voltage constraint: {voltage:g}V outside "
                f"{config.grid_voltage_min:g}-{config.grid_voltage_max:g}V"
            ),
        ))

    for violation in violations:
        logger.warning("SAFETY: %s", violation.reason)
    return violations
