"""Decision to inverter command translation and dispatch.

Each inverter dialect has its own builder producing the canonical command
value: an ordered tuple of (setting, value) pairs. A value equal to the last
one sent to that inverter is not re-sent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Sequence

from solar_autopilot.config.schema import AppConfig, SelfConsumptionConfig
from solar_autopilot.control.decision import Action, Decision
from solar_autopilot.hardware.base import CommandTransport, TransportError
from solar_autopilot.hardware.inverters import InverterProfile, LegacyInverter, PriorityListInverter
from solar_autopilot.hardware.telemetry import SystemSnapshot

logger = logging.getLogger(__name__)

CHARGER_PRIORITY = "charger_source_priority"
OUTPUT_PRIORITY = "output_source_priority"
GRID_CHARGE = "grid_charge"
ENERGY_PATTERN = "energy_pattern"

# Below this SOC a priority-list inverter keeps the battery last in line
LOW_SOC_OUTPUT_THRESHOLD = 30.0

# SOC bounds for the legacy energy pattern
SURPLUS_PATTERN_MAX_SOC = 90.0
HIGH_SOC_LOAD_FIRST = 70.0
DISCHARGE_PATTERN_MIN_SOC = 40.0

CommandValue = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class Command:
    """One setting published to one inverter."""

    inverter_id: str
    topic: str
    value: str
    success: bool
    issued_at: datetime


@dataclass(frozen=True)
class DispatchResult:
    commands: tuple[Command, ...]
    values: dict[str, CommandValue]  # last value per inverter after this pass
    skipped: tuple[str, ...] = ()  # inverters whose value was unchanged


def _output_priority(snapshot: SystemSnapshot, price_negative: bool, solar: SelfConsumptionConfig) -> str:
    if snapshot.pv_surplus > solar.solar_surplus_charge_w:
        return "Solar first"
    if price_negative:
        return "Utility first"
    if snapshot.battery_soc < LOW_SOC_OUTPUT_THRESHOLD:
        return "Solar/Utility/Battery"
    return "Solar/Battery/Utility"


def priority_list_command(
    action: Action,
    snapshot: SystemSnapshot,
    price_negative: bool,
    solar: SelfConsumptionConfig,
) -> CommandValue:
    if action == Action.CHARGE_GRID:
        return (
            (CHARGER_PRIORITY, "Solar and utility simultaneously"),
            (OUTPUT_PRIORITY, _output_priority(snapshot, price_negative, solar)),
        )
    if action == Action.CHARGE_SOLAR:
        return ((CHARGER_PRIORITY, "Solar only"), (OUTPUT_PRIORITY, "Solar first"))
    # STOP_CHARGING and DISCHARGE: no grid charging, battery ahead of utility
    return ((CHARGER_PRIORITY, "Solar first"), (OUTPUT_PRIORITY, "Solar/Battery/Utility"))


def _energy_pattern(action: Action, snapshot: SystemSnapshot, solar: SelfConsumptionConfig) -> str:
    soc = snapshot.battery_soc
    if snapshot.pv_surplus > solar.solar_surplus_charge_w and soc < SURPLUS_PATTERN_MAX_SOC:
        return "Battery first"
    if action == Action.CHARGE_GRID and soc < LOW_SOC_OUTPUT_THRESHOLD:
        return "Battery first"
    if soc > HIGH_SOC_LOAD_FIRST and snapshot.load > snapshot.pv_power:
        return "Load first"
    if action == Action.DISCHARGE and soc > DISCHARGE_PATTERN_MIN_SOC:
        return "Load first"
    return "Battery first"


def legacy_command(
    action: Action,
    snapshot: SystemSnapshot,
    price_negative: bool,
    solar: SelfConsumptionConfig,
) -> CommandValue:
    grid_charge = "Enabled" if action == Action.CHARGE_GRID else "Disabled"
    return ((GRID_CHARGE, grid_charge), (ENERGY_PATTERN, _energy_pattern(action, snapshot, solar)))


_BUILDERS: dict[type, Callable[[Action, SystemSnapshot, bool, SelfConsumptionConfig], CommandValue]] = {
    PriorityListInverter: priority_list_command,
    LegacyInverter: legacy_command,
}

# Solar priority, no grid charging
_SAFE_STATE: dict[type, CommandValue] = {
    PriorityListInverter: ((CHARGER_PRIORITY, "Solar first"), (OUTPUT_PRIORITY, "Solar/Battery/Utility")),
    LegacyInverter: ((GRID_CHARGE, "Disabled"), (ENERGY_PATTERN, "Battery first")),
}


def build_command_value(
    inverter: InverterProfile,
    action: Action,
    snapshot: SystemSnapshot,
    price_negative: bool,
    solar: SelfConsumptionConfig | None = None,
) -> CommandValue:
    """Canonical command value for one inverter, chosen by inverter type."""
    builder = _BUILDERS[type(inverter)]
    return builder(action, snapshot, price_negative, solar or SelfConsumptionConfig())


def safe_state_value(inverter: InverterProfile) -> CommandValue:
    return _SAFE_STATE[type(inverter)]


class CommandDispatcher:
    """Publishes per-inverter command values through the transport."""

    def __init__(self, transport: CommandTransport, config: AppConfig) -> None:
        self._transport = transport
        self._prefix = config.hardware.topic_prefix
        self._solar = config.self_consumption
        self._timeout = config.engine.publish_timeout_seconds
        self._strict_ordering = config.engine.strict_ordering

    def topic(self, inverter_id: str, setting: str) -> str:
        return f"{self._prefix}/{inverter_id}/{setting}/set"

    async def dispatch(
        self,
        decision: Decision,
        inverters: Sequence[InverterProfile],
        snapshot: SystemSnapshot,
        price_negative: bool,
        last_values: Mapping[str, CommandValue],
    ) -> DispatchResult:
        """Send the commands a decision implies, skipping unchanged inverters.

        Transport failures are recorded as unsuccessful commands; the last
        value is updated either way, so a failed value is not retried until
        the decision changes.
        """
        values = dict(last_values)
        if not decision.issues_commands:
            return DispatchResult(commands=(), values=values)

        pending: list[tuple[InverterProfile, CommandValue]] = []
        skipped: list[str] = []
        for inverter in inverters:
            value = build_command_value(inverter, decision.action, snapshot, price_negative, self._solar)
            if values.get(inverter.inverter_id) == value:
                skipped.append(inverter.inverter_id)
                continue
            pending.append((inverter, value))

        if skipped:
            logger.debug("Unchanged command for %s, not re-sending", ", ".join(skipped))

        commands = await self._send_all(pending, decision.timestamp)
        for inverter, value in pending:
            values[inverter.inverter_id] = value

        if pending:
            failed = sum(1 for c in commands if not c.success)
            log_fn = logger.warning if failed else logger.info
            log_fn(
                "Applied %s to %d inverter(s): %d command(s), %d failed",
                decision.action.value, len(pending), len(commands), failed,
            )
        return DispatchResult(commands=tuple(commands), values=values, skipped=tuple(skipped))

    async def apply_safe_state(
        self,
        inverters: Sequence[InverterProfile],
        now: datetime,
    ) -> DispatchResult:
        """Force every inverter to solar priority without grid charging."""
        pending = [(inverter, safe_state_value(inverter)) for inverter in inverters]
        commands = await self._send_all(pending, now)
        logger.info("Safe state sent to %d inverter(s)", len(pending))
        return DispatchResult(
            commands=tuple(commands),
            values={inverter.inverter_id: value for inverter, value in pending},
        )

    async def _send_all(
        self,
        pending: list[tuple[InverterProfile, CommandValue]],
        now: datetime,
    ) -> list[Command]:
        if self._strict_ordering:
            commands: list[Command] = []
            for inverter, value in pending:
                commands.extend(await self._send_inverter(inverter.inverter_id, value, now))
            return commands

        batches = await asyncio.gather(
            *(self._send_inverter(inverter.inverter_id, value, now) for inverter, value in pending)
        )
        return [command for batch in batches for command in batch]

    async def _send_inverter(self, inverter_id: str, value: CommandValue, now: datetime) -> list[Command]:
        """Publish one inverter's settings in order. Never raises."""
        commands = []
        for setting, setting_value in value:
            topic = self.topic(inverter_id, setting)
            success = True
            try:
                await asyncio.wait_for(self._transport.publish(topic, setting_value), timeout=self._timeout)
                logger.info("%s: %s = %s", inverter_id, setting, setting_value)
            except asyncio.TimeoutError:
                success = False
                logger.warning("Publish to %s timed out after %.1fs", topic, self._timeout)
            except TransportError as e:
                success = False
                logger.warning("Publish to %s failed: %s", topic, e)
            except Exception:
                success = False
                logger.exception("Unexpected error publishing to %s", topic)
            commands.append(Command(
                inverter_id=inverter_id,
                topic=topic,
                value=setting_value,
                success=success,
                issued_at=now,
            ))
        return commands
