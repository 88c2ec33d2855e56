"""Decision model shared by the evaluator, dispatcher and hooks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from solar_autopilot.battery.profile import BatteryProfile
from solar_autopilot.battery.strategy import Strategy, StrategyProfile
from solar_autopilot.hardware.telemetry import SystemSnapshot
from solar_autopilot.tariff.analyzer import PriceThresholds
from solar_autopilot.tariff.base import PriceForecast


class Action(str, Enum):
    """One discrete charging action per tick."""

    CHARGE_GRID = "CHARGE_GRID"
    CHARGE_SOLAR = "CHARGE_SOLAR"
    STOP_CHARGING = "STOP_CHARGING"
    DISCHARGE = "DISCHARGE"
    EXPORT_SOLAR = "EXPORT_SOLAR"
    MONITOR = "MONITOR"
    IDLE = "IDLE"
    ERROR = "ERROR"


# Actions that translate into inverter commands
COMMAND_ACTIONS = frozenset({
    Action.CHARGE_GRID,
    Action.CHARGE_SOLAR,
    Action.STOP_CHARGING,
    Action.DISCHARGE,
})


@dataclass(frozen=True)
class Decision:
    """Outcome of one evaluation. Immutable once produced."""

    action: Action
    reasons: tuple[str, ...]
    timestamp: datetime
    strategy: Strategy | None = None
    source: str = "rules"  # rules, predictor, safety, engine

    @property
    def issues_commands(self) -> bool:
        return self.action in COMMAND_ACTIONS

    @property
    def summary(self) -> str:
        head = self.reasons[0] if self.reasons else ""
        return f"{self.action.value}: {head}" if head else self.action.value


@dataclass(frozen=True)
class DecisionInputs:
    """Everything one evaluation may look at, captured at tick start."""

    snapshot: SystemSnapshot
    forecast: PriceForecast | None
    profile: BatteryProfile
    now: datetime
    target_soc: float
    enabled: bool = True


@dataclass(frozen=True)
class DecisionContext:
    """Inputs plus the per-tick derivations every strategy shares."""

    inputs: DecisionInputs
    thresholds: PriceThresholds
    strategy: StrategyProfile

    @property
    def snapshot(self) -> SystemSnapshot:
        return self.inputs.snapshot

    def decision(self, action: Action, reasons: list[str], source: str = "rules") -> Decision:
        return Decision(
            action=action,
            reasons=tuple(reasons),
            timestamp=self.inputs.now,
            strategy=self.strategy.strategy,
            source=source,
        )
