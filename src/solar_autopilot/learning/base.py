"""Outcome learning and prediction interfaces.

Learning is optional: the evaluator runs the deterministic rules when no
predictor is configured, and the engine feeds outcomes to a NoOpLearner.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from solar_autopilot.hardware.telemetry import SystemSnapshot

if TYPE_CHECKING:
    from solar_autopilot.control.decision import DecisionContext


class PredictorError(Exception):
    """The learned predictor could not produce a recommendation."""


class Recommendation(str, Enum):
    CHARGE = "CHARGE"
    STOP = "STOP"
    HOLD = "HOLD"  # no opinion; rules decide


@dataclass(frozen=True)
class Prediction:
    recommendation: Recommendation
    confidence: float  # 0-1
    reason: str = ""


def compute_cost(grid_power_w: float, price_cents: float) -> float:
    """Cost of the current grid draw for one hour, in currency units.

    Exporting (negative grid power) is treated as zero cost.
    """
    if grid_power_w <= 0:
        return 0.0
    return grid_power_w / 1000 * price_cents / 100


@dataclass(frozen=True)
class Outcome:
    """What actually happened during a tick."""

    timestamp: datetime
    pv_power: float
    load: float
    grid_power: float
    price: float  # cents/kWh
    cost: float

    @classmethod
    def from_snapshot(cls, snapshot: SystemSnapshot, price: float, timestamp: datetime) -> Outcome:
        return cls(
            timestamp=timestamp,
            pv_power=snapshot.pv_power,
            load=snapshot.load,
            grid_power=snapshot.grid_power,
            price=price,
            cost=compute_cost(snapshot.grid_power, price),
        )


@runtime_checkable
class OutcomeLearner(Protocol):
    async def observe(self, outcome: Outcome) -> None:
        ...


@runtime_checkable
class ChargingPredictor(Protocol):
    async def predict(self, context: DecisionContext) -> Prediction | None:
        """Recommend CHARGE/STOP for this tick, or None for no opinion.

        Raises:
            PredictorError: on any failure; the caller falls back to rules.
        """
        ...


class NoOpLearner:
    """Learner that ignores every outcome."""

    async def observe(self, outcome: Outcome) -> None:
        return None
