"""Hour-of-day heuristic learner.

Keeps exponentially weighted averages of price, PV output and load for each
local hour. Once an hour has enough samples, it doubles as a predictor:
prices well below the learned daily mean recommend charging, prices well
above it recommend stopping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from solar_autopilot.config.schema import PredictorConfig
from solar_autopilot.learning.base import Outcome, Prediction, PredictorError, Recommendation

if TYPE_CHECKING:
    from solar_autopilot.control.decision import DecisionContext

logger = logging.getLogger(__name__)


@dataclass
class HourStats:
    price: float = 0.0
    pv_power: float = 0.0
    load: float = 0.0
    cost: float = 0.0
    samples: int = 0

    def update(self, outcome: Outcome, rate: float) -> None:
        if self.samples == 0:
            self.price = outcome.price
            self.pv_power = outcome.pv_power
            self.load = outcome.load
            self.cost = outcome.cost
        else:
            self.price += rate * (outcome.price - self.price)
            self.pv_power += rate * (outcome.pv_power - self.pv_power)
            self.load += rate * (outcome.load - self.load)
            self.cost += rate * (outcome.cost - self.cost)
        self.samples += 1

    @property
    def expected_surplus(self) -> float:
        return self.pv_power - self.load


class HeuristicLearner:
    """Per-hour EWMA learner and predictor."""

    def __init__(self, config: PredictorConfig) -> None:
        self._config = config
        self._tz = ZoneInfo(config.timezone)
        self._hours: dict[int, HourStats] = {}
        self._observed = 0

    @property
    def observed(self) -> int:
        return self._observed

    def stats(self, hour: int) -> HourStats | None:
        return self._hours.get(hour)

    def _local_hour(self, ts: datetime) -> int:
        return ts.astimezone(self._tz).hour

    async def observe(self, outcome: Outcome) -> None:
        hour = self._local_hour(outcome.timestamp)
        self._hours.setdefault(hour, HourStats()).update(outcome, self._config.learning_rate)
        self._observed += 1
        logger.debug(
            "Learned hour %02d: price=%.2f pv=%.0fW load=%.0fW (%d samples)",
            hour, self._hours[hour].price, self._hours[hour].pv_power,
            self._hours[hour].load, self._hours[hour].samples,
        )

    def daily_mean_price(self) -> float | None:
        mature = [s.price for s in self._hours.values() if s.samples >= self._config.min_samples]
        if not mature:
            return None
        return sum(mature) / len(mature)

    async def predict(self, context: DecisionContext) -> Prediction | None:
        try:
            hour = self._local_hour(context.inputs.now)
        except (ValueError, OverflowError) as e:
            raise PredictorError(f"Cannot localise tick time: {e}") from e

        stats = self._hours.get(hour)
        if stats is None or stats.samples < self._config.min_samples:
            return None

        mean = self.daily_mean_price()
        if not mean:
            return None

        price = context.thresholds.current_price
        deviation = (price - mean) / abs(mean)
        margin = self._config.price_margin
        maturity = min(1.0, stats.samples / (2 * self._config.min_samples))
        confidence = round(maturity * min(1.0, 0.5 + abs(deviation)), 3)

        if deviation <= -margin and stats.expected_surplus <= 0:
            return Prediction(
                Recommendation.CHARGE,
                confidence,
                f"price {price:.2f}¢ is {abs(deviation):.0%} below learned mean {mean:.2f}¢",
            )
        if deviation >= margin:
            return Prediction(
                Recommendation.STOP,
                confidence,
                f"price {price:.2f}¢ is {deviation:.0%} above learned mean {mean:.2f}¢",
            )
        return Prediction(Recommendation.HOLD, confidence)
