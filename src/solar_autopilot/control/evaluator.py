"""Decision evaluator: one charging decision per tick.

Priority order (first match wins):
1. Engine disabled / no usable forecast -> IDLE
2. Safety -> STOP_CHARGING (never bypassed)
3. Economic rules -> CHARGE_GRID / DISCHARGE
4. Self-consumption -> CHARGE_SOLAR / EXPORT_SOLAR / MONITOR
5. Default -> MONITOR

A configured predictor is consulted last. A confident recommendation may
replace a CHARGE_GRID, STOP_CHARGING or MONITOR outcome; DISCHARGE and the
solar actions always stand.

Each tick re-derives the decision from its inputs alone; nothing carries
over between ticks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from solar_autopilot.battery.strategy import select_strategy
from solar_autopilot.config.schema import AppConfig
from solar_autopilot.control.decision import Action, Decision, DecisionContext, DecisionInputs
from solar_autopilot.control.safety import check_safety
from solar_autopilot.learning.base import ChargingPredictor, Recommendation
from solar_autopilot.tariff.analyzer import InsufficientPriceData, analyse_forecast

logger = logging.getLogger(__name__)


@runtime_checkable
class DecisionStrategy(Protocol):
    """One way of turning a decision context into a Decision.

    Returning None means "no opinion", handing over to the next strategy.
    """

    async def predict(self, context: DecisionContext) -> Decision | None:
        ...


class RuleBasedStrategy:
    """Deterministic price and self-consumption rules."""

    def __init__(self, config: AppConfig) -> None:
        self._safety = config.safety
        self._solar = config.self_consumption

    async def predict(self, context: DecisionContext) -> Decision | None:
        return self.decide(context)

    def decide(self, context: DecisionContext) -> Decision:
        t = context.thresholds
        snap = context.snapshot
        profile = context.strategy
        target_soc = context.inputs.target_soc

        # Negative prices pay to charge, whatever the strategy
        if t.is_negative:
            return context.decision(Action.CHARGE_GRID, [
                f"Negative price arbitrage: {t.current_price:.2f}¢/kWh",
                f"Strategy: {profile.strategy.value}",
            ])

        if profile.uses_price_thresholds:
            if t.is_charge_price:
                return context.decision(Action.CHARGE_GRID, [
                    f"Dynamic optimal price: {t.current_price:.2f}¢/kWh <= "
                    f"{t.charge_threshold:.2f}¢/kWh (cheapest {t.charge_percentile:.0%} "
                    f"of {t.sample_size} forecast hours)",
                    f"Strategy: {profile.strategy.value} ({profile.description})",
                ])
            if (
                t.is_discharge_price
                and snap.net_load > 0
                and snap.battery_soc > self._safety.discharge_min_soc
            ):
                return context.decision(Action.DISCHARGE, [
                    f"Peak arbitrage: {t.current_price:.2f}¢/kWh >= "
                    f"{t.discharge_threshold:.2f}¢/kWh",
                    f"Net load {snap.net_load:.0f}W, SOC {snap.battery_soc:g}%",
                ])

        surplus = snap.pv_surplus
        if surplus > self._solar.solar_surplus_charge_w and snap.battery_soc < self._solar.solar_charge_max_soc:
            return context.decision(Action.CHARGE_SOLAR, [
                f"Solar surplus {surplus:.0f}W > {self._solar.solar_surplus_charge_w:.0f}W, "
                f"SOC {snap.battery_soc:g}%",
            ])

        if snap.battery_soc >= target_soc and surplus > 0:
            return context.decision(Action.EXPORT_SOLAR, [
                f"Battery full ({snap.battery_soc:g}%), exporting {surplus:.0f}W surplus",
            ])

        if snap.pv_power > self._solar.solar_active_w:
            return context.decision(Action.MONITOR, [
                f"Solar active: {snap.pv_power:.0f}W PV, {snap.load:.0f}W load",
            ])

        return context.decision(Action.MONITOR, [
            f"Nothing actionable at {t.current_price:.2f}¢/kWh "
            f"(charge <= {t.charge_threshold:.2f}, discharge >= {t.discharge_threshold:.2f})",
        ])


_RECOMMENDATION_TO_ACTION = {
    Recommendation.CHARGE: Action.CHARGE_GRID,
    Recommendation.STOP: Action.STOP_CHARGING,
}

# Rule outcomes a predictor recommendation may replace
PREDICTOR_OVERRIDABLE = frozenset({Action.CHARGE_GRID, Action.STOP_CHARGING, Action.MONITOR})


class PredictorStrategy:
    """Adapts a learned ChargingPredictor to the DecisionStrategy protocol.

    Only confident CHARGE/STOP recommendations become decisions.
    """

    def __init__(self, predictor: ChargingPredictor, min_confidence: float = 0.7) -> None:
        self._predictor = predictor
        self._min_confidence = min_confidence

    async def predict(self, context: DecisionContext) -> Decision | None:
        prediction = await self._predictor.predict(context)
        if prediction is None:
            return None
        action = _RECOMMENDATION_TO_ACTION.get(prediction.recommendation)
        if action is None or prediction.confidence < self._min_confidence:
            return None
        reason = f"Predictor recommends {prediction.recommendation.value} ({prediction.confidence:.0%} confidence)"
        reasons = [reason, prediction.reason] if prediction.reason else [reason]
        return context.decision(action, reasons, source="predictor")


class DecisionEvaluator:
    """Combines forecast, safety, predictor and rules into one Decision."""

    def __init__(
        self,
        config: AppConfig,
        primary: DecisionStrategy | None = None,
        fallback: DecisionStrategy | None = None,
    ) -> None:
        self._config = config
        self._primary = primary
        self._fallback = fallback or RuleBasedStrategy(config)

    @property
    def has_predictor(self) -> bool:
        return self._primary is not None

    async def evaluate(self, inputs: DecisionInputs) -> Decision:
        """Evaluate one tick. Never raises; failures become ERROR decisions."""
        try:
            return await self._evaluate(inputs)
        except Exception as e:
            logger.exception("Decision evaluation failed")
            return Decision(
                action=Action.ERROR,
                reasons=(str(e) or type(e).__name__,),
                timestamp=inputs.now,
                source="engine",
            )

    async def _evaluate(self, inputs: DecisionInputs) -> Decision:
        if not inputs.enabled:
            return Decision(Action.IDLE, ("Engine disabled",), inputs.now, source="engine")

        if inputs.forecast is None:
            return Decision(Action.IDLE, ("No pricing data available",), inputs.now, source="engine")

        strategy = select_strategy(inputs.profile.capacity_kwh)
        analysis = self._config.analysis
        try:
            thresholds = analyse_forecast(
                inputs.forecast,
                inputs.now,
                charge_percentile=analysis.charge_percentile,
                discharge_percentile=analysis.discharge_percentile,
                horizon_points=analysis.horizon_points,
                min_points=analysis.min_points,
            )
        except InsufficientPriceData as e:
            logger.warning("Price analysis unavailable: %s", e)
            return Decision(Action.IDLE, (str(e),), inputs.now, strategy=strategy.strategy, source="engine")

        violations = check_safety(inputs.snapshot, inputs.target_soc, self._config.safety)
        if violations:
            return Decision(
                action=Action.STOP_CHARGING,
                reasons=tuple(v.reason for v in violations),
                timestamp=inputs.now,
                strategy=strategy.strategy,
                source="safety",
            )

        context = DecisionContext(inputs=inputs, thresholds=thresholds, strategy=strategy)

        decision = await self._fallback.predict(context)
        if decision is None:
            decision = context.decision(Action.MONITOR, ["Nothing actionable"])

        if self._primary is not None and decision.action in PREDICTOR_OVERRIDABLE:
            predicted = await self._consult_primary(context)
            if predicted is not None:
                return predicted
        return decision

    async def _consult_primary(self, context: DecisionContext) -> Decision | None:
        timeout = self._config.engine.predictor_timeout_seconds
        try:
            decision = await asyncio.wait_for(self._primary.predict(context), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Predictor timed out after %.1fs, falling back to rules", timeout)
            return None
        except Exception as e:
            logger.warning("Predictor failed, falling back to rules: %s", e)
            return None

        if decision is not None and decision.action not in _RECOMMENDATION_TO_ACTION.values():
            logger.warning("Predictor returned %s, only CHARGE/STOP are accepted", decision.action.value)
            return None
        return decision
