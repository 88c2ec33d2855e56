"""Async charging engine: a 5-minute tick producing one decision per cycle."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from solar_autopilot.battery.profile import BatteryProfile, BatteryProfileDetector, DetectionMethod
from solar_autopilot.battery.strategy import StrategyProfile, select_strategy
from solar_autopilot.config.schema import AppConfig
from solar_autopilot.control.decision import Action, Decision, DecisionInputs
from solar_autopilot.control.dispatcher import CommandDispatcher, CommandValue
from solar_autopilot.control.evaluator import DecisionEvaluator
from solar_autopilot.control.hooks import TickHook, TickResult
from solar_autopilot.hardware.base import CommandTransport, TelemetrySource
from solar_autopilot.hardware.inverters import InverterProfile, inverters_from_config
from solar_autopilot.hardware.telemetry import SystemSnapshot
from solar_autopilot.logging.context import tick_context
from solar_autopilot.tariff.base import PriceForecast, PriceForecastProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EngineState:
    """Mutable engine state. Only the engine writes to it."""

    enabled: bool
    battery_profile: BatteryProfile
    last_decision: Decision | None = None
    last_command_values: dict[str, CommandValue] = field(default_factory=dict)
    last_snapshot: SystemSnapshot | None = None
    tick_count: int = 0
    last_tick_at: datetime | None = None
    is_running: bool = False
    safe_state_sent: bool = False


@dataclass(frozen=True)
class EngineStatus:
    """Consistent point-in-time copy of the engine state."""

    enabled: bool
    is_running: bool
    tick_count: int
    last_tick_at: datetime | None
    last_decision: Decision | None
    battery_profile: BatteryProfile
    strategy: StrategyProfile
    last_command_values: dict[str, CommandValue]
    inverter_count: int
    has_predictor: bool


class ChargingEngine:
    """Periodic charging decision loop.

    Every tick (default 5 minutes):
    1. Snapshot telemetry and fetch the price forecast
    2. Re-detect the battery profile
    3. Evaluate the decision
    4. Dispatch changed inverter commands
    5. Run post-tick hooks (audit, learner, publisher)
    """

    def __init__(
        self,
        config: AppConfig,
        telemetry: TelemetrySource,
        provider: PriceForecastProvider,
        transport: CommandTransport,
        evaluator: DecisionEvaluator | None = None,
        detector: BatteryProfileDetector | None = None,
        hooks: Sequence[TickHook] = (),
        inverters: Sequence[InverterProfile] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._telemetry = telemetry
        self._provider = provider
        self._inverters: list[InverterProfile] = (
            list(inverters) if inverters is not None else inverters_from_config(config.hardware)
        )
        self._evaluator = evaluator or DecisionEvaluator(config)
        self._detector = detector or BatteryProfileDetector(config.battery, self._inverters)
        self._dispatcher = CommandDispatcher(transport, config)
        self._hooks: list[TickHook] = list(hooks)
        self._clock = clock or _utcnow

        self._state = EngineState(
            enabled=config.engine.enabled,
            battery_profile=self._detector.initial_profile(),
        )
        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def inverters(self) -> list[InverterProfile]:
        return list(self._inverters)

    def add_hook(self, hook: TickHook) -> None:
        self._hooks.append(hook)

    def status(self) -> EngineStatus:
        s = self._state
        return EngineStatus(
            enabled=s.enabled,
            is_running=s.is_running,
            tick_count=s.tick_count,
            last_tick_at=s.last_tick_at,
            last_decision=s.last_decision,
            battery_profile=s.battery_profile,
            strategy=select_strategy(s.battery_profile.capacity_kwh),
            last_command_values=dict(s.last_command_values),
            inverter_count=len(self._inverters),
            has_predictor=self._evaluator.has_predictor,
        )

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Enable the engine and start the timer (no-op if already running)."""
        self._state.enabled = True
        self._state.safe_state_sent = False
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="charging-engine")
        logger.info("Charging engine started")

    async def stop(self) -> TickResult | None:
        """Disable the engine, cancel the timer and send one safe-state pass.

        Repeated calls send nothing further until the engine is started again.
        """
        self._state.enabled = False
        await self._cancel_timer()
        if self._state.safe_state_sent:
            return None
        self._state.safe_state_sent = True

        async with self._tick_lock:
            now = self._clock()
            result = await self._dispatcher.apply_safe_state(self._inverters, now)
            self._state.last_command_values.update(result.values)
            decision = Decision(
                action=Action.STOP_CHARGING,
                reasons=("Engine stopped: inverters set to solar priority, grid charging off",),
                timestamp=now,
                source="engine",
            )
            self._state.last_decision = decision
            tick_result = TickResult(tick=self._state.tick_count, decision=decision, commands=result.commands)
            await self._run_hooks(tick_result)

        logger.info("Charging engine stopped")
        return tick_result

    async def graceful_shutdown(self) -> None:
        """Cancel the timer without touching the inverters."""
        await self._cancel_timer()
        logger.info("Charging engine shut down after %d ticks", self._state.tick_count)

    async def _cancel_timer(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        """Tick until stopped."""
        self._state.is_running = True
        interval = self._config.engine.evaluation_interval_seconds
        logger.info("Charging engine loop starting (interval: %ds)", interval)

        try:
            while not self._stop_event.is_set():
                await self.tick_once()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break  # stop_event was set
                except asyncio.TimeoutError:
                    pass  # interval elapsed
        finally:
            self._state.is_running = False
            logger.info("Charging engine loop stopped after %d ticks", self._state.tick_count)

    # ── Runtime updates ───────────────────────────────────────

    def update_inverters(self, inverters: Sequence[InverterProfile]) -> None:
        """Replace the inverter topology; applies from the next tick."""
        self._inverters = list(inverters)
        self._detector.update_inverters(self._inverters)
        known = {inv.inverter_id for inv in self._inverters}
        self._state.last_command_values = {
            k: v for k, v in self._state.last_command_values.items() if k in known
        }
        logger.info("Inverter topology updated: %d inverter(s)", len(self._inverters))

    def set_manual_capacity(self, capacity_kwh: float | None) -> BatteryProfile:
        """Pin the battery capacity, or return to auto-detection with None."""
        self._detector.set_manual_capacity(capacity_kwh)
        previous = self._state.battery_profile
        if capacity_kwh is None and previous.detection_method == DetectionMethod.MANUAL:
            previous = self._detector.initial_profile()
        self._state.battery_profile = self._detector.refresh(
            self._state.last_snapshot or SystemSnapshot(), previous,
        )
        return self._state.battery_profile

    # ── Tick ──────────────────────────────────────────────────

    async def tick_once(self) -> TickResult | None:
        """Run one evaluation; returns None when a tick is already running."""
        if self._tick_lock.locked():
            logger.warning("Tick skipped: previous evaluation still in progress")
            return None
        async with self._tick_lock:
            return await self._tick()

    async def _tick(self) -> TickResult:
        self._state.tick_count += 1
        tick = self._state.tick_count
        now = self._clock()
        self._state.last_tick_at = now
        tick_start = time.monotonic()

        with tick_context(tick):
            if not self._state.enabled:
                decision = await self._evaluator.evaluate(DecisionInputs(
                    snapshot=self._state.last_snapshot or SystemSnapshot(),
                    forecast=None,
                    profile=self._state.battery_profile,
                    now=now,
                    target_soc=self._config.engine.target_soc,
                    enabled=False,
                ))
                return await self._finish(tick, decision, tick_start)

            # Inputs are captured once, before anything is sent
            try:
                snapshot = await self._telemetry.get_snapshot()
            except Exception as e:
                logger.exception("Failed to read telemetry")
                decision = Decision(
                    action=Action.ERROR,
                    reasons=(f"Telemetry unavailable: {e}",),
                    timestamp=now,
                    source="engine",
                )
                return await self._finish(tick, decision, tick_start)
            self._state.last_snapshot = snapshot

            forecast = await self._fetch_forecast()
            self._state.battery_profile = self._detector.refresh(snapshot, self._state.battery_profile)

            decision = await self._evaluator.evaluate(DecisionInputs(
                snapshot=snapshot,
                forecast=forecast,
                profile=self._state.battery_profile,
                now=now,
                target_soc=self._config.engine.target_soc,
                enabled=True,
            ))

            point = forecast.current_point(now) if forecast is not None else None
            current_price = point.price if point is not None else None

            commands = ()
            if decision.issues_commands:
                dispatched = await self._dispatcher.dispatch(
                    decision,
                    self._inverters,
                    snapshot,
                    price_negative=current_price is not None and current_price < 0,
                    last_values=self._state.last_command_values,
                )
                self._state.last_command_values = dispatched.values
                commands = dispatched.commands

            return await self._finish(tick, decision, tick_start, commands, snapshot, current_price)

    async def _finish(
        self,
        tick: int,
        decision: Decision,
        tick_start: float,
        commands: tuple = (),
        snapshot: SystemSnapshot | None = None,
        current_price: float | None = None,
    ) -> TickResult:
        self._state.last_decision = decision
        elapsed_ms = int((time.monotonic() - tick_start) * 1000)

        log_fn = logger.warning if decision.action == Action.ERROR else logger.info
        log_fn(
            "Tick %d: action=%s strategy=%s source=%s commands=%d elapsed=%dms reason=%s",
            tick,
            decision.action.value,
            decision.strategy.value if decision.strategy else "-",
            decision.source,
            len(commands),
            elapsed_ms,
            decision.reasons[0] if decision.reasons else "",
        )

        result = TickResult(
            tick=tick,
            decision=decision,
            commands=commands,
            snapshot=snapshot,
            current_price=current_price,
            elapsed_ms=elapsed_ms,
        )
        await self._run_hooks(result)
        return result

    async def _fetch_forecast(self) -> PriceForecast | None:
        timeout = self._config.engine.forecast_timeout_seconds
        try:
            return await asyncio.wait_for(self._provider.get_forecast(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Price forecast fetch timed out after %.0fs", timeout)
        except Exception as e:
            logger.warning("Price forecast unavailable: %s", e)
        return None

    async def _run_hooks(self, result: TickResult) -> None:
        timeout = self._config.engine.hook_timeout_seconds
        for hook in self._hooks:
            try:
                await asyncio.wait_for(hook.after_tick(result), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Hook %s timed out after %.0fs", type(hook).__name__, timeout)
            except Exception:
                logger.exception("Hook %s failed", type(hook).__name__)
