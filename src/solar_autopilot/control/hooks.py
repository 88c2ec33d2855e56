"""Post-tick hooks: audit, learning and anything else that reacts to a
finalised decision.

Hooks run after dispatch, one at a time, each bounded by the engine's hook
timeout. A failing hook is logged and never affects the decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from solar_autopilot.control.decision import Decision
from solar_autopilot.control.dispatcher import Command
from solar_autopilot.hardware.telemetry import SystemSnapshot
from solar_autopilot.learning.base import Outcome, OutcomeLearner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    """Everything one tick produced."""

    tick: int
    decision: Decision
    commands: tuple[Command, ...] = ()
    snapshot: SystemSnapshot | None = None
    current_price: float | None = None  # cents/kWh
    elapsed_ms: int = 0


@runtime_checkable
class TickHook(Protocol):
    async def after_tick(self, result: TickResult) -> None:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Best-effort decision/command recorder."""

    async def record_decision(self, decision: Decision) -> None:
        ...

    async def record_command(self, command: Command) -> None:
        ...


class AuditHook:
    """Records every decision and every command, successful or not."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def after_tick(self, result: TickResult) -> None:
        try:
            await self._sink.record_decision(result.decision)
        except Exception:
            logger.exception("Failed to record decision")

        for command in result.commands:
            try:
                await self._sink.record_command(command)
            except Exception:
                logger.exception("Failed to record command %s", command.topic)


class LearnerHook:
    """Feeds the realised outcome of each tick to a learner."""

    def __init__(self, learner: OutcomeLearner) -> None:
        self._learner = learner

    async def after_tick(self, result: TickResult) -> None:
        if result.snapshot is None or result.current_price is None:
            return
        outcome = Outcome.from_snapshot(result.snapshot, result.current_price, result.decision.timestamp)
        await self._learner.observe(outcome)
