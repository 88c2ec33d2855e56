"""Collaborator protocols for telemetry input and command output."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from solar_autopilot.hardware.telemetry import SystemSnapshot


class TransportError(Exception):
    """A command could not be delivered to an inverter."""


@runtime_checkable
class TelemetrySource(Protocol):
    """Supplies the live system state at the start of each tick."""

    async def get_snapshot(self) -> SystemSnapshot:
        """Return a consistent snapshot of the latest readings."""
        ...


@runtime_checkable
class CommandTransport(Protocol):
    """Delivers inverter setting changes.

    Fire-and-forget from the engine's point of view: a failed delivery raises
    TransportError, and retrying is the transport's business.
    """

    async def publish(self, topic: str, value: str) -> None:
        ...
