"""MQTT topic layout."""

from __future__ import annotations


def build_status_topics(prefix: str = "solar/autopilot") -> dict[str, str]:
    """Topics the engine publishes its own state on."""
    return {
        "status": f"{prefix}/status",
        "decision": f"{prefix}/decision",
        "action": f"{prefix}/action",
        "reasons": f"{prefix}/reasons",
        "strategy": f"{prefix}/strategy",
        "battery_capacity": f"{prefix}/battery/capacity_kwh",
        "price_current": f"{prefix}/price/current",
    }


def state_subscription(prefix: str) -> str:
    """Wildcard covering every inverter/battery state topic."""
    return f"{prefix}/#"


def engine_command_topic(prefix: str = "solar/autopilot") -> str:
    """Payload ON/OFF starts or stops the charging engine."""
    return f"{prefix}/engine/set"


def capacity_command_topic(prefix: str = "solar/autopilot") -> str:
    """Payload kWh pins the battery capacity; "auto" returns to detection."""
    return f"{prefix}/battery/capacity_kwh/set"
