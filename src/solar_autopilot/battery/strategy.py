"""Operating strategy selection by battery size.

Small batteries gain most from price-sensitive operation; past roughly
15 kWh, maximising solar self-consumption pays better than grid arbitrage.
The expected-improvement figures are reported, never used for control.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

SMALL_BATTERY_MAX_KWH = 15.0
MEDIUM_BATTERY_MAX_KWH = 20.0


class Strategy(str, Enum):
    PRICE_SENSITIVE = "PRICE_SENSITIVE"
    HYBRID = "HYBRID"
    SELF_CONSUMPTION = "SELF_CONSUMPTION"


@dataclass(frozen=True)
class StrategyProfile:
    """How a strategy treats price signals."""

    strategy: Strategy
    battery_category: str  # SMALL, MEDIUM, LARGE
    description: str
    uses_price_thresholds: bool
    aggressive_charging: bool
    expected_improvement_pct: float


_PROFILES: dict[Strategy, StrategyProfile] = {
    Strategy.PRICE_SENSITIVE: StrategyProfile(
        strategy=Strategy.PRICE_SENSITIVE,
        battery_category="SMALL",
        description=f"<={SMALL_BATTERY_MAX_KWH:g} kWh - price-sensitive operation",
        uses_price_thresholds=True,
        aggressive_charging=True,
        expected_improvement_pct=12.7,
    ),
    Strategy.HYBRID: StrategyProfile(
        strategy=Strategy.HYBRID,
        battery_category="MEDIUM",
        description=f"{SMALL_BATTERY_MAX_KWH:g}-{MEDIUM_BATTERY_MAX_KWH:g} kWh - hybrid strategy",
        uses_price_thresholds=True,
        aggressive_charging=False,
        expected_improvement_pct=8.0,
    ),
    Strategy.SELF_CONSUMPTION: StrategyProfile(
        strategy=Strategy.SELF_CONSUMPTION,
        battery_category="LARGE",
        description=f">{MEDIUM_BATTERY_MAX_KWH:g} kWh - self-consumption maximisation",
        uses_price_thresholds=False,
        aggressive_charging=False,
        expected_improvement_pct=6.0,
    ),
}


def select_strategy(capacity_kwh: float) -> StrategyProfile:
    """Map battery capacity to its operating strategy."""
    if capacity_kwh <= SMALL_BATTERY_MAX_KWH:
        return _PROFILES[Strategy.PRICE_SENSITIVE]
    if capacity_kwh <= MEDIUM_BATTERY_MAX_KWH:
        return _PROFILES[Strategy.HYBRID]
    return _PROFILES[Strategy.SELF_CONSUMPTION]
