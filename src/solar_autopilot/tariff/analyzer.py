"""Dynamic price thresholds derived from the day-ahead forecast.

Instead of fixed cents/kWh limits, the charge and discharge thresholds are
percentiles of the next 24 hourly prices: charge in the cheapest 30 %,
discharge in the most expensive 20 %.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from solar_autopilot.tariff.base import DataUnavailable, PriceForecast

DEFAULT_CHARGE_PERCENTILE = 0.30
DEFAULT_DISCHARGE_PERCENTILE = 0.80
DEFAULT_HORIZON_POINTS = 24
DEFAULT_MIN_POINTS = 12


class InsufficientPriceData(DataUnavailable):
    """The forecast is too short (or degenerate) to derive thresholds."""


@dataclass(frozen=True)
class PriceThresholds:
    """Forecast statistics for one tick."""

    current_price: float
    charge_threshold: float
    discharge_threshold: float
    min_price: float
    max_price: float
    average_price: float
    volatility: float
    sample_size: int
    charge_percentile: float = DEFAULT_CHARGE_PERCENTILE

    @property
    def is_negative(self) -> bool:
        return self.current_price < 0

    @property
    def is_charge_price(self) -> bool:
        return self.current_price <= self.charge_threshold

    @property
    def is_discharge_price(self) -> bool:
        return self.current_price >= self.discharge_threshold


def _percentile_value(sorted_prices: list[float], fraction: float) -> float:
    index = min(math.floor(len(sorted_prices) * fraction), len(sorted_prices) - 1)
    return sorted_prices[index]


def analyse_forecast(
    forecast: PriceForecast,
    now: datetime,
    charge_percentile: float = DEFAULT_CHARGE_PERCENTILE,
    discharge_percentile: float = DEFAULT_DISCHARGE_PERCENTILE,
    horizon_points: int = DEFAULT_HORIZON_POINTS,
    min_points: int = DEFAULT_MIN_POINTS,
) -> PriceThresholds:
    """Compute charge/discharge thresholds over the forecast horizon.

    The horizon starts at the point covering ``now``. The result depends only
    on the arguments, so identical forecasts always give identical thresholds.

    Raises:
        InsufficientPriceData: no current price, fewer than ``min_points``
            horizon points, or an average price of exactly zero.
    """
    horizon = forecast.horizon(now, horizon_points)
    if not horizon:
        raise InsufficientPriceData("No price covers the current interval")
    if len(horizon) < min_points:
        raise InsufficientPriceData(
            f"Insufficient pricing data: {len(horizon)} forecast points (need {min_points})"
        )

    prices = [p.price for p in horizon]
    sorted_prices = sorted(prices)
    min_price = sorted_prices[0]
    max_price = sorted_prices[-1]
    average = sum(prices) / len(prices)
    if average == 0:
        raise InsufficientPriceData("Insufficient pricing data: average forecast price is zero")

    return PriceThresholds(
        current_price=horizon[0].price,
        charge_threshold=_percentile_value(sorted_prices, charge_percentile),
        discharge_threshold=_percentile_value(sorted_prices, discharge_percentile),
        min_price=min_price,
        max_price=max_price,
        average_price=average,
        volatility=(max_price - min_price) / abs(average),
        sample_size=len(prices),
        charge_percentile=charge_percentile,
    )
