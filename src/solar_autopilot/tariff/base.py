"""Price forecast model and the provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum


class DataUnavailable(Exception):
    """The price provider could not supply a usable forecast."""


class PriceLevel(str, Enum):
    """Provider-assigned price band."""

    VERY_CHEAP = "VERY_CHEAP"
    CHEAP = "CHEAP"
    NORMAL = "NORMAL"
    EXPENSIVE = "EXPENSIVE"
    VERY_EXPENSIVE = "VERY_EXPENSIVE"


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class PricePoint:
    """Price for one interval starting at ``starts_at``."""

    starts_at: datetime
    price: float  # cents/kWh, may be negative
    level: PriceLevel = PriceLevel.NORMAL


@dataclass(frozen=True)
class PriceForecast:
    """Chronologically ordered price series (current + upcoming intervals)."""

    points: tuple[PricePoint, ...]
    resolution: timedelta = timedelta(hours=1)
    source: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", tuple(self.points))
        starts = [_as_utc(p.starts_at) for p in self.points]
        for earlier, later in zip(starts, starts[1:]):
            if later == earlier:
                raise ValueError(f"Duplicate price timestamp {later.isoformat()}")
            if later < earlier:
                raise ValueError(
                    f"Price points out of order: {later.isoformat()} after {earlier.isoformat()}"
                )

    def __len__(self) -> int:
        return len(self.points)

    def current_index(self, now: datetime) -> int | None:
        """Index of the point whose interval covers ``now``."""
        now = _as_utc(now)
        for i, point in enumerate(self.points):
            start = _as_utc(point.starts_at)
            if i + 1 < len(self.points):
                end = min(_as_utc(self.points[i + 1].starts_at), start + self.resolution)
            else:
                end = start + self.resolution
            if start <= now < end:
                return i
        return None

    def current_point(self, now: datetime) -> PricePoint | None:
        index = self.current_index(now)
        return self.points[index] if index is not None else None

    def horizon(self, now: datetime, size: int = 24) -> list[PricePoint]:
        """The current point followed by upcoming points, at most ``size``."""
        index = self.current_index(now)
        if index is None:
            return []
        return list(self.points[index:index + size])

    def average_price(self) -> float | None:
        if not self.points:
            return None
        return sum(p.price for p in self.points) / len(self.points)


class PriceForecastProvider(ABC):
    """Abstract base for day-ahead price providers."""

    @abstractmethod
    async def get_forecast(self) -> PriceForecast:
        """Fetch the current + upcoming price series.

        Raises:
            DataUnavailable: when no usable forecast can be produced.
        """
        ...

    async def close(self) -> None:
        """Release any network resources."""
