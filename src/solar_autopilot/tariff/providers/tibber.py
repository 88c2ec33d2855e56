"""Tibber day-ahead price provider.

API docs: https://developer.tibber.com/docs/reference
Prices are published hourly for today and, from early afternoon, tomorrow.
Personal access token auth (Bearer).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from solar_autopilot.config.schema import TariffProviderConfig
from solar_autopilot.tariff.base import (
    DataUnavailable,
    PriceForecast,
    PriceForecastProvider,
    PriceLevel,
    PricePoint,
)

logger = logging.getLogger(__name__)

_PRICE_FIELDS = "total startsAt level"

_HOME_QUERY = """
{
  viewer {
    home(id: "%(home_id)s") {
      currentSubscription {
        priceInfo {
          today { %(fields)s }
          tomorrow { %(fields)s }
        }
      }
    }
  }
}
"""

_FIRST_HOME_QUERY = """
{
  viewer {
    homes {
      currentSubscription {
        priceInfo {
          today { %(fields)s }
          tomorrow { %(fields)s }
        }
      }
    }
  }
}
"""


class TibberProvider(PriceForecastProvider):
    """Tibber GraphQL API price provider."""

    def __init__(self, config: TariffProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            headers={"Authorization": f"Bearer {config.api_key}"},
            timeout=config.timeout_seconds,
        )

    async def get_forecast(self) -> PriceForecast:
        """Fetch today's and tomorrow's hourly prices."""
        if self._config.home_id:
            query = _HOME_QUERY % {"home_id": self._config.home_id, "fields": _PRICE_FIELDS}
        else:
            query = _FIRST_HOME_QUERY % {"fields": _PRICE_FIELDS}

        try:
            resp = await self._client.post(self._config.api_url, json={"query": query})
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DataUnavailable(f"Tibber request failed: {e}") from e

        if payload.get("errors"):
            raise DataUnavailable(f"Tibber API error: {payload['errors'][0].get('message', '?')}")

        points = self._parse_prices(self._extract_price_info(payload))
        if not points:
            raise DataUnavailable("Tibber returned no prices")

        logger.info(
            "Tibber prices fetched: %d points (%s to %s)",
            len(points), points[0].starts_at.isoformat(), points[-1].starts_at.isoformat(),
        )
        return PriceForecast(
            points=tuple(points),
            source="tibber",
            fetched_at=datetime.now(timezone.utc),
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _extract_price_info(payload: dict[str, Any]) -> dict[str, Any]:
        viewer = (payload.get("data") or {}).get("viewer") or {}
        home = viewer.get("home")
        if home is None:
            homes = viewer.get("homes") or []
            home = homes[0] if homes else None
        if not home:
            raise DataUnavailable("Tibber account has no home")
        subscription = home.get("currentSubscription") or {}
        price_info = subscription.get("priceInfo")
        if not price_info:
            raise DataUnavailable("Tibber home has no active subscription")
        return price_info

    @staticmethod
    def _parse_prices(price_info: dict[str, Any]) -> list[PricePoint]:
        """Merge today + tomorrow into one ordered, de-duplicated series.

        Tibber ``total`` is currency/kWh incl. tax; the engine works in cents.
        """
        by_start: dict[datetime, PricePoint] = {}
        for entry in (price_info.get("today") or []) + (price_info.get("tomorrow") or []):
            try:
                start = datetime.fromisoformat(str(entry["startsAt"]).replace("Z", "+00:00"))
                if start.tzinfo is None:
                    start = start.replace(tzinfo=timezone.utc)
                price = float(entry["total"]) * 100
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed Tibber price entry %r: %s", entry, e)
                continue

            try:
                level = PriceLevel(str(entry.get("level", "NORMAL")).upper())
            except ValueError:
                level = PriceLevel.NORMAL

            by_start[start.astimezone(timezone.utc)] = PricePoint(
                starts_at=start.astimezone(timezone.utc),
                price=price,
                level=level,
            )

        return [by_start[k] for k in sorted(by_start)]
