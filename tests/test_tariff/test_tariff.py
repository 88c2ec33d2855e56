"""Tests for the price forecast model, threshold analysis and Tibber provider."""

from __future__ import annotations

import json
import random
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from solar_autopilot.config.schema import TariffProviderConfig
from solar_autopilot.tariff.analyzer import InsufficientPriceData, analyse_forecast
from solar_autopilot.tariff.base import DataUnavailable, PriceForecast, PriceLevel, PricePoint
from solar_autopilot.tariff.providers.tibber import TibberProvider

NOW = datetime(2026, 6, 1, 12, 20, tzinfo=timezone.utc)
HOUR = NOW.replace(minute=0)


def _make_forecast(prices: list[float], start: datetime = HOUR) -> PriceForecast:
    return PriceForecast(
        points=tuple(PricePoint(start + timedelta(hours=i), p) for i, p in enumerate(prices)),
    )


# ── Forecast model ────────────────────────────────────────────


class TestPriceForecast:
    def test_duplicate_timestamps_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            PriceForecast(points=(PricePoint(HOUR, 1.0), PricePoint(HOUR, 2.0)))

    def test_out_of_order_rejected(self) -> None:
        with pytest.raises(ValueError, match="out of order"):
            PriceForecast(points=(
                PricePoint(HOUR + timedelta(hours=1), 1.0),
                PricePoint(HOUR, 2.0),
            ))

    def test_current_point_covers_now(self) -> None:
        forecast = _make_forecast([5.0, 6.0, 7.0], start=HOUR - timedelta(hours=1))
        point = forecast.current_point(NOW)
        assert point is not None
        assert point.price == 6.0

    def test_no_point_covers_now(self) -> None:
        forecast = _make_forecast([5.0, 6.0], start=HOUR + timedelta(hours=2))
        assert forecast.current_point(NOW) is None
        assert forecast.horizon(NOW) == []

    def test_naive_timestamps_read_as_utc(self) -> None:
        forecast = _make_forecast([5.0, 6.0], start=HOUR.replace(tzinfo=None))
        assert forecast.current_index(NOW) == 0

    def test_gap_in_series(self) -> None:
        forecast = PriceForecast(points=(
            PricePoint(HOUR - timedelta(hours=3), 1.0),
            PricePoint(HOUR + timedelta(hours=1), 2.0),
        ))
        assert forecast.current_point(NOW) is None

    def test_horizon_starts_at_current_point(self) -> None:
        forecast = _make_forecast(list(range(40)), start=HOUR - timedelta(hours=3))
        horizon = forecast.horizon(NOW, 24)
        assert len(horizon) == 24
        assert horizon[0].price == 3

    def test_average_price(self) -> None:
        assert _make_forecast([2.0, 4.0]).average_price() == 3.0
        assert PriceForecast(points=()).average_price() is None


# ── Analyzer ──────────────────────────────────────────────────


class TestAnalyseForecast:
    def test_percentile_thresholds(self) -> None:
        forecast = _make_forecast([float(p) for p in range(1, 25)])
        t = analyse_forecast(forecast, NOW)
        assert t.current_price == 1.0
        assert t.charge_threshold == 8.0  # sorted[floor(24 * 0.3)]
        assert t.discharge_threshold == 20.0  # sorted[floor(24 * 0.8)]
        assert t.min_price == 1.0
        assert t.max_price == 24.0
        assert t.average_price == 12.5
        assert t.volatility == pytest.approx(23 / 12.5)
        assert t.sample_size == 24
        assert t.is_charge_price
        assert not t.is_negative

    def test_thresholds_use_sorted_prices(self) -> None:
        prices = [float(p) for p in range(24, 0, -1)]
        t = analyse_forecast(_make_forecast(prices), NOW)
        assert t.current_price == 24.0
        assert t.charge_threshold == 8.0
        assert t.is_discharge_price

    def test_horizon_capped_at_24_points(self) -> None:
        prices = [10.0] * 24 + [1000.0] * 12
        t = analyse_forecast(_make_forecast(prices), NOW)
        assert t.sample_size == 24
        assert t.max_price == 10.0

    def test_eleven_points_insufficient(self) -> None:
        with pytest.raises(InsufficientPriceData, match="Insufficient pricing data"):
            analyse_forecast(_make_forecast([5.0] * 11), NOW)

    def test_twelve_points_sufficient(self) -> None:
        t = analyse_forecast(_make_forecast([float(p) for p in range(1, 13)]), NOW)
        assert t.sample_size == 12
        assert t.charge_threshold == 4.0  # floor(3.6) = 3
        assert t.discharge_threshold == 10.0  # floor(9.6) = 9

    def test_points_before_now_do_not_count(self) -> None:
        # 20 points, but only 10 from the current hour on
        forecast = _make_forecast([5.0] * 20, start=HOUR - timedelta(hours=10))
        with pytest.raises(InsufficientPriceData):
            analyse_forecast(forecast, NOW)

    def test_no_current_price(self) -> None:
        forecast = _make_forecast([5.0] * 24, start=HOUR + timedelta(hours=1))
        with pytest.raises(InsufficientPriceData):
            analyse_forecast(forecast, NOW)

    def test_zero_average_is_insufficient(self) -> None:
        with pytest.raises(InsufficientPriceData):
            analyse_forecast(_make_forecast([-1.0, 1.0] * 6), NOW)

    def test_insufficient_is_data_unavailable(self) -> None:
        assert issubclass(InsufficientPriceData, DataUnavailable)

    def test_negative_average_gives_positive_volatility(self) -> None:
        t = analyse_forecast(_make_forecast([-4.0, -2.0] * 6), NOW)
        assert t.volatility == pytest.approx(2 / 3)
        assert t.is_negative

    def test_custom_percentiles(self) -> None:
        prices = [float(p) for p in range(1, 25)]
        t = analyse_forecast(_make_forecast(prices), NOW, charge_percentile=0.1, discharge_percentile=0.9)
        assert t.charge_threshold == 3.0
        assert t.discharge_threshold == 22.0

    def test_deterministic(self) -> None:
        forecast = _make_forecast([7.0, 3.0, 9.0, 1.0] * 6)
        assert analyse_forecast(forecast, NOW) == analyse_forecast(forecast, NOW)

    def test_charge_never_above_discharge(self) -> None:
        rng = random.Random(1234)
        for _ in range(200):
            n = rng.randint(12, 48)
            prices = [round(rng.uniform(-10, 60), 2) for _ in range(n)]
            if sum(prices[:24]) == 0:
                continue
            t = analyse_forecast(_make_forecast(prices), NOW)
            assert t.charge_threshold <= t.discharge_threshold


# ── Tibber provider ───────────────────────────────────────────


def _tibber_payload(today: list[dict], tomorrow: list[dict] | None = None) -> dict:
    return {
        "data": {
            "viewer": {
                "home": {
                    "currentSubscription": {
                        "priceInfo": {"today": today, "tomorrow": tomorrow or []},
                    },
                },
            },
        },
    }


def _provider(handler, home_id: str = "home-1") -> TibberProvider:
    config = TariffProviderConfig(api_key="token", home_id=home_id)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TibberProvider(config, client=client)


@pytest.mark.asyncio
class TestTibberProvider:
    async def test_parses_today_and_tomorrow(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_tibber_payload(
                today=[
                    {"total": 0.2512, "startsAt": "2026-06-01T00:00:00.000+02:00", "level": "NORMAL"},
                    {"total": 0.1800, "startsAt": "2026-06-01T01:00:00.000+02:00", "level": "CHEAP"},
                ],
                tomorrow=[
                    {"total": -0.0150, "startsAt": "2026-06-02T00:00:00.000+02:00", "level": "VERY_CHEAP"},
                ],
            ))

        provider = _provider(handler)
        forecast = await provider.get_forecast()
        await provider.close()

        assert len(forecast) == 3
        assert forecast.source == "tibber"
        first = forecast.points[0]
        assert first.starts_at == datetime(2026, 5, 31, 22, 0, tzinfo=timezone.utc)
        assert first.price == pytest.approx(25.12)
        assert forecast.points[1].level == PriceLevel.CHEAP
        assert forecast.points[2].price == pytest.approx(-1.5)

    async def test_home_query_uses_home_id(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content)["query"])
            return httpx.Response(200, json=_tibber_payload(
                today=[{"total": 0.2, "startsAt": "2026-06-01T00:00:00Z", "level": "NORMAL"}],
            ))

        await _provider(handler).get_forecast()
        assert 'home(id: "home-1")' in seen[0]

    async def test_first_home_when_no_home_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert "homes" in json.loads(request.content)["query"]
            payload = {"data": {"viewer": {"homes": [{
                "currentSubscription": {"priceInfo": {
                    "today": [{"total": 0.3, "startsAt": "2026-06-01T00:00:00Z", "level": "EXPENSIVE"}],
                    "tomorrow": None,
                }},
            }]}}}
            return httpx.Response(200, json=payload)

        forecast = await _provider(handler, home_id="").get_forecast()
        assert forecast.points[0].level == PriceLevel.EXPENSIVE

    async def test_duplicates_and_order_normalised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_tibber_payload(
                today=[
                    {"total": 0.3, "startsAt": "2026-06-01T01:00:00Z", "level": "NORMAL"},
                    {"total": 0.2, "startsAt": "2026-06-01T00:00:00Z", "level": "NORMAL"},
                ],
                tomorrow=[{"total": 0.4, "startsAt": "2026-06-01T01:00:00Z", "level": "NORMAL"}],
            ))

        forecast = await _provider(handler).get_forecast()
        assert [p.price for p in forecast.points] == pytest.approx([20.0, 40.0])

    async def test_unknown_level_and_bad_entries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_tibber_payload(today=[
                {"total": 0.2, "startsAt": "2026-06-01T00:00:00Z", "level": "SUPER_CHEAP"},
                {"total": None, "startsAt": "2026-06-01T01:00:00Z"},
                {"startsAt": "2026-06-01T02:00:00Z"},
            ]))

        forecast = await _provider(handler).get_forecast()
        assert len(forecast) == 1
        assert forecast.points[0].level == PriceLevel.NORMAL

    async def test_http_error_raises_data_unavailable(self) -> None:
        provider = _provider(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(DataUnavailable, match="request failed"):
            await provider.get_forecast()

    async def test_graphql_error_raises_data_unavailable(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, json={"errors": [{"message": "bad token"}]}))
        with pytest.raises(DataUnavailable, match="bad token"):
            await provider.get_forecast()

    async def test_empty_prices_raise_data_unavailable(self) -> None:
        provider = _provider(lambda request: httpx.Response(200, json=_tibber_payload(today=[])))
        with pytest.raises(DataUnavailable):
            await provider.get_forecast()

    async def test_missing_subscription_raises(self) -> None:
        payload = {"data": {"viewer": {"home": {"currentSubscription": None}}}}
        provider = _provider(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(DataUnavailable, match="subscription"):
            await provider.get_forecast()
