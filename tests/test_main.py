"""Tests for Application lifecycle wiring."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from solar_autopilot.config.manager import ConfigManager
from solar_autopilot.config.schema import AppConfig
from solar_autopilot.control.decision import Action
from solar_autopilot.main import Application, create_provider
from solar_autopilot.tariff.base import DataUnavailable
from solar_autopilot.tariff.providers.tibber import TibberProvider


async def _wait_for_engine(app: Application) -> None:
    for _ in range(200):
        if app.engine is not None:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("engine was never created")


def _offline_config(tmp_path: Path, **overrides) -> AppConfig:
    return AppConfig(mqtt={"enabled": False}, db={"path": str(tmp_path / "app.db")}, **overrides)


class TestApplicationConstruction:
    def test_create_application(self, config, config_manager) -> None:
        app = Application(config, config_manager)
        assert app.config is config
        assert app.config_manager is config_manager
        assert app._running is False

    def test_initial_state(self, config, config_manager) -> None:
        app = Application(config, config_manager)
        assert app._tasks == []
        assert app._mqtt_client is None
        assert app._provider is None
        assert app.engine is None


class TestProviderCreation:
    def test_tibber(self, config) -> None:
        assert isinstance(create_provider(config), TibberProvider)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown tariff provider"):
            create_provider(AppConfig(tariff={"type": "octopus"}))


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_and_stop_without_broker(self, tmp_path: Path, config_manager: ConfigManager) -> None:
        app = Application(_offline_config(tmp_path), config_manager)
        runner = asyncio.create_task(app.start())
        await _wait_for_engine(app)

        status = app.engine.status()
        assert not status.enabled
        assert not status.has_predictor

        await app.stop()
        await asyncio.wait_for(runner, timeout=1.0)
        assert app._running is False
        assert app._db is None

    async def test_enabled_engine_ticks(self, tmp_path: Path, config_manager: ConfigManager) -> None:
        provider = AsyncMock()
        provider.get_forecast = AsyncMock(side_effect=DataUnavailable("no token"))
        config = _offline_config(tmp_path, engine={"enabled": True}, predictor={"enabled": True})
        app = Application(config, config_manager)

        with patch("solar_autopilot.main.create_provider", return_value=provider):
            runner = asyncio.create_task(app.start())
            await _wait_for_engine(app)
            await asyncio.sleep(0.05)

            status = app.engine.status()
            assert status.is_running
            assert status.has_predictor
            assert status.tick_count == 1
            assert status.last_decision.action == Action.IDLE

            await app.stop()
            await asyncio.wait_for(runner, timeout=1.0)

        provider.close.assert_awaited_once()
        assert not app.engine.status().is_running

    async def test_stop_before_start_is_noop(self, config, config_manager) -> None:
        app = Application(config, config_manager)
        await app.stop()
        assert app._running is False
