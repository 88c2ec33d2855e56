"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pydantic
import pytest

from solar_autopilot.config.manager import ConfigManager
from solar_autopilot.config.schema import AnalysisConfig, AppConfig, InverterConfig


class TestAppConfig:
    def test_default_config_is_valid(self) -> None:
        config = AppConfig()
        assert config.engine.evaluation_interval_seconds == 300
        assert config.engine.target_soc == 95.0
        assert config.analysis.charge_percentile == 0.30
        assert config.analysis.discharge_percentile == 0.80
        assert config.safety.grid_voltage_min == 200.0
        assert config.safety.grid_voltage_max == 250.0

    def test_default_inverter(self) -> None:
        config = AppConfig()
        assert list(config.hardware.inverters) == ["inverter_1"]
        assert config.hardware.inverters["inverter_1"].type == "legacy"

    def test_inverter_type_aliases(self) -> None:
        assert InverterConfig(type="new").type == "priority_list"
        assert InverterConfig(type="Hybrid").type == "priority_list"
        assert InverterConfig(type="legacy").type == "legacy"

    def test_unknown_inverter_type_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            InverterConfig(type="quantum")

    def test_charge_percentile_above_discharge_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AnalysisConfig(charge_percentile=0.9, discharge_percentile=0.5)

    def test_min_points_above_horizon_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AnalysisConfig(horizon_points=6, min_points=12)

    def test_manual_capacity_must_be_positive(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AppConfig(battery={"capacity_kwh": 0})

    def test_target_soc_bounds(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AppConfig(engine={"target_soc": 120})


class TestConfigManager:
    def test_load_defaults(self, config_manager: ConfigManager) -> None:
        config = config_manager.config
        assert config.db.path == ":memory:"

    def test_config_before_load_raises(self, tmp_path: Path) -> None:
        mgr = ConfigManager(tmp_path / "a.yaml", tmp_path / "b.yaml")
        with pytest.raises(RuntimeError):
            _ = mgr.config

    def test_user_overrides_merge(self, tmp_path: Path) -> None:
        defaults = tmp_path / "defaults.yaml"
        defaults.write_text(
            "engine:\n  target_soc: 90\n  evaluation_interval_seconds: 60\n"
            "hardware:\n  topic_prefix: solar\n"
        )
        user = tmp_path / "user.yaml"
        user.write_text(
            "engine:\n  target_soc: 80\n"
            "hardware:\n  inverters:\n    inverter_1: {type: new}\n    inverter_2: {type: legacy}\n"
        )
        config = ConfigManager(defaults, user).load()
        assert config.engine.target_soc == 80
        assert config.engine.evaluation_interval_seconds == 60
        assert config.hardware.topic_prefix == "solar"
        assert config.hardware.inverters["inverter_1"].type == "priority_list"
        assert len(config.hardware.inverters) == 2

    def test_save_user_config(self, config_manager: ConfigManager) -> None:
        config = config_manager.save_user_config({"battery": {"capacity_kwh": 12.5}})
        assert config.battery.capacity_kwh == 12.5
        assert config_manager.config.battery.capacity_kwh == 12.5

    def test_shipped_defaults_file_loads(self) -> None:
        defaults = Path(__file__).parent.parent / "config.defaults.yaml"
        config = ConfigManager(defaults, Path("does-not-exist.yaml")).load()
        assert config == AppConfig()

    @pytest.mark.asyncio
    async def test_save_version(self, config_manager: ConfigManager, db) -> None:
        version_id = await config_manager.save_version(db, changed_keys=["engine.target_soc"])
        assert version_id > 0
        async with db.execute("SELECT config_json, changed_keys FROM config_versions") as cursor:
            row = await cursor.fetchone()
        assert json.loads(row["config_json"])["engine"]["target_soc"] == 95.0
        assert json.loads(row["changed_keys"]) == ["engine.target_soc"]
