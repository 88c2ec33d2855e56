"""Pydantic configuration models for all engine settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class EngineConfig(BaseModel):
    enabled: bool = False  # start() enables; False keeps the engine idle at boot
    evaluation_interval_seconds: int = Field(300, ge=1)
    target_soc: float = Field(95.0, ge=0.0, le=100.0)  # percent
    forecast_timeout_seconds: float = Field(30.0, gt=0.0)
    predictor_timeout_seconds: float = Field(5.0, gt=0.0)
    publish_timeout_seconds: float = Field(5.0, gt=0.0)
    hook_timeout_seconds: float = Field(10.0, gt=0.0)
    strict_ordering: bool = False  # send inverter commands one inverter at a time


class BatteryConfig(BaseModel):
    capacity_kwh: float | None = Field(None, gt=0.0)  # set = manual override
    default_capacity_kwh: float = Field(10.0, gt=0.0)
    nominal_voltage: float = Field(48.0, gt=0.0)  # used when no voltage reading


class AnalysisConfig(BaseModel):
    charge_percentile: float = Field(0.30, gt=0.0, lt=1.0)
    discharge_percentile: float = Field(0.80, gt=0.0, lt=1.0)
    horizon_points: int = Field(24, ge=1)
    min_points: int = Field(12, ge=1)

    @model_validator(mode="after")
    def _check_percentiles(self) -> AnalysisConfig:
        if self.charge_percentile > self.discharge_percentile:
            raise ValueError("charge_percentile must not exceed discharge_percentile")
        if self.min_points > self.horizon_points:
            raise ValueError("min_points must not exceed horizon_points")
        return self


class SafetyConfig(BaseModel):
    grid_voltage_min: float = 200.0
    grid_voltage_max: float = 250.0
    discharge_min_soc: float = Field(30.0, ge=0.0, le=100.0)


class SelfConsumptionConfig(BaseModel):
    solar_surplus_charge_w: float = 1000.0
    solar_charge_max_soc: float = Field(95.0, ge=0.0, le=100.0)
    solar_active_w: float = 100.0


class InverterConfig(BaseModel):
    type: Literal["priority_list", "legacy"] = "legacy"
    battery_capacity_kwh: float | None = Field(None, gt=0.0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: object) -> object:
        # Older configs call priority-list inverters "new" or "hybrid"
        if isinstance(value, str) and value.lower() in ("new", "hybrid"):
            return "priority_list"
        return value


class HardwareConfig(BaseModel):
    topic_prefix: str = "solar"
    inverters: dict[str, InverterConfig] = Field(
        default_factory=lambda: {"inverter_1": InverterConfig()}
    )


class TariffProviderConfig(BaseModel):
    type: str = "tibber"
    api_key: str = ""
    home_id: str = ""
    api_url: str = "https://api.tibber.com/v1-beta/gql"
    timeout_seconds: float = Field(10.0, gt=0.0)


class MQTTConfig(BaseModel):
    enabled: bool = True
    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "solar_autopilot"
    status_prefix: str = "solar/autopilot"


class PredictorConfig(BaseModel):
    enabled: bool = False
    min_confidence: float = Field(0.7, ge=0.0, le=1.0)
    learning_rate: float = Field(0.1, gt=0.0, le=1.0)
    min_samples: int = Field(12, ge=1)
    price_margin: float = Field(0.15, ge=0.0, le=1.0)
    timezone: str = "Europe/Berlin"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: str = ""


class DBConfig(BaseModel):
    path: str = "solar_autopilot.db"


class AppConfig(BaseModel):
    """Root configuration model containing all engine settings."""

    engine: EngineConfig = EngineConfig()
    battery: BatteryConfig = BatteryConfig()
    analysis: AnalysisConfig = AnalysisConfig()
    safety: SafetyConfig = SafetyConfig()
    self_consumption: SelfConsumptionConfig = SelfConsumptionConfig()
    hardware: HardwareConfig = HardwareConfig()
    tariff: TariffProviderConfig = TariffProviderConfig()
    mqtt: MQTTConfig = MQTTConfig()
    predictor: PredictorConfig = PredictorConfig()
    logging: LoggingConfig = LoggingConfig()
    db: DBConfig = DBConfig()
