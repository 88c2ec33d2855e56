"""Configuration management for Solar Autopilot."""

from solar_autopilot.config.schema import AppConfig
from solar_autopilot.config.manager import ConfigManager

__all__ = ["AppConfig", "ConfigManager"]
