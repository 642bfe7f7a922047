"""Configuration module for MinRisk."""

from minrisk.config.settings import RAFEngineConfig, Settings, get_settings

__all__ = ["RAFEngineConfig", "Settings", "get_settings"]
