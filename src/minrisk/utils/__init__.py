"""Utility modules for MinRisk."""

from minrisk.utils.exceptions import ConfigurationError, MinRiskError

__all__ = [
    "ConfigurationError",
    "MinRiskError",
]
