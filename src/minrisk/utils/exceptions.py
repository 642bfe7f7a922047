"""Custom exceptions for MinRisk."""


class MinRiskError(Exception):
    """Base exception for all MinRisk errors."""

    pass


class ConfigurationError(MinRiskError):
    """Error in configuration or settings."""

    pass
