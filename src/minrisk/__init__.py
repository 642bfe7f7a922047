"""MinRisk risk appetite and tolerance decision engine."""

__version__ = "0.1.0"
