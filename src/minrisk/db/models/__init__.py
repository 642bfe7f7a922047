"""Database models for MinRisk."""

from .base import Base, PortableJSON, PortableUUID, TimestampMixin
from .breach import RecalcRunModel, RiskBreachModel
from .risk import AppetiteCategoryModel, IncidentModel, RiskControlModel, RiskModel
from .tolerance import (
    KRIDefinitionModel,
    RiskToleranceLinkModel,
    ToleranceBreachHistoryModel,
    ToleranceMetricModel,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "PortableJSON",
    "PortableUUID",
    "AppetiteCategoryModel",
    "RiskModel",
    "RiskControlModel",
    "IncidentModel",
    "ToleranceMetricModel",
    "RiskToleranceLinkModel",
    "ToleranceBreachHistoryModel",
    "KRIDefinitionModel",
    "RiskBreachModel",
    "RecalcRunModel",
]
