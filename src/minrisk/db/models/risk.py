"""Risk, control and appetite category models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin


class AppetiteCategoryModel(Base, TimestampMixin):
    """Board-approved appetite statement for one risk category.

    The materiality rule only matters for ZERO-appetite categories and is
    stored as JSON (rule_type, threshold, comparison, basis,
    aggregation_scope, measurement_window_days, description).
    """

    __tablename__ = "appetite_categories"

    category_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    risk_category: Mapped[str] = mapped_column(String(200), nullable=False)
    appetite_level: Mapped[str] = mapped_column(String(20), nullable=False, default="MODERATE")
    materiality_rule: Mapped[dict | None] = mapped_column(PortableJSON(), nullable=True)

    __table_args__ = (Index("idx_appetite_category_org", "organization_id"),)

    def __repr__(self) -> str:
        return f"<AppetiteCategory(id={self.category_id}, level={self.appetite_level})>"


class RiskModel(Base, TimestampMixin):
    """A risk register entry with its last computed scores."""

    __tablename__ = "risks"

    risk_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    likelihood_inherent: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-5
    impact_inherent: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-5
    appetite_category_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(),
        ForeignKey("appetite_categories.category_id", ondelete="SET NULL"),
        nullable=True,
    )

    # Written by recalculation
    residual_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    raf_adjusted_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    out_of_appetite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    appetite_status: Mapped[dict | None] = mapped_column(PortableJSON(), nullable=True)
    last_scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    appetite_category: Mapped[AppetiteCategoryModel | None] = relationship(
        AppetiteCategoryModel, lazy="raise"
    )

    __table_args__ = (
        Index("idx_risk_org", "organization_id"),
        Index("idx_risk_category", "appetite_category_id"),
    )

    def __repr__(self) -> str:
        return f"<Risk(id={self.risk_id}, org={self.organization_id})>"


class RiskControlModel(Base, TimestampMixin):
    """A control linked to a risk, with its DIME sub-scores (0-3 each)."""

    __tablename__ = "risk_controls"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    risk_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("risks.risk_id", ondelete="CASCADE"), nullable=False
    )
    control_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False, default=uuid7)
    name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    design_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    implementation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monitoring_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_risk_control_risk", "risk_id"),)


class IncidentModel(Base, TimestampMixin):
    """An operational incident, counted by COUNT materiality rules."""

    __tablename__ = "incidents"

    incident_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    risk_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    category_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_incident_org_occurred", "organization_id", "occurred_at"),
        Index("idx_incident_risk", "risk_id"),
    )
