"""Tolerance metric, breach history and KRI models."""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin


class ToleranceMetricModel(Base, TimestampMixin):
    """Quantitative tolerance limits for one metric."""

    __tablename__ = "tolerance_metrics"

    tolerance_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    metric_name: Mapped[str] = mapped_column(String(200), nullable=False)
    metric_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    kri_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)

    soft_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    hard_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    breach_direction: Mapped[str] = mapped_column(String(10), nullable=False, default="UP")
    comparison_operator: Mapped[str] = mapped_column(String(5), nullable=False, default="gte")
    breach_rule: Mapped[str] = mapped_column(
        String(30), nullable=False, default="POINT_IN_TIME"
    )
    breach_rule_config: Mapped[dict] = mapped_column(PortableJSON(), nullable=False, default=dict)
    measurement_window_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_severity_on_soft_breach: Mapped[str] = mapped_column(
        String(10), nullable=False, default="WARN"
    )

    current_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_measurement_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_tolerance_org", "organization_id"),
        Index("idx_tolerance_kri", "kri_id"),
    )

    def __repr__(self) -> str:
        return f"<ToleranceMetric(id={self.tolerance_id}, metric={self.metric_name})>"


class RiskToleranceLinkModel(Base):
    """Many-to-many link between risks and tolerance metrics."""

    __tablename__ = "risk_tolerance_links"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    risk_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("risks.risk_id", ondelete="CASCADE"), nullable=False
    )
    tolerance_id: Mapped[UUID] = mapped_column(
        PortableUUID(),
        ForeignKey("tolerance_metrics.tolerance_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("risk_id", "tolerance_id", name="uq_risk_tolerance"),
        Index("idx_risk_tolerance_tolerance", "tolerance_id"),
    )


class ToleranceBreachHistoryModel(Base, TimestampMixin):
    """One breached measurement period of a tolerance."""

    __tablename__ = "tolerance_breach_history"

    id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    tolerance_id: Mapped[UUID] = mapped_column(
        PortableUUID(),
        ForeignKey("tolerance_metrics.tolerance_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    measurement_date: Mapped[date] = mapped_column(Date, nullable=False)
    breach_type: Mapped[str] = mapped_column(String(10), nullable=False, default="SOFT")
    measured_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_breach_history_tolerance_period", "tolerance_id", "period_number"),
        Index("idx_breach_history_tolerance_date", "tolerance_id", "measurement_date"),
    )


class KRIDefinitionModel(Base, TimestampMixin):
    """Key risk indicator thresholds, optionally governed by a tolerance."""

    __tablename__ = "kri_definitions"

    kri_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    tolerance_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(),
        ForeignKey("tolerance_metrics.tolerance_id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    warning_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    critical_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("idx_kri_tolerance", "tolerance_id"),)
