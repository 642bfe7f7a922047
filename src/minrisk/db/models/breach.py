"""Breach record and recalculation run models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin


class RiskBreachModel(Base, TimestampMixin):
    """Persisted breach with its lifecycle audit trail.

    Rows are never deleted; status only moves forward and every move is
    appended to ``transitions``.
    """

    __tablename__ = "risk_breaches"

    breach_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    tolerance_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    risk_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)
    kri_id: Mapped[UUID | None] = mapped_column(PortableUUID(), nullable=True)

    breach_type: Mapped[str] = mapped_column(String(10), nullable=False)  # SOFT, HARD, CRITICAL
    breach_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    breach_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    variance_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    variance_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="OPEN")

    # Escalation
    escalated_to_cro: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_to_cro_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escalated_to_board: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_to_board_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # KRI tightening
    kri_threshold_tightened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kri_threshold_tightened_by_percent: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Review trail
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_actions: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transitions: Mapped[list] = mapped_column(PortableJSON(), nullable=False, default=list)

    __table_args__ = (
        Index("idx_breach_org_status", "organization_id", "status"),
        Index("idx_breach_tolerance", "tolerance_id"),
        Index("idx_breach_date", "breach_date"),
    )

    def __repr__(self) -> str:
        return f"<RiskBreach(id={self.breach_id}, type={self.breach_type}, status={self.status})>"


class RecalcRunModel(Base):
    """Audit record of an organization-wide recalculation.

    At most one RUNNING row per organization, enforced by a partial unique
    index. Inserting a RUNNING row is how the run lock is taken.
    """

    __tablename__ = "recalc_runs"

    run_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    organization_id: Mapped[UUID] = mapped_column(PortableUUID(), nullable=False)
    run_type: Mapped[str] = mapped_column(String(20), nullable=False, default="FULL")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="RUNNING")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    risks_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    risks_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    risks_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "uq_recalc_runs_one_running",
            "organization_id",
            unique=True,
            sqlite_where=text("status = 'RUNNING'"),
            postgresql_where=text("status = 'RUNNING'"),
        ),
        Index("idx_recalc_org_started", "organization_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<RecalcRun(id={self.run_id}, org={self.organization_id}, status={self.status})>"
