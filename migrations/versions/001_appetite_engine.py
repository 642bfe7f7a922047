"""Risk appetite engine schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Appetite categories
    op.create_table(
        "appetite_categories",
        sa.Column("category_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("risk_category", sa.String(200), nullable=False),
        sa.Column("appetite_level", sa.String(20), nullable=False),
        sa.Column("materiality_rule", postgresql.JSONB, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_appetite_category_org", "appetite_categories", ["organization_id"])

    # Risks
    op.create_table(
        "risks",
        sa.Column("risk_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("likelihood_inherent", sa.Integer, nullable=False),
        sa.Column("impact_inherent", sa.Integer, nullable=False),
        sa.Column(
            "appetite_category_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("appetite_categories.category_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("residual_score", sa.Float, nullable=True),
        sa.Column("raf_adjusted_score", sa.Float, nullable=True),
        sa.Column("out_of_appetite", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("appetite_status", postgresql.JSONB, nullable=True),
        sa.Column("last_scored_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("likelihood_inherent BETWEEN 1 AND 5", name="ck_risk_likelihood"),
        sa.CheckConstraint("impact_inherent BETWEEN 1 AND 5", name="ck_risk_impact"),
    )
    op.create_index("idx_risk_org", "risks", ["organization_id"])
    op.create_index("idx_risk_category", "risks", ["appetite_category_id"])

    # Controls with DIME sub-scores
    op.create_table(
        "risk_controls",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "risk_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("risks.risk_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("control_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("design_score", sa.Integer, nullable=False),
        sa.Column("implementation_score", sa.Integer, nullable=False),
        sa.Column("monitoring_score", sa.Integer, nullable=False),
        sa.Column("evaluation_score", sa.Integer, nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "design_score BETWEEN 0 AND 3 AND implementation_score BETWEEN 0 AND 3 "
            "AND monitoring_score BETWEEN 0 AND 3 AND evaluation_score BETWEEN 0 AND 3",
            name="ck_risk_control_dime",
        ),
    )
    op.create_index("idx_risk_control_risk", "risk_controls", ["risk_id"])

    # Incidents
    op.create_table(
        "incidents",
        sa.Column("incident_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("risk_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("category_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_incident_org_occurred", "incidents", ["organization_id", "occurred_at"])
    op.create_index("idx_incident_risk", "incidents", ["risk_id"])

    # Tolerance metrics
    op.create_table(
        "tolerance_metrics",
        sa.Column("tolerance_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("metric_name", sa.String(200), nullable=False),
        sa.Column("metric_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kri_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("soft_limit", sa.Float, nullable=True),
        sa.Column("hard_limit", sa.Float, nullable=True),
        sa.Column("breach_direction", sa.String(10), nullable=False),
        sa.Column("comparison_operator", sa.String(5), nullable=False),
        sa.Column("breach_rule", sa.String(30), nullable=False),
        sa.Column("breach_rule_config", postgresql.JSONB, nullable=False),
        sa.Column("measurement_window_days", sa.Integer, nullable=True),
        sa.Column("escalation_severity_on_soft_breach", sa.String(10), nullable=False),
        sa.Column("current_value", sa.Float, nullable=True),
        sa.Column("last_measurement_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_tolerance_org", "tolerance_metrics", ["organization_id"])
    op.create_index("idx_tolerance_kri", "tolerance_metrics", ["kri_id"])

    op.create_table(
        "risk_tolerance_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "risk_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("risks.risk_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tolerance_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tolerance_metrics.tolerance_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.UniqueConstraint("risk_id", "tolerance_id", name="uq_risk_tolerance"),
    )
    op.create_index("idx_risk_tolerance_tolerance", "risk_tolerance_links", ["tolerance_id"])

    op.create_table(
        "tolerance_breach_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "tolerance_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tolerance_metrics.tolerance_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period_number", sa.Integer, nullable=False),
        sa.Column("measurement_date", sa.Date, nullable=False),
        sa.Column("breach_type", sa.String(10), nullable=False),
        sa.Column("measured_value", sa.Float, nullable=True),
        sa.Column("resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index(
        "idx_breach_history_tolerance_period",
        "tolerance_breach_history",
        ["tolerance_id", "period_number"],
    )
    op.create_index(
        "idx_breach_history_tolerance_date",
        "tolerance_breach_history",
        ["tolerance_id", "measurement_date"],
    )

    # KRIs
    op.create_table(
        "kri_definitions",
        sa.Column("kri_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "tolerance_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tolerance_metrics.tolerance_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("warning_threshold", sa.Float, nullable=True),
        sa.Column("critical_threshold", sa.Float, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_kri_tolerance", "kri_definitions", ["tolerance_id"])

    # Breach records
    op.create_table(
        "risk_breaches",
        sa.Column("breach_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tolerance_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("risk_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kri_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("breach_type", sa.String(10), nullable=False),
        sa.Column("breach_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("breach_value", sa.Float, nullable=False),
        sa.Column("threshold_value", sa.Float, nullable=False),
        sa.Column("variance_amount", sa.Float, nullable=False),
        sa.Column("variance_percentage", sa.Float, nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("escalated_to_cro", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("escalated_to_cro_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_to_board", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("escalated_to_board_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "kri_threshold_tightened", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("kri_threshold_tightened_by_percent", sa.Float, nullable=True),
        sa.Column("acknowledged_by", sa.String(255), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_notes", sa.Text, nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
        sa.Column("resolution_actions", sa.Text, nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transitions", postgresql.JSONB, nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_breach_org_status", "risk_breaches", ["organization_id", "status"])
    op.create_index("idx_breach_tolerance", "risk_breaches", ["tolerance_id"])
    op.create_index("idx_breach_date", "risk_breaches", ["breach_date"])

    # Recalculation runs; the partial unique index is the per-organization lock
    op.create_table(
        "recalc_runs",
        sa.Column("run_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("run_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("risks_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risks_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risks_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
    )
    op.create_index(
        "uq_recalc_runs_one_running",
        "recalc_runs",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("status = 'RUNNING'"),
    )
    op.create_index("idx_recalc_org_started", "recalc_runs", ["organization_id", "started_at"])


def downgrade() -> None:
    op.drop_table("recalc_runs")
    op.drop_table("risk_breaches")
    op.drop_table("kri_definitions")
    op.drop_table("tolerance_breach_history")
    op.drop_table("risk_tolerance_links")
    op.drop_table("tolerance_metrics")
    op.drop_table("incidents")
    op.drop_table("risk_controls")
    op.drop_table("risks")
    op.drop_table("appetite_categories")
