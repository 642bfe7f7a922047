"""Types and data models for the risk appetite decision engine.

Defines the enums, input records, evaluation outputs, breach records and
recalculation run records shared by the tolerance evaluator, materiality
evaluator, residual score calculator, aggregator, breach manager and
recalculation coordinator.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from uuid_utils.compat import uuid7

from minrisk.utils.exceptions import MinRiskError

# =============================================================================
# Enums
# =============================================================================


class AppetiteLevel(str, Enum):
    """Organizational tolerance tier for a risk category."""

    ZERO = "ZERO"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class BreachDirection(str, Enum):
    """Which way a metric moves when it gets worse."""

    UP = "UP"  # Higher is worse (complaints, downtime)
    DOWN = "DOWN"  # Lower is worse (liquidity ratio, capital ratio)


class ComparisonOperator(str, Enum):
    """Comparison applied between a value and a limit or threshold."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


class BreachRule(str, Enum):
    """Persistence condition before a soft breach escalates."""

    POINT_IN_TIME = "POINT_IN_TIME"
    SUSTAINED_N_PERIODS = "SUSTAINED_N_PERIODS"
    N_BREACHES_IN_WINDOW = "N_BREACHES_IN_WINDOW"


class Severity(str, Enum):
    """Severity attached to a tolerance status or appetite verdict."""

    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 1,
    Severity.WARN: 2,
    Severity.CRITICAL: 3,
}


class ReasonCode(str, Enum):
    """Reason behind an appetite verdict, in precedence order."""

    HARD_LIMIT_BREACH = "HARD_LIMIT_BREACH"
    ZERO_APPETITE_MATERIAL = "ZERO_APPETITE_MATERIAL"
    SOFT_LIMIT_ESCALATION = "SOFT_LIMIT_ESCALATION"
    DATA_MISSING_FOR_TOLERANCE = "DATA_MISSING_FOR_TOLERANCE"
    SOFT_BREACH_PENDING_ESCALATION = "SOFT_BREACH_PENDING_ESCALATION"
    WITHIN_APPETITE = "WITHIN_APPETITE"


PRECEDENCE_ORDER: tuple[ReasonCode, ...] = (
    ReasonCode.HARD_LIMIT_BREACH,
    ReasonCode.ZERO_APPETITE_MATERIAL,
    ReasonCode.SOFT_LIMIT_ESCALATION,
    ReasonCode.DATA_MISSING_FOR_TOLERANCE,
    ReasonCode.SOFT_BREACH_PENDING_ESCALATION,
    ReasonCode.WITHIN_APPETITE,
)


class MaterialityRuleType(str, Enum):
    """Kind of exposure a materiality rule measures."""

    AMOUNT = "amount"
    PERCENTAGE = "percentage"
    COUNT = "count"
    SCORE_BAND = "score_band"


class AggregationScope(str, Enum):
    """Population over which materiality inputs are accumulated."""

    RISK = "risk"
    CATEGORY = "category"
    ORG = "org"


class ScoreBasis(str, Enum):
    """Score the appetite multiplier is applied to."""

    INHERENT = "inherent"
    RESIDUAL = "residual"


class BreachType(str, Enum):
    """Class of a persisted breach."""

    SOFT = "SOFT"
    HARD = "HARD"
    CRITICAL = "CRITICAL"


class BreachSeverity(str, Enum):
    """Severity of a persisted breach record."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class BreachStatus(str, Enum):
    """Lifecycle status of a breach record."""

    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    INVESTIGATING = "INVESTIGATING"
    REMEDIATION_IN_PROGRESS = "REMEDIATION_IN_PROGRESS"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


INACTIVE_BREACH_STATUSES: frozenset[BreachStatus] = frozenset(
    {BreachStatus.RESOLVED, BreachStatus.CLOSED}
)

# Resolution may be recorded from any active state; nothing moves backwards
ALLOWED_TRANSITIONS: dict[BreachStatus, frozenset[BreachStatus]] = {
    BreachStatus.OPEN: frozenset({BreachStatus.ACKNOWLEDGED, BreachStatus.RESOLVED}),
    BreachStatus.ACKNOWLEDGED: frozenset({BreachStatus.INVESTIGATING, BreachStatus.RESOLVED}),
    BreachStatus.INVESTIGATING: frozenset(
        {BreachStatus.REMEDIATION_IN_PROGRESS, BreachStatus.RESOLVED}
    ),
    BreachStatus.REMEDIATION_IN_PROGRESS: frozenset(
        {BreachStatus.PENDING_APPROVAL, BreachStatus.RESOLVED}
    ),
    BreachStatus.PENDING_APPROVAL: frozenset(
        {BreachStatus.APPROVED, BreachStatus.REJECTED, BreachStatus.RESOLVED}
    ),
    BreachStatus.APPROVED: frozenset({BreachStatus.RESOLVED}),
    BreachStatus.REJECTED: frozenset({BreachStatus.RESOLVED}),
    BreachStatus.RESOLVED: frozenset({BreachStatus.CLOSED}),
    BreachStatus.CLOSED: frozenset(),
}


def can_transition(current: BreachStatus, target: BreachStatus) -> bool:
    """Whether ``target`` may follow ``current``."""
    return target in ALLOWED_TRANSITIONS[current]


class RecalcStatus(str, Enum):
    """Status of a bulk recalculation run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecalcRunType(str, Enum):
    """Scope of a recalculation run."""

    FULL = "FULL"
    CATEGORY = "CATEGORY"
    RISK = "RISK"


def max_severity(severities: list[Severity]) -> Severity:
    """Highest severity in a non-empty list."""
    return max(severities, key=lambda s: SEVERITY_RANK[s])


def ensure_utc(value: datetime | date | None) -> datetime | None:
    """Normalise a date or naive datetime to an aware UTC datetime."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# =============================================================================
# Input Models
# =============================================================================


class BreachRuleConfig(BaseModel):
    """Rule-specific configuration for a tolerance breach rule."""

    model_config = ConfigDict(frozen=True)

    periods: int | None = Field(default=None, ge=1)  # SUSTAINED_N_PERIODS
    count: int | None = Field(default=None, ge=1)  # N_BREACHES_IN_WINDOW
    window_days: int | None = Field(default=None, ge=1)  # N_BREACHES_IN_WINDOW


class ToleranceMetric(BaseModel):
    """A monitored metric with soft and hard limits.

    Identity and limits are fixed; ``current_value`` and
    ``last_measurement_date`` arrive from an external feed and are replaced
    with ``with_measurement`` rather than mutated.
    """

    model_config = ConfigDict(frozen=True)

    tolerance_id: UUID
    metric_name: str
    metric_id: UUID | None = None
    kri_id: UUID | None = None
    soft_limit: float | None = None
    hard_limit: float | None = None
    breach_direction: BreachDirection = BreachDirection.UP
    comparison_operator: ComparisonOperator = ComparisonOperator.GTE
    breach_rule: BreachRule = BreachRule.POINT_IN_TIME
    breach_rule_config: BreachRuleConfig = Field(default_factory=BreachRuleConfig)
    measurement_window_days: int | None = Field(default=None, ge=0)  # None = engine default
    escalation_severity_on_soft_breach: Severity = Severity.WARN
    current_value: float | None = None
    last_measurement_date: datetime | None = None

    @field_validator("last_measurement_date", mode="before")
    @classmethod
    def normalise_measurement_date(cls, value: Any) -> Any:
        """Store measurement dates as aware UTC datetimes."""
        if isinstance(value, (datetime, date)):
            return ensure_utc(value)
        return value

    def with_measurement(self, value: float | None, measured_at: datetime | date) -> "ToleranceMetric":
        """Return a copy carrying a new observation."""
        return self.model_copy(
            update={"current_value": value, "last_measurement_date": ensure_utc(measured_at)}
        )


class MaterialityRule(BaseModel):
    """Threshold test for ZERO-appetite categories."""

    model_config = ConfigDict(frozen=True)

    rule_type: MaterialityRuleType
    threshold: float
    comparison: ComparisonOperator = ComparisonOperator.GTE
    basis: str | None = None  # capital, revenue, exposure, events
    aggregation_scope: AggregationScope = AggregationScope.RISK
    measurement_window_days: int = Field(default=90, ge=1)
    description: str = ""


class AppetiteCategory(BaseModel):
    """Groups risks under one appetite level and optional materiality rule."""

    model_config = ConfigDict(frozen=True)

    category_id: UUID | None = None
    appetite_level: AppetiteLevel = AppetiteLevel.MODERATE
    risk_category: str = "Uncategorized"
    materiality_rule: MaterialityRule | None = None


class Control(BaseModel):
    """A control linked to a risk, scored on the DIME scale (0-3 each)."""

    model_config = ConfigDict(frozen=True)

    control_id: UUID
    name: str = ""
    design_score: int = Field(default=0, ge=0, le=3)
    implementation_score: int = Field(default=0, ge=0, le=3)
    monitoring_score: int = Field(default=0, ge=0, le=3)
    evaluation_score: int = Field(default=0, ge=0, le=3)


class RiskProfile(BaseModel):
    """The inputs of a single risk needed for scoring."""

    model_config = ConfigDict(frozen=True)

    risk_id: UUID
    organization_id: UUID
    title: str = ""
    likelihood_inherent: int = Field(default=1, ge=1, le=5)
    impact_inherent: int = Field(default=1, ge=1, le=5)
    appetite_category: AppetiteCategory | None = None
    residual_score: float | None = None


class KRIDefinition(BaseModel):
    """Warning/critical thresholds of a key risk indicator."""

    model_config = ConfigDict(frozen=True)

    kri_id: UUID
    organization_id: UUID | None = None
    tolerance_id: UUID | None = None
    name: str = ""
    warning_threshold: float | None = None
    critical_threshold: float | None = None

    def tightened(self, fraction: float) -> "KRIDefinition":
        """Shrink both thresholds by ``fraction`` (0 < fraction < 1)."""
        if not 0.0 < fraction < 1.0:
            raise ValueError(f"Tightening fraction must be between 0 and 1, got {fraction}")
        factor = 1 - fraction
        return self.model_copy(
            update={
                "warning_threshold": (
                    self.warning_threshold * factor if self.warning_threshold is not None else None
                ),
                "critical_threshold": (
                    self.critical_threshold * factor
                    if self.critical_threshold is not None
                    else None
                ),
            }
        )


# =============================================================================
# Evaluation Outputs
# =============================================================================


@dataclass(frozen=True)
class BreachRuleOutcome:
    """Result of checking a tolerance's breach-persistence rule."""

    rule_met: bool
    periods_remaining: int | None = None
    breach_count: int | None = None
    degraded: bool = False  # provider failed, outcome is conservative


@dataclass(frozen=True)
class ToleranceStatus:
    """State of one tolerance at one evaluation instant."""

    tolerance_id: UUID
    metric_name: str
    is_soft_breached: bool
    is_hard_breached: bool
    is_data_missing: bool
    breach_rule_met: bool
    current_value: float | None
    severity: Severity
    periods_remaining: int | None = None
    breach_count_in_window: int | None = None
    rule_evaluation_degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tolerance_id": str(self.tolerance_id),
            "metric_name": self.metric_name,
            "is_soft_breached": self.is_soft_breached,
            "is_hard_breached": self.is_hard_breached,
            "is_data_missing": self.is_data_missing,
            "breach_rule_met": self.breach_rule_met,
            "current_value": self.current_value,
            "severity": self.severity.value,
            "periods_remaining": self.periods_remaining,
            "breach_count_in_window": self.breach_count_in_window,
            "rule_evaluation_degraded": self.rule_evaluation_degraded,
        }


@dataclass(frozen=True)
class MaterialityResult:
    """Outcome of a materiality test."""

    is_material: bool
    explanation: str
    value: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_material": self.is_material,
            "explanation": self.explanation,
            "value": self.value,
        }


@dataclass(frozen=True)
class ToleranceReference:
    """Pointer to a tolerance that drove a verdict."""

    tolerance_id: UUID
    metric_name: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"tolerance_id": str(self.tolerance_id), "metric_name": self.metric_name}


@dataclass(frozen=True)
class OutOfAppetiteResult:
    """Aggregated appetite verdict for one risk at one instant."""

    out_of_appetite: bool
    escalation_required: bool
    severity: Severity
    reason_code: ReasonCode
    impacted_tolerances: tuple[ToleranceReference, ...] = ()
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (the snapshot persisted on the risk)."""
        return {
            "out_of_appetite": self.out_of_appetite,
            "escalation_required": self.escalation_required,
            "severity": self.severity.value,
            "reason_code": self.reason_code.value,
            "impacted_tolerances": [t.to_dict() for t in self.impacted_tolerances],
            "evidence": self.evidence,
        }


@dataclass(frozen=True)
class ResidualScoreResult:
    """Inherent and residual score of a risk with its control effectiveness."""

    inherent_score: int
    residual_score: float
    control_effectiveness: float
    control_count: int = 0
    mapping_method: str = "DIME_v1"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "inherent_score": self.inherent_score,
            "residual_score": self.residual_score,
            "control_effectiveness": self.control_effectiveness,
            "control_count": self.control_count,
            "mapping_method": self.mapping_method,
        }


@dataclass(frozen=True)
class RAFScoreResult:
    """Complete risk appetite framework score for one risk."""

    risk_id: UUID
    inherent_score: int
    residual_score: float
    raf_adjusted_score: float
    score_basis: ScoreBasis
    multiplier: float
    appetite_level: AppetiteLevel
    control_effectiveness: float
    appetite_status: OutOfAppetiteResult
    explanation: str
    tolerance_statuses: tuple[ToleranceStatus, ...] = ()
    materiality: MaterialityResult | None = None
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def out_of_appetite(self) -> bool:
        return self.appetite_status.out_of_appetite

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "risk_id": str(self.risk_id),
            "inherent_score": self.inherent_score,
            "residual_score": self.residual_score,
            "raf_adjusted_score": self.raf_adjusted_score,
            "score_basis": self.score_basis.value,
            "multiplier": self.multiplier,
            "appetite_level": self.appetite_level.value,
            "control_effectiveness": self.control_effectiveness,
            "appetite_status": self.appetite_status.to_dict(),
            "explanation": self.explanation,
            "tolerance_statuses": [s.to_dict() for s in self.tolerance_statuses],
            "materiality": self.materiality.to_dict() if self.materiality else None,
            "evaluated_at": self.evaluated_at.isoformat(),
        }


# =============================================================================
# Breach Records
# =============================================================================


@dataclass(frozen=True)
class BreachDetectionResult:
    """Outcome of checking one reading against its thresholds."""

    is_breach: bool
    breach_type: BreachType | None
    severity: BreachSeverity
    breach_value: float
    threshold_value: float
    variance_amount: float
    variance_percentage: float


@dataclass(frozen=True)
class BreachTransition:
    """One audited lifecycle step of a breach."""

    from_status: BreachStatus
    to_status: BreachStatus
    actor: str
    at: datetime
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "at": self.at.isoformat(),
            "notes": self.notes,
        }


@dataclass
class BreachRecord:
    """Persisted fact of a tolerance or limit breach.

    Never deleted. Status only moves forward through the lifecycle; every
    move is appended to ``transitions``.
    """

    organization_id: UUID
    breach_type: BreachType
    breach_value: float
    threshold_value: float
    breach_id: UUID = field(default_factory=uuid7)
    tolerance_id: UUID | None = None
    risk_id: UUID | None = None
    kri_id: UUID | None = None
    breach_date: datetime = field(default_factory=lambda: datetime.now(UTC))
    variance_amount: float = 0.0
    variance_percentage: float = 0.0
    severity: BreachSeverity = BreachSeverity.MEDIUM
    status: BreachStatus = BreachStatus.OPEN

    # Escalation
    escalated_to_cro: bool = False
    escalated_to_cro_at: datetime | None = None
    escalated_to_board: bool = False
    escalated_to_board_at: datetime | None = None

    # KRI tightening
    kri_threshold_tightened: bool = False
    kri_threshold_tightened_by_percent: float | None = None

    # Review trail
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    acknowledged_notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    resolution_actions: str | None = None
    closed_at: datetime | None = None
    transitions: list[BreachTransition] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_BREACH_STATUSES

    def apply_transition(
        self,
        status: BreachStatus,
        actor: str,
        at: datetime,
        notes: str | None = None,
        resolution_actions: str | None = None,
    ) -> "BreachRecord":
        """Return a copy moved to ``status`` with the audit fields filled in.

        Stores call this against the status they have just read, inside
        their read-modify-write, so the check holds under concurrent updates.

        Raises:
            InvalidBreachTransitionError: If ``status`` may not follow the
                current status.
        """
        if not can_transition(self.status, status):
            raise InvalidBreachTransitionError(self.breach_id, self.status, status)
        at = ensure_utc(at)
        updates: dict[str, Any] = {
            "status": status,
            "updated_at": at,
            "transitions": [
                *self.transitions,
                BreachTransition(
                    from_status=self.status, to_status=status, actor=actor, at=at, notes=notes
                ),
            ],
        }
        if status == BreachStatus.ACKNOWLEDGED:
            updates.update(acknowledged_by=actor, acknowledged_at=at, acknowledged_notes=notes)
        elif status == BreachStatus.RESOLVED:
            updates.update(
                resolved_by=actor,
                resolved_at=at,
                resolution_notes=notes,
                resolution_actions=resolution_actions,
            )
        elif status == BreachStatus.CLOSED:
            updates["closed_at"] = at
        return replace(self, **updates)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "breach_id": str(self.breach_id),
            "organization_id": str(self.organization_id),
            "tolerance_id": str(self.tolerance_id) if self.tolerance_id else None,
            "risk_id": str(self.risk_id) if self.risk_id else None,
            "kri_id": str(self.kri_id) if self.kri_id else None,
            "breach_type": self.breach_type.value,
            "breach_date": self.breach_date.isoformat(),
            "breach_value": self.breach_value,
            "threshold_value": self.threshold_value,
            "variance_amount": self.variance_amount,
            "variance_percentage": self.variance_percentage,
            "severity": self.severity.value,
            "status": self.status.value,
            "escalated_to_cro": self.escalated_to_cro,
            "escalated_to_cro_at": _iso(self.escalated_to_cro_at),
            "escalated_to_board": self.escalated_to_board,
            "escalated_to_board_at": _iso(self.escalated_to_board_at),
            "kri_threshold_tightened": self.kri_threshold_tightened,
            "kri_threshold_tightened_by_percent": self.kri_threshold_tightened_by_percent,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "resolution_notes": self.resolution_notes,
            "closed_at": _iso(self.closed_at),
            "transitions": [t.to_dict() for t in self.transitions],
        }


@dataclass
class BreachStatistics:
    """Breach counts for an organization."""

    total: int = 0
    open: int = 0
    by_type: dict[BreachType, int] = field(
        default_factory=lambda: {t: 0 for t in BreachType}
    )
    by_severity: dict[BreachSeverity, int] = field(
        default_factory=lambda: {s: 0 for s in BreachSeverity}
    )
    avg_resolution_days: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total": self.total,
            "open": self.open,
            "by_type": {t.value: n for t, n in self.by_type.items()},
            "by_severity": {s.value: n for s, n in self.by_severity.items()},
            "avg_resolution_days": self.avg_resolution_days,
        }


# =============================================================================
# Recalculation Runs
# =============================================================================


@dataclass
class RecalcRun:
    """Lock and audit record of a bulk recalculation pass."""

    organization_id: UUID
    run_id: UUID = field(default_factory=uuid7)
    run_type: RecalcRunType = RecalcRunType.FULL
    status: RecalcStatus = RecalcStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    risks_processed: int = 0
    risks_updated: int = 0
    risks_failed: int = 0
    error_message: str | None = None
    created_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": str(self.run_id),
            "organization_id": str(self.organization_id),
            "run_type": self.run_type.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "risks_processed": self.risks_processed,
            "risks_updated": self.risks_updated,
            "risks_failed": self.risks_failed,
            "error_message": self.error_message,
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class RecalcSummary:
    """What a call to recalculate an organization achieved."""

    updated: int = 0
    errors: int = 0
    processed: int = 0
    run_id: UUID | None = None
    acquired: bool = True
    status: RecalcStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "updated": self.updated,
            "errors": self.errors,
            "processed": self.processed,
            "run_id": str(self.run_id) if self.run_id else None,
            "acquired": self.acquired,
            "status": self.status.value if self.status else None,
        }


# =============================================================================
# History Records
# =============================================================================


@dataclass(frozen=True)
class BreachHistoryEntry:
    """One measured period of a tolerance that was in breach."""

    tolerance_id: UUID
    period_number: int
    measurement_date: date
    breach_type: BreachType = BreachType.SOFT
    measured_value: float | None = None
    resolved: bool = False


@dataclass(frozen=True)
class IncidentEvent:
    """An incident counted by ``count`` materiality rules."""

    organization_id: UUID
    occurred_at: datetime
    risk_id: UUID | None = None
    category_id: UUID | None = None
    incident_id: UUID = field(default_factory=uuid7)


# =============================================================================
# Exceptions
# =============================================================================


class AppetiteEngineError(MinRiskError):
    """Base exception for decision engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "APPETITE_ENGINE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class RiskNotFoundError(AppetiteEngineError):
    """A risk record required for evaluation does not exist."""

    def __init__(self, risk_id: UUID) -> None:
        super().__init__(
            f"Risk not found: {risk_id}", code="RISK_NOT_FOUND", details={"risk_id": str(risk_id)}
        )
        self.risk_id = risk_id


class ToleranceNotFoundError(AppetiteEngineError):
    """A tolerance metric does not exist."""

    def __init__(self, tolerance_id: UUID) -> None:
        super().__init__(
            f"Tolerance not found: {tolerance_id}",
            code="TOLERANCE_NOT_FOUND",
            details={"tolerance_id": str(tolerance_id)},
        )
        self.tolerance_id = tolerance_id


class KRINotFoundError(AppetiteEngineError):
    """A KRI definition does not exist."""

    def __init__(self, kri_id: UUID) -> None:
        super().__init__(
            f"KRI not found: {kri_id}", code="KRI_NOT_FOUND", details={"kri_id": str(kri_id)}
        )
        self.kri_id = kri_id


class BreachNotFoundError(AppetiteEngineError):
    """A breach record does not exist."""

    def __init__(self, breach_id: UUID) -> None:
        super().__init__(
            f"Breach not found: {breach_id}",
            code="BREACH_NOT_FOUND",
            details={"breach_id": str(breach_id)},
        )
        self.breach_id = breach_id


class InvalidBreachTransitionError(AppetiteEngineError):
    """A lifecycle move that is not permitted from the current status."""

    def __init__(self, breach_id: UUID, current: BreachStatus, target: BreachStatus) -> None:
        super().__init__(
            f"Cannot move breach {breach_id} from {current.value} to {target.value}",
            code="INVALID_BREACH_TRANSITION",
            details={
                "breach_id": str(breach_id),
                "current": current.value,
                "target": target.value,
            },
        )
        self.current = current
        self.target = target


class ProviderError(AppetiteEngineError):
    """A data provider or persistence sink failed."""

    def __init__(
        self,
        message: str,
        operation: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code="PROVIDER_ERROR", details={"operation": operation, **(details or {})})
        self.operation = operation


class CategoryNotFoundError(AppetiteEngineError):
    """An appetite category referenced by a risk does not exist."""

    def __init__(self, category_id: UUID) -> None:
        super().__init__(
            f"Appetite category not found: {category_id}",
            code="CATEGORY_NOT_FOUND",
            details={"category_id": str(category_id)},
        )
        self.category_id = category_id


class InvalidControlScoreError(AppetiteEngineError):
    """A control carries a DIME sub-score outside 0-3."""

    def __init__(self, control_id: UUID, field_name: str, value: Any) -> None:
        super().__init__(
            f"Control {control_id} has invalid {field_name}: {value!r}",
            code="INVALID_CONTROL_SCORE",
            details={"control_id": str(control_id), "field": field_name, "value": value},
        )
        self.control_id = control_id
