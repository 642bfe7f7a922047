"""Risk appetite decision engine.

This module decides, for a given risk, whether it is out of appetite, at
what severity and why: tolerance breach detection, breach-persistence
rules, ZERO-appetite materiality, DIME residual scoring and a fixed
precedence that resolves conflicting signals into one verdict. It also
manages breach records and organization-wide recalculation runs.
"""

from minrisk.appetite.aggregator import AppetiteAggregator, create_aggregator
from minrisk.appetite.breaches import (
    BreachManager,
    compute_variance,
    create_breach_manager,
    detect_breach,
)
from minrisk.appetite.legacy import (
    LegacyRAFScoreResult,
    calculate_raf_adjusted_score,
    check_out_of_appetite,
)
from minrisk.appetite.materiality import (
    MaterialityEvaluator,
    compare_values,
    create_materiality_evaluator,
)
from minrisk.appetite.providers import (
    BreachHistoryProvider,
    BreachStore,
    ControlProvider,
    InMemoryAppetiteStore,
    KRIStore,
    MaterialityProvider,
    RecalcLockStore,
    RiskProvider,
    RiskScoreSink,
    ToleranceProvider,
    create_in_memory_store,
)
from minrisk.appetite.recalculation import (
    RecalculationCoordinator,
    create_recalculation_coordinator,
)
from minrisk.appetite.residual import (
    ResidualScoreCalculator,
    create_residual_calculator,
    round_half_up,
)
from minrisk.appetite.scoring import (
    RAFScorer,
    create_raf_scorer,
    generate_explanation,
    recommended_actions,
)
from minrisk.appetite.tolerance import (
    ToleranceEvaluator,
    create_tolerance_evaluator,
    is_breached,
    is_data_missing,
)
from minrisk.appetite.types import (
    ALLOWED_TRANSITIONS,
    PRECEDENCE_ORDER,
    AggregationScope,
    AppetiteCategory,
    AppetiteEngineError,
    AppetiteLevel,
    BreachDetectionResult,
    BreachDirection,
    BreachHistoryEntry,
    BreachNotFoundError,
    BreachRecord,
    BreachRule,
    BreachRuleConfig,
    BreachSeverity,
    BreachStatistics,
    BreachStatus,
    BreachType,
    CategoryNotFoundError,
    ComparisonOperator,
    Control,
    IncidentEvent,
    InvalidBreachTransitionError,
    InvalidControlScoreError,
    KRIDefinition,
    KRINotFoundError,
    MaterialityResult,
    MaterialityRule,
    MaterialityRuleType,
    OutOfAppetiteResult,
    ProviderError,
    RAFScoreResult,
    ReasonCode,
    RecalcRun,
    RecalcRunType,
    RecalcStatus,
    RecalcSummary,
    ResidualScoreResult,
    RiskNotFoundError,
    RiskProfile,
    ScoreBasis,
    Severity,
    ToleranceMetric,
    ToleranceNotFoundError,
    ToleranceReference,
    ToleranceStatus,
    can_transition,
)

__all__ = [
    # Types
    "AggregationScope",
    "AppetiteCategory",
    "AppetiteLevel",
    "BreachDetectionResult",
    "BreachDirection",
    "BreachHistoryEntry",
    "BreachRecord",
    "BreachRule",
    "BreachRuleConfig",
    "BreachSeverity",
    "BreachStatistics",
    "BreachStatus",
    "BreachType",
    "ComparisonOperator",
    "Control",
    "IncidentEvent",
    "KRIDefinition",
    "MaterialityResult",
    "MaterialityRule",
    "MaterialityRuleType",
    "OutOfAppetiteResult",
    "PRECEDENCE_ORDER",
    "RAFScoreResult",
    "ReasonCode",
    "RecalcRun",
    "RecalcRunType",
    "RecalcStatus",
    "RecalcSummary",
    "ResidualScoreResult",
    "RiskProfile",
    "ScoreBasis",
    "Severity",
    "ToleranceMetric",
    "ToleranceReference",
    "ToleranceStatus",
    # Errors
    "AppetiteEngineError",
    "BreachNotFoundError",
    "CategoryNotFoundError",
    "InvalidBreachTransitionError",
    "InvalidControlScoreError",
    "KRINotFoundError",
    "ProviderError",
    "RiskNotFoundError",
    "ToleranceNotFoundError",
    # Providers
    "BreachHistoryProvider",
    "BreachStore",
    "ControlProvider",
    "InMemoryAppetiteStore",
    "KRIStore",
    "MaterialityProvider",
    "RecalcLockStore",
    "RiskProvider",
    "RiskScoreSink",
    "ToleranceProvider",
    "create_in_memory_store",
    # Tolerance
    "ToleranceEvaluator",
    "create_tolerance_evaluator",
    "is_breached",
    "is_data_missing",
    # Materiality
    "MaterialityEvaluator",
    "compare_values",
    "create_materiality_evaluator",
    # Residual
    "ResidualScoreCalculator",
    "create_residual_calculator",
    "round_half_up",
    # Aggregation
    "AppetiteAggregator",
    "create_aggregator",
    # Scoring
    "RAFScorer",
    "create_raf_scorer",
    "generate_explanation",
    "recommended_actions",
    # Breaches
    "ALLOWED_TRANSITIONS",
    "BreachManager",
    "can_transition",
    "compute_variance",
    "create_breach_manager",
    "detect_breach",
    # Recalculation
    "RecalculationCoordinator",
    "create_recalculation_coordinator",
    # Legacy
    "LegacyRAFScoreResult",
    "calculate_raf_adjusted_score",
    "check_out_of_appetite",
]
