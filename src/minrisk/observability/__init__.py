"""Observability module for MinRisk.

Prometheus metrics for appetite evaluations, breach records and bulk
recalculation runs.

Usage:
    from minrisk.observability import observe_recalc_duration, record_evaluation

    with observe_recalc_duration() as ctx:
        summary = await run()
        ctx["status"] = summary.status.value

    record_evaluation(reason_code="HARD_LIMIT_BREACH", appetite_level="LOW")
"""

from minrisk.observability.metrics import (
    APPETITE_EVALUATIONS,
    BREACH_TRANSITIONS,
    BREACHES_CREATED,
    KRI_TIGHTENINGS,
    PROVIDER_FAILURES,
    RECALC_DURATION,
    RECALC_IN_PROGRESS,
    RECALC_LOCK_CONTENTION,
    RECALC_RISK_FAILURES,
    RECALC_RUNS,
    RESIDUAL_SCORE_DISTRIBUTION,
    SERVICE_INFO,
    MetricsConfig,
    MetricsManager,
    create_metrics_manager,
    get_metrics,
    get_metrics_manager,
    observe_recalc_duration,
    record_breach_created,
    record_breach_transition,
    record_evaluation,
    record_kri_tightening,
    record_lock_contention,
    record_provider_failure,
    record_recalc_risk_failure,
)

__all__ = [
    # Metrics Configuration
    "MetricsConfig",
    "MetricsManager",
    "get_metrics",
    "get_metrics_manager",
    "create_metrics_manager",
    "SERVICE_INFO",
    # Evaluation Metrics
    "APPETITE_EVALUATIONS",
    "RESIDUAL_SCORE_DISTRIBUTION",
    "record_evaluation",
    # Breach Metrics
    "BREACHES_CREATED",
    "BREACH_TRANSITIONS",
    "KRI_TIGHTENINGS",
    "record_breach_created",
    "record_breach_transition",
    "record_kri_tightening",
    # Recalculation Metrics
    "RECALC_RUNS",
    "RECALC_DURATION",
    "RECALC_RISK_FAILURES",
    "RECALC_LOCK_CONTENTION",
    "RECALC_IN_PROGRESS",
    "observe_recalc_duration",
    "record_recalc_risk_failure",
    "record_lock_contention",
    # Provider Metrics
    "PROVIDER_FAILURES",
    "record_provider_failure",
]
