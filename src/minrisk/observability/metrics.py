"""Prometheus metrics for the MinRisk decision engine.

This module provides Prometheus metrics for monitoring:
- Appetite evaluations (verdicts by reason code, residual score distribution)
- Breach records (created by type/severity, lifecycle transitions)
- Bulk recalculation (runs by terminal status, duration, per-risk failures,
  lock contention)
- Provider health (degraded provider calls)
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

if TYPE_CHECKING:
    from collections.abc import Generator

__all__ = [
    "MetricsConfig",
    "MetricsManager",
    "APPETITE_EVALUATIONS",
    "RESIDUAL_SCORE_DISTRIBUTION",
    "BREACHES_CREATED",
    "BREACH_TRANSITIONS",
    "KRI_TIGHTENINGS",
    "RECALC_RUNS",
    "RECALC_DURATION",
    "RECALC_RISK_FAILURES",
    "RECALC_LOCK_CONTENTION",
    "RECALC_IN_PROGRESS",
    "PROVIDER_FAILURES",
    "observe_recalc_duration",
    "record_evaluation",
    "record_breach_created",
    "record_breach_transition",
    "record_kri_tightening",
    "record_recalc_risk_failure",
    "record_lock_contention",
    "record_provider_failure",
    "get_metrics",
    "get_metrics_manager",
    "create_metrics_manager",
]


@dataclass
class MetricsConfig:
    """Configuration for Prometheus metrics.

    Attributes:
        enabled: Whether metrics collection is enabled.
        prefix: Prefix for all metric names.
    """

    enabled: bool = True
    prefix: str = "minrisk"

    @classmethod
    def from_env(cls) -> MetricsConfig:
        """Create configuration from environment variables."""
        return cls(
            enabled=os.getenv("METRICS_ENABLED", "true").lower() == "true",
            prefix=os.getenv("METRICS_PREFIX", "minrisk"),
        )


# Default configuration
_config = MetricsConfig()

# ============================================================================
# Evaluation Metrics
# ============================================================================

APPETITE_EVALUATIONS = Counter(
    f"{_config.prefix}_appetite_evaluations_total",
    "Appetite verdicts by reason code",
    ["reason_code", "appetite_level"],
)

RESIDUAL_SCORE_DISTRIBUTION = Histogram(
    f"{_config.prefix}_residual_score",
    "Distribution of computed residual scores",
    ["appetite_level"],
    buckets=(0, 2, 4, 6, 8, 10, 12, 15, 20, 25),
)

# ============================================================================
# Breach Metrics
# ============================================================================

BREACHES_CREATED = Counter(
    f"{_config.prefix}_breaches_created_total",
    "Breach records created",
    ["breach_type", "severity"],
)

BREACH_TRANSITIONS = Counter(
    f"{_config.prefix}_breach_transitions_total",
    "Breach lifecycle transitions",
    ["to_status"],
)

KRI_TIGHTENINGS = Counter(
    f"{_config.prefix}_kri_tightenings_total",
    "KRI threshold tightenings triggered by breaches",
)

# ============================================================================
# Recalculation Metrics
# ============================================================================

RECALC_RUNS = Counter(
    f"{_config.prefix}_recalc_runs_total",
    "Bulk recalculation runs by terminal status",
    ["status"],
)

RECALC_DURATION = Histogram(
    f"{_config.prefix}_recalc_duration_seconds",
    "Duration of bulk recalculation runs",
    ["status"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
)

RECALC_RISK_FAILURES = Counter(
    f"{_config.prefix}_recalc_risk_failures_total",
    "Per-risk update failures during bulk recalculation",
)

RECALC_LOCK_CONTENTION = Counter(
    f"{_config.prefix}_recalc_lock_contention_total",
    "Recalculation requests skipped because a run was already active",
)

RECALC_IN_PROGRESS = Gauge(
    f"{_config.prefix}_recalc_in_progress",
    "Number of recalculation runs in progress in this process",
)

# ============================================================================
# Provider Metrics
# ============================================================================

PROVIDER_FAILURES = Counter(
    f"{_config.prefix}_provider_failures_total",
    "Provider calls that failed and degraded an evaluation",
    ["provider", "operation"],
)

# Service info
SERVICE_INFO = Info(
    f"{_config.prefix}_service",
    "Service information",
)


class MetricsManager:
    """Manages Prometheus metrics configuration and export."""

    def __init__(
        self,
        config: MetricsConfig | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize the metrics manager.

        Args:
            config: Metrics configuration.
            registry: Optional custom registry for testing.
        """
        self.config = config or MetricsConfig()
        self.registry = registry or REGISTRY
        self._initialized = False

    def initialize(
        self,
        service_name: str = "minrisk",
        service_version: str = "0.1.0",
        environment: str = "development",
    ) -> None:
        """Initialize metrics with service information."""
        if self._initialized or not self.config.enabled:
            return

        SERVICE_INFO.info(
            {
                "name": service_name,
                "version": service_version,
                "environment": environment,
            }
        )

        self._initialized = True

    def get_metrics(self) -> bytes:
        """Generate metrics output in Prometheus format."""
        return generate_latest(self.registry)


# Global metrics manager
_metrics_manager: MetricsManager | None = None


def get_metrics_manager() -> MetricsManager:
    """Get the global metrics manager instance."""
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager(MetricsConfig.from_env())
    return _metrics_manager


def create_metrics_manager(
    config: MetricsConfig | None = None,
    registry: CollectorRegistry | None = None,
) -> MetricsManager:
    """Create and register a new metrics manager.

    Args:
        config: Optional metrics configuration.
        registry: Optional custom registry.

    Returns:
        The configured MetricsManager instance.
    """
    global _metrics_manager
    _metrics_manager = MetricsManager(config, registry)
    return _metrics_manager


def get_metrics() -> bytes:
    """Get current metrics in Prometheus format."""
    return get_metrics_manager().get_metrics()


# ============================================================================
# Convenience Functions for Recording Metrics
# ============================================================================


@contextmanager
def observe_recalc_duration() -> Generator[dict[str, Any], None, None]:
    """Context manager for observing a recalculation run.

    Yields:
        Context dict; set ``status`` to the run's terminal status.
    """
    RECALC_IN_PROGRESS.inc()
    context: dict[str, Any] = {"status": "COMPLETED"}
    start_time = time.perf_counter()

    try:
        yield context
    except BaseException:
        context["status"] = "FAILED"
        raise
    finally:
        duration = time.perf_counter() - start_time
        status = context.get("status", "COMPLETED")
        RECALC_DURATION.labels(status=status).observe(duration)
        RECALC_RUNS.labels(status=status).inc()
        RECALC_IN_PROGRESS.dec()


def record_evaluation(
    reason_code: str,
    appetite_level: str,
    residual_score: float | None = None,
) -> None:
    """Record an appetite verdict.

    Args:
        reason_code: Verdict reason code.
        appetite_level: Appetite level of the risk's category.
        residual_score: Optional residual score for the distribution.
    """
    APPETITE_EVALUATIONS.labels(reason_code=reason_code, appetite_level=appetite_level).inc()
    if residual_score is not None:
        RESIDUAL_SCORE_DISTRIBUTION.labels(appetite_level=appetite_level).observe(residual_score)


def record_breach_created(breach_type: str, severity: str) -> None:
    """Record a newly created breach record."""
    BREACHES_CREATED.labels(breach_type=breach_type, severity=severity).inc()


def record_breach_transition(to_status: str) -> None:
    """Record a breach lifecycle transition."""
    BREACH_TRANSITIONS.labels(to_status=to_status).inc()


def record_kri_tightening() -> None:
    """Record a KRI threshold tightening."""
    KRI_TIGHTENINGS.inc()


def record_recalc_risk_failure() -> None:
    """Record a failed per-risk update within a run."""
    RECALC_RISK_FAILURES.inc()


def record_lock_contention() -> None:
    """Record a skipped recalculation request."""
    RECALC_LOCK_CONTENTION.inc()


def record_provider_failure(provider: str, operation: str) -> None:
    """Record a failed provider call."""
    PROVIDER_FAILURES.labels(provider=provider, operation=operation).inc()
