"""Appetite aggregation.

Combines the tolerance statuses of one risk, its appetite category and an
optional materiality result into a single OutOfAppetiteResult. Rules are
applied in a fixed precedence and the first match wins:

1. ZERO appetite with material exposure (a hard breach still wins here)
2. Hard limit breach
3. Soft breach whose persistence rule is met
4. Missing or stale tolerance data
5. Soft breach whose persistence rule is not yet met
6. Within appetite
"""

from minrisk.appetite.types import (
    AppetiteCategory,
    AppetiteLevel,
    MaterialityResult,
    OutOfAppetiteResult,
    ReasonCode,
    Severity,
    ToleranceReference,
    ToleranceStatus,
    max_severity,
)
from minrisk.core.logging import get_logger

logger = get_logger(__name__)


def _references(statuses: list[ToleranceStatus]) -> tuple[ToleranceReference, ...]:
    return tuple(
        ToleranceReference(tolerance_id=s.tolerance_id, metric_name=s.metric_name)
        for s in statuses
    )


class AppetiteAggregator:
    """Resolves conflicting tolerance signals into one appetite verdict."""

    def aggregate(
        self,
        statuses: list[ToleranceStatus],
        category: AppetiteCategory,
        materiality: MaterialityResult | None = None,
    ) -> OutOfAppetiteResult:
        """Aggregate tolerance statuses for one risk.

        Args:
            statuses: Status of every tolerance linked to the risk.
            category: The risk's appetite category.
            materiality: Materiality result, only meaningful for ZERO appetite.

        Returns:
            The verdict of the first precedence rule that matches.
        """
        hard_breaches = [s for s in statuses if s.is_hard_breached]

        if category.appetite_level == AppetiteLevel.ZERO and materiality and materiality.is_material:
            if hard_breaches:
                return OutOfAppetiteResult(
                    out_of_appetite=True,
                    escalation_required=True,
                    severity=Severity.CRITICAL,
                    reason_code=ReasonCode.HARD_LIMIT_BREACH,
                    impacted_tolerances=_references(hard_breaches),
                    evidence={
                        "breached_limits": [s.metric_name for s in hard_breaches],
                        "also_zero_appetite_material": True,
                    },
                )
            return OutOfAppetiteResult(
                out_of_appetite=True,
                escalation_required=True,
                severity=Severity.CRITICAL,
                reason_code=ReasonCode.ZERO_APPETITE_MATERIAL,
                impacted_tolerances=(),
                evidence={"materiality": materiality.to_dict()},
            )

        if hard_breaches:
            return OutOfAppetiteResult(
                out_of_appetite=True,
                escalation_required=True,
                severity=Severity.CRITICAL,
                reason_code=ReasonCode.HARD_LIMIT_BREACH,
                impacted_tolerances=_references(hard_breaches),
                evidence={"breached_limits": [s.metric_name for s in hard_breaches]},
            )

        soft_escalations = [s for s in statuses if s.is_soft_breached and s.breach_rule_met]
        if soft_escalations:
            return OutOfAppetiteResult(
                out_of_appetite=True,
                escalation_required=True,
                severity=max_severity([s.severity for s in soft_escalations]),
                reason_code=ReasonCode.SOFT_LIMIT_ESCALATION,
                impacted_tolerances=_references(soft_escalations),
                evidence={"breach_rule": "ESCALATION_TRIGGERED"},
            )

        missing = [s for s in statuses if s.is_data_missing]
        if missing:
            return OutOfAppetiteResult(
                out_of_appetite=False,
                escalation_required=True,
                severity=Severity.WARN,
                reason_code=ReasonCode.DATA_MISSING_FOR_TOLERANCE,
                impacted_tolerances=_references(missing),
                evidence={"missing_count": len(missing)},
            )

        pending = [s for s in statuses if s.is_soft_breached and not s.breach_rule_met]
        if pending:
            evidence: dict[str, object] = {
                "pending_count": len(pending),
                "periods_remaining": pending[0].periods_remaining,
            }
            degraded = [s.metric_name for s in pending if s.rule_evaluation_degraded]
            if degraded:
                evidence["rule_evaluation_degraded"] = degraded
            return OutOfAppetiteResult(
                out_of_appetite=False,
                escalation_required=False,
                severity=Severity.INFO,
                reason_code=ReasonCode.SOFT_BREACH_PENDING_ESCALATION,
                impacted_tolerances=_references(pending),
                evidence=evidence,
            )

        return OutOfAppetiteResult(
            out_of_appetite=False,
            escalation_required=False,
            severity=Severity.INFO,
            reason_code=ReasonCode.WITHIN_APPETITE,
        )


def create_aggregator() -> AppetiteAggregator:
    """Create an appetite aggregator."""
    return AppetiteAggregator()
