"""Materiality evaluation for ZERO-appetite categories.

Decides whether accumulated events or a risk's residual score cross the
category's materiality threshold. Missing data sources never raise: the
result is "not material" with a diagnostic explanation.
"""

from datetime import UTC, datetime
from uuid import UUID

from minrisk.appetite.providers import MaterialityProvider
from minrisk.appetite.types import (
    ComparisonOperator,
    MaterialityResult,
    MaterialityRule,
    MaterialityRuleType,
    ProviderError,
)
from minrisk.core.logging import get_logger, log_provider_failure
from minrisk.observability.metrics import record_provider_failure

logger = get_logger(__name__)


def compare_values(value: float, threshold: float, operator: ComparisonOperator) -> bool:
    """Apply ``operator`` between ``value`` and ``threshold``."""
    if operator == ComparisonOperator.GT:
        return value > threshold
    if operator == ComparisonOperator.GTE:
        return value >= threshold
    if operator == ComparisonOperator.LT:
        return value < threshold
    if operator == ComparisonOperator.LTE:
        return value <= threshold
    if operator == ComparisonOperator.EQ:
        return value == threshold
    return False


def format_number(value: float) -> str:
    """Render integral floats without a trailing ``.0``."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


class MaterialityEvaluator:
    """Evaluates materiality rules against a MaterialityProvider."""

    def __init__(self, provider: MaterialityProvider | None = None) -> None:
        """Initialize the evaluator.

        Args:
            provider: Source of event counts and scores. Without it every
                rule that needs data is reported as not material.
        """
        self.provider = provider

    async def evaluate(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        *,
        residual_score: float | None = None,
        as_of: datetime | None = None,
    ) -> MaterialityResult:
        """Evaluate ``rule`` for one risk.

        Args:
            risk_id: Risk under evaluation.
            organization_id: Owning organization.
            rule: The category's materiality rule.
            residual_score: Freshly computed residual score; when given,
                ``score_band`` rules use it instead of the stored score.
            as_of: End of the measurement window (defaults to now).

        Returns:
            MaterialityResult; never raises for missing data.
        """
        as_of = as_of or datetime.now(UTC)

        if rule.rule_type == MaterialityRuleType.COUNT:
            return await self._evaluate_count(risk_id, organization_id, rule, as_of)
        if rule.rule_type == MaterialityRuleType.SCORE_BAND:
            return await self._evaluate_score_band(
                risk_id, organization_id, rule, residual_score, as_of
            )
        if rule.rule_type == MaterialityRuleType.AMOUNT:
            return MaterialityResult(
                is_material=False,
                explanation="Amount materiality not yet implemented",
                value=0.0,
            )
        if rule.rule_type == MaterialityRuleType.PERCENTAGE:
            return MaterialityResult(
                is_material=False,
                explanation="Percentage materiality not yet implemented",
                value=0.0,
            )
        return MaterialityResult(is_material=False, explanation="Unknown materiality rule type")

    async def _fetch(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        as_of: datetime,
    ) -> tuple[float | None, bool]:
        """Fetch the rule's input; the flag is True when the provider failed."""
        if self.provider is None:
            return None, False
        try:
            value = await self.provider.get_materiality_inputs(
                risk_id, organization_id, rule, as_of=as_of
            )
        except ProviderError as e:
            log_provider_failure(
                logger,
                provider="materiality",
                operation="get_materiality_inputs",
                exc=e,
                risk_id=str(risk_id),
                rule_type=rule.rule_type.value,
            )
            record_provider_failure("materiality", "get_materiality_inputs")
            return None, True
        return value, False

    async def _evaluate_count(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        as_of: datetime,
    ) -> MaterialityResult:
        value, failed = await self._fetch(risk_id, organization_id, rule, as_of)
        if failed:
            return MaterialityResult(is_material=False, explanation="Error querying incidents")
        if value is None:
            return MaterialityResult(
                is_material=False, explanation="No incident data source for count materiality"
            )

        event_count = int(value)
        return MaterialityResult(
            is_material=compare_values(event_count, rule.threshold, rule.comparison),
            explanation=(
                f"Event count ({event_count}) {rule.comparison.value} "
                f"{format_number(rule.threshold)}"
            ),
            value=float(event_count),
        )

    async def _evaluate_score_band(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        residual_score: float | None,
        as_of: datetime,
    ) -> MaterialityResult:
        score = residual_score
        if score is None:
            score, _ = await self._fetch(risk_id, organization_id, rule, as_of)
        if score is None:
            return MaterialityResult(is_material=False, explanation="Could not fetch risk score")

        return MaterialityResult(
            is_material=compare_values(score, rule.threshold, rule.comparison),
            explanation=(
                f"Residual score ({format_number(score)}) {rule.comparison.value} "
                f"{format_number(rule.threshold)}"
            ),
            value=score,
        )


# =============================================================================
# Factory Function
# =============================================================================


def create_materiality_evaluator(
    provider: MaterialityProvider | None = None,
) -> MaterialityEvaluator:
    """Create a materiality evaluator."""
    return MaterialityEvaluator(provider=provider)
