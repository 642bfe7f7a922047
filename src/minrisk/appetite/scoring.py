"""Per-risk risk appetite framework (RAF) scoring.

Composes the residual score calculator, tolerance evaluator, materiality
evaluator and aggregator into one RAFScoreResult per risk, and persists the
result through a RiskScoreSink.

The appetite multiplier is informational: ``raf_adjusted_score`` is
reported, but the out-of-appetite decision comes from the aggregated
tolerance verdict.
"""

from datetime import UTC, datetime
from uuid import UUID

from minrisk.appetite.aggregator import AppetiteAggregator
from minrisk.appetite.materiality import MaterialityEvaluator
from minrisk.appetite.providers import (
    BreachHistoryProvider,
    ControlProvider,
    MaterialityProvider,
    RiskProvider,
    RiskScoreSink,
    ToleranceProvider,
)
from minrisk.appetite.residual import ResidualScoreCalculator, round_half_up
from minrisk.appetite.tolerance import ToleranceEvaluator
from minrisk.appetite.types import (
    AppetiteCategory,
    AppetiteLevel,
    Control,
    MaterialityResult,
    OutOfAppetiteResult,
    RAFScoreResult,
    RiskNotFoundError,
    RiskProfile,
    ScoreBasis,
    ToleranceMetric,
)
from minrisk.config.settings import RAFEngineConfig
from minrisk.core.logging import get_logger
from minrisk.observability.metrics import record_evaluation

logger = get_logger(__name__)


# =============================================================================
# Explanations
# =============================================================================


def generate_explanation(level: AppetiteLevel, status: OutOfAppetiteResult) -> str:
    """One-line human readable summary of a verdict."""
    if status.out_of_appetite:
        metrics = ", ".join(t.metric_name for t in status.impacted_tolerances)
        return f"OUT OF APPETITE: {status.reason_code.value} - {metrics}"
    if status.escalation_required:
        return (
            f"ATTENTION REQUIRED: {status.reason_code.value} - "
            "escalation to 2nd line recommended"
        )
    return f"Within appetite ({level.value})"


def recommended_actions(level: AppetiteLevel, status: OutOfAppetiteResult) -> list[str]:
    """Governance actions implied by an out-of-appetite verdict."""
    if not status.out_of_appetite:
        return []

    actions = [f"Risk flagged as OUT OF APPETITE: {status.reason_code.value}"]
    if level in (AppetiteLevel.ZERO, AppetiteLevel.LOW):
        actions.append("Mandatory escalation to CRO required")
        actions.append("Monthly control effectiveness reviews enabled")
    if level == AppetiteLevel.ZERO:
        actions.append("Escalate to board risk committee")
    return actions


# =============================================================================
# RAF Scorer
# =============================================================================


class RAFScorer:
    """Scores individual risks against the risk appetite framework.

    Example:
        ```python
        scorer = RAFScorer(risks=store, tolerances=store, controls=store, history=store)
        result = await scorer.score_risk(risk_id)
        print(result.explanation)
        ```
    """

    def __init__(
        self,
        risks: RiskProvider,
        tolerances: ToleranceProvider,
        controls: ControlProvider,
        history: BreachHistoryProvider | None = None,
        materiality: MaterialityProvider | None = None,
        sink: RiskScoreSink | None = None,
        config: RAFEngineConfig | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            risks: Risk lookup.
            tolerances: Linked tolerance lookup.
            controls: Linked control lookup.
            history: Breach history for persistence rules.
            materiality: Materiality inputs for ZERO-appetite categories.
            sink: Where ``update_risk`` persists scores.
            config: Engine configuration.
        """
        self.config = config or RAFEngineConfig()
        self.risks = risks
        self.tolerances = tolerances
        self.controls = controls
        self.sink = sink
        self.residual_calculator = ResidualScoreCalculator()
        self.tolerance_evaluator = ToleranceEvaluator(history=history, config=self.config)
        self.materiality_evaluator = MaterialityEvaluator(provider=materiality)
        self.aggregator = AppetiteAggregator()

    def multiplier_for(self, level: AppetiteLevel) -> float:
        """Informational appetite multiplier for a level."""
        return self.config.appetite_multipliers.get(level.value, 1.0)

    def category_for(self, risk: RiskProfile) -> AppetiteCategory:
        """The risk's category, or the configured default when unlinked."""
        if risk.appetite_category is not None:
            return risk.appetite_category
        return AppetiteCategory(
            appetite_level=AppetiteLevel(self.config.default_appetite_level),
            risk_category="Uncategorized",
        )

    async def score_risk(
        self,
        risk_id: UUID,
        score_basis: ScoreBasis = ScoreBasis.RESIDUAL,
        now: datetime | None = None,
    ) -> RAFScoreResult:
        """Load a risk's inputs and score it.

        Raises:
            RiskNotFoundError: If the risk does not exist.
        """
        risk = await self.risks.get_risk(risk_id)
        if risk is None:
            raise RiskNotFoundError(risk_id)

        tolerances = await self.tolerances.get_tolerances_for_risk(risk_id)
        controls = await self.controls.get_controls_for_risk(risk_id)
        return await self.score(risk, tolerances, controls, score_basis=score_basis, now=now)

    async def score(
        self,
        risk: RiskProfile,
        tolerances: list[ToleranceMetric],
        controls: list[Control],
        score_basis: ScoreBasis = ScoreBasis.RESIDUAL,
        now: datetime | None = None,
    ) -> RAFScoreResult:
        """Score a risk from already loaded inputs.

        Args:
            risk: The risk profile.
            tolerances: Tolerances linked to the risk.
            controls: Controls linked to the risk.
            score_basis: Score the multiplier is applied to.
            now: Evaluation instant (defaults to current UTC time).

        Returns:
            RAFScoreResult. Identical inputs and ``now`` produce an
            identical result.
        """
        now = now or datetime.now(UTC)
        category = self.category_for(risk)

        residual = self.residual_calculator.calculate(
            risk.likelihood_inherent, risk.impact_inherent, controls
        )

        ordered = sorted(tolerances, key=lambda t: (t.metric_name, str(t.tolerance_id)))
        statuses = await self.tolerance_evaluator.evaluate_many(ordered, now)

        materiality: MaterialityResult | None = None
        if category.appetite_level == AppetiteLevel.ZERO and category.materiality_rule:
            materiality = await self.materiality_evaluator.evaluate(
                risk.risk_id,
                risk.organization_id,
                category.materiality_rule,
                residual_score=residual.residual_score,
                as_of=now,
            )

        status = self.aggregator.aggregate(statuses, category, materiality)

        basis_score = (
            residual.inherent_score if score_basis == ScoreBasis.INHERENT else residual.residual_score
        )
        multiplier = self.multiplier_for(category.appetite_level)

        result = RAFScoreResult(
            risk_id=risk.risk_id,
            inherent_score=residual.inherent_score,
            residual_score=residual.residual_score,
            raf_adjusted_score=round_half_up(basis_score * multiplier),
            score_basis=score_basis,
            multiplier=multiplier,
            appetite_level=category.appetite_level,
            control_effectiveness=residual.control_effectiveness,
            appetite_status=status,
            explanation=generate_explanation(category.appetite_level, status),
            tolerance_statuses=tuple(statuses),
            materiality=materiality,
            evaluated_at=now,
        )

        record_evaluation(
            status.reason_code.value, category.appetite_level.value, residual.residual_score
        )
        logger.debug(
            "risk_scored",
            risk_id=str(risk.risk_id),
            reason_code=status.reason_code.value,
            out_of_appetite=status.out_of_appetite,
            residual_score=residual.residual_score,
            raf_adjusted_score=result.raf_adjusted_score,
        )
        return result

    async def update_risk(
        self,
        risk_id: UUID,
        score_basis: ScoreBasis = ScoreBasis.RESIDUAL,
        now: datetime | None = None,
    ) -> RAFScoreResult:
        """Score a risk and persist its residual, adjusted score and verdict.

        Raises:
            RiskNotFoundError: If the risk does not exist.
            ProviderError: If persisting the scores fails.
        """
        result = await self.score_risk(risk_id, score_basis=score_basis, now=now)
        if self.sink is not None:
            await self.sink.save_risk_scores(
                risk_id,
                result.residual_score,
                result.raf_adjusted_score,
                result.out_of_appetite,
                snapshot=result.appetite_status.to_dict(),
            )
        logger.info(
            "risk_scores_updated",
            risk_id=str(risk_id),
            raf_adjusted_score=result.raf_adjusted_score,
            reason_code=result.appetite_status.reason_code.value,
        )
        return result


# =============================================================================
# Factory Function
# =============================================================================


def create_raf_scorer(
    store: object,
    config: RAFEngineConfig | None = None,
) -> RAFScorer:
    """Create a scorer backed by one store implementing every provider.

    Args:
        store: An object implementing the risk, tolerance, control, breach
            history, materiality and score sink protocols, such as
            InMemoryAppetiteStore or SqlAppetiteStore.
        config: Optional engine configuration.

    Returns:
        Configured RAFScorer.
    """
    return RAFScorer(
        risks=store,  # type: ignore[arg-type]
        tolerances=store,  # type: ignore[arg-type]
        controls=store,  # type: ignore[arg-type]
        history=store,  # type: ignore[arg-type]
        materiality=store,  # type: ignore[arg-type]
        sink=store,  # type: ignore[arg-type]
        config=config,
    )
