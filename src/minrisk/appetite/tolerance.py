"""Tolerance evaluation.

Evaluates one tolerance metric's current value against its soft and hard
limits and its breach-persistence rule, producing a ToleranceStatus.

The direction check is synchronous. Breach rules that depend on history
(SUSTAINED_N_PERIODS, N_BREACHES_IN_WINDOW) are resolved through a
BreachHistoryProvider on the async path; the sync path reports them as
not yet met.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from minrisk.appetite.providers import BreachHistoryProvider
from minrisk.appetite.types import (
    BreachDirection,
    BreachRule,
    BreachRuleOutcome,
    ComparisonOperator,
    ProviderError,
    Severity,
    ToleranceMetric,
    ToleranceStatus,
    ensure_utc,
)
from minrisk.config.settings import RAFEngineConfig
from minrisk.core.logging import get_logger, log_provider_failure
from minrisk.observability.metrics import record_provider_failure

logger = get_logger(__name__)


# =============================================================================
# Comparison Helpers
# =============================================================================


def is_breached(
    value: float,
    limit: float | None,
    direction: BreachDirection,
    operator: ComparisonOperator = ComparisonOperator.GTE,
) -> bool:
    """Direction-aware limit check.

    UP metrics breach at ``value >= limit`` (strict ``>`` for ``gt``).
    DOWN metrics breach at ``value <= limit`` (strict ``<`` for ``lt``).
    A missing limit never breaches.
    """
    if limit is None:
        return False

    if direction == BreachDirection.UP:
        if operator == ComparisonOperator.GT:
            return value > limit
        return value >= limit

    if operator == ComparisonOperator.LT:
        return value < limit
    return value <= limit


def is_data_missing(
    tolerance: ToleranceMetric,
    now: datetime,
    default_window_days: int = 90,
) -> bool:
    """True when the value is absent or measured before the window opened."""
    if tolerance.current_value is None or tolerance.last_measurement_date is None:
        return True

    window_days = (
        tolerance.measurement_window_days
        if tolerance.measurement_window_days is not None
        else default_window_days
    )
    cutoff = ensure_utc(now) - timedelta(days=window_days)
    return ensure_utc(tolerance.last_measurement_date) < cutoff


# =============================================================================
# Tolerance Evaluator
# =============================================================================


class ToleranceEvaluator:
    """Evaluates tolerance metrics into ToleranceStatus records.

    Example:
        ```python
        evaluator = ToleranceEvaluator(history=store)
        status = await evaluator.evaluate_async(tolerance)
        if status.is_hard_breached:
            ...
        ```
    """

    def __init__(
        self,
        history: BreachHistoryProvider | None = None,
        config: RAFEngineConfig | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            history: Source of historical breach counts. Without it,
                history-dependent rules are reported as not yet met.
            config: Engine configuration with breach rule defaults.
        """
        self.history = history
        self.config = config or RAFEngineConfig()

    # -------------------------------------------------------------------------
    # Breach rules
    # -------------------------------------------------------------------------

    def required_periods(self, tolerance: ToleranceMetric) -> int:
        return tolerance.breach_rule_config.periods or self.config.default_sustained_periods

    def required_count(self, tolerance: ToleranceMetric) -> int:
        return tolerance.breach_rule_config.count or self.config.default_breach_count

    def window_days(self, tolerance: ToleranceMetric) -> int:
        return tolerance.breach_rule_config.window_days or self.config.default_breach_window_days

    def fallback_breach_rule(self, tolerance: ToleranceMetric) -> BreachRuleOutcome:
        """Rule outcome without history: only POINT_IN_TIME can be met."""
        if tolerance.breach_rule == BreachRule.SUSTAINED_N_PERIODS:
            return BreachRuleOutcome(
                rule_met=False, periods_remaining=self.required_periods(tolerance)
            )
        if tolerance.breach_rule == BreachRule.N_BREACHES_IN_WINDOW:
            return BreachRuleOutcome(rule_met=False, breach_count=0)
        return BreachRuleOutcome(rule_met=True)

    async def evaluate_breach_rule(
        self,
        tolerance: ToleranceMetric,
        now: datetime | None = None,
    ) -> BreachRuleOutcome:
        """Check the persistence rule against breach history.

        Provider failures degrade to "rule not met" and are logged.
        """
        if self.history is None:
            return self.fallback_breach_rule(tolerance)

        if tolerance.breach_rule == BreachRule.SUSTAINED_N_PERIODS:
            required = self.required_periods(tolerance)
            try:
                consecutive = await self.history.count_consecutive_breach_periods(
                    tolerance.tolerance_id
                )
            except ProviderError as e:
                log_provider_failure(
                    logger,
                    provider="breach_history",
                    operation="count_consecutive_breach_periods",
                    exc=e,
                    tolerance_id=str(tolerance.tolerance_id),
                )
                record_provider_failure("breach_history", "count_consecutive_breach_periods")
                return BreachRuleOutcome(rule_met=False, periods_remaining=required, degraded=True)

            rule_met = consecutive >= required
            return BreachRuleOutcome(
                rule_met=rule_met,
                periods_remaining=0 if rule_met else required - consecutive,
            )

        if tolerance.breach_rule == BreachRule.N_BREACHES_IN_WINDOW:
            required = self.required_count(tolerance)
            try:
                count = await self.history.count_breaches_in_window(
                    tolerance.tolerance_id, self.window_days(tolerance), as_of=now
                )
            except ProviderError as e:
                log_provider_failure(
                    logger,
                    provider="breach_history",
                    operation="count_breaches_in_window",
                    exc=e,
                    tolerance_id=str(tolerance.tolerance_id),
                )
                record_provider_failure("breach_history", "count_breaches_in_window")
                return BreachRuleOutcome(rule_met=False, breach_count=0, degraded=True)

            return BreachRuleOutcome(rule_met=count >= required, breach_count=count)

        return BreachRuleOutcome(rule_met=True)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def _missing_status(self, tolerance: ToleranceMetric) -> ToleranceStatus:
        return ToleranceStatus(
            tolerance_id=tolerance.tolerance_id,
            metric_name=tolerance.metric_name,
            is_soft_breached=False,
            is_hard_breached=False,
            is_data_missing=True,
            breach_rule_met=False,
            current_value=tolerance.current_value,
            severity=Severity.WARN,
        )

    def _status(
        self,
        tolerance: ToleranceMetric,
        is_soft: bool,
        is_hard: bool,
        outcome: BreachRuleOutcome,
    ) -> ToleranceStatus:
        return ToleranceStatus(
            tolerance_id=tolerance.tolerance_id,
            metric_name=tolerance.metric_name,
            is_soft_breached=is_soft,
            is_hard_breached=is_hard,
            is_data_missing=False,
            breach_rule_met=outcome.rule_met,
            current_value=tolerance.current_value,
            severity=(
                Severity.CRITICAL if is_hard else tolerance.escalation_severity_on_soft_breach
            ),
            periods_remaining=outcome.periods_remaining,
            breach_count_in_window=outcome.breach_count,
            rule_evaluation_degraded=outcome.degraded,
        )

    def _limits(self, tolerance: ToleranceMetric, value: float) -> tuple[bool, bool]:
        is_hard = is_breached(
            value, tolerance.hard_limit, tolerance.breach_direction, tolerance.comparison_operator
        )
        is_soft = is_breached(
            value, tolerance.soft_limit, tolerance.breach_direction, tolerance.comparison_operator
        )
        return is_soft, is_hard

    def evaluate(
        self,
        tolerance: ToleranceMetric,
        now: datetime | None = None,
    ) -> ToleranceStatus:
        """Evaluate without consulting breach history.

        Args:
            tolerance: Metric with its latest observation.
            now: Evaluation instant (defaults to current UTC time).

        Returns:
            ToleranceStatus; history-dependent rules report "not yet met".
        """
        now = now or datetime.now(UTC)
        value = tolerance.current_value
        if value is None or is_data_missing(
            tolerance, now, self.config.default_measurement_window_days
        ):
            return self._missing_status(tolerance)

        is_soft, is_hard = self._limits(tolerance, value)
        return self._status(tolerance, is_soft, is_hard, self.fallback_breach_rule(tolerance))

    async def evaluate_async(
        self,
        tolerance: ToleranceMetric,
        now: datetime | None = None,
    ) -> ToleranceStatus:
        """Evaluate, consulting breach history when the soft limit is breached.

        Args:
            tolerance: Metric with its latest observation.
            now: Evaluation instant (defaults to current UTC time).

        Returns:
            ToleranceStatus with the persistence rule resolved.
        """
        now = now or datetime.now(UTC)
        value = tolerance.current_value
        if value is None or is_data_missing(
            tolerance, now, self.config.default_measurement_window_days
        ):
            return self._missing_status(tolerance)

        is_soft, is_hard = self._limits(tolerance, value)
        if is_soft:
            outcome = await self.evaluate_breach_rule(tolerance, now)
        else:
            outcome = self.fallback_breach_rule(tolerance)

        status = self._status(tolerance, is_soft, is_hard, outcome)
        if is_soft or is_hard:
            logger.debug(
                "tolerance_breached",
                tolerance_id=str(tolerance.tolerance_id),
                metric_name=tolerance.metric_name,
                current_value=tolerance.current_value,
                is_hard_breached=is_hard,
                breach_rule=tolerance.breach_rule.value,
                breach_rule_met=outcome.rule_met,
            )
        return status

    async def evaluate_many(
        self,
        tolerances: list[ToleranceMetric],
        now: datetime | None = None,
    ) -> list[ToleranceStatus]:
        """Evaluate several tolerances concurrently, preserving input order."""
        now = now or datetime.now(UTC)
        return list(await asyncio.gather(*(self.evaluate_async(t, now) for t in tolerances)))


# =============================================================================
# Factory Function
# =============================================================================


def create_tolerance_evaluator(
    history: BreachHistoryProvider | None = None,
    config: RAFEngineConfig | None = None,
) -> ToleranceEvaluator:
    """Create a tolerance evaluator.

    Args:
        history: Optional breach history provider.
        config: Optional engine configuration.

    Returns:
        Configured ToleranceEvaluator.
    """
    return ToleranceEvaluator(history=history, config=config)
