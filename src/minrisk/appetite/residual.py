"""Residual risk scoring from DIME control effectiveness.

Inherent score is likelihood x impact. Each linked control contributes the
average of its Design, Implementation, Monitoring and Evaluation scores
(0-3), with a design score of 0 zeroing the other three. The mean
contribution, scaled to 0-100, reduces the inherent score to the residual.
"""

from decimal import ROUND_HALF_UP, Decimal

from minrisk.appetite.types import Control, InvalidControlScoreError, ResidualScoreResult

MAPPING_METHOD = "DIME_v1"
DIME_MAX = 3
DIME_FIELDS = ("design_score", "implementation_score", "monitoring_score", "evaluation_score")


def round_half_up(value: float, places: int = 2) -> float:
    """Round to ``places`` decimals, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class ResidualScoreCalculator:
    """Computes inherent score, control effectiveness and residual score."""

    def control_contribution(self, control: Control) -> float:
        """Average DIME score of one control on the 0-3 scale.

        A control with design score 0 contributes 0 whatever its other
        scores are.
        """
        scores = []
        for name in DIME_FIELDS:
            value = getattr(control, name)
            if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= DIME_MAX:
                raise InvalidControlScoreError(control.control_id, name, value)
            scores.append(value)

        if scores[0] == 0:
            return 0.0
        return sum(scores) / len(scores)

    def effectiveness(self, controls: list[Control]) -> float:
        """Aggregate effectiveness percentage (0-100), unrounded."""
        if not controls:
            return 0.0
        average = sum(self.control_contribution(c) for c in controls) / len(controls)
        return min(100.0, max(0.0, average / DIME_MAX * 100))

    def calculate(
        self,
        likelihood: int,
        impact: int,
        controls: list[Control],
    ) -> ResidualScoreResult:
        """Calculate the residual score of a risk.

        Args:
            likelihood: Inherent likelihood (1-5).
            impact: Inherent impact (1-5).
            controls: Linked controls with DIME sub-scores.

        Returns:
            ResidualScoreResult with residual and effectiveness rounded to
            two decimals.

        Raises:
            ValueError: If likelihood or impact is outside 1-5.
            InvalidControlScoreError: If a DIME score is outside 0-3.
        """
        for name, value in (("likelihood", likelihood), ("impact", impact)):
            if not 1 <= value <= 5:
                raise ValueError(f"{name} must be between 1 and 5, got {value}")

        inherent = likelihood * impact
        if not controls:
            return ResidualScoreResult(
                inherent_score=inherent,
                residual_score=float(inherent),
                control_effectiveness=0.0,
                control_count=0,
                mapping_method=MAPPING_METHOD,
            )

        effectiveness = self.effectiveness(controls)
        residual = inherent * (1 - effectiveness / 100)

        return ResidualScoreResult(
            inherent_score=inherent,
            residual_score=round_half_up(residual),
            control_effectiveness=round_half_up(effectiveness),
            control_count=len(controls),
            mapping_method=MAPPING_METHOD,
        )


def create_residual_calculator() -> ResidualScoreCalculator:
    """Create a residual score calculator."""
    return ResidualScoreCalculator()
