"""Translation shim for consumers of the old multiplier-based scorer.

The canonical evaluator is RAFScorer. These helpers only reshape its
output, or apply the old threshold multiplier, for callers that still
expect the previous result shape.
"""

import warnings
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from minrisk.appetite.residual import round_half_up
from minrisk.appetite.scoring import RAFScorer, recommended_actions
from minrisk.appetite.types import AppetiteEngineError, AppetiteLevel
from minrisk.config.settings import RAFEngineConfig
from minrisk.core.logging import get_logger

logger = get_logger(__name__)

LEGACY_EXPLANATIONS: dict[AppetiteLevel, str] = {
    AppetiteLevel.ZERO: "Zero appetite - severity doubled. Immediate action required.",
    AppetiteLevel.LOW: "Low appetite - severity increased by 50%. Prioritize mitigation.",
    AppetiteLevel.MODERATE: "Moderate appetite - normal risk scoring applied.",
    AppetiteLevel.HIGH: "High appetite - reduced severity. Monitor for changes.",
}


@dataclass(frozen=True)
class LegacyRAFScoreResult:
    """Result shape of the old multiplier scorer."""

    base_score: float
    adjusted_score: float
    multiplier: float
    appetite_level: AppetiteLevel
    out_of_appetite: bool
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "base_score": self.base_score,
            "adjusted_score": self.adjusted_score,
            "multiplier": self.multiplier,
            "appetite_level": self.appetite_level.value,
            "out_of_appetite": self.out_of_appetite,
            "explanation": self.explanation,
        }


def calculate_raf_adjusted_score(
    base_score: float,
    appetite_level: AppetiteLevel,
    custom_multipliers: dict[AppetiteLevel, float] | None = None,
    config: RAFEngineConfig | None = None,
) -> LegacyRAFScoreResult:
    """Apply the appetite multiplier the old way.

    Deprecated: out-of-appetite here is a plain threshold on the adjusted
    score, not the tolerance-based verdict.

    Args:
        base_score: Score to adjust.
        appetite_level: Appetite level of the risk's category.
        custom_multipliers: Per-level overrides of the configured multipliers.
        config: Engine configuration (multipliers, threshold).

    Returns:
        LegacyRAFScoreResult.
    """
    warnings.warn(
        "calculate_raf_adjusted_score is deprecated; use RAFScorer.score_risk",
        DeprecationWarning,
        stacklevel=2,
    )
    config = config or RAFEngineConfig()
    multipliers = {AppetiteLevel(k): v for k, v in config.appetite_multipliers.items()}
    multipliers.update(custom_multipliers or {})
    multiplier = multipliers.get(appetite_level) or 1.0

    adjusted = base_score * multiplier
    return LegacyRAFScoreResult(
        base_score=base_score,
        adjusted_score=round_half_up(adjusted),
        multiplier=multiplier,
        appetite_level=appetite_level,
        out_of_appetite=adjusted > config.legacy_out_of_appetite_threshold,
        explanation=LEGACY_EXPLANATIONS[appetite_level],
    )


async def check_out_of_appetite(scorer: RAFScorer, risk_id: UUID) -> tuple[bool, list[str]]:
    """Old ``(out_of_appetite, actions)`` view of the canonical verdict.

    Scoring errors are reported as a single action instead of raising.
    """
    warnings.warn(
        "check_out_of_appetite is deprecated; use RAFScorer.score_risk",
        DeprecationWarning,
        stacklevel=2,
    )
    try:
        result = await scorer.score_risk(risk_id)
    except AppetiteEngineError as e:
        logger.warning("legacy_check_failed", risk_id=str(risk_id), error=str(e))
        return False, ["Error calculating RAF score"]

    return result.out_of_appetite, recommended_actions(
        result.appetite_level, result.appetite_status
    )
