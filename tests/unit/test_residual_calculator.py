"""Unit tests for DIME residual scoring."""

from uuid import uuid4

import pytest

from minrisk.appetite import (
    Control,
    InvalidControlScoreError,
    ResidualScoreCalculator,
    round_half_up,
)


@pytest.fixture
def calculator() -> ResidualScoreCalculator:
    return ResidualScoreCalculator()


class TestRoundHalfUp:
    def test_halves_round_away_from_zero(self):
        assert round_half_up(2.675) == 2.68
        assert round_half_up(0.125) == 0.13
        assert round_half_up(1.25, 1) == 1.3

    def test_plain_values(self):
        assert round_half_up(3.3333333) == 3.33
        assert round_half_up(10.0) == 10.0


class TestControlContribution:
    def test_average_of_dime_scores(self, calculator, make_control):
        assert calculator.control_contribution(make_control(3, 3, 2, 2)) == 2.5

    def test_zero_design_cascades(self, calculator, make_control):
        """A control that is not designed contributes nothing."""
        assert calculator.control_contribution(make_control(0, 3, 3, 3)) == 0.0

    def test_out_of_range_score_rejected(self, calculator):
        control = Control.model_construct(
            control_id=uuid4(),
            name="bad",
            design_score=4,
            implementation_score=1,
            monitoring_score=1,
            evaluation_score=1,
        )
        with pytest.raises(InvalidControlScoreError) as exc_info:
            calculator.control_contribution(control)
        assert exc_info.value.code == "INVALID_CONTROL_SCORE"
        assert exc_info.value.details["field"] == "design_score"

    def test_non_integer_score_rejected(self, calculator):
        control = Control.model_construct(
            control_id=uuid4(),
            name="bad",
            design_score=2,
            implementation_score=1.5,
            monitoring_score=1,
            evaluation_score=1,
        )
        with pytest.raises(InvalidControlScoreError):
            calculator.control_contribution(control)


class TestCalculate:
    def test_reference_example(self, calculator, make_control):
        """4 x 5 with one [3,3,2,2] control leaves 3.33."""
        result = calculator.calculate(4, 5, [make_control(3, 3, 2, 2)])

        assert result.inherent_score == 20
        assert result.control_effectiveness == 83.33
        assert result.residual_score == 3.33
        assert result.control_count == 1
        assert result.mapping_method == "DIME_v1"

    def test_no_controls_leaves_inherent(self, calculator):
        result = calculator.calculate(3, 4, [])

        assert result.residual_score == 12.0
        assert result.control_effectiveness == 0.0

    def test_fully_effective_controls(self, calculator, make_control):
        result = calculator.calculate(5, 5, [make_control(3, 3, 3, 3)])
        assert result.residual_score == 0.0
        assert result.control_effectiveness == 100.0

    def test_effectiveness_is_mean_over_controls(self, calculator, make_control):
        result = calculator.calculate(
            2, 5, [make_control(3, 3, 3, 3), make_control(0, 3, 3, 3)]
        )
        assert result.control_effectiveness == 50.0
        assert result.residual_score == 5.0

    @pytest.mark.parametrize("likelihood, impact", [(0, 3), (6, 3), (3, 0), (3, 6)])
    def test_inherent_inputs_validated(self, calculator, likelihood, impact):
        with pytest.raises(ValueError):
            calculator.calculate(likelihood, impact, [])

    def test_raising_any_single_score_never_raises_residual(self, calculator, make_control):
        base = [1, 1, 1, 1]
        before = calculator.calculate(4, 4, [make_control(*base), make_control(2, 0, 1, 3)])
        for index in range(4):
            raised = list(base)
            raised[index] += 1
            after = calculator.calculate(4, 4, [make_control(*raised), make_control(2, 0, 1, 3)])
            assert after.residual_score <= before.residual_score

    def test_improving_a_score_never_raises_residual(self, calculator, make_control):
        previous = calculator.calculate(5, 4, [make_control(1, 0, 0, 0)]).residual_score
        for scores in ([1, 1, 0, 0], [2, 1, 0, 0], [2, 2, 1, 0], [3, 2, 2, 1], [3, 3, 3, 3]):
            current = calculator.calculate(5, 4, [make_control(*scores)]).residual_score
            assert current <= previous
            previous = current
