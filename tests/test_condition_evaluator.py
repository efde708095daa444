"""
Tests for AgriPilot Condition Evaluator

Tests cover:
- Comparison operators
- Over-threshold value sign convention for all eight operators
- Consecutive-breach counters and validation windows
- Missing data (UNKNOWN) handling
- Early warnings
"""
import pytest
from datetime import timedelta

from agripilot.engine.condition_evaluator import (
    ConditionEvaluator,
    compare_values,
    evaluate_condition,
    over_threshold_value,
)
from agripilot.exceptions import ValidationError
from agripilot.models import (
    AggregationFunction,
    BreachCounter,
    MissingData,
    ThresholdOperator,
    TriBool,
)

from tests.conftest import T0, make_condition


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


@pytest.fixture
def counter():
    return BreachCounter(registered_policy_id="pol-1", condition_id="cond-rain")


# =============================================================================
# Comparison Operator Tests
# =============================================================================

class TestCompareValues:
    """Tests for compare_values."""

    @pytest.mark.parametrize("operator,value,threshold,expected", [
        (ThresholdOperator.LT, 32, 50, True),
        (ThresholdOperator.LT, 50, 50, False),
        (ThresholdOperator.LTE, 50, 50, True),
        (ThresholdOperator.GT, 39, 38, True),
        (ThresholdOperator.GT, 38, 38, False),
        (ThresholdOperator.GTE, 38, 38, True),
        (ThresholdOperator.EQ, 0, 0, True),
        (ThresholdOperator.EQ, 1, 0, False),
        (ThresholdOperator.NE, 1, 0, True),
        (ThresholdOperator.NE, 0, 0, False),
        (ThresholdOperator.CHANGE_GT, 5, 3, True),
        (ThresholdOperator.CHANGE_LT, -0.2, -0.15, True),
        (ThresholdOperator.CHANGE_LT, -0.1, -0.15, False),
    ])
    def test_operators(self, operator, value, threshold, expected):
        assert compare_values(operator, value, threshold) is expected


# =============================================================================
# Over-Threshold Sign Convention
# =============================================================================

class TestOverThresholdValue:
    """Severity is non-negative in the firing direction, relative to |threshold|."""

    def test_rainfall_shortfall_example(self):
        """Rainfall sum 32mm against < 50mm."""
        assert over_threshold_value(ThresholdOperator.LT, 32.0, 50.0) == pytest.approx(0.36)

    @pytest.mark.parametrize("operator,value,threshold,expected", [
        (ThresholdOperator.LT, 32.0, 50.0, 0.36),
        (ThresholdOperator.LTE, 50.0, 50.0, 0.0),
        (ThresholdOperator.LTE, 40.0, 50.0, 0.2),
        (ThresholdOperator.GT, 41.8, 38.0, 0.1),
        (ThresholdOperator.GTE, 38.0, 38.0, 0.0),
        (ThresholdOperator.GTE, 57.0, 38.0, 0.5),
        (ThresholdOperator.EQ, 0.0, 0.0, 0.0),
        (ThresholdOperator.NE, 30.0, 40.0, 0.25),
        (ThresholdOperator.NE, 50.0, 40.0, 0.25),
        (ThresholdOperator.CHANGE_GT, 15.0, 10.0, 0.5),
        (ThresholdOperator.CHANGE_LT, -0.3, -0.15, 1.0),
    ])
    def test_all_operators(self, operator, value, threshold, expected):
        assert over_threshold_value(operator, value, threshold) == pytest.approx(expected)

    def test_negative_threshold_uses_magnitude(self):
        """change_lt -0.15 breached by -0.2: (-0.15 - -0.2) / 0.15."""
        result = over_threshold_value(ThresholdOperator.CHANGE_LT, -0.2, -0.15)
        assert result == pytest.approx(1 / 3)
        assert result > 0

    def test_zero_threshold_uses_raw_difference(self):
        assert over_threshold_value(ThresholdOperator.GT, 2.5, 0.0) == 2.5
        assert over_threshold_value(ThresholdOperator.LT, -4.0, 0.0) == 4.0
        assert over_threshold_value(ThresholdOperator.NE, -3.0, 0.0) == 3.0

    @pytest.mark.parametrize("operator", list(ThresholdOperator))
    def test_non_negative_whenever_breached(self, operator):
        """Every operator that fires yields a severity >= 0."""
        candidates = [-100.0, -1.0, 0.0, 1.0, 49.0, 50.0, 51.0, 100.0]
        for value in candidates:
            if compare_values(operator, value, 50.0):
                assert over_threshold_value(operator, value, 50.0) >= 0


# =============================================================================
# Evaluation
# =============================================================================

class TestEvaluate:
    """Tests for ConditionEvaluator.evaluate."""

    def test_breach_fires_immediately_without_persistence_rules(self, evaluator, counter):
        result = evaluator.evaluate(make_condition(), 32.0, counter, T0)
        assert result.breached is TriBool.TRUE
        assert result.fired is TriBool.TRUE
        assert result.has_fired
        assert result.over_threshold_value == pytest.approx(0.36)
        assert result.aggregated_value == 32.0
        assert result.counter.run_length == 1
        assert result.counter.first_breach_at == T0

    def test_no_breach(self, evaluator, counter):
        result = evaluator.evaluate(make_condition(), 60.0, counter, T0)
        assert result.fired is TriBool.FALSE
        assert result.over_threshold_value is None
        assert result.counter.run_length == 0

    def test_wrapper_function(self, counter):
        result = evaluate_condition(make_condition(), 32.0, counter, T0)
        assert result.has_fired

    def test_missing_data_is_unknown(self, evaluator, counter):
        missing = MissingData(reason="no samples", parameter_name="rainfall")
        result = evaluator.evaluate(make_condition(), missing, counter, T0)
        assert result.breached is TriBool.UNKNOWN
        assert result.fired is TriBool.UNKNOWN
        assert not result.has_fired
        assert result.missing == missing
        assert result.aggregated_value is None

    def test_missing_data_neither_grows_nor_resets_run(self, evaluator):
        counter = BreachCounter("pol-1", "cond-rain", run_length=2, first_breach_at=T0,
                                last_evaluated_at=T0)
        later = T0 + timedelta(days=1)
        result = evaluator.evaluate(make_condition(), MissingData("gap"), counter, later)
        assert result.counter.run_length == 2
        assert result.counter.first_breach_at == T0
        assert result.counter.last_evaluated_at == later


class TestPersistence:
    """Tests for consecutive_required and validation_window_days."""

    def test_consecutive_required(self, evaluator, counter):
        condition = make_condition(consecutive_required=3)
        day1 = evaluator.evaluate(condition, 30.0, counter, T0)
        day2 = evaluator.evaluate(condition, 30.0, day1.counter, T0 + timedelta(days=1))
        day3 = evaluator.evaluate(condition, 30.0, day2.counter, T0 + timedelta(days=2))

        assert day1.breached is TriBool.TRUE
        assert day1.fired is TriBool.FALSE
        assert day2.fired is TriBool.FALSE
        assert day3.fired is TriBool.TRUE
        assert day3.counter.run_length == 3

    def test_non_breach_resets_run(self, evaluator, counter):
        condition = make_condition(consecutive_required=2)
        day1 = evaluator.evaluate(condition, 30.0, counter, T0)
        day2 = evaluator.evaluate(condition, 70.0, day1.counter, T0 + timedelta(days=1))
        day3 = evaluator.evaluate(condition, 30.0, day2.counter, T0 + timedelta(days=2))

        assert day2.counter.run_length == 0
        assert day2.counter.first_breach_at is None
        assert day3.fired is TriBool.FALSE
        assert day3.counter.run_length == 1

    def test_replayed_cycle_does_not_extend_run(self, evaluator, counter):
        condition = make_condition(consecutive_required=2)
        first = evaluator.evaluate(condition, 30.0, counter, T0)
        replay = evaluator.evaluate(condition, 30.0, first.counter, T0)

        assert replay.counter == first.counter
        assert replay.counter.run_length == 1
        assert replay.fired is TriBool.FALSE

    def test_validation_window(self, evaluator, counter):
        condition = make_condition(validation_window_days=2)
        day0 = evaluator.evaluate(condition, 30.0, counter, T0)
        day1 = evaluator.evaluate(condition, 30.0, day0.counter, T0 + timedelta(days=1))
        day2 = evaluator.evaluate(condition, 30.0, day1.counter, T0 + timedelta(days=2))

        assert day0.fired is TriBool.FALSE
        assert day1.fired is TriBool.FALSE
        assert day2.fired is TriBool.TRUE


class TestEarlyWarning:
    """Early warning uses the same operator against its own threshold."""

    def test_early_warning_without_breach(self, evaluator, counter):
        condition = make_condition(early_warning_threshold=65.0)
        result = evaluator.evaluate(condition, 60.0, counter, T0)
        assert result.early_warning is True
        assert result.fired is TriBool.FALSE

    def test_no_early_warning_when_well_clear(self, evaluator, counter):
        condition = make_condition(early_warning_threshold=65.0)
        result = evaluator.evaluate(condition, 80.0, counter, T0)
        assert result.early_warning is False

    def test_no_early_warning_threshold(self, evaluator, counter):
        assert evaluator.evaluate(make_condition(), 30.0, counter, T0).early_warning is False


class TestConditionValidation:
    """TriggerCondition rejects inconsistent definitions."""

    def test_change_requires_baseline(self):
        with pytest.raises(ValidationError):
            make_condition(aggregation_function=AggregationFunction.CHANGE)

    def test_change_operator_requires_baseline(self):
        with pytest.raises(ValidationError):
            make_condition(threshold_operator=ThresholdOperator.CHANGE_GT)

    def test_baseline_shorter_than_window(self):
        with pytest.raises(ValidationError) as exc_info:
            make_condition(
                aggregation_function=AggregationFunction.CHANGE,
                aggregation_window_days=7,
                baseline_window_days=3,
            )
        assert exc_info.value.code == "AP_VALIDATION_ERROR"

    def test_zero_window(self):
        with pytest.raises(ValidationError):
            make_condition(aggregation_window_days=0)
