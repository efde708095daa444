"""
Tests for AgriPilot Trigger Evaluator

Tests cover:
- AND/OR combination with Kleene logic
- Empty triggers
- Blackout periods, including ones that wrap the new year
"""
import pytest
from datetime import date, datetime

from agripilot.engine.trigger_evaluator import TriggerEvaluator, combine
from agripilot.exceptions import ValidationError
from agripilot.models import BlackoutPeriod, LogicalOperator, TriBool

from tests.conftest import (
    T0,
    UTC,
    make_condition,
    make_condition_result,
    make_trigger,
)


@pytest.fixture
def evaluator():
    return TriggerEvaluator()


def _two_condition_trigger(operator: LogicalOperator, blackout_periods=()):
    return make_trigger(
        conditions=[
            make_condition("cond-rain", condition_order=1),
            make_condition("cond-heat", data_source_id="ds-temp", condition_order=2),
        ],
        logical_operator=operator,
        blackout_periods=blackout_periods,
    )


# =============================================================================
# Combination
# =============================================================================

class TestCombine:
    """Tests for combine()."""

    @pytest.mark.parametrize("first,second,expected", [
        (TriBool.TRUE, TriBool.TRUE, TriBool.TRUE),
        (TriBool.TRUE, TriBool.FALSE, TriBool.FALSE),
        (TriBool.FALSE, TriBool.FALSE, TriBool.FALSE),
        (TriBool.TRUE, TriBool.UNKNOWN, TriBool.UNKNOWN),
        (TriBool.FALSE, TriBool.UNKNOWN, TriBool.FALSE),
    ])
    def test_and(self, first, second, expected):
        results = [
            make_condition_result("a", first),
            make_condition_result("b", second),
        ]
        assert combine(LogicalOperator.AND, results) is expected

    @pytest.mark.parametrize("first,second,expected", [
        (TriBool.TRUE, TriBool.FALSE, TriBool.TRUE),
        (TriBool.FALSE, TriBool.FALSE, TriBool.FALSE),
        (TriBool.TRUE, TriBool.UNKNOWN, TriBool.TRUE),
        (TriBool.FALSE, TriBool.UNKNOWN, TriBool.UNKNOWN),
    ])
    def test_or(self, first, second, expected):
        results = [
            make_condition_result("a", first),
            make_condition_result("b", second),
        ]
        assert combine(LogicalOperator.OR, results) is expected

    @pytest.mark.parametrize("operator", list(LogicalOperator))
    def test_no_conditions_never_fires(self, operator):
        assert combine(operator, []) is TriBool.FALSE


class TestEvaluate:
    """Tests for TriggerEvaluator.evaluate."""

    def test_and_with_one_condition_not_fired(self, evaluator):
        """One of two AND conditions fires: the trigger does not."""
        trigger = _two_condition_trigger(LogicalOperator.AND)
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.TRUE),
            make_condition_result("cond-heat", TriBool.FALSE),
        ], T0)

        assert outcome.fired is False
        assert outcome.result is TriBool.FALSE
        assert [r.condition_id for r in outcome.fired_conditions] == ["cond-rain"]

    def test_or_fires_with_one_condition(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.OR)
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.FALSE),
            make_condition_result("cond-heat", TriBool.TRUE, over_threshold_value=0.1),
        ], T0)

        assert outcome.fired is True
        assert outcome.trigger_id == trigger.id
        assert outcome.evaluated_at == T0

    def test_unknown_does_not_fire(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.AND)
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.TRUE),
            make_condition_result("cond-heat", TriBool.UNKNOWN),
        ], T0)
        assert outcome.result is TriBool.UNKNOWN
        assert outcome.fired is False

    def test_early_warning_from_any_condition(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.AND)
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.FALSE, early_warning=True),
            make_condition_result("cond-heat", TriBool.FALSE),
        ], T0)
        assert outcome.early_warning is True
        assert outcome.fired is False

    def test_blackout_suppresses_firing(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.OR, blackout_periods=[("03-10", "03-20")])
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.TRUE),
            make_condition_result("cond-heat", TriBool.TRUE),
        ], T0)

        assert outcome.result is TriBool.TRUE
        assert outcome.blacked_out is True
        assert outcome.fired is False

    def test_outside_blackout_fires(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.OR, blackout_periods=[("04-01", "04-30")])
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.TRUE),
            make_condition_result("cond-heat", TriBool.FALSE),
        ], T0)
        assert outcome.blacked_out is False
        assert outcome.fired is True

    def test_to_dict(self, evaluator):
        trigger = _two_condition_trigger(LogicalOperator.OR)
        outcome = evaluator.evaluate(trigger, [
            make_condition_result("cond-rain", TriBool.TRUE),
            make_condition_result("cond-heat", TriBool.UNKNOWN),
        ], T0)
        data = outcome.to_dict()
        assert data["fired"] is True
        assert data["result"] is True
        assert data["fired_conditions"] == ["cond-rain"]
        assert data["conditions"][1]["fired"] is None


# =============================================================================
# Blackout Periods
# =============================================================================

class TestBlackoutPeriod:
    """Annually recurring MM-DD ranges."""

    def test_inclusive_bounds(self):
        period = BlackoutPeriod("03-10", "03-20")
        assert period.contains(date(2025, 3, 10))
        assert period.contains(date(2025, 3, 20))
        assert not period.contains(date(2025, 3, 21))
        assert not period.wraps_year

    def test_recurs_every_year(self):
        period = BlackoutPeriod("03-10", "03-20")
        assert period.contains(date(2031, 3, 15))

    def test_wraps_new_year(self):
        period = BlackoutPeriod("12-20", "01-10")
        assert period.wraps_year
        assert period.contains(date(2025, 12, 31))
        assert period.contains(date(2026, 1, 1))
        assert period.contains(date(2026, 1, 10))
        assert not period.contains(date(2026, 1, 11))
        assert not period.contains(date(2025, 12, 19))

    def test_window_for_wrapping_period(self):
        period = BlackoutPeriod("12-20", "01-10")
        assert period.window_for(date(2026, 1, 5)) == (date(2025, 12, 20), date(2026, 1, 10))
        assert period.window_for(date(2025, 12, 25)) == (date(2025, 12, 20), date(2026, 1, 10))

    def test_leap_day_in_non_leap_year(self):
        period = BlackoutPeriod("02-20", "02-29")
        assert period.window_for(date(2025, 2, 25)) == (date(2025, 2, 20), date(2025, 2, 28))

    @pytest.mark.parametrize("value", ["13-01", "2025-03-01", "03/10", "02-30"])
    def test_invalid_dates(self, value):
        with pytest.raises(ValidationError):
            BlackoutPeriod(value, "03-20")

    def test_trigger_blackout_lookup(self):
        trigger = make_trigger(blackout_periods=[("12-20", "01-10")])
        assert trigger.blackout_at(datetime(2026, 1, 2, tzinfo=UTC).date()) is not None
        assert trigger.blackout_at(T0.date()) is None

    def test_overlapping_periods_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            make_trigger(blackout_periods=[("03-01", "03-31"), ("03-15", "04-15")])
        assert exc_info.value.details["periods"] == ["03-01..03-31", "03-15..04-15"]

    def test_nested_period_rejected(self):
        with pytest.raises(ValidationError):
            make_trigger(blackout_periods=[("03-01", "03-31"), ("03-10", "03-20")])

    def test_overlap_across_new_year_rejected(self):
        with pytest.raises(ValidationError):
            make_trigger(blackout_periods=[("12-20", "01-10"), ("01-05", "02-01")])

    def test_adjacent_periods_allowed(self):
        trigger = make_trigger(blackout_periods=[("12-20", "01-10"), ("01-11", "02-01"), ("03-01", "03-31")])
        assert len(trigger.blackout_periods) == 3
        assert trigger.blackout_at(date(2026, 1, 11)).start == "01-11"
