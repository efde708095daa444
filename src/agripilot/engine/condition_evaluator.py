"""
AgriPilot Condition Evaluator

Evaluates one trigger condition for one monitoring cycle.

Inputs are the condition, the aggregated value (or MissingData) and the
persisted BreachCounter. The output carries the next counter; storing
it is the caller's job.

Over-threshold value convention:
    A non-negative severity in the firing direction, relative to the
    threshold magnitude (raw difference when the threshold is 0).

    <, <=, change_lt   (threshold - value) / |threshold|
    >, >=, change_gt   (value - threshold) / |threshold|
    ==                 0.0
    !=                 |value - threshold| / |threshold|

    Example: sum rainfall 32mm against "< 50" gives (50 - 32) / 50 = 0.36.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models import (
    AggregateValue,
    BreachCounter,
    ConditionResult,
    MissingData,
    ThresholdOperator,
    TriBool,
    TriggerCondition,
)


# =============================================================================
# Comparison
# =============================================================================

def compare_values(operator: ThresholdOperator, value: float, threshold: float) -> bool:
    """
    Apply a threshold operator.

    change_gt / change_lt receive the delta from baseline as `value`.
    """
    if operator in (ThresholdOperator.LT, ThresholdOperator.CHANGE_LT):
        return value < threshold
    if operator in (ThresholdOperator.GT, ThresholdOperator.CHANGE_GT):
        return value > threshold
    if operator == ThresholdOperator.LTE:
        return value <= threshold
    if operator == ThresholdOperator.GTE:
        return value >= threshold
    if operator == ThresholdOperator.EQ:
        return value == threshold
    if operator == ThresholdOperator.NE:
        return value != threshold
    raise ValueError(f"Unknown threshold operator: {operator}")


def over_threshold_value(operator: ThresholdOperator, value: float, threshold: float) -> float:
    """Severity of a breach; see module docstring for the convention."""
    if operator in (ThresholdOperator.LT, ThresholdOperator.LTE, ThresholdOperator.CHANGE_LT):
        difference = threshold - value
    elif operator in (ThresholdOperator.GT, ThresholdOperator.GTE, ThresholdOperator.CHANGE_GT):
        difference = value - threshold
    elif operator == ThresholdOperator.EQ:
        return 0.0
    elif operator == ThresholdOperator.NE:
        difference = abs(value - threshold)
    else:
        raise ValueError(f"Unknown threshold operator: {operator}")

    if threshold == 0:
        return difference
    return difference / abs(threshold)


# =============================================================================
# Evaluator
# =============================================================================

@dataclass
class ConditionEvaluator:
    """
    Evaluates trigger conditions against aggregated values.

    Usage:
        evaluator = ConditionEvaluator()
        result = evaluator.evaluate(condition, 32.0, counter, as_of)
        if result.has_fired:
            ...
        store(result.counter)
    """

    def evaluate(
        self,
        condition: TriggerCondition,
        aggregate: AggregateValue,
        counter: BreachCounter,
        as_of: datetime,
    ) -> ConditionResult:
        if isinstance(aggregate, MissingData):
            # Unknown: the run neither grows nor resets
            return ConditionResult(
                condition_id=condition.id,
                breached=TriBool.UNKNOWN,
                fired=TriBool.UNKNOWN,
                early_warning=False,
                over_threshold_value=None,
                aggregated_value=None,
                counter=counter if self._is_replay(counter, as_of) else counter.touch(as_of),
                missing=aggregate,
            )

        value = float(aggregate)
        breached = compare_values(condition.threshold_operator, value, condition.threshold_value)
        next_counter = self._next_counter(counter, breached, as_of)
        fired = breached and self._persistence_met(condition, next_counter, as_of)

        return ConditionResult(
            condition_id=condition.id,
            breached=TriBool.from_bool(breached),
            fired=TriBool.from_bool(fired),
            early_warning=self._early_warning(condition, value),
            over_threshold_value=(
                over_threshold_value(condition.threshold_operator, value, condition.threshold_value)
                if fired else None
            ),
            aggregated_value=value,
            counter=next_counter,
        )

    def _next_counter(self, counter: BreachCounter, breached: bool, as_of: datetime) -> BreachCounter:
        # Re-evaluating a cycle that was already counted must not extend the run
        if self._is_replay(counter, as_of):
            return counter
        if breached:
            return counter.advance(as_of)
        return counter.reset(as_of)

    def _is_replay(self, counter: BreachCounter, as_of: datetime) -> bool:
        return counter.last_evaluated_at is not None and as_of <= counter.last_evaluated_at

    def _persistence_met(
        self,
        condition: TriggerCondition,
        counter: BreachCounter,
        as_of: datetime,
    ) -> bool:
        if condition.consecutive_required and counter.run_length < condition.consecutive_required:
            return False
        if condition.validation_window_days:
            first = counter.first_breach_at or as_of
            if as_of - first < timedelta(days=condition.validation_window_days):
                return False
        return True

    def _early_warning(self, condition: TriggerCondition, value: float) -> bool:
        threshold: Optional[float] = condition.early_warning_threshold
        if threshold is None:
            return False
        return compare_values(condition.threshold_operator, value, threshold)


def evaluate_condition(
    condition: TriggerCondition,
    aggregate: AggregateValue,
    counter: BreachCounter,
    as_of: datetime,
) -> ConditionResult:
    """Convenience wrapper around ConditionEvaluator.evaluate."""
    return ConditionEvaluator().evaluate(condition, aggregate, counter, as_of)
