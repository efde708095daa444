"""
AgriPilot Aggregation Engine

Reduces a trailing window of index samples to one number.

Window semantics (as_of is the evaluation instant):
    aggregation window: as_of - window_days < t <= as_of
    baseline window:    as_of - window_days - baseline_days < t <= as_of - window_days

An empty window yields MissingData, never zero. A change aggregation
needs samples in both windows. Values are plain floats; no rounding is
applied here.

Pure functions only: no I/O, no clock reads.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Union

from ..models import (
    AggregateValue,
    AggregationFunction,
    BaselineFunction,
    MissingData,
    TriggerCondition,
)
from ..telemetry import IndexSample


Reduction = Union[AggregationFunction, BaselineFunction]


def reduce_values(values: Sequence[float], function: Reduction) -> float:
    """Apply sum/avg/min/max to a non-empty sequence."""
    name = function.value
    if name == "sum":
        return math.fsum(values)
    if name == "avg":
        return math.fsum(values) / len(values)
    if name == "min":
        return min(values)
    if name == "max":
        return max(values)
    raise ValueError(f"{name!r} is not a plain reduction")


def window_values(
    samples: Iterable[IndexSample],
    start_exclusive: datetime,
    end_inclusive: datetime,
) -> list[float]:
    return [s.value for s in samples if start_exclusive < s.timestamp <= end_inclusive]


def aggregate_window(
    samples: Sequence[IndexSample],
    window_days: int,
    function: Reduction,
    as_of: datetime,
    parameter_name: Optional[str] = None,
) -> AggregateValue:
    """Reduce the aggregation window ending at as_of."""
    start = as_of - timedelta(days=window_days)
    values = window_values(samples, start, as_of)
    if not values:
        return MissingData(
            reason=f"no samples in the {window_days}-day window ending {as_of.isoformat()}",
            parameter_name=parameter_name,
        )
    return reduce_values(values, function)


def aggregate_change(
    samples: Sequence[IndexSample],
    window_days: int,
    window_function: Reduction,
    baseline_days: int,
    baseline_function: BaselineFunction,
    as_of: datetime,
    parameter_name: Optional[str] = None,
) -> AggregateValue:
    """
    window_function(aggregation window) - baseline_function(baseline window).

    The baseline window ends where the aggregation window begins.
    """
    current = aggregate_window(samples, window_days, window_function, as_of, parameter_name)
    if isinstance(current, MissingData):
        return current

    baseline_end = as_of - timedelta(days=window_days)
    baseline_start = baseline_end - timedelta(days=baseline_days)
    baseline_values = window_values(samples, baseline_start, baseline_end)
    if not baseline_values:
        return MissingData(
            reason=f"no samples in the {baseline_days}-day baseline window",
            parameter_name=parameter_name,
        )
    return current - reduce_values(baseline_values, baseline_function)


def aggregate_for_condition(
    samples: Sequence[IndexSample],
    condition: TriggerCondition,
    as_of: datetime,
    parameter_name: Optional[str] = None,
) -> AggregateValue:
    """
    Produce the value a condition's operator compares against its threshold.

    - change aggregation: both windows reduced with the baseline function
    - change_gt/change_lt on a plain aggregation: the aggregation function
      over the window minus the baseline function over the baseline
    - otherwise: the aggregation function over the window
    """
    if condition.aggregation_function == AggregationFunction.CHANGE:
        baseline_function = condition.effective_baseline_function
        return aggregate_change(
            samples,
            condition.aggregation_window_days,
            baseline_function,
            condition.baseline_window_days,
            baseline_function,
            as_of,
            parameter_name,
        )

    if condition.threshold_operator.is_change:
        return aggregate_change(
            samples,
            condition.aggregation_window_days,
            condition.aggregation_function,
            condition.baseline_window_days,
            condition.effective_baseline_function,
            as_of,
            parameter_name,
        )

    return aggregate_window(
        samples,
        condition.aggregation_window_days,
        condition.aggregation_function,
        as_of,
        parameter_name,
    )
