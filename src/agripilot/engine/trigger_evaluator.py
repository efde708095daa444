"""
AgriPilot Trigger Evaluator

Combines condition results under the trigger's logical operator.

- AND fires only when every condition fired; missing data blocks it
- OR fires when any condition fired
- A trigger with no conditions never fires
- Inside a blackout period the trigger never fires
- Early warning is raised when any condition raised one

Stateless apart from the breach counters carried on the results.
Duplicate-claim suppression belongs to the claim lifecycle.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from ..models import (
    ConditionResult,
    LogicalOperator,
    TriBool,
    Trigger,
    TriggerOutcome,
    all_of,
    any_of,
)

logger = logging.getLogger(__name__)


def combine(operator: LogicalOperator, results: Sequence[ConditionResult]) -> TriBool:
    """Kleene combination of condition firing states."""
    if not results:
        return TriBool.FALSE
    fired = [r.fired for r in results]
    if operator == LogicalOperator.AND:
        return all_of(fired)
    return any_of(fired)


@dataclass
class TriggerEvaluator:
    """
    Usage:
        outcome = TriggerEvaluator().evaluate(trigger, results, at)
        if outcome.fired:
            breakdown = calculator.calculate(..., outcome.fired_conditions)
    """

    def evaluate(
        self,
        trigger: Trigger,
        results: Sequence[ConditionResult],
        at: datetime,
    ) -> TriggerOutcome:
        result = combine(trigger.logical_operator, results)
        early_warning = any(r.early_warning for r in results)
        blackout = trigger.blackout_at(at.date())

        if blackout is not None and result.is_true():
            logger.info(
                "Trigger %s suppressed by blackout %s..%s",
                trigger.id, blackout.start, blackout.end,
            )

        return TriggerOutcome(
            trigger_id=trigger.id,
            evaluated_at=at,
            result=result,
            fired_conditions=tuple(r for r in results if r.has_fired),
            condition_results=tuple(results),
            early_warning=early_warning,
            blacked_out=blackout is not None,
        )
