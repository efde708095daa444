"""
AgriPilot Evaluation Models

Value types produced while evaluating a trigger:
- MissingData: Aggregation could not produce a value
- BreachCounter: Persistent consecutive-breach state per (policy, condition)
- ConditionResult: Outcome of one condition for one cycle
- TriggerOutcome: Combined outcome of a trigger for one cycle
- PayoutBreakdown: Payout components for a fired trigger
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Union

from .conditions import TriBool


@dataclass(frozen=True)
class MissingData:
    """Marker returned instead of a number when a window has no samples."""
    reason: str
    parameter_name: Optional[str] = None

    def __bool__(self) -> bool:
        return False


AggregateValue = Union[float, MissingData]


@dataclass(frozen=True)
class BreachCounter:
    """
    Consecutive-breach state for one condition of one registered policy.

    Persisted between cycles so that it survives restarts and is shared
    by every worker evaluating the policy.
    """
    registered_policy_id: str
    condition_id: str
    run_length: int = 0
    first_breach_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None
    revision: int = 0

    def advance(self, at: datetime) -> BreachCounter:
        return replace(
            self,
            run_length=self.run_length + 1,
            first_breach_at=self.first_breach_at or at,
            last_evaluated_at=at,
        )

    def reset(self, at: datetime) -> BreachCounter:
        return replace(self, run_length=0, first_breach_at=None, last_evaluated_at=at)

    def touch(self, at: datetime) -> BreachCounter:
        return replace(self, last_evaluated_at=at)


@dataclass(frozen=True)
class ConditionResult:
    """
    Outcome of one condition for one evaluation cycle.

    `breached` is the raw comparison (UNKNOWN when data is missing).
    `fired` additionally honours consecutive and validation-window rules.
    `over_threshold_value` is set only when fired.
    """
    condition_id: str
    breached: TriBool
    fired: TriBool
    early_warning: bool
    over_threshold_value: Optional[float]
    aggregated_value: Optional[float]
    counter: BreachCounter
    missing: Optional[MissingData] = None

    @property
    def has_fired(self) -> bool:
        return self.fired.is_true()

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition_id": self.condition_id,
            "breached": self.breached.value,
            "fired": self.fired.value,
            "early_warning": self.early_warning,
            "over_threshold_value": self.over_threshold_value,
            "aggregated_value": self.aggregated_value,
            "run_length": self.counter.run_length,
            "missing": self.missing.reason if self.missing else None,
        }


@dataclass(frozen=True)
class TriggerOutcome:
    """Combined outcome of a trigger for one evaluation cycle."""
    trigger_id: str
    evaluated_at: datetime
    result: TriBool
    fired_conditions: tuple[ConditionResult, ...]
    condition_results: tuple[ConditionResult, ...]
    early_warning: bool
    blacked_out: bool = False

    @property
    def fired(self) -> bool:
        return self.result.is_true() and not self.blacked_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "evaluated_at": self.evaluated_at.isoformat(),
            "fired": self.fired,
            "result": self.result.value,
            "early_warning": self.early_warning,
            "blacked_out": self.blacked_out,
            "fired_conditions": [c.condition_id for c in self.fired_conditions],
            "conditions": [c.to_dict() for c in self.condition_results],
        }


@dataclass(frozen=True)
class CapExceededWarning:
    """Informational: the uncapped total exceeded the policy cap."""
    uncapped_amount: int
    payout_cap: int


@dataclass(frozen=True)
class PayoutBreakdown:
    """Payout components in integer minor units."""
    fix_payout: int
    threshold_payout: int
    claim_amount: int
    currency: str
    over_threshold_value: Optional[float] = None
    cap_exceeded: Optional[CapExceededWarning] = None
    driver_condition_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
