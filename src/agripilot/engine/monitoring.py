"""
AgriPilot Monitoring Pipeline

One monitoring cycle for a registered policy:

    0. (run_cycle only) expire active policies whose coverage has ended
    1. read index series for every condition (no lock)
    2. aggregate, evaluate conditions, combine under the trigger
    3. persist breach counters
    4. if the trigger fired and no claim is open, calculate the payout
       and hand it to the claim lifecycle

Steps 2-4 run under a per-policy lock so one process never evaluates
the same policy twice at once. Counters are revisioned, so a second
process racing on the same policy loses with ConcurrencyConflict
instead of double counting.

The auto-approval sweeper runs the claim lifecycle sweep on a timer
in a background thread.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from ..catalog import ProductCatalog
from ..events import EarlyWarningRaised, EventBus
from ..exceptions import AgriPilotError, DataUnavailable, DuplicateClaimError
from ..models import (
    BasePolicy,
    Claim,
    ConditionResult,
    MissingData,
    PayoutBreakdown,
    RegisteredPolicy,
    RegisteredPolicyStatus,
    TriggerOutcome,
)
from ..store import Repository
from ..telemetry import FarmRegistry, IndexDataAccessor
from .aggregation import aggregate_for_condition
from .claim_lifecycle import ClaimLifecycleManager, SweepResult
from .condition_evaluator import ConditionEvaluator
from .payout_calculator import PayoutCalculator
from .policy_manager import PolicyManager
from .trigger_evaluator import TriggerEvaluator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PolicyLockRegistry:
    """Hands out one lock per registered policy id."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, registered_policy_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(registered_policy_id)
            if lock is None:
                lock = self._locks[registered_policy_id] = threading.Lock()
            return lock


@dataclass
class PolicyEvaluation:
    """What one monitoring cycle did for one policy."""
    registered_policy_id: str
    evaluated_at: datetime
    outcome: Optional[TriggerOutcome] = None
    breakdown: Optional[PayoutBreakdown] = None
    claim: Optional[Claim] = None
    skipped_reason: Optional[str] = None
    blackout_window: Optional[tuple[date, date]] = None

    @property
    def claim_created(self) -> bool:
        return self.claim is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "registered_policy_id": self.registered_policy_id,
            "evaluated_at": self.evaluated_at.isoformat(),
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "claim_id": self.claim.id if self.claim else None,
            "claim_amount": self.breakdown.claim_amount if self.breakdown else None,
            "skipped_reason": self.skipped_reason,
            "blackout_window": (
                [d.isoformat() for d in self.blackout_window] if self.blackout_window else None
            ),
        }


@dataclass
class MonitoringPipeline:
    """
    Usage:
        pipeline = MonitoringPipeline(repository, catalog, accessor, farms, lifecycle)
        evaluation = pipeline.evaluate_policy(policy.id, as_of=now)
        evaluations = pipeline.run_cycle()
    """
    repository: Repository
    catalog: ProductCatalog
    accessor: IndexDataAccessor
    farms: FarmRegistry
    lifecycle: ClaimLifecycleManager
    events: Optional[EventBus] = None
    policies: Optional[PolicyManager] = None
    condition_evaluator: ConditionEvaluator = field(default_factory=ConditionEvaluator)
    trigger_evaluator: TriggerEvaluator = field(default_factory=TriggerEvaluator)
    calculator: PayoutCalculator = field(default_factory=PayoutCalculator)
    locks: PolicyLockRegistry = field(default_factory=PolicyLockRegistry)
    clock: Callable[[], datetime] = _utcnow

    def __post_init__(self) -> None:
        if self.events is None:
            self.events = self.lifecycle.events
        if self.policies is None:
            self.policies = PolicyManager(self.repository, self.events, self.clock)

    def run_cycle(self, as_of: Optional[datetime] = None) -> list[PolicyEvaluation]:
        """Evaluate every active policy. One policy failing does not stop the rest."""
        as_of = as_of or self.clock()
        self.policies.expire_lapsed(as_of.date(), now=as_of)
        evaluations = []
        for policy in self.repository.list_policies(status=RegisteredPolicyStatus.ACTIVE):
            try:
                evaluations.append(self.evaluate_policy(policy.id, as_of))
            except AgriPilotError as e:
                logger.exception(
                    "Monitoring failed for policy %s", policy.policy_number,
                    extra={"registered_policy_id": policy.id, "error_code": e.code},
                )
        return evaluations

    def evaluate_policy(self, registered_policy_id: str, as_of: Optional[datetime] = None) -> PolicyEvaluation:
        as_of = as_of or self.clock()
        with self.locks.lock_for(registered_policy_id):
            return self._evaluate_locked(registered_policy_id, as_of)

    def _evaluate_locked(self, registered_policy_id: str, as_of: datetime) -> PolicyEvaluation:
        evaluation = PolicyEvaluation(registered_policy_id=registered_policy_id, evaluated_at=as_of)
        policy = self.repository.get_policy(registered_policy_id)

        if not policy.is_active:
            evaluation.skipped_reason = f"policy is {policy.status.value}"
            return evaluation
        if not policy.covers(as_of.date()):
            evaluation.skipped_reason = "outside coverage period"
            return evaluation

        base_policy = self.catalog.get_base_policy(policy.base_policy_id)
        trigger = base_policy.trigger
        if trigger is None:
            evaluation.skipped_reason = "base policy has no trigger"
            return evaluation

        results = [self._evaluate_condition(policy, condition, as_of) for condition in trigger.conditions]
        self._save_counters(policy, results)

        outcome = self.trigger_evaluator.evaluate(trigger, results, as_of)
        evaluation.outcome = outcome

        if outcome.early_warning:
            self.events.publish(EarlyWarningRaised(
                registered_policy_id=policy.id,
                trigger_id=trigger.id,
                condition_ids=tuple(r.condition_id for r in results if r.early_warning),
                timestamp=as_of,
            ))

        if not outcome.fired:
            if outcome.blacked_out and outcome.result.is_true():
                evaluation.skipped_reason = "blackout period"
                blackout = trigger.blackout_at(as_of.date())
                evaluation.blackout_window = blackout.window_for(as_of.date())
            return evaluation

        existing = self.repository.find_open_claim(policy.id, trigger.id)
        if existing is not None:
            evaluation.skipped_reason = f"open claim {existing.claim_number}"
            return evaluation

        return self._generate_claim(evaluation, policy, base_policy, outcome, as_of)

    def _evaluate_condition(self, policy: RegisteredPolicy, condition, as_of: datetime) -> ConditionResult:
        data_source = self.catalog.get_data_source(condition.data_source_id)
        counter = self.repository.get_counter(policy.id, condition.id)
        try:
            samples = self.accessor.series_for(
                policy.farm_id, data_source.parameter_name, condition, as_of
            )
            aggregate = aggregate_for_condition(samples, condition, as_of, data_source.parameter_name)
        except DataUnavailable as e:
            aggregate = MissingData(reason=e.message, parameter_name=data_source.parameter_name)
        if isinstance(aggregate, MissingData):
            logger.info(
                "Condition %s indeterminate for policy %s: %s",
                condition.id, policy.policy_number, aggregate.reason,
            )
        return self.condition_evaluator.evaluate(condition, aggregate, counter, as_of)

    def _save_counters(self, policy: RegisteredPolicy, results: list[ConditionResult]) -> None:
        with self.repository.transaction() as uow:
            for result in results:
                original = self.repository.find_counter(policy.id, result.condition_id)
                if original is None or original != result.counter:
                    uow.save_counter(result.counter)

    def _generate_claim(
        self,
        evaluation: PolicyEvaluation,
        policy: RegisteredPolicy,
        base_policy: BasePolicy,
        outcome: TriggerOutcome,
        as_of: datetime,
    ) -> PolicyEvaluation:
        farm = self.farms.get_farm(policy.farm_id)
        breakdown = self.calculator.calculate(base_policy, policy, farm, outcome.fired_conditions)
        evaluation.breakdown = breakdown
        evidence = {
            "trigger_id": outcome.trigger_id,
            "evaluated_at": as_of.isoformat(),
            "driver_condition_id": breakdown.driver_condition_id,
            "conditions": [r.to_dict() for r in outcome.fired_conditions],
        }
        try:
            evaluation.claim = self.lifecycle.generate(
                policy,
                base_policy,
                outcome.trigger_id,
                breakdown,
                trigger_timestamp=as_of,
                evidence_summary=evidence,
                now=as_of,
            )
        except DuplicateClaimError as e:
            evaluation.skipped_reason = e.message
        return evaluation


class AutoApprovalSweeper:
    """
    Runs the auto-approval sweep every `interval_seconds` on a daemon thread.

    Usage:
        sweeper = AutoApprovalSweeper(lifecycle, interval_seconds=300)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, lifecycle: ClaimLifecycleManager, interval_seconds: float = 300.0) -> None:
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[SweepResult] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="agripilot-auto-approval", daemon=True
        )
        self._thread.start()
        logger.info("Auto-approval sweeper started (every %ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> Optional[SweepResult]:
        try:
            self.last_result = self.lifecycle.run_auto_approval_sweep()
        except AgriPilotError:
            logger.exception("Auto-approval sweep failed")
            return None
        return self.last_result

    def _run(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_seconds)
