"""
AgriPilot Engine

Core services for index monitoring, claims and settlement.

Services:
- aggregation: Reduce index windows to one value
- ConditionEvaluator: Compare aggregates against thresholds, track persistence
- TriggerEvaluator: Combine condition results, apply blackout periods
- PayoutCalculator: Fixed + threshold payout, capped
- MonitoringPipeline: One monitoring cycle per registered policy
- ClaimLifecycleManager: Claim state machine and auto-approval sweep
- PayoutTracker: Settlement of approved claims
- PolicyManager: Policy applications, underwriting and expiry
- CancellationManager: Cancel requests and disputes

Usage:
    from agripilot.engine import (
        ClaimLifecycleManager,
        MonitoringPipeline,
        PayoutCalculator,
    )
"""
from __future__ import annotations

from .aggregation import (
    aggregate_change,
    aggregate_for_condition,
    aggregate_window,
    reduce_values,
)
from .cancellation_manager import CancellationManager
from .claim_lifecycle import (
    DEFAULT_REVIEW_WINDOW_HOURS,
    ClaimLifecycleManager,
    ReviewDeadlineStatus,
    SweepResult,
    review_deadline_status,
)
from .condition_evaluator import (
    ConditionEvaluator,
    compare_values,
    evaluate_condition,
    over_threshold_value,
)
from .monitoring import (
    AutoApprovalSweeper,
    MonitoringPipeline,
    PolicyEvaluation,
    PolicyLockRegistry,
)
from .payout_calculator import PayoutCalculator, apply_cap
from .policy_manager import PolicyManager
from .settlement import PayoutTracker
from .trigger_evaluator import TriggerEvaluator, combine

__all__ = [
    # Aggregation
    "aggregate_change",
    "aggregate_for_condition",
    "aggregate_window",
    "reduce_values",
    # Conditions and triggers
    "ConditionEvaluator",
    "compare_values",
    "evaluate_condition",
    "over_threshold_value",
    "TriggerEvaluator",
    "combine",
    # Payouts
    "PayoutCalculator",
    "apply_cap",
    "PayoutTracker",
    # Monitoring
    "AutoApprovalSweeper",
    "MonitoringPipeline",
    "PolicyEvaluation",
    "PolicyLockRegistry",
    # Claims
    "DEFAULT_REVIEW_WINDOW_HOURS",
    "ClaimLifecycleManager",
    "ReviewDeadlineStatus",
    "SweepResult",
    "review_deadline_status",
    # Policies
    "PolicyManager",
    # Cancellation
    "CancellationManager",
]
