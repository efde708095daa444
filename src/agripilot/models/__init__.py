"""
AgriPilot Domain Models

Usage:
    from agripilot.models import (
        BasePolicy,
        Claim,
        ClaimStatus,
        RegisteredPolicy,
        TriBool,
        TriggerCondition,
    )
"""
from __future__ import annotations

from .cancellation import CancelRequest
from .claim import (
    Claim,
    ClaimRejection,
    Payout,
    RejectionEvidence,
    generate_claim_number,
)
from .conditions import TriBool, all_of, any_of
from .enums import (
    AggregationFunction,
    BaselineFunction,
    CancelRequestStatus,
    CancelRequestType,
    ClaimRejectionType,
    ClaimStatus,
    FinalDecision,
    LogicalOperator,
    MonitorFrequencyUnit,
    PartnerDecision,
    PayoutStatus,
    RegisteredPolicyStatus,
    ThresholdOperator,
)
from .evaluation import (
    AggregateValue,
    BreachCounter,
    CapExceededWarning,
    ConditionResult,
    MissingData,
    PayoutBreakdown,
    TriggerOutcome,
)
from .policy import (
    BasePolicy,
    BlackoutPeriod,
    DataSource,
    Farm,
    RegisteredPolicy,
    Trigger,
    TriggerCondition,
)

__all__ = [
    # Enums
    "AggregationFunction",
    "BaselineFunction",
    "CancelRequestStatus",
    "CancelRequestType",
    "ClaimRejectionType",
    "ClaimStatus",
    "FinalDecision",
    "LogicalOperator",
    "MonitorFrequencyUnit",
    "PartnerDecision",
    "PayoutStatus",
    "RegisteredPolicyStatus",
    "ThresholdOperator",
    # Logic
    "TriBool",
    "all_of",
    "any_of",
    # Policy
    "BasePolicy",
    "BlackoutPeriod",
    "DataSource",
    "Farm",
    "RegisteredPolicy",
    "Trigger",
    "TriggerCondition",
    # Claims
    "Claim",
    "ClaimRejection",
    "Payout",
    "RejectionEvidence",
    "generate_claim_number",
    # Cancellation
    "CancelRequest",
    # Evaluation
    "AggregateValue",
    "BreachCounter",
    "CapExceededWarning",
    "ConditionResult",
    "MissingData",
    "PayoutBreakdown",
    "TriggerOutcome",
]
