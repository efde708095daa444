"""
AgriPilot Enumerations

All enumeration types used throughout the AgriPilot system.
Organized by domain area for clarity.

All enums inherit from (str, Enum) for JSON serialization compatibility.
String values are part of the external contract and must not change.
"""
from __future__ import annotations

from enum import Enum


# =============================================================================
# Trigger Definition
# =============================================================================

class AggregationFunction(str, Enum):
    """How a window of index samples is reduced to one value."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    CHANGE = "change"  # window minus baseline window


class BaselineFunction(str, Enum):
    """Reduction applied to the baseline window."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class ThresholdOperator(str, Enum):
    """Comparison between the aggregated value and the contractual threshold."""
    LT = "<"
    GT = ">"
    LTE = "<="
    GTE = ">="
    EQ = "=="
    NE = "!="
    CHANGE_GT = "change_gt"  # delta from baseline greater than threshold
    CHANGE_LT = "change_lt"  # delta from baseline less than threshold

    @property
    def is_change(self) -> bool:
        return self in (ThresholdOperator.CHANGE_GT, ThresholdOperator.CHANGE_LT)


class LogicalOperator(str, Enum):
    """How a trigger combines its conditions."""
    AND = "AND"
    OR = "OR"


class MonitorFrequencyUnit(str, Enum):
    """Unit of the trigger's monitoring interval."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# =============================================================================
# Registered Policy
# =============================================================================

class RegisteredPolicyStatus(str, Enum):
    """Lifecycle status of a policy issued to a farmer."""
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    ACTIVE = "active"
    PENDING_CANCEL = "pending_cancel"
    DISPUTE = "dispute"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REJECTED = "rejected"


# =============================================================================
# Claims
# =============================================================================

class ClaimStatus(str, Enum):
    """
    Claim lifecycle status.

    generated -> pending_partner_review -> approved | rejected
    approved -> paid
    """
    GENERATED = "generated"
    PENDING_PARTNER_REVIEW = "pending_partner_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"

    @property
    def is_open(self) -> bool:
        return self in (ClaimStatus.GENERATED, ClaimStatus.PENDING_PARTNER_REVIEW)


class ClaimRejectionType(str, Enum):
    """Closed taxonomy of reasons a partner may reject a claim."""
    CLAIM_DATA_INCORRECT = "claim_data_incorrect"
    TRIGGER_NOT_MET = "trigger_not_met"
    POLICY_NOT_ACTIVE = "policy_not_active"
    LOCATION_MISMATCH = "location_mismatch"
    DUPLICATE_CLAIM = "duplicate_claim"
    SUSPECTED_FRAUD = "suspected_fraud"
    POLICY_EXCLUSION = "policy_exclusion"
    OTHER = "other"


class PartnerDecision(str, Enum):
    """Decision recorded by a partner reviewer."""
    APPROVED = "approved"
    REJECTED = "rejected"


# =============================================================================
# Payouts
# =============================================================================

class PayoutStatus(str, Enum):
    """Settlement status of a payout."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Cancellation
# =============================================================================

class CancelRequestType(str, Enum):
    """Why a cancellation was requested."""
    CONTRACT_VIOLATION = "contract_violation"
    POLICYHOLDER_REQUEST = "policyholder_request"
    NON_PAYMENT = "non_payment"
    REGULATORY_CHANGE = "regulatory_change"
    OTHER = "other"


class CancelRequestStatus(str, Enum):
    """
    Cancel request lifecycle status.

    pending_review -> approved | denied | revoked
    denied -> resolved_approved | resolved_denied
    """
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    DENIED = "denied"
    RESOLVED_APPROVED = "resolved_approved"
    RESOLVED_DENIED = "resolved_denied"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self not in (CancelRequestStatus.PENDING_REVIEW, CancelRequestStatus.DENIED)


class FinalDecision(str, Enum):
    """Outcome of a dispute resolution."""
    APPROVED = "approved"
    DENIED = "denied"
