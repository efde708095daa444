"""Request schemas for the API."""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator


ClaimRejectionTypeValue = Literal[
    "claim_data_incorrect",
    "trigger_not_met",
    "policy_not_active",
    "location_mismatch",
    "duplicate_claim",
    "suspected_fraud",
    "policy_exclusion",
    "other",
]

CancelRequestTypeValue = Literal[
    "contract_violation",
    "policyholder_request",
    "non_payment",
    "regulatory_change",
    "other",
]

DecisionValue = Literal["approved", "denied"]


# =============================================================================
# Policies
# =============================================================================

class RegisterPolicyRequest(BaseModel):
    """Apply for a base policy on behalf of a farmer for one farm."""
    base_policy_id: str = Field(..., description="Base policy ID from a product pack")
    farmer_id: str = Field(..., description="Policyholder")
    farm_id: str = Field(..., description="Insured farm")
    coverage_amount: int = Field(..., ge=0, description="Sum insured in minor units")
    coverage_start: date
    coverage_end: date
    policy_number: Optional[str] = Field(None, description="Generated when omitted")
    premium_amount: int = Field(0, ge=0)
    submit: bool = Field(True, description="False keeps the application as a draft")

    @model_validator(mode="after")
    def validate_dates(self) -> "RegisterPolicyRequest":
        if self.coverage_end < self.coverage_start:
            raise ValueError("coverage_end is before coverage_start")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "base_policy_id": "vn-rice-drought-v1",
                    "farmer_id": "farmer-001",
                    "farm_id": "farm-001",
                    "coverage_amount": 10000000,
                    "coverage_start": "2025-01-01",
                    "coverage_end": "2025-12-31",
                }
            ]
        }
    }


class ApprovePolicyRequest(BaseModel):
    """Underwriter accepts a pending application."""
    reviewer_id: str
    notes: Optional[str] = None


class RejectPolicyRequest(BaseModel):
    """Underwriter turns down a pending application."""
    reviewer_id: str
    reason: str


class ExpirePoliciesRequest(BaseModel):
    """Expire active policies whose coverage ended before `today` (default: now)."""
    today: Optional[date] = None


# =============================================================================
# Claims
# =============================================================================

class ApproveClaimRequest(BaseModel):
    """Partner approval of a claim under review."""
    reviewer_id: str = Field(..., description="Partner reviewer")
    partner_notes: str = Field(..., description="Why the claim is approved")


class RejectionEvidenceInput(BaseModel):
    """Optional facts supporting a rejection."""
    event_date: Optional[date] = None
    policy_clause: Optional[str] = None
    blackout_period_start: Optional[date] = None
    blackout_period_end: Optional[date] = None
    evidence_documents: list[str] = Field(default_factory=list)


class RejectClaimRequest(BaseModel):
    """Partner rejection of a claim under review."""
    reviewer_id: str
    claim_rejection_type: ClaimRejectionTypeValue
    reason: str = Field(..., description="Why the claim is rejected")
    validation_notes: Optional[str] = None
    reason_evidence: Optional[RejectionEvidenceInput] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "reviewer_id": "partner-7",
                    "claim_rejection_type": "trigger_not_met",
                    "reason": "Station data was corrected upstream",
                }
            ]
        }
    }


class ManualClaimRequest(BaseModel):
    """Partner-initiated claim with explicit payout components."""
    registered_policy_id: str
    created_by: str
    notes: str
    fix_payout: int = Field(0, ge=0, description="Minor units")
    threshold_payout: int = Field(0, ge=0, description="Minor units")
    over_threshold_value: Optional[float] = Field(None, ge=0)


# =============================================================================
# Cancellation
# =============================================================================

class CreateCancelRequest(BaseModel):
    """Open a cancel request against an active policy."""
    registered_policy_id: str
    requested_by: str
    cancel_request_type: CancelRequestTypeValue
    reason: str
    evidence: dict[str, Any] = Field(default_factory=dict)


class ReviewCancelRequest(BaseModel):
    """Approve or deny a pending cancel request."""
    reviewer_id: str
    decision: DecisionValue
    review_notes: str = Field(..., description="Denials should say how to contest")
    compensate_amount: int = Field(0, ge=0, description="Minor units, approvals only")


class ResolveDisputeRequest(BaseModel):
    """Settle a denied cancel request."""
    resolver_id: str
    final_decision: DecisionValue
    resolution_notes: str


class RevokeCancelRequest(BaseModel):
    """Requester withdraws a pending cancel request."""
    requester_id: str
    notes: str


# =============================================================================
# Monitoring
# =============================================================================

class EvaluateRequest(BaseModel):
    """Run a monitoring cycle. Omit as_of to evaluate now."""
    as_of: Optional[datetime] = None


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


# =============================================================================
# Settlement
# =============================================================================

class PayoutStatusUpdate(BaseModel):
    """Status report from the payment rail."""
    status: Literal["processing", "completed", "failed"]
    transaction_reference: Optional[str] = None
    failure_reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_fields(self) -> "PayoutStatusUpdate":
        if self.status == "completed" and not self.transaction_reference:
            raise ValueError("completed payouts require transaction_reference")
        if self.status == "failed" and not self.failure_reason:
            raise ValueError("failed payouts require failure_reason")
        return self


class PayoutConfirmation(BaseModel):
    """Farmer confirms receipt of a completed payout."""
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = None
