"""Response schemas for the API."""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Serialized AgriPilotError."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    entity_id: Optional[str] = None


class HealthResponse(BaseModel):
    healthy: bool
    store: str
    packs_loaded: list[str]
    base_policies_loaded: int
    sweeper_running: bool


# =============================================================================
# Products and policies
# =============================================================================

class ConditionSummary(BaseModel):
    id: str
    data_source_id: str
    aggregation_function: str
    aggregation_window_days: int
    threshold_operator: str
    threshold_value: float
    early_warning_threshold: Optional[float] = None
    consecutive_required: Optional[int] = None
    baseline_window_days: Optional[int] = None


class BasePolicySummary(BaseModel):
    """A product available for issuance."""
    id: str
    product_name: str
    product_code: str
    crop_type: str
    version: int
    coverage_currency: str
    payout_cap: Optional[int] = None
    trigger_id: Optional[str] = None
    logical_operator: Optional[str] = None
    conditions: list[ConditionSummary] = []


class PolicyResponse(BaseModel):
    id: str
    policy_number: str
    base_policy_id: str
    farmer_id: str
    farm_id: str
    coverage_amount: int
    coverage_start: str
    coverage_end: str
    status: str  # draft|pending_review|active|pending_cancel|dispute|cancelled|expired|rejected
    premium_amount: int
    open_cancel_request_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_notes: Optional[str] = None
    revision: int


# =============================================================================
# Claims
# =============================================================================

class ClaimResponse(BaseModel):
    """A claim and its review state."""
    id: str
    claim_number: str
    registered_policy_id: str
    base_policy_id: str
    farm_id: str
    trigger_id: Optional[str] = None
    trigger_timestamp: str
    calculated_fix_payout: int
    calculated_threshold_payout: int
    over_threshold_value: Optional[float] = None
    claim_amount: int
    currency: str
    auto_generated: bool
    auto_approved: bool
    status: str  # generated|pending_partner_review|approved|rejected|paid
    auto_approval_deadline: Optional[str] = None
    partner_decision: Optional[str] = None
    partner_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    evidence_summary: dict[str, Any] = {}
    created_at: str
    updated_at: str
    paid_at: Optional[str] = None
    review_deadline_status: Optional[str] = None  # pending|due_soon|overdue|decided


class ClaimRejectionResponse(BaseModel):
    id: str
    claim_id: str
    claim_rejection_type: str
    reason: str
    validated_by: str
    validation_notes: Optional[str] = None
    validation_timestamp: str
    reason_evidence: Optional[dict[str, Any]] = None


class PayoutResponse(BaseModel):
    id: str
    claim_id: str
    registered_policy_id: str
    amount: int
    currency: str
    status: str  # pending|processing|completed|failed
    attempts: int
    failure_reason: Optional[str] = None
    transaction_reference: Optional[str] = None
    farmer_confirmed: bool
    farmer_rating: Optional[int] = None
    farmer_feedback: Optional[str] = None
    completed_at: Optional[str] = None


class ClaimDecisionResponse(BaseModel):
    """Claim after a decision, with the payout or rejection it produced."""
    claim: ClaimResponse
    payout: Optional[PayoutResponse] = None
    rejection: Optional[ClaimRejectionResponse] = None


# =============================================================================
# Cancellation
# =============================================================================

class CancelRequestResponse(BaseModel):
    id: str
    registered_policy_id: str
    requested_by: str
    cancel_request_type: str
    reason: str
    status: str  # pending_review|approved|denied|resolved_approved|resolved_denied|revoked
    evidence: dict[str, Any] = {}
    requested_at: str
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    compensate_amount: int
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None


class CancelDecisionResponse(BaseModel):
    """Cancel request after a transition, with the policy status it implies."""
    request: CancelRequestResponse
    policy_status: str


# =============================================================================
# Monitoring
# =============================================================================

class PolicyEvaluationResponse(BaseModel):
    registered_policy_id: str
    evaluated_at: str
    outcome: Optional[dict[str, Any]] = None
    claim_id: Optional[str] = None
    claim_amount: Optional[int] = None
    skipped_reason: Optional[str] = None


class CycleResponse(BaseModel):
    evaluated: int
    claims_created: list[str]
    evaluations: list[PolicyEvaluationResponse]


class SweepResponse(BaseModel):
    swept_at: str
    approved: list[str]
    already_decided: list[str]
    failed: list[str]
