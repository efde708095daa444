"""Claim review endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException

from agripilot.models import Claim, ClaimStatus, RejectionEvidence
from api.schemas.requests import ApproveClaimRequest, ManualClaimRequest, RejectClaimRequest
from api.schemas.responses import (
    ClaimDecisionResponse,
    ClaimRejectionResponse,
    ClaimResponse,
    PayoutResponse,
)
from api.services import Services

router = APIRouter(prefix="/claims", tags=["Claims"])

# Shared services (set by main.py)
services: Optional[Services] = None


def set_services(s: Services):
    global services
    services = s


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


def _claim_response(claim: Claim) -> ClaimResponse:
    deadline = _services().lifecycle.deadline_status(claim)
    return ClaimResponse(**claim.to_dict(), review_deadline_status=deadline.value)


def _claim_status(value: Optional[str]) -> Optional[ClaimStatus]:
    if value is None:
        return None
    try:
        return ClaimStatus(value)
    except ValueError:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown claim status '{value}'. Allowed: {[s.value for s in ClaimStatus]}",
        ) from None


@router.get("", response_model=list[ClaimResponse])
def list_claims(status: Optional[str] = None):
    """
    List claims, optionally filtered by status:
    pending_partner_review, approved, rejected, paid
    """
    claims = _services().lifecycle.list_claims(status=_claim_status(status))
    return [_claim_response(c) for c in claims]


@router.get("/by-policy/{registered_policy_id}", response_model=list[ClaimResponse])
def claims_for_policy(registered_policy_id: str):
    s = _services()
    s.repository.get_policy(registered_policy_id)
    return [_claim_response(c) for c in s.lifecycle.claims_for_policy(registered_policy_id)]


@router.get("/by-number/{claim_number}", response_model=ClaimResponse)
def get_claim_by_number(claim_number: str):
    """Look a claim up by the number shown to farmers and partners (CLM-...)."""
    return _claim_response(_services().lifecycle.get_claim_by_number(claim_number))


@router.post("/manual", response_model=ClaimResponse, status_code=201)
def create_manual_claim(request: ManualClaimRequest):
    """Partner-initiated claim. Enters partner review like a generated one."""
    s = _services()
    policy = s.repository.get_policy(request.registered_policy_id)
    base_policy = s.catalog.get_base_policy(policy.base_policy_id)
    breakdown = s.pipeline.calculator.from_components(
        base_policy,
        request.fix_payout,
        request.threshold_payout,
        request.over_threshold_value,
    )
    claim = s.lifecycle.create_manual(
        policy, base_policy, breakdown, created_by=request.created_by, notes=request.notes
    )
    return _claim_response(claim)


@router.get("/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: str):
    return _claim_response(_services().lifecycle.get_claim(claim_id))


@router.post("/{claim_id}/approve", response_model=ClaimDecisionResponse)
def approve_claim(claim_id: str, request: ApproveClaimRequest):
    """Approve a claim under review. Creates its payout."""
    s = _services()
    claim = s.lifecycle.approve(claim_id, request.reviewer_id, request.partner_notes)
    payout = s.payouts.payout_for_claim(claim.id)
    return ClaimDecisionResponse(
        claim=_claim_response(claim),
        payout=PayoutResponse(**payout.to_dict()) if payout else None,
    )


@router.post("/{claim_id}/reject", response_model=ClaimDecisionResponse)
def reject_claim(claim_id: str, request: RejectClaimRequest):
    """Reject a claim under review with a typed reason."""
    evidence = None
    if request.reason_evidence is not None:
        evidence = RejectionEvidence(
            event_date=request.reason_evidence.event_date,
            policy_clause=request.reason_evidence.policy_clause,
            blackout_period_start=request.reason_evidence.blackout_period_start,
            blackout_period_end=request.reason_evidence.blackout_period_end,
            evidence_documents=tuple(request.reason_evidence.evidence_documents),
        )
    claim, rejection = _services().lifecycle.reject(
        claim_id,
        request.reviewer_id,
        request.claim_rejection_type,
        request.reason,
        validation_notes=request.validation_notes,
        evidence=evidence,
    )
    return ClaimDecisionResponse(
        claim=_claim_response(claim),
        rejection=ClaimRejectionResponse(**rejection.to_dict()),
    )


@router.get("/{claim_id}/rejection", response_model=ClaimRejectionResponse)
def get_rejection(claim_id: str):
    s = _services()
    s.lifecycle.get_claim(claim_id)
    rejection = s.lifecycle.get_rejection(claim_id)
    if rejection is None:
        raise HTTPException(status_code=404, detail=f"Claim '{claim_id}' has no rejection")
    return ClaimRejectionResponse(**rejection.to_dict())


@router.get("/{claim_id}/payout", response_model=PayoutResponse)
def get_claim_payout(claim_id: str):
    s = _services()
    s.lifecycle.get_claim(claim_id)
    payout = s.payouts.payout_for_claim(claim_id)
    if payout is None:
        raise HTTPException(status_code=404, detail=f"Claim '{claim_id}' has no payout")
    return PayoutResponse(**payout.to_dict())
