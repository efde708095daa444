"""Cancel request and dispute endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException

from agripilot.models import CancelRequest, CancelRequestStatus
from api.schemas.requests import (
    CreateCancelRequest,
    ResolveDisputeRequest,
    ReviewCancelRequest,
    RevokeCancelRequest,
)
from api.schemas.responses import CancelDecisionResponse, CancelRequestResponse
from api.services import Services

router = APIRouter(prefix="/cancel-requests", tags=["Cancellation"])

# Shared services (set by main.py)
services: Optional[Services] = None


def set_services(s: Services):
    global services
    services = s


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


def _decision(request: CancelRequest) -> CancelDecisionResponse:
    policy = _services().repository.get_policy(request.registered_policy_id)
    return CancelDecisionResponse(
        request=CancelRequestResponse(**request.to_dict()),
        policy_status=policy.status.value,
    )


@router.post("", response_model=CancelDecisionResponse, status_code=201)
def create_cancel_request(request: CreateCancelRequest):
    """Open a cancel request. The policy moves to pending_cancel."""
    created = _services().cancellations.create(
        request.registered_policy_id,
        request.requested_by,
        request.cancel_request_type,
        request.reason,
        evidence=request.evidence,
    )
    return _decision(created)


@router.get("", response_model=list[CancelRequestResponse])
def list_cancel_requests(
    registered_policy_id: Optional[str] = None,
    status: Optional[str] = None,
):
    status_filter = None
    if status is not None:
        try:
            status_filter = CancelRequestStatus(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status '{status}'") from None
    requests = _services().cancellations.list_requests(registered_policy_id, status_filter)
    return [CancelRequestResponse(**r.to_dict()) for r in requests]


@router.get("/{request_id}", response_model=CancelRequestResponse)
def get_cancel_request(request_id: str):
    return CancelRequestResponse(**_services().cancellations.get(request_id).to_dict())


@router.post("/{request_id}/review", response_model=CancelDecisionResponse)
def review_cancel_request(request_id: str, review: ReviewCancelRequest):
    """
    Approve (policy cancelled) or deny (policy in dispute) a pending request.
    The reviewer must not be the requester.
    """
    manager = _services().cancellations
    if review.decision == "approved":
        updated = manager.approve(
            request_id,
            review.reviewer_id,
            review.review_notes,
            compensate_amount=review.compensate_amount,
        )
    else:
        updated = manager.deny(request_id, review.reviewer_id, review.review_notes)
    return _decision(updated)


@router.post("/{request_id}/resolve", response_model=CancelDecisionResponse)
def resolve_dispute(request_id: str, resolution: ResolveDisputeRequest):
    """Settle a denied request. Only the original reviewer can resolve it."""
    updated = _services().cancellations.resolve_dispute(
        request_id,
        resolution.resolver_id,
        resolution.final_decision,
        resolution.resolution_notes,
    )
    return _decision(updated)


@router.post("/{request_id}/revoke", response_model=CancelDecisionResponse)
def revoke_cancel_request(request_id: str, revoke: RevokeCancelRequest):
    updated = _services().cancellations.revoke(request_id, revoke.requester_id, revoke.notes)
    return _decision(updated)
