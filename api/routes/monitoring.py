"""Monitoring cycle and auto-approval sweep endpoints."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException

from api.schemas.requests import EvaluateRequest, SweepRequest
from api.schemas.responses import CycleResponse, PolicyEvaluationResponse, SweepResponse
from api.services import Services

router = APIRouter(prefix="/monitoring", tags=["Monitoring"])

# Shared services (set by main.py)
services: Optional[Services] = None


def set_services(s: Services):
    global services
    services = s


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from clients are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.post("/policies/{registered_policy_id}/evaluate", response_model=PolicyEvaluationResponse)
def evaluate_policy(registered_policy_id: str, request: Optional[EvaluateRequest] = None):
    """Run one monitoring cycle for a single registered policy."""
    as_of = _aware(request.as_of) if request else None
    evaluation = _services().pipeline.evaluate_policy(registered_policy_id, as_of)
    return PolicyEvaluationResponse(**evaluation.to_dict())


@router.post("/run", response_model=CycleResponse)
def run_cycle(request: Optional[EvaluateRequest] = None):
    """Run one monitoring cycle for every active policy."""
    as_of = _aware(request.as_of) if request else None
    evaluations = _services().pipeline.run_cycle(as_of)
    return CycleResponse(
        evaluated=len(evaluations),
        claims_created=[e.claim.id for e in evaluations if e.claim_created],
        evaluations=[PolicyEvaluationResponse(**e.to_dict()) for e in evaluations],
    )


@router.post("/sweep", response_model=SweepResponse)
def run_sweep(request: Optional[SweepRequest] = None):
    """Approve every claim whose review window has elapsed. Idempotent."""
    now = _aware(request.now) if request else None
    result = _services().lifecycle.run_auto_approval_sweep(now)
    return SweepResponse(**result.to_dict())
