"""Payout settlement endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException

from agripilot.models import PayoutStatus
from api.schemas.requests import PayoutConfirmation, PayoutStatusUpdate
from api.schemas.responses import PayoutResponse
from api.services import Services

router = APIRouter(prefix="/payouts", tags=["Settlement"])

# Shared services (set by main.py)
services: Optional[Services] = None


def set_services(s: Services):
    global services
    services = s


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


@router.get("", response_model=list[PayoutResponse])
def list_payouts(status: Optional[str] = None):
    status_filter = None
    if status is not None:
        try:
            status_filter = PayoutStatus(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown payout status '{status}'") from None
    return [PayoutResponse(**p.to_dict()) for p in _services().repository.list_payouts(status_filter)]


@router.get("/{payout_id}", response_model=PayoutResponse)
def get_payout(payout_id: str):
    return PayoutResponse(**_services().repository.get_payout(payout_id).to_dict())


@router.post("/{payout_id}/status", response_model=PayoutResponse)
def update_payout_status(payout_id: str, update: PayoutStatusUpdate):
    """
    Report progress from the payment rail:
    processing, completed (marks the claim paid) or failed.
    """
    tracker = _services().payouts
    if update.status == "processing":
        payout = tracker.start_processing(payout_id)
    elif update.status == "completed":
        payout = tracker.complete(payout_id, update.transaction_reference)
    else:
        payout = tracker.fail(payout_id, update.failure_reason)
    return PayoutResponse(**payout.to_dict())


@router.post("/{payout_id}/confirm", response_model=PayoutResponse)
def confirm_payout(payout_id: str, confirmation: PayoutConfirmation):
    payout = _services().payouts.confirm_receipt(
        payout_id, rating=confirmation.rating, feedback=confirmation.feedback
    )
    return PayoutResponse(**payout.to_dict())
