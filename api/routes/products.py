"""Product catalog and registered policy endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException

from agripilot.models import BasePolicy, RegisteredPolicyStatus
from api.schemas.requests import (
    ApprovePolicyRequest,
    ExpirePoliciesRequest,
    RegisterPolicyRequest,
    RejectPolicyRequest,
)
from api.schemas.responses import BasePolicySummary, ConditionSummary, PolicyResponse
from api.services import Services

router = APIRouter(tags=["Products"])

# Shared services (set by main.py)
services: Optional[Services] = None


def set_services(s: Services):
    global services
    services = s


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


def _summary(p: BasePolicy) -> BasePolicySummary:
    trigger = p.trigger
    return BasePolicySummary(
        id=p.id,
        product_name=p.product_name,
        product_code=p.product_code,
        crop_type=p.crop_type,
        version=p.version,
        coverage_currency=p.coverage_currency,
        payout_cap=p.payout_cap,
        trigger_id=trigger.id if trigger else None,
        logical_operator=trigger.logical_operator.value if trigger else None,
        conditions=[
            ConditionSummary(
                id=c.id,
                data_source_id=c.data_source_id,
                aggregation_function=c.aggregation_function.value,
                aggregation_window_days=c.aggregation_window_days,
                threshold_operator=c.threshold_operator.value,
                threshold_value=c.threshold_value,
                early_warning_threshold=c.early_warning_threshold,
                consecutive_required=c.consecutive_required,
                baseline_window_days=c.baseline_window_days,
            )
            for c in (trigger.conditions if trigger else ())
        ],
    )


@router.get("/products", response_model=list[BasePolicySummary])
def list_products(crop_type: Optional[str] = None):
    """List base policies, optionally filtered by crop type (e.g. rice)."""
    return [_summary(p) for p in _services().catalog.list_base_policies(crop_type)]


@router.get("/products/{base_policy_id}", response_model=BasePolicySummary)
def get_product(base_policy_id: str):
    return _summary(_services().catalog.get_base_policy(base_policy_id))


@router.post("/policies", response_model=PolicyResponse, status_code=201)
def register_policy(request: RegisterPolicyRequest):
    """Apply for a base policy. The policy awaits underwriting before monitoring starts."""
    s = _services()
    policy = s.policies.register(
        s.catalog.get_base_policy(request.base_policy_id),
        farmer_id=request.farmer_id,
        farm_id=request.farm_id,
        coverage_amount=request.coverage_amount,
        coverage_start=request.coverage_start,
        coverage_end=request.coverage_end,
        policy_number=request.policy_number,
        premium_amount=request.premium_amount,
        submit=request.submit,
    )
    return PolicyResponse(**policy.to_dict())


@router.post("/policies/expire", response_model=list[PolicyResponse])
def expire_policies(request: ExpirePoliciesRequest):
    """Expire active policies whose coverage has ended. Returns the policies expired."""
    return [PolicyResponse(**p.to_dict()) for p in _services().policies.expire_lapsed(request.today)]


@router.post("/policies/{registered_policy_id}/submit", response_model=PolicyResponse)
def submit_policy(registered_policy_id: str):
    return PolicyResponse(**_services().policies.submit(registered_policy_id).to_dict())


@router.post("/policies/{registered_policy_id}/approve", response_model=PolicyResponse)
def approve_policy(registered_policy_id: str, request: ApprovePolicyRequest):
    policy = _services().policies.approve(registered_policy_id, request.reviewer_id, request.notes)
    return PolicyResponse(**policy.to_dict())


@router.post("/policies/{registered_policy_id}/reject", response_model=PolicyResponse)
def reject_policy(registered_policy_id: str, request: RejectPolicyRequest):
    policy = _services().policies.reject(registered_policy_id, request.reviewer_id, request.reason)
    return PolicyResponse(**policy.to_dict())

@router.get("/policies", response_model=list[PolicyResponse])
def list_policies(status: Optional[str] = None):
    status_filter = None
    if status is not None:
        try:
            status_filter = RegisteredPolicyStatus(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown policy status '{status}'") from None
    return [PolicyResponse(**p.to_dict()) for p in _services().repository.list_policies(status_filter)]


@router.get("/policies/{registered_policy_id}", response_model=PolicyResponse)
def get_policy(registered_policy_id: str):
    return PolicyResponse(**_services().repository.get_policy(registered_policy_id).to_dict())
