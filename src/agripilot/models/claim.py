"""
AgriPilot Claim Models

Claims are generated by the monitoring pipeline when a trigger fires
(or created manually by a partner) and then move through partner review.

Key components:
- Claim: Monetary claim against a registered policy
- ClaimRejection: Structured record of why a claim was rejected
- RejectionEvidence: Optional supporting facts for a rejection
- Payout: Settlement record created when a claim is approved

All amounts are integer minor units of the claim currency.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from .enums import ClaimRejectionType, ClaimStatus, PayoutStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_claim_number(at: datetime) -> str:
    """Claim numbers look like CLM-20250314-9F3A01BC."""
    return f"CLM-{at:%Y%m%d}-{uuid4().hex[:8].upper()}"


# =============================================================================
# Claim
# =============================================================================

@dataclass
class Claim:
    """
    A claim against a registered policy.

    Invariant: claim_amount == min(calculated_fix_payout +
    calculated_threshold_payout, payout cap) and is never negative.
    Nothing on the claim changes once it is approved, except the
    approved -> paid transition.

    Attributes:
        id: Unique identifier
        claim_number: Unique human-facing number
        registered_policy_id: Policy the claim is against
        base_policy_id: Product the policy was issued from
        farm_id: Insured farm
        trigger_id: Trigger that fired (None for manual claims)
        trigger_timestamp: When the trigger was evaluated as fired
        calculated_fix_payout: Fixed component
        calculated_threshold_payout: Threshold-proportional component
        over_threshold_value: Worst-case severity across fired conditions
        claim_amount: Capped total
        currency: ISO currency code
        auto_generated: True when produced by the monitoring pipeline
        auto_approved: True when approved by the review-window sweep
        status: Lifecycle status
        auto_approval_deadline: When the sweep may approve the claim
        revision: Optimistic concurrency counter
    """
    id: str
    claim_number: str
    registered_policy_id: str
    base_policy_id: str
    farm_id: str
    trigger_id: Optional[str]
    trigger_timestamp: datetime
    calculated_fix_payout: int
    calculated_threshold_payout: int
    over_threshold_value: Optional[float]
    claim_amount: int
    currency: str
    auto_generated: bool = True
    auto_approved: bool = False
    status: ClaimStatus = ClaimStatus.GENERATED
    auto_approval_deadline: Optional[datetime] = None

    # Partner review
    partner_decision: Optional[str] = None
    partner_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    # Fired conditions and their aggregated values at trigger time
    evidence_summary: dict[str, Any] = field(default_factory=dict)

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    paid_at: Optional[datetime] = None
    revision: int = 0

    @classmethod
    def create(
        cls,
        registered_policy_id: str,
        base_policy_id: str,
        farm_id: str,
        trigger_id: Optional[str],
        trigger_timestamp: datetime,
        calculated_fix_payout: int,
        calculated_threshold_payout: int,
        over_threshold_value: Optional[float],
        claim_amount: int,
        currency: str,
        auto_generated: bool = True,
        evidence_summary: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> Claim:
        """Factory with generated id and claim number."""
        now = created_at or _utcnow()
        return cls(
            id=str(uuid4()),
            claim_number=generate_claim_number(now),
            registered_policy_id=registered_policy_id,
            base_policy_id=base_policy_id,
            farm_id=farm_id,
            trigger_id=trigger_id,
            trigger_timestamp=trigger_timestamp,
            calculated_fix_payout=calculated_fix_payout,
            calculated_threshold_payout=calculated_threshold_payout,
            over_threshold_value=over_threshold_value,
            claim_amount=claim_amount,
            currency=currency,
            auto_generated=auto_generated,
            evidence_summary=evidence_summary or {},
            created_at=now,
            updated_at=now,
        )

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @property
    def is_decided(self) -> bool:
        return not self.status.is_open

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "claim_number": self.claim_number,
            "registered_policy_id": self.registered_policy_id,
            "base_policy_id": self.base_policy_id,
            "farm_id": self.farm_id,
            "trigger_id": self.trigger_id,
            "trigger_timestamp": self.trigger_timestamp.isoformat(),
            "calculated_fix_payout": self.calculated_fix_payout,
            "calculated_threshold_payout": self.calculated_threshold_payout,
            "over_threshold_value": self.over_threshold_value,
            "claim_amount": self.claim_amount,
            "currency": self.currency,
            "auto_generated": self.auto_generated,
            "auto_approved": self.auto_approved,
            "status": self.status.value,
            "auto_approval_deadline": (
                self.auto_approval_deadline.isoformat()
                if self.auto_approval_deadline else None
            ),
            "partner_decision": self.partner_decision,
            "partner_notes": self.partner_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "evidence_summary": self.evidence_summary,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


# =============================================================================
# Rejection
# =============================================================================

@dataclass(frozen=True)
class RejectionEvidence:
    """Supporting facts attached to a rejection."""
    event_date: Optional[date] = None
    policy_clause: Optional[str] = None
    blackout_period_start: Optional[date] = None
    blackout_period_end: Optional[date] = None
    evidence_documents: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "policy_clause": self.policy_clause,
            "blackout_period_start": (
                self.blackout_period_start.isoformat() if self.blackout_period_start else None
            ),
            "blackout_period_end": (
                self.blackout_period_end.isoformat() if self.blackout_period_end else None
            ),
            "evidence_documents": list(self.evidence_documents),
        }


@dataclass(frozen=True)
class ClaimRejection:
    """Why a claim was rejected. Exactly one per rejected claim."""
    id: str
    claim_id: str
    claim_rejection_type: ClaimRejectionType
    reason: str
    validated_by: str
    validation_timestamp: datetime
    validation_notes: Optional[str] = None
    reason_evidence: Optional[RejectionEvidence] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "claim_rejection_type": self.claim_rejection_type.value,
            "reason": self.reason,
            "validated_by": self.validated_by,
            "validation_notes": self.validation_notes,
            "validation_timestamp": self.validation_timestamp.isoformat(),
            "reason_evidence": (
                self.reason_evidence.to_dict() if self.reason_evidence else None
            ),
        }


# =============================================================================
# Payout
# =============================================================================

@dataclass
class Payout:
    """
    Settlement of an approved claim. One per claim.

    pending -> processing -> completed | failed; failed may be retried.
    """
    id: str
    claim_id: str
    registered_policy_id: str
    amount: int
    currency: str
    status: PayoutStatus = PayoutStatus.PENDING
    attempts: int = 0
    failure_reason: Optional[str] = None
    transaction_reference: Optional[str] = None
    farmer_confirmed: bool = False
    farmer_rating: Optional[int] = None
    farmer_feedback: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    revision: int = 0

    @classmethod
    def for_claim(cls, claim: Claim, created_at: Optional[datetime] = None) -> Payout:
        now = created_at or _utcnow()
        return cls(
            id=str(uuid4()),
            claim_id=claim.id,
            registered_policy_id=claim.registered_policy_id,
            amount=claim.claim_amount,
            currency=claim.currency,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "registered_policy_id": self.registered_policy_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value,
            "attempts": self.attempts,
            "failure_reason": self.failure_reason,
            "transaction_reference": self.transaction_reference,
            "farmer_confirmed": self.farmer_confirmed,
            "farmer_rating": self.farmer_rating,
            "farmer_feedback": self.farmer_feedback,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
