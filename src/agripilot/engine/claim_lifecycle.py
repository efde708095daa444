"""
AgriPilot Claim Lifecycle Manager

State machine:

    generated -> pending_partner_review -> approved -> paid
                                        -> rejected

- Generated claims move straight to pending_partner_review with the
  auto-approval deadline set to now + review window.
- A partner approves (with notes) or rejects (with a typed reason).
- The sweep approves claims whose deadline has passed undecided.
- approved -> paid only when settlement confirms the payment.

Reviewer and sweep race on the same claim. Each decision is a
compare-and-swap on the claim revision; the loser reloads, sees a
decided claim and gets AlreadyDecided. Approval writes the claim and its
single Payout in one transaction, so a claim can never be paid twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from ..events import ClaimStatusChanged, EventBus, PayoutRequested
from ..exceptions import (
    AlreadyDecided,
    ClaimNotFoundError,
    ConcurrencyConflict,
    DuplicateClaimError,
    InvalidStateTransition,
    PolicyNotActiveError,
    ValidationError,
)
from ..models import (
    BasePolicy,
    Claim,
    ClaimRejection,
    ClaimRejectionType,
    ClaimStatus,
    PartnerDecision,
    Payout,
    PayoutBreakdown,
    RegisteredPolicy,
    RejectionEvidence,
)
from ..store import Repository, UnitOfWork

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_WINDOW_HOURS = 48
MAX_DECISION_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: Optional[str], field_name: str, entity_id: Optional[str] = None) -> str:
    if value is None or not value.strip():
        raise ValidationError(
            message=f"{field_name} is required",
            details={"field": field_name},
            entity_id=entity_id,
        )
    return value.strip()


# =============================================================================
# Review Deadline
# =============================================================================

class ReviewDeadlineStatus(str, Enum):
    """Where an undecided claim sits relative to its auto-approval deadline."""
    PENDING = "pending"
    DUE_SOON = "due_soon"   # within the warning threshold
    OVERDUE = "overdue"     # the next sweep approves it
    DECIDED = "decided"


def review_deadline_status(
    claim: Claim,
    now: datetime,
    warning_threshold: timedelta = timedelta(hours=6),
) -> ReviewDeadlineStatus:
    if claim.is_decided or claim.auto_approval_deadline is None:
        return ReviewDeadlineStatus.DECIDED
    if now > claim.auto_approval_deadline:
        return ReviewDeadlineStatus.OVERDUE
    if claim.auto_approval_deadline - now <= warning_threshold:
        return ReviewDeadlineStatus.DUE_SOON
    return ReviewDeadlineStatus.PENDING


@dataclass
class SweepResult:
    """Outcome of one auto-approval sweep."""
    swept_at: datetime
    approved: list[str] = field(default_factory=list)
    already_decided: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "swept_at": self.swept_at.isoformat(),
            "approved": self.approved,
            "already_decided": self.already_decided,
            "failed": self.failed,
        }


# =============================================================================
# Manager
# =============================================================================

class ClaimLifecycleManager:
    """
    Owns every claim status transition.

    Usage:
        manager = ClaimLifecycleManager(repository, events)
        claim = manager.generate(registered, base, trigger.id, breakdown, at)
        manager.approve(claim.id, reviewer_id="partner-7", partner_notes="Verified")
        result = manager.run_auto_approval_sweep()
    """

    def __init__(
        self,
        repository: Repository,
        events: Optional[EventBus] = None,
        default_review_window_hours: int = DEFAULT_REVIEW_WINDOW_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.events = events or EventBus()
        self.default_review_window_hours = default_review_window_hours
        self.clock = clock

    def review_window(self, base_policy: BasePolicy) -> timedelta:
        hours = base_policy.review_window_hours
        if hours is None:
            hours = self.default_review_window_hours
        return timedelta(hours=hours)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def generate(
        self,
        registered_policy: RegisteredPolicy,
        base_policy: BasePolicy,
        trigger_id: str,
        breakdown: PayoutBreakdown,
        trigger_timestamp: datetime,
        evidence_summary: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Claim:
        """
        Create an auto-generated claim for a fired trigger.

        Raises:
            PolicyNotActiveError: Policy is not active
            DuplicateClaimError: An open claim exists for this policy and trigger
        """
        existing = self.repository.find_open_claim(registered_policy.id, trigger_id)
        if existing is not None:
            raise DuplicateClaimError(
                message="An open claim already exists for this policy and trigger",
                details={"open_claim_id": existing.id, "trigger_id": trigger_id},
                entity_id=registered_policy.id,
            )
        claim = self._new_claim(
            registered_policy,
            base_policy,
            breakdown,
            trigger_id=trigger_id,
            trigger_timestamp=trigger_timestamp,
            auto_generated=True,
            evidence_summary=evidence_summary,
            now=now,
        )
        logger.info(
            "Generated claim %s for policy %s: %d %s",
            claim.claim_number, registered_policy.policy_number,
            claim.claim_amount, claim.currency,
            extra={"claim_id": claim.id, "status": claim.status.value},
        )
        return claim

    def create_manual(
        self,
        registered_policy: RegisteredPolicy,
        base_policy: BasePolicy,
        breakdown: PayoutBreakdown,
        created_by: str,
        notes: str,
        now: Optional[datetime] = None,
    ) -> Claim:
        """
        Partner-initiated claim. Enters the same review flow as generated ones.

        Raises:
            ValidationError: Missing creator or notes
            PolicyNotActiveError: Policy is not active
        """
        _require_text(created_by, "created_by")
        notes = _require_text(notes, "notes")
        now = now or self.clock()
        claim = self._new_claim(
            registered_policy,
            base_policy,
            breakdown,
            trigger_id=None,
            trigger_timestamp=now,
            auto_generated=False,
            evidence_summary={"created_by": created_by, "notes": notes},
            now=now,
        )
        logger.info(
            "Partner %s created claim %s manually", created_by, claim.claim_number,
            extra={"claim_id": claim.id, "status": claim.status.value},
        )
        return claim

    def _new_claim(
        self,
        registered_policy: RegisteredPolicy,
        base_policy: BasePolicy,
        breakdown: PayoutBreakdown,
        trigger_id: Optional[str],
        trigger_timestamp: datetime,
        auto_generated: bool,
        evidence_summary: Optional[dict[str, Any]],
        now: Optional[datetime],
    ) -> Claim:
        if not registered_policy.is_active:
            raise PolicyNotActiveError(
                message=f"Policy is {registered_policy.status.value}, claims require active",
                details={"status": registered_policy.status.value},
                entity_id=registered_policy.id,
            )
        now = now or self.clock()
        claim = Claim.create(
            registered_policy_id=registered_policy.id,
            base_policy_id=base_policy.id,
            farm_id=registered_policy.farm_id,
            trigger_id=trigger_id,
            trigger_timestamp=trigger_timestamp,
            calculated_fix_payout=breakdown.fix_payout,
            calculated_threshold_payout=breakdown.threshold_payout,
            over_threshold_value=breakdown.over_threshold_value,
            claim_amount=breakdown.claim_amount,
            currency=breakdown.currency,
            auto_generated=auto_generated,
            evidence_summary=evidence_summary,
            created_at=now,
        )
        # generated is transient: the review clock starts immediately
        claim.status = ClaimStatus.PENDING_PARTNER_REVIEW
        claim.auto_approval_deadline = now + self.review_window(base_policy)

        with self.repository.transaction() as uow:
            uow.insert_claim(claim)

        self.events.publish_all([
            ClaimStatusChanged(claim.id, None, ClaimStatus.GENERATED.value, now),
            ClaimStatusChanged(
                claim.id,
                ClaimStatus.GENERATED.value,
                ClaimStatus.PENDING_PARTNER_REVIEW.value,
                now,
            ),
        ])
        return claim

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def approve(
        self,
        claim_id: str,
        reviewer_id: str,
        partner_notes: str,
        now: Optional[datetime] = None,
    ) -> Claim:
        """
        Manual partner approval.

        Raises:
            ValidationError: Missing reviewer or notes
            AlreadyDecided: The claim was already approved or rejected
        """
        reviewer_id = _require_text(reviewer_id, "reviewer_id", claim_id)
        partner_notes = _require_text(partner_notes, "partner_notes", claim_id)
        now = now or self.clock()

        def apply(claim: Claim, uow: UnitOfWork) -> Payout:
            claim.partner_decision = PartnerDecision.APPROVED.value
            claim.partner_notes = partner_notes
            claim.reviewed_by = reviewer_id
            claim.reviewed_at = now
            return self._write_approval(claim, uow, now)

        claim, payout = self._decide(claim_id, ClaimStatus.APPROVED, apply, now)
        self._after_approval(claim, payout)
        return claim

    def reject(
        self,
        claim_id: str,
        reviewer_id: str,
        rejection_type: Union[ClaimRejectionType, str],
        reason: str,
        validation_notes: Optional[str] = None,
        evidence: Optional[RejectionEvidence] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Claim, ClaimRejection]:
        """
        Partner rejection. The ClaimRejection is written in the same
        transaction as the status change.

        Raises:
            ValidationError: Missing reviewer/reason or unknown rejection type
            AlreadyDecided: The claim was already approved or rejected
        """
        reviewer_id = _require_text(reviewer_id, "reviewer_id", claim_id)
        reason = _require_text(reason, "reason", claim_id)
        try:
            rejection_type = ClaimRejectionType(rejection_type)
        except ValueError:
            raise ValidationError(
                message=f"Unknown claim rejection type: {rejection_type}",
                details={"allowed": [t.value for t in ClaimRejectionType]},
                entity_id=claim_id,
            ) from None
        now = now or self.clock()
        rejection = ClaimRejection(
            id=str(uuid4()),
            claim_id=claim_id,
            claim_rejection_type=rejection_type,
            reason=reason,
            validated_by=reviewer_id,
            validation_timestamp=now,
            validation_notes=validation_notes,
            reason_evidence=evidence,
        )

        def apply(claim: Claim, uow: UnitOfWork) -> None:
            claim.partner_decision = PartnerDecision.REJECTED.value
            claim.partner_notes = validation_notes or reason
            claim.reviewed_by = reviewer_id
            claim.reviewed_at = now
            uow.update_claim(claim)
            uow.insert_rejection(rejection)

        claim, _ = self._decide(claim_id, ClaimStatus.REJECTED, apply, now)
        logger.info(
            "Claim %s rejected: %s", claim.claim_number, rejection_type.value,
            extra={"claim_id": claim.id, "status": claim.status.value},
        )
        return claim, rejection

    def auto_approve(self, claim_id: str, now: Optional[datetime] = None) -> Claim:
        """
        Approve one claim whose review window elapsed without a decision.

        Raises:
            AlreadyDecided: A reviewer decided first
            InvalidStateTransition: The deadline has not passed yet
        """
        now = now or self.clock()

        def apply(claim: Claim, uow: UnitOfWork) -> Payout:
            if claim.auto_approval_deadline is None or now <= claim.auto_approval_deadline:
                raise InvalidStateTransition(
                    message="Review window has not elapsed",
                    details={"auto_approval_deadline": str(claim.auto_approval_deadline)},
                    entity_id=claim.id,
                )
            claim.auto_approved = True
            claim.partner_decision = PartnerDecision.APPROVED.value
            return self._write_approval(claim, uow, now)

        claim, payout = self._decide(claim_id, ClaimStatus.APPROVED, apply, now)
        self._after_approval(claim, payout)
        return claim

    def run_auto_approval_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Approve every claim past its deadline. Safe to run repeatedly and
        concurrently with reviewers: decided claims are skipped.
        """
        now = now or self.clock()
        result = SweepResult(swept_at=now)
        for claim in self.repository.claims_due_for_auto_approval(now):
            try:
                self.auto_approve(claim.id, now=now)
                result.approved.append(claim.id)
            except AlreadyDecided:
                logger.info(
                    "Sweep skipped claim %s: already decided", claim.claim_number,
                    extra={"claim_id": claim.id},
                )
                result.already_decided.append(claim.id)
            except ConcurrencyConflict:
                logger.warning(
                    "Sweep lost repeated races on claim %s", claim.claim_number,
                    extra={"claim_id": claim.id},
                )
                result.failed.append(claim.id)
        if result.approved:
            logger.info("Auto-approval sweep approved %d claims", len(result.approved))
        return result

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def mark_paid(
        self,
        claim_id: str,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Claim:
        """
        approved -> paid. Called by settlement once the payout completes.

        When `uow` is given the claim write joins that transaction and the
        status event is the caller's to publish.
        """
        now = now or self.clock()
        claim = self.repository.get_claim(claim_id)
        if claim.status != ClaimStatus.APPROVED:
            raise InvalidStateTransition(
                message=f"Cannot mark a {claim.status.value} claim as paid",
                details={"status": claim.status.value},
                entity_id=claim_id,
            )
        claim.status = ClaimStatus.PAID
        claim.paid_at = now
        claim.updated_at = now
        if uow is not None:
            uow.update_claim(claim)
            return claim

        with self.repository.transaction() as own_uow:
            own_uow.update_claim(claim)
        self.events.publish(
            ClaimStatusChanged(claim.id, ClaimStatus.APPROVED.value, ClaimStatus.PAID.value, now)
        )
        return claim

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_claim(self, claim_id: str) -> Claim:
        return self.repository.get_claim(claim_id)

    def get_claim_by_number(self, claim_number: str) -> Claim:
        claim = self.repository.find_claim_by_number(claim_number)
        if claim is None:
            raise ClaimNotFoundError(
                message=f"Claim not found: {claim_number}",
                details={"claim_number": claim_number},
            )
        return claim

    def deadline_status(self, claim: Claim, now: Optional[datetime] = None) -> ReviewDeadlineStatus:
        return review_deadline_status(claim, now or self.clock())

    def claims_for_policy(self, registered_policy_id: str) -> list[Claim]:
        return self.repository.list_claims(registered_policy_id=registered_policy_id)

    def list_claims(self, status: Optional[ClaimStatus] = None) -> list[Claim]:
        return self.repository.list_claims(status=status)

    def get_rejection(self, claim_id: str) -> Optional[ClaimRejection]:
        return self.repository.find_rejection(claim_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _write_approval(self, claim: Claim, uow: UnitOfWork, now: datetime) -> Payout:
        uow.update_claim(claim)
        payout = Payout.for_claim(claim, created_at=now)
        uow.insert_payout(payout)
        return payout

    def _decide(
        self,
        claim_id: str,
        new_status: ClaimStatus,
        apply: Callable[[Claim, UnitOfWork], Optional[Payout]],
        now: datetime,
    ) -> tuple[Claim, Optional[Payout]]:
        for _ in range(MAX_DECISION_ATTEMPTS):
            claim = self.repository.get_claim(claim_id)
            if claim.is_decided:
                raise AlreadyDecided(
                    message=f"Claim already {claim.status.value}",
                    details={"status": claim.status.value},
                    entity_id=claim_id,
                )
            old_status = claim.status
            claim.status = new_status
            claim.updated_at = now
            try:
                with self.repository.transaction() as uow:
                    payout = apply(claim, uow)
            except ConcurrencyConflict:
                logger.info(
                    "Revision conflict deciding claim %s, reloading", claim_id,
                    extra={"claim_id": claim_id},
                )
                continue
            self.events.publish(
                ClaimStatusChanged(claim.id, old_status.value, new_status.value, now)
            )
            return claim, payout
        raise ConcurrencyConflict(
            message="Could not decide claim after repeated conflicts",
            entity_id=claim_id,
        )

    def _after_approval(self, claim: Claim, payout: Optional[Payout]) -> None:
        logger.info(
            "Claim %s approved%s", claim.claim_number,
            " automatically" if claim.auto_approved else "",
            extra={"claim_id": claim.id, "status": claim.status.value},
        )
        if payout is not None:
            self.events.publish(PayoutRequested(
                claim_id=claim.id,
                payout_id=payout.id,
                amount=payout.amount,
                currency=payout.currency,
                registered_policy_id=claim.registered_policy_id,
            ))
