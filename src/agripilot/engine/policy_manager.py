"""
AgriPilot Policy Manager

Application and term of a registered policy:

    register        -> draft (submit=False) or pending_review
    submit          draft -> pending_review
    approve         pending_review -> active
    reject          pending_review -> rejected
    expire_lapsed   active -> expired once coverage_end has passed

Cancellation and disputes belong to CancellationManager. A policy with
an open cancel request is left alone by expiry until that request is
settled.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from ..events import EventBus, PolicyStatusChanged
from ..exceptions import (
    ConcurrencyConflict,
    InvalidStateTransition,
    ReviewerConflictError,
    ValidationError,
)
from ..models import BasePolicy, RegisteredPolicy, RegisteredPolicyStatus
from ..store import Repository
from .cancellation_manager import _require_text

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PolicyManager:
    """
    Usage:
        manager = PolicyManager(repository, events)
        policy = manager.register(base_policy, "farmer-1", "farm-1", 10_000_000,
                                  date(2025, 1, 1), date(2025, 12, 31))
        manager.approve(policy.id, "underwriter-1")
        manager.expire_lapsed(date(2026, 1, 1))
    """

    def __init__(
        self,
        repository: Repository,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.events = events or EventBus()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def register(
        self,
        base_policy: BasePolicy,
        farmer_id: str,
        farm_id: str,
        coverage_amount: int,
        coverage_start: date,
        coverage_end: date,
        policy_number: Optional[str] = None,
        premium_amount: int = 0,
        submit: bool = True,
        now: Optional[datetime] = None,
    ) -> RegisteredPolicy:
        """
        Record an application against a base policy.

        Raises:
            ValidationError: Missing farmer or farm, bad amounts or dates,
                or enrollment closed on coverage_start
        """
        farmer_id = _require_text(farmer_id, "farmer_id")
        farm_id = _require_text(farm_id, "farm_id")
        if coverage_amount < 0 or premium_amount < 0:
            raise ValidationError(
                message="Amounts must not be negative",
                details={"coverage_amount": coverage_amount, "premium_amount": premium_amount},
            )
        if coverage_end < coverage_start:
            raise ValidationError(
                message="coverage_end is before coverage_start",
                details={
                    "coverage_start": coverage_start.isoformat(),
                    "coverage_end": coverage_end.isoformat(),
                },
            )
        if not base_policy.is_enrollment_open(coverage_start):
            raise ValidationError(
                message=f"Enrollment for '{base_policy.id}' is closed",
                details={"coverage_start": coverage_start.isoformat()},
                entity_id=base_policy.id,
            )

        now = now or self.clock()
        status = RegisteredPolicyStatus.PENDING_REVIEW if submit else RegisteredPolicyStatus.DRAFT
        policy = RegisteredPolicy.create(
            base_policy_id=base_policy.id,
            farmer_id=farmer_id,
            farm_id=farm_id,
            coverage_amount=coverage_amount,
            coverage_start=coverage_start,
            coverage_end=coverage_end,
            policy_number=policy_number,
            status=status,
            premium_amount=premium_amount,
        )
        policy.created_at = now
        policy.updated_at = now
        with self.repository.transaction() as uow:
            uow.insert_policy(policy)

        self._published(policy, None, now)
        return policy

    def submit(self, registered_policy_id: str, now: Optional[datetime] = None) -> RegisteredPolicy:
        """draft -> pending_review."""
        policy = self.repository.get_policy(registered_policy_id)
        self._require_status(policy, RegisteredPolicyStatus.DRAFT)
        return self._transition(policy, RegisteredPolicyStatus.PENDING_REVIEW, now or self.clock())

    # -------------------------------------------------------------------------
    # Underwriting
    # -------------------------------------------------------------------------

    def approve(
        self,
        registered_policy_id: str,
        reviewer_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RegisteredPolicy:
        """pending_review -> active. Monitoring starts on the next cycle."""
        reviewer_id = _require_text(reviewer_id, "reviewer_id", registered_policy_id)
        policy = self._load_for_review(registered_policy_id, reviewer_id)
        now = now or self.clock()
        policy.reviewed_by = reviewer_id
        policy.reviewed_at = now
        policy.review_notes = notes.strip() if notes and notes.strip() else None
        return self._transition(policy, RegisteredPolicyStatus.ACTIVE, now)

    def reject(
        self,
        registered_policy_id: str,
        reviewer_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> RegisteredPolicy:
        """pending_review -> rejected. The reason is kept as review_notes."""
        reviewer_id = _require_text(reviewer_id, "reviewer_id", registered_policy_id)
        reason = _require_text(reason, "reason", registered_policy_id)
        policy = self._load_for_review(registered_policy_id, reviewer_id)
        now = now or self.clock()
        policy.reviewed_by = reviewer_id
        policy.reviewed_at = now
        policy.review_notes = reason
        return self._transition(policy, RegisteredPolicyStatus.REJECTED, now)

    # -------------------------------------------------------------------------
    # Term
    # -------------------------------------------------------------------------

    def expire_lapsed(
        self, today: Optional[date] = None, now: Optional[datetime] = None
    ) -> list[RegisteredPolicy]:
        """
        Expire every active policy whose coverage ended before `today`.

        A policy changed by another writer meanwhile is skipped and picked
        up again on the next call.
        """
        now = now or self.clock()
        today = today or now.date()
        expired = []
        for policy in self.repository.list_policies(status=RegisteredPolicyStatus.ACTIVE):
            if policy.coverage_end >= today:
                continue
            try:
                expired.append(self._transition(policy, RegisteredPolicyStatus.EXPIRED, now))
            except ConcurrencyConflict:
                logger.warning(
                    "Policy %s changed during expiry, skipped", policy.policy_number,
                    extra={"registered_policy_id": policy.id},
                )
        return expired

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_status(self, policy: RegisteredPolicy, expected: RegisteredPolicyStatus) -> None:
        if policy.status != expected:
            raise InvalidStateTransition(
                message=f"Policy is {policy.status.value}, expected {expected.value}",
                details={"status": policy.status.value},
                entity_id=policy.id,
            )

    def _load_for_review(self, registered_policy_id: str, reviewer_id: str) -> RegisteredPolicy:
        policy = self.repository.get_policy(registered_policy_id)
        self._require_status(policy, RegisteredPolicyStatus.PENDING_REVIEW)
        if policy.farmer_id == reviewer_id:
            raise ReviewerConflictError(
                message="A policyholder cannot underwrite their own application",
                entity_id=registered_policy_id,
            )
        return policy

    def _transition(
        self, policy: RegisteredPolicy, status: RegisteredPolicyStatus, now: datetime
    ) -> RegisteredPolicy:
        old_status = policy.status
        policy.status = status
        policy.updated_at = now
        with self.repository.transaction() as uow:
            uow.update_policy(policy)
        self._published(policy, old_status, now)
        return policy

    def _published(
        self,
        policy: RegisteredPolicy,
        old_status: Optional[RegisteredPolicyStatus],
        now: datetime,
    ) -> None:
        logger.info(
            "Policy %s -> %s", policy.policy_number, policy.status.value,
            extra={"registered_policy_id": policy.id, "status": policy.status.value},
        )
        self.events.publish(PolicyStatusChanged(
            registered_policy_id=policy.id,
            old_status=old_status.value if old_status else None,
            new_status=policy.status.value,
            timestamp=now,
        ))
