"""
AgriPilot Payout Settlement Tracking

Tracks a payout from the PayoutRequested handoff to completion.

    pending -> processing -> completed
                          -> failed -> processing (retry)

Completing a payout marks its claim paid in the same transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..events import ClaimStatusChanged, EventBus
from ..exceptions import InvalidStateTransition, ValidationError
from ..models import ClaimStatus, Payout, PayoutStatus
from ..store import Repository
from .claim_lifecycle import ClaimLifecycleManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayoutTracker:
    """
    Usage:
        tracker = PayoutTracker(repository, lifecycle)
        tracker.start_processing(payout.id)
        tracker.complete(payout.id, transaction_reference="BANK-123")
    """

    def __init__(
        self,
        repository: Repository,
        lifecycle: ClaimLifecycleManager,
        events: Optional[EventBus] = None,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.lifecycle = lifecycle
        self.events = events or lifecycle.events
        self.max_attempts = max_attempts
        self.clock = clock

    def _load(self, payout_id: str, *allowed: PayoutStatus) -> Payout:
        payout = self.repository.get_payout(payout_id)
        if payout.status not in allowed:
            raise InvalidStateTransition(
                message=f"Payout is {payout.status.value}",
                details={
                    "status": payout.status.value,
                    "allowed": [s.value for s in allowed],
                },
                entity_id=payout_id,
            )
        return payout

    def start_processing(self, payout_id: str, now: Optional[datetime] = None) -> Payout:
        """pending|failed -> processing. Each call counts one attempt."""
        payout = self._load(payout_id, PayoutStatus.PENDING, PayoutStatus.FAILED)
        if payout.attempts >= self.max_attempts:
            raise InvalidStateTransition(
                message=f"Payout exhausted {self.max_attempts} attempts",
                details={"attempts": payout.attempts},
                entity_id=payout_id,
            )
        now = now or self.clock()
        payout.status = PayoutStatus.PROCESSING
        payout.attempts += 1
        payout.failure_reason = None
        payout.updated_at = now
        with self.repository.transaction() as uow:
            uow.update_payout(payout)
        logger.info("Payout %s processing (attempt %d)", payout.id, payout.attempts)
        return payout

    def complete(
        self,
        payout_id: str,
        transaction_reference: str,
        now: Optional[datetime] = None,
    ) -> Payout:
        """processing -> completed, and the claim approved -> paid."""
        if not transaction_reference or not transaction_reference.strip():
            raise ValidationError(
                message="transaction_reference is required", entity_id=payout_id
            )
        payout = self._load(payout_id, PayoutStatus.PROCESSING)
        now = now or self.clock()
        payout.status = PayoutStatus.COMPLETED
        payout.transaction_reference = transaction_reference.strip()
        payout.completed_at = now
        payout.updated_at = now
        with self.repository.transaction() as uow:
            uow.update_payout(payout)
            claim = self.lifecycle.mark_paid(payout.claim_id, now=now, uow=uow)

        self.events.publish(
            ClaimStatusChanged(claim.id, ClaimStatus.APPROVED.value, ClaimStatus.PAID.value, now)
        )
        logger.info(
            "Payout %s completed: %d %s", payout.id, payout.amount, payout.currency,
            extra={"claim_id": claim.id, "status": claim.status.value},
        )
        return payout

    def fail(self, payout_id: str, reason: str, now: Optional[datetime] = None) -> Payout:
        """processing -> failed. The payout can be retried with start_processing."""
        if not reason or not reason.strip():
            raise ValidationError(message="Failure reason is required", entity_id=payout_id)
        payout = self._load(payout_id, PayoutStatus.PROCESSING)
        payout.status = PayoutStatus.FAILED
        payout.failure_reason = reason.strip()
        payout.updated_at = now or self.clock()
        with self.repository.transaction() as uow:
            uow.update_payout(payout)
        logger.warning("Payout %s failed: %s", payout.id, payout.failure_reason)
        return payout

    def confirm_receipt(
        self,
        payout_id: str,
        rating: Optional[int] = None,
        feedback: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Payout:
        """Farmer confirms the money arrived, optionally rating it 1-5."""
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError(
                message="Rating must be between 1 and 5",
                details={"rating": rating},
                entity_id=payout_id,
            )
        payout = self._load(payout_id, PayoutStatus.COMPLETED)
        payout.farmer_confirmed = True
        payout.farmer_rating = rating
        payout.farmer_feedback = feedback
        payout.updated_at = now or self.clock()
        with self.repository.transaction() as uow:
            uow.update_payout(payout)
        return payout

    def payout_for_claim(self, claim_id: str) -> Optional[Payout]:
        return self.repository.find_payout_for_claim(claim_id)
