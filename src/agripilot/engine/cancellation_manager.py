"""
AgriPilot Cancellation / Dispute Manager

Request state machine, with the registered policy status it implies:

    (create)        policy active -> pending_cancel     request pending_review
    approve         policy -> cancelled                 request approved
    deny            policy -> dispute                   request denied
    revoke          policy -> active                    request revoked
    resolve(appr.)  policy dispute -> cancelled         request resolved_approved
    resolve(deny)   policy dispute -> active            request resolved_denied

Every transition requires non-empty justification text; missing text is
rejected before anything is written. The request and the policy are
updated in one transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from ..events import CancelRequestStatusChanged, EventBus
from ..exceptions import (
    InvalidStateTransition,
    PolicyNotActiveError,
    ReviewerConflictError,
    ValidationError,
)
from ..models import (
    CancelRequest,
    CancelRequestStatus,
    CancelRequestType,
    FinalDecision,
    RegisteredPolicy,
    RegisteredPolicyStatus,
)
from ..store import Repository

logger = logging.getLogger(__name__)


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


class CancellationManager:
    """
    Usage:
        manager = CancellationManager(repository, events)
        request = manager.create(policy.id, "farmer-1", "policyholder_request", "Selling the farm")
        manager.deny(request.id, "partner-2", "Contact support on 1900-xxxx")
        manager.resolve_dispute(request.id, "partner-2", "approved", "Agreed after call")
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
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self,
        registered_policy_id: str,
        requested_by: str,
        cancel_request_type: Union[CancelRequestType, str],
        reason: str,
        evidence: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> CancelRequest:
        """
        Open a cancel request against an active policy.

        Raises:
            ValidationError: Missing requester/reason or unknown type
            PolicyNotActiveError: Policy is not active
        """
        requested_by = _require_text(requested_by, "requested_by")
        reason = _require_text(reason, "reason")
        try:
            cancel_request_type = CancelRequestType(cancel_request_type)
        except ValueError:
            raise ValidationError(
                message=f"Unknown cancel request type: {cancel_request_type}",
                details={"allowed": [t.value for t in CancelRequestType]},
            ) from None

        now = now or self.clock()
        policy = self.repository.get_policy(registered_policy_id)
        if not policy.is_active:
            raise PolicyNotActiveError(
                message=f"Policy is {policy.status.value}, cancellation requires active",
                details={"status": policy.status.value},
                entity_id=policy.id,
            )

        request = CancelRequest.create(
            registered_policy_id=policy.id,
            requested_by=requested_by,
            cancel_request_type=cancel_request_type,
            reason=reason,
            evidence=evidence,
            requested_at=now,
        )
        policy.status = RegisteredPolicyStatus.PENDING_CANCEL
        policy.open_cancel_request_id = request.id
        policy.updated_at = now
        with self.repository.transaction() as uow:
            uow.insert_cancel_request(request)
            uow.update_policy(policy)

        self._published(request, None, now)
        return request

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    def approve(
        self,
        request_id: str,
        reviewer_id: str,
        review_notes: str,
        compensate_amount: int = 0,
        now: Optional[datetime] = None,
    ) -> CancelRequest:
        """pending_review -> approved; policy -> cancelled."""
        reviewer_id = _require_text(reviewer_id, "reviewer_id", request_id)
        review_notes = _require_text(review_notes, "review_notes", request_id)
        if compensate_amount < 0:
            raise ValidationError(
                message="compensate_amount must not be negative",
                details={"compensate_amount": compensate_amount},
                entity_id=request_id,
            )
        request, policy = self._load_for_review(request_id, reviewer_id)
        now = now or self.clock()

        request.status = CancelRequestStatus.APPROVED
        request.review_notes = review_notes
        request.reviewed_by = reviewer_id
        request.reviewed_at = now
        request.compensate_amount = compensate_amount
        self._close_policy(policy, RegisteredPolicyStatus.CANCELLED, now)
        return self._commit(request, policy, CancelRequestStatus.PENDING_REVIEW, now)

    def deny(
        self,
        request_id: str,
        reviewer_id: str,
        review_notes: str,
        now: Optional[datetime] = None,
    ) -> CancelRequest:
        """
        pending_review -> denied; policy -> dispute.

        review_notes should tell the requester how to contest the denial.
        """
        reviewer_id = _require_text(reviewer_id, "reviewer_id", request_id)
        review_notes = _require_text(review_notes, "review_notes", request_id)
        request, policy = self._load_for_review(request_id, reviewer_id)
        now = now or self.clock()

        request.status = CancelRequestStatus.DENIED
        request.review_notes = review_notes
        request.reviewed_by = reviewer_id
        request.reviewed_at = now
        policy.status = RegisteredPolicyStatus.DISPUTE
        policy.updated_at = now
        return self._commit(request, policy, CancelRequestStatus.PENDING_REVIEW, now)

    def revoke(
        self,
        request_id: str,
        requester_id: str,
        notes: str,
        now: Optional[datetime] = None,
    ) -> CancelRequest:
        """Requester withdraws a pending request; policy returns to active."""
        requester_id = _require_text(requester_id, "requester_id", request_id)
        notes = _require_text(notes, "notes", request_id)
        request = self.repository.get_cancel_request(request_id)
        self._require_status(request, CancelRequestStatus.PENDING_REVIEW)
        if request.requested_by != requester_id:
            raise ReviewerConflictError(
                message="Only the requester can revoke a cancel request",
                details={"requested_by": request.requested_by},
                entity_id=request_id,
            )
        policy = self.repository.get_policy(request.registered_policy_id)
        now = now or self.clock()

        request.status = CancelRequestStatus.REVOKED
        request.resolution_notes = notes
        request.resolved_by = requester_id
        request.resolved_at = now
        self._close_policy(policy, RegisteredPolicyStatus.ACTIVE, now)
        return self._commit(request, policy, CancelRequestStatus.PENDING_REVIEW, now)

    # -------------------------------------------------------------------------
    # Dispute
    # -------------------------------------------------------------------------

    def resolve_dispute(
        self,
        request_id: str,
        resolver_id: str,
        final_decision: Union[FinalDecision, str],
        resolution_notes: str,
        now: Optional[datetime] = None,
    ) -> CancelRequest:
        """
        Settle a denied request.

        approved: policy dispute -> cancelled, request resolved_approved
        denied:   policy dispute -> active, request resolved_denied

        Raises:
            ValidationError: Missing notes or final_decision not approved/denied
            InvalidStateTransition: Request not denied or policy not in dispute
            ReviewerConflictError: Resolver is not the reviewer who denied
        """
        resolver_id = _require_text(resolver_id, "resolver_id", request_id)
        resolution_notes = _require_text(resolution_notes, "resolution_notes", request_id)
        try:
            final_decision = FinalDecision(final_decision)
        except ValueError:
            raise ValidationError(
                message="final_decision must be 'approved' or 'denied'",
                details={"final_decision": str(final_decision)},
                entity_id=request_id,
            ) from None

        request = self.repository.get_cancel_request(request_id)
        self._require_status(request, CancelRequestStatus.DENIED)
        policy = self.repository.get_policy(request.registered_policy_id)
        if policy.status != RegisteredPolicyStatus.DISPUTE:
            raise InvalidStateTransition(
                message=f"Policy is {policy.status.value}, expected dispute",
                details={"policy_status": policy.status.value},
                entity_id=request_id,
            )
        if request.reviewed_by != resolver_id:
            raise ReviewerConflictError(
                message="Only the original reviewer can resolve the dispute",
                details={"reviewed_by": request.reviewed_by},
                entity_id=request_id,
            )
        now = now or self.clock()

        request.resolution_notes = resolution_notes
        request.resolved_by = resolver_id
        request.resolved_at = now
        if final_decision == FinalDecision.APPROVED:
            request.status = CancelRequestStatus.RESOLVED_APPROVED
            self._close_policy(policy, RegisteredPolicyStatus.CANCELLED, now)
        else:
            request.status = CancelRequestStatus.RESOLVED_DENIED
            self._close_policy(policy, RegisteredPolicyStatus.ACTIVE, now)
        return self._commit(request, policy, CancelRequestStatus.DENIED, now)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, request_id: str) -> CancelRequest:
        return self.repository.get_cancel_request(request_id)

    def list_requests(
        self,
        registered_policy_id: Optional[str] = None,
        status: Optional[CancelRequestStatus] = None,
    ) -> list[CancelRequest]:
        return self.repository.list_cancel_requests(registered_policy_id, status)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_status(self, request: CancelRequest, expected: CancelRequestStatus) -> None:
        if request.status != expected:
            raise InvalidStateTransition(
                message=f"Cancel request is {request.status.value}, expected {expected.value}",
                details={"status": request.status.value},
                entity_id=request.id,
            )

    def _load_for_review(
        self, request_id: str, reviewer_id: str
    ) -> tuple[CancelRequest, RegisteredPolicy]:
        request = self.repository.get_cancel_request(request_id)
        self._require_status(request, CancelRequestStatus.PENDING_REVIEW)
        if request.requested_by == reviewer_id:
            raise ReviewerConflictError(
                message="A reviewer cannot review their own cancel request",
                entity_id=request_id,
            )
        return request, self.repository.get_policy(request.registered_policy_id)

    def _close_policy(
        self, policy: RegisteredPolicy, status: RegisteredPolicyStatus, now: datetime
    ) -> None:
        policy.status = status
        policy.open_cancel_request_id = None
        policy.updated_at = now

    def _commit(
        self,
        request: CancelRequest,
        policy: RegisteredPolicy,
        old_status: CancelRequestStatus,
        now: datetime,
    ) -> CancelRequest:
        with self.repository.transaction() as uow:
            uow.update_cancel_request(request)
            uow.update_policy(policy)
        self._published(request, old_status, now)
        return request

    def _published(
        self,
        request: CancelRequest,
        old_status: Optional[CancelRequestStatus],
        now: datetime,
    ) -> None:
        logger.info(
            "Cancel request %s -> %s (policy %s)",
            request.id, request.status.value, request.registered_policy_id,
            extra={"request_id": request.id, "status": request.status.value},
        )
        self.events.publish(CancelRequestStatusChanged(
            request_id=request.id,
            registered_policy_id=request.registered_policy_id,
            old_status=old_status.value if old_status else None,
            new_status=request.status.value,
            timestamp=now,
        ))
