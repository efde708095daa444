"""
AgriPilot Cancellation Models

A CancelRequest asks to end a registered policy early. A denied request
opens a dispute that the original reviewer resolves.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from .enums import CancelRequestStatus, CancelRequestType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CancelRequest:
    """
    Request to cancel a registered policy.

    Attributes:
        id: Unique identifier
        registered_policy_id: Policy to cancel
        requested_by: Actor who opened the request
        cancel_request_type: Why cancellation is requested
        reason: Free-text justification
        status: Lifecycle status
        evidence: Supporting document references keyed by name
        review_notes: Reviewer's justification
        reviewed_by: Reviewer who approved or denied
        reviewed_at: When the review happened
        compensate_amount: Compensation in minor units (approve only)
        resolution_notes: Dispute resolution justification
        resolved_by: Actor who resolved the dispute
        resolved_at: When the dispute was resolved
        revision: Optimistic concurrency counter
    """
    id: str
    registered_policy_id: str
    requested_by: str
    cancel_request_type: CancelRequestType
    reason: str
    status: CancelRequestStatus = CancelRequestStatus.PENDING_REVIEW
    evidence: dict[str, Any] = field(default_factory=dict)
    requested_at: datetime = field(default_factory=_utcnow)
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    compensate_amount: int = 0
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    revision: int = 0

    @classmethod
    def create(
        cls,
        registered_policy_id: str,
        requested_by: str,
        cancel_request_type: CancelRequestType,
        reason: str,
        evidence: Optional[dict[str, Any]] = None,
        requested_at: Optional[datetime] = None,
    ) -> CancelRequest:
        return cls(
            id=str(uuid4()),
            registered_policy_id=registered_policy_id,
            requested_by=requested_by,
            cancel_request_type=cancel_request_type,
            reason=reason,
            evidence=evidence or {},
            requested_at=requested_at or _utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "registered_policy_id": self.registered_policy_id,
            "requested_by": self.requested_by,
            "cancel_request_type": self.cancel_request_type.value,
            "reason": self.reason,
            "status": self.status.value,
            "evidence": self.evidence,
            "requested_at": self.requested_at.isoformat(),
            "review_notes": self.review_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "compensate_amount": self.compensate_amount,
            "resolution_notes": self.resolution_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
