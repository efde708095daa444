"""
AgriPilot Repository Interface

Every state change goes through a unit of work:

    with repo.transaction() as uow:
        uow.update_claim(claim)
        uow.insert_payout(payout)

All writes in one unit of work commit together or not at all.
Updates are compare-and-swap on the entity's `revision`: the stored
revision must equal the revision the caller read, otherwise
ConcurrencyConflict is raised and nothing is written. On commit the
stored revision is incremented and mutable entities passed to the unit
of work get the new revision.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Optional

from ..exceptions import (
    CancelRequestNotFoundError,
    ClaimNotFoundError,
    PayoutNotFoundError,
    PolicyNotFoundError,
)
from ..models import (
    BreachCounter,
    CancelRequest,
    CancelRequestStatus,
    Claim,
    ClaimRejection,
    ClaimStatus,
    Payout,
    PayoutStatus,
    RegisteredPolicy,
    RegisteredPolicyStatus,
)


class UnitOfWork(ABC):
    """Write side of one transaction."""

    @abstractmethod
    def insert_policy(self, policy: RegisteredPolicy) -> None: ...

    @abstractmethod
    def update_policy(self, policy: RegisteredPolicy) -> None: ...

    @abstractmethod
    def insert_claim(self, claim: Claim) -> None:
        """
        Raises:
            DuplicateClaimError: An open claim exists for the same policy and trigger
        """

    @abstractmethod
    def update_claim(self, claim: Claim) -> None: ...

    @abstractmethod
    def insert_rejection(self, rejection: ClaimRejection) -> None: ...

    @abstractmethod
    def insert_payout(self, payout: Payout) -> None:
        """
        Raises:
            ConcurrencyConflict: A payout already exists for the claim
        """

    @abstractmethod
    def update_payout(self, payout: Payout) -> None: ...

    @abstractmethod
    def insert_cancel_request(self, request: CancelRequest) -> None: ...

    @abstractmethod
    def update_cancel_request(self, request: CancelRequest) -> None: ...

    @abstractmethod
    def save_counter(self, counter: BreachCounter) -> None:
        """Insert when counter.revision is 0, otherwise compare-and-swap."""


class Repository(ABC):
    """Read side plus transaction factory."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[UnitOfWork]: ...

    # -------------------------------------------------------------------------
    # Registered policies
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_policy(self, policy_id: str) -> Optional[RegisteredPolicy]: ...

    @abstractmethod
    def list_policies(
        self, status: Optional[RegisteredPolicyStatus] = None
    ) -> list[RegisteredPolicy]: ...

    def get_policy(self, policy_id: str) -> RegisteredPolicy:
        policy = self.find_policy(policy_id)
        if policy is None:
            raise PolicyNotFoundError(
                message=f"Registered policy '{policy_id}' not found", entity_id=policy_id
            )
        return policy

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_claim(self, claim_id: str) -> Optional[Claim]: ...

    @abstractmethod
    def find_claim_by_number(self, claim_number: str) -> Optional[Claim]: ...

    @abstractmethod
    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        registered_policy_id: Optional[str] = None,
    ) -> list[Claim]: ...

    def get_claim(self, claim_id: str) -> Claim:
        claim = self.find_claim(claim_id)
        if claim is None:
            raise ClaimNotFoundError(message=f"Claim '{claim_id}' not found", entity_id=claim_id)
        return claim

    def find_open_claim(self, registered_policy_id: str, trigger_id: Optional[str]) -> Optional[Claim]:
        for claim in self.list_claims(registered_policy_id=registered_policy_id):
            if claim.is_open and claim.trigger_id == trigger_id:
                return claim
        return None

    def claims_due_for_auto_approval(self, now: datetime) -> list[Claim]:
        return [
            claim
            for claim in self.list_claims(status=ClaimStatus.PENDING_PARTNER_REVIEW)
            if claim.auto_approval_deadline is not None and now > claim.auto_approval_deadline
        ]

    @abstractmethod
    def find_rejection(self, claim_id: str) -> Optional[ClaimRejection]: ...

    # -------------------------------------------------------------------------
    # Payouts
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_payout(self, payout_id: str) -> Optional[Payout]: ...

    @abstractmethod
    def find_payout_for_claim(self, claim_id: str) -> Optional[Payout]: ...

    @abstractmethod
    def list_payouts(self, status: Optional[PayoutStatus] = None) -> list[Payout]: ...

    def get_payout(self, payout_id: str) -> Payout:
        payout = self.find_payout(payout_id)
        if payout is None:
            raise PayoutNotFoundError(message=f"Payout '{payout_id}' not found", entity_id=payout_id)
        return payout

    # -------------------------------------------------------------------------
    # Cancel requests
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_cancel_request(self, request_id: str) -> Optional[CancelRequest]: ...

    @abstractmethod
    def list_cancel_requests(
        self,
        registered_policy_id: Optional[str] = None,
        status: Optional[CancelRequestStatus] = None,
    ) -> list[CancelRequest]: ...

    def get_cancel_request(self, request_id: str) -> CancelRequest:
        request = self.find_cancel_request(request_id)
        if request is None:
            raise CancelRequestNotFoundError(
                message=f"Cancel request '{request_id}' not found", entity_id=request_id
            )
        return request

    # -------------------------------------------------------------------------
    # Breach counters
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_counter(self, registered_policy_id: str, condition_id: str) -> Optional[BreachCounter]: ...

    def get_counter(self, registered_policy_id: str, condition_id: str) -> BreachCounter:
        """Stored counter, or a fresh zero counter (revision 0) if none exists."""
        counter = self.find_counter(registered_policy_id, condition_id)
        if counter is None:
            return BreachCounter(registered_policy_id=registered_policy_id, condition_id=condition_id)
        return counter
