"""
In-memory repository.

Writes are staged on the unit of work and applied under one lock at
commit, after every uniqueness and revision check has passed. Entities
are copied on the way in and out so callers never share state with
the store.
"""
from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Optional

from ..exceptions import ConcurrencyConflict, DuplicateClaimError
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
from .base import Repository, UnitOfWork

_MUTABLE = (Claim, Payout, RegisteredPolicy, CancelRequest)


class _StagedUnitOfWork(UnitOfWork):
    def __init__(self) -> None:
        # (kind, table, key, entity)
        self.ops: list[tuple[str, str, Any, Any]] = []

    def insert_policy(self, policy: RegisteredPolicy) -> None:
        self.ops.append(("insert", "policies", policy.id, policy))

    def update_policy(self, policy: RegisteredPolicy) -> None:
        self.ops.append(("update", "policies", policy.id, policy))

    def insert_claim(self, claim: Claim) -> None:
        self.ops.append(("insert", "claims", claim.id, claim))

    def update_claim(self, claim: Claim) -> None:
        self.ops.append(("update", "claims", claim.id, claim))

    def insert_rejection(self, rejection: ClaimRejection) -> None:
        self.ops.append(("insert", "rejections", rejection.claim_id, rejection))

    def insert_payout(self, payout: Payout) -> None:
        self.ops.append(("insert", "payouts", payout.id, payout))

    def update_payout(self, payout: Payout) -> None:
        self.ops.append(("update", "payouts", payout.id, payout))

    def insert_cancel_request(self, request: CancelRequest) -> None:
        self.ops.append(("insert", "cancel_requests", request.id, request))

    def update_cancel_request(self, request: CancelRequest) -> None:
        self.ops.append(("update", "cancel_requests", request.id, request))

    def save_counter(self, counter: BreachCounter) -> None:
        kind = "insert" if counter.revision == 0 else "update"
        key = (counter.registered_policy_id, counter.condition_id)
        self.ops.append((kind, "counters", key, counter))


class InMemoryRepository(Repository):
    """Thread-safe dict-backed repository."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, dict[Any, Any]] = {
            "policies": {},
            "claims": {},
            "rejections": {},
            "payouts": {},
            "cancel_requests": {},
            "counters": {},
        }

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        uow = _StagedUnitOfWork()
        yield uow
        self._commit(uow)

    def _commit(self, uow: _StagedUnitOfWork) -> None:
        with self._lock:
            staged: dict[str, dict[Any, Any]] = {name: {} for name in self._tables}
            revisions: list[tuple[Any, int]] = []

            for kind, table, key, entity in uow.ops:
                current = staged[table].get(key, self._tables[table].get(key))
                if kind == "insert":
                    if current is not None:
                        raise ConcurrencyConflict(
                            message=f"{table} row already exists",
                            details={"table": table, "key": str(key)},
                        )
                    self._check_unique(table, entity, staged)
                    new_revision = 1
                else:
                    if current is None or current.revision != entity.revision:
                        raise ConcurrencyConflict(
                            message=f"Stale write to {table}",
                            details={
                                "table": table,
                                "key": str(key),
                                "expected_revision": entity.revision,
                                "actual_revision": current.revision if current else None,
                            },
                            entity_id=str(key),
                        )
                    new_revision = entity.revision + 1

                stored = copy.deepcopy(entity)
                if hasattr(stored, "revision"):
                    stored = replace(stored, revision=new_revision)
                    revisions.append((entity, new_revision))
                staged[table][key] = stored

            for table, rows in staged.items():
                self._tables[table].update(rows)

        for entity, new_revision in revisions:
            if isinstance(entity, _MUTABLE):
                entity.revision = new_revision

    def _check_unique(self, table: str, entity: Any, staged: dict[str, dict[Any, Any]]) -> None:
        rows = list(self._tables[table].values()) + list(staged[table].values())
        if table == "claims":
            for other in rows:
                if other.claim_number == entity.claim_number:
                    raise ConcurrencyConflict(
                        message=f"Claim number {entity.claim_number} already used",
                        entity_id=entity.id,
                    )
                if (
                    entity.trigger_id is not None
                    and other.is_open
                    and other.registered_policy_id == entity.registered_policy_id
                    and other.trigger_id == entity.trigger_id
                ):
                    raise DuplicateClaimError(
                        message="An open claim already exists for this policy and trigger",
                        details={"open_claim_id": other.id},
                        entity_id=entity.registered_policy_id,
                    )
        elif table == "payouts":
            for other in rows:
                if other.claim_id == entity.claim_id:
                    raise ConcurrencyConflict(
                        message="Payout already exists for claim",
                        entity_id=entity.claim_id,
                    )

    def _get(self, table: str, key: Any) -> Any:
        with self._lock:
            return copy.deepcopy(self._tables[table].get(key))

    def _all(self, table: str) -> list[Any]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._tables[table].values()]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find_policy(self, policy_id: str) -> Optional[RegisteredPolicy]:
        return self._get("policies", policy_id)

    def list_policies(self, status: Optional[RegisteredPolicyStatus] = None) -> list[RegisteredPolicy]:
        return [p for p in self._all("policies") if status is None or p.status == status]

    def find_claim(self, claim_id: str) -> Optional[Claim]:
        return self._get("claims", claim_id)

    def find_claim_by_number(self, claim_number: str) -> Optional[Claim]:
        for claim in self._all("claims"):
            if claim.claim_number == claim_number:
                return claim
        return None

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        registered_policy_id: Optional[str] = None,
    ) -> list[Claim]:
        claims = [
            c for c in self._all("claims")
            if (status is None or c.status == status)
            and (registered_policy_id is None or c.registered_policy_id == registered_policy_id)
        ]
        return sorted(claims, key=lambda c: c.created_at)

    def find_rejection(self, claim_id: str) -> Optional[ClaimRejection]:
        return self._get("rejections", claim_id)

    def find_payout(self, payout_id: str) -> Optional[Payout]:
        return self._get("payouts", payout_id)

    def find_payout_for_claim(self, claim_id: str) -> Optional[Payout]:
        for payout in self._all("payouts"):
            if payout.claim_id == claim_id:
                return payout
        return None

    def list_payouts(self, status: Optional[PayoutStatus] = None) -> list[Payout]:
        return [p for p in self._all("payouts") if status is None or p.status == status]

    def find_cancel_request(self, request_id: str) -> Optional[CancelRequest]:
        return self._get("cancel_requests", request_id)

    def list_cancel_requests(
        self,
        registered_policy_id: Optional[str] = None,
        status: Optional[CancelRequestStatus] = None,
    ) -> list[CancelRequest]:
        requests = [
            r for r in self._all("cancel_requests")
            if (registered_policy_id is None or r.registered_policy_id == registered_policy_id)
            and (status is None or r.status == status)
        ]
        return sorted(requests, key=lambda r: r.requested_at)

    def find_counter(self, registered_policy_id: str, condition_id: str) -> Optional[BreachCounter]:
        return self._get("counters", (registered_policy_id, condition_id))
