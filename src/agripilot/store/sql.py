"""
SQLAlchemy repository.

One session transaction per unit of work. Updates are conditional
`UPDATE ... WHERE revision = :expected`; a rowcount other than 1 means a
concurrent writer got there first and the whole transaction rolls back.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ..exceptions import ConcurrencyConflict, DuplicateClaimError
from ..models import (
    BreachCounter,
    CancelRequest,
    CancelRequestStatus,
    CancelRequestType,
    Claim,
    ClaimRejection,
    ClaimRejectionType,
    ClaimStatus,
    Payout,
    PayoutStatus,
    RegisteredPolicy,
    RegisteredPolicyStatus,
    RejectionEvidence,
)
from .base import Repository, UnitOfWork

logger = logging.getLogger(__name__)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns timezone-aware UTC on every backend."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# =============================================================================
# Tables
# =============================================================================

class PolicyRow(Base):
    __tablename__ = "registered_policies"

    id = Column(String(64), primary_key=True)
    policy_number = Column(String(64), unique=True, nullable=False)
    base_policy_id = Column(String(128), nullable=False)
    farmer_id = Column(String(64), nullable=False, index=True)
    farm_id = Column(String(64), nullable=False)
    coverage_amount = Column(BigInteger, nullable=False)
    coverage_start = Column(Date, nullable=False)
    coverage_end = Column(Date, nullable=False)
    status = Column(String(32), nullable=False, index=True)
    premium_amount = Column(BigInteger, nullable=False, default=0)
    open_cancel_request_id = Column(String(64))
    reviewed_by = Column(String(64))
    reviewed_at = Column(UTCDateTime)
    review_notes = Column(Text)
    revision = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)


class ClaimRow(Base):
    __tablename__ = "claims"

    id = Column(String(64), primary_key=True)
    claim_number = Column(String(32), unique=True, nullable=False)
    registered_policy_id = Column(
        String(64), ForeignKey("registered_policies.id"), nullable=False, index=True
    )
    base_policy_id = Column(String(128), nullable=False)
    farm_id = Column(String(64), nullable=False)
    trigger_id = Column(String(128))
    trigger_timestamp = Column(UTCDateTime, nullable=False)
    calculated_fix_payout = Column(BigInteger, nullable=False)
    calculated_threshold_payout = Column(BigInteger, nullable=False)
    over_threshold_value = Column(Float)
    claim_amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    auto_generated = Column(Boolean, nullable=False)
    auto_approved = Column(Boolean, nullable=False)
    status = Column(String(32), nullable=False, index=True)
    auto_approval_deadline = Column(UTCDateTime)
    partner_decision = Column(String(16))
    partner_notes = Column(Text)
    reviewed_by = Column(String(64))
    reviewed_at = Column(UTCDateTime)
    evidence_summary = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    paid_at = Column(UTCDateTime)
    revision = Column(Integer, nullable=False)


_OPEN_CLAIM_STATUSES = [s.value for s in ClaimStatus if s.is_open]

# At most one open claim per (policy, trigger), enforced by the database so
# that separate processes sharing it cannot both insert one
Index(
    "uq_claims_open_per_trigger",
    ClaimRow.registered_policy_id,
    ClaimRow.trigger_id,
    unique=True,
    sqlite_where=ClaimRow.status.in_(_OPEN_CLAIM_STATUSES),
    postgresql_where=ClaimRow.status.in_(_OPEN_CLAIM_STATUSES),
)


class RejectionRow(Base):
    __tablename__ = "claim_rejections"

    id = Column(String(64), primary_key=True)
    claim_id = Column(String(64), ForeignKey("claims.id"), unique=True, nullable=False)
    claim_rejection_type = Column(String(32), nullable=False)
    reason = Column(Text, nullable=False)
    validated_by = Column(String(64), nullable=False)
    validation_notes = Column(Text)
    validation_timestamp = Column(UTCDateTime, nullable=False)
    reason_evidence = Column(JSON)


class PayoutRow(Base):
    __tablename__ = "payouts"

    id = Column(String(64), primary_key=True)
    claim_id = Column(String(64), ForeignKey("claims.id"), unique=True, nullable=False)
    registered_policy_id = Column(String(64), nullable=False)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(16), nullable=False, index=True)
    attempts = Column(Integer, nullable=False)
    failure_reason = Column(Text)
    transaction_reference = Column(String(128))
    farmer_confirmed = Column(Boolean, nullable=False)
    farmer_rating = Column(Integer)
    farmer_feedback = Column(Text)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    completed_at = Column(UTCDateTime)
    revision = Column(Integer, nullable=False)


class CancelRequestRow(Base):
    __tablename__ = "cancel_requests"

    id = Column(String(64), primary_key=True)
    registered_policy_id = Column(
        String(64), ForeignKey("registered_policies.id"), nullable=False, index=True
    )
    requested_by = Column(String(64), nullable=False)
    cancel_request_type = Column(String(32), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, index=True)
    evidence = Column(JSON, nullable=False, default=dict)
    requested_at = Column(UTCDateTime, nullable=False)
    review_notes = Column(Text)
    reviewed_by = Column(String(64))
    reviewed_at = Column(UTCDateTime)
    compensate_amount = Column(BigInteger, nullable=False)
    resolution_notes = Column(Text)
    resolved_by = Column(String(64))
    resolved_at = Column(UTCDateTime)
    revision = Column(Integer, nullable=False)


class BreachCounterRow(Base):
    __tablename__ = "breach_counters"

    registered_policy_id = Column(String(64), primary_key=True)
    condition_id = Column(String(128), primary_key=True)
    run_length = Column(Integer, nullable=False)
    first_breach_at = Column(UTCDateTime)
    last_evaluated_at = Column(UTCDateTime)
    revision = Column(Integer, nullable=False)


# =============================================================================
# Row <-> model conversion
# =============================================================================

_ENUM_FIELDS: dict[type, dict[str, type]] = {
    RegisteredPolicy: {"status": RegisteredPolicyStatus},
    Claim: {"status": ClaimStatus},
    Payout: {"status": PayoutStatus},
    CancelRequest: {"status": CancelRequestStatus, "cancel_request_type": CancelRequestType},
    BreachCounter: {},
}


def _values(entity: Any) -> dict[str, Any]:
    values = {}
    for f in fields(entity):
        value = getattr(entity, f.name)
        if isinstance(value, Enum):
            value = value.value
        values[f.name] = value
    return values


def _from_row(model: type, row: Any) -> Any:
    enum_fields = _ENUM_FIELDS[model]
    kwargs = {}
    for f in fields(model):
        value = getattr(row, f.name)
        if f.name in enum_fields and value is not None:
            value = enum_fields[f.name](value)
        kwargs[f.name] = value
    return model(**kwargs)


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _rejection_from_row(row: RejectionRow) -> ClaimRejection:
    evidence = None
    if row.reason_evidence:
        data = row.reason_evidence
        evidence = RejectionEvidence(
            event_date=_parse_date(data.get("event_date")),
            policy_clause=data.get("policy_clause"),
            blackout_period_start=_parse_date(data.get("blackout_period_start")),
            blackout_period_end=_parse_date(data.get("blackout_period_end")),
            evidence_documents=tuple(data.get("evidence_documents") or ()),
        )
    return ClaimRejection(
        id=row.id,
        claim_id=row.claim_id,
        claim_rejection_type=ClaimRejectionType(row.claim_rejection_type),
        reason=row.reason,
        validated_by=row.validated_by,
        validation_notes=row.validation_notes,
        validation_timestamp=row.validation_timestamp,
        reason_evidence=evidence,
    )


# =============================================================================
# Unit of work
# =============================================================================

class _SqlUnitOfWork(UnitOfWork):
    def __init__(self, session: Session) -> None:
        self._session = session
        self.revisions: list[tuple[Any, int]] = []

    def _insert(self, row_type: type, entity: Any) -> None:
        values = _values(entity)
        values["revision"] = 1
        self._session.add(row_type(**values))
        self._session.flush()
        self.revisions.append((entity, 1))

    def _update(self, row_type: type, entity: Any, *criteria: Any) -> None:
        values = _values(entity)
        expected = values.pop("revision")
        result = self._session.execute(
            update(row_type)
            .where(*criteria, row_type.revision == expected)
            .values(**values, revision=expected + 1)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(
                message=f"Stale write to {row_type.__tablename__}",
                details={"table": row_type.__tablename__, "expected_revision": expected},
            )
        self.revisions.append((entity, expected + 1))

    def insert_policy(self, policy: RegisteredPolicy) -> None:
        self._insert(PolicyRow, policy)

    def update_policy(self, policy: RegisteredPolicy) -> None:
        self._update(PolicyRow, policy, PolicyRow.id == policy.id)

    def insert_claim(self, claim: Claim) -> None:
        if claim.trigger_id is None:
            self._insert(ClaimRow, claim)
            return
        existing = self._session.execute(
            select(ClaimRow.id).where(
                ClaimRow.registered_policy_id == claim.registered_policy_id,
                ClaimRow.trigger_id == claim.trigger_id,
                ClaimRow.status.in_(_OPEN_CLAIM_STATUSES),
            )
        ).first()
        if existing is not None:
            raise DuplicateClaimError(
                message="An open claim already exists for this policy and trigger",
                details={"open_claim_id": existing.id},
                entity_id=claim.registered_policy_id,
            )
        try:
            self._insert(ClaimRow, claim)
        except IntegrityError as e:
            # Another process committed an open claim after the check above
            raise DuplicateClaimError(
                message="An open claim already exists for this policy and trigger",
                details={"trigger_id": claim.trigger_id},
                entity_id=claim.registered_policy_id,
            ) from e

    def update_claim(self, claim: Claim) -> None:
        self._update(ClaimRow, claim, ClaimRow.id == claim.id)

    def insert_rejection(self, rejection: ClaimRejection) -> None:
        self._session.add(RejectionRow(
            id=rejection.id,
            claim_id=rejection.claim_id,
            claim_rejection_type=rejection.claim_rejection_type.value,
            reason=rejection.reason,
            validated_by=rejection.validated_by,
            validation_notes=rejection.validation_notes,
            validation_timestamp=rejection.validation_timestamp,
            reason_evidence=(
                rejection.reason_evidence.to_dict() if rejection.reason_evidence else None
            ),
        ))
        self._session.flush()

    def insert_payout(self, payout: Payout) -> None:
        self._insert(PayoutRow, payout)

    def update_payout(self, payout: Payout) -> None:
        self._update(PayoutRow, payout, PayoutRow.id == payout.id)

    def insert_cancel_request(self, request: CancelRequest) -> None:
        self._insert(CancelRequestRow, request)

    def update_cancel_request(self, request: CancelRequest) -> None:
        self._update(CancelRequestRow, request, CancelRequestRow.id == request.id)

    def save_counter(self, counter: BreachCounter) -> None:
        if counter.revision == 0:
            values = _values(counter)
            values["revision"] = 1
            self._session.add(BreachCounterRow(**values))
            self._session.flush()
            return
        self._update(
            BreachCounterRow,
            counter,
            BreachCounterRow.registered_policy_id == counter.registered_policy_id,
            BreachCounterRow.condition_id == counter.condition_id,
        )


# =============================================================================
# Repository
# =============================================================================

class SqlRepository(Repository):
    """
    Usage:
        repo = SqlRepository.from_url("sqlite:///agripilot.db")
        with repo.transaction() as uow:
            uow.insert_policy(policy)
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, create_tables: bool = True) -> SqlRepository:
        options: dict[str, Any] = {"future": True}
        if database_url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                options["poolclass"] = StaticPool
        engine = create_engine(database_url, **options)
        if create_tables:
            Base.metadata.create_all(engine)
        logger.info("SQL repository bound to %s", engine.url.render_as_string(hide_password=True))
        return cls(sessionmaker(bind=engine, expire_on_commit=False))

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        session = self._session_factory()
        uow = _SqlUnitOfWork(session)
        try:
            yield uow
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConcurrencyConflict(
                message="Uniqueness constraint violated",
                details={"error": str(e.orig)},
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        for entity, new_revision in uow.revisions:
            if not isinstance(entity, BreachCounter):
                entity.revision = new_revision

    def _scalars(self, statement) -> list[Any]:
        with self._session_factory() as session:
            return list(session.execute(statement).scalars().all())

    def _one(self, statement) -> Optional[Any]:
        rows = self._scalars(statement)
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find_policy(self, policy_id: str) -> Optional[RegisteredPolicy]:
        row = self._one(select(PolicyRow).where(PolicyRow.id == policy_id))
        return _from_row(RegisteredPolicy, row) if row else None

    def list_policies(self, status: Optional[RegisteredPolicyStatus] = None) -> list[RegisteredPolicy]:
        statement = select(PolicyRow).order_by(PolicyRow.created_at)
        if status is not None:
            statement = statement.where(PolicyRow.status == status.value)
        return [_from_row(RegisteredPolicy, row) for row in self._scalars(statement)]

    def find_claim(self, claim_id: str) -> Optional[Claim]:
        row = self._one(select(ClaimRow).where(ClaimRow.id == claim_id))
        return _from_row(Claim, row) if row else None

    def find_claim_by_number(self, claim_number: str) -> Optional[Claim]:
        row = self._one(select(ClaimRow).where(ClaimRow.claim_number == claim_number))
        return _from_row(Claim, row) if row else None

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        registered_policy_id: Optional[str] = None,
    ) -> list[Claim]:
        statement = select(ClaimRow).order_by(ClaimRow.created_at)
        if status is not None:
            statement = statement.where(ClaimRow.status == status.value)
        if registered_policy_id is not None:
            statement = statement.where(ClaimRow.registered_policy_id == registered_policy_id)
        return [_from_row(Claim, row) for row in self._scalars(statement)]

    def find_rejection(self, claim_id: str) -> Optional[ClaimRejection]:
        row = self._one(select(RejectionRow).where(RejectionRow.claim_id == claim_id))
        return _rejection_from_row(row) if row else None

    def find_payout(self, payout_id: str) -> Optional[Payout]:
        row = self._one(select(PayoutRow).where(PayoutRow.id == payout_id))
        return _from_row(Payout, row) if row else None

    def find_payout_for_claim(self, claim_id: str) -> Optional[Payout]:
        row = self._one(select(PayoutRow).where(PayoutRow.claim_id == claim_id))
        return _from_row(Payout, row) if row else None

    def list_payouts(self, status: Optional[PayoutStatus] = None) -> list[Payout]:
        statement = select(PayoutRow).order_by(PayoutRow.created_at)
        if status is not None:
            statement = statement.where(PayoutRow.status == status.value)
        return [_from_row(Payout, row) for row in self._scalars(statement)]

    def find_cancel_request(self, request_id: str) -> Optional[CancelRequest]:
        row = self._one(select(CancelRequestRow).where(CancelRequestRow.id == request_id))
        return _from_row(CancelRequest, row) if row else None

    def list_cancel_requests(
        self,
        registered_policy_id: Optional[str] = None,
        status: Optional[CancelRequestStatus] = None,
    ) -> list[CancelRequest]:
        statement = select(CancelRequestRow).order_by(CancelRequestRow.requested_at)
        if registered_policy_id is not None:
            statement = statement.where(CancelRequestRow.registered_policy_id == registered_policy_id)
        if status is not None:
            statement = statement.where(CancelRequestRow.status == status.value)
        return [_from_row(CancelRequest, row) for row in self._scalars(statement)]

    def find_counter(self, registered_policy_id: str, condition_id: str) -> Optional[BreachCounter]:
        row = self._one(
            select(BreachCounterRow).where(
                BreachCounterRow.registered_policy_id == registered_policy_id,
                BreachCounterRow.condition_id == condition_id,
            )
        )
        return _from_row(BreachCounter, row) if row else None
