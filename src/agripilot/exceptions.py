"""
AgriPilot Exception Hierarchy

Domain-specific exceptions for parametric crop insurance administration.
All exceptions include error codes for tracking and logging.

Exception codes follow the pattern: AP_<CATEGORY>_<SPECIFIC>
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class AgriPilotError(Exception):
    """
    Base exception for all AgriPilot errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (AP_*)
        details: Additional context about the error
        entity_id: Claim, policy or request ID if applicable
    """
    message: str
    code: str = "AP_INTERNAL_ERROR"
    details: dict[str, Any] = field(default_factory=dict)
    entity_id: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.entity_id:
            parts.append(f"(entity: {self.entity_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging/API responses."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.entity_id:
            result["entity_id"] = self.entity_id
        return result


# =============================================================================
# Product Pack Errors
# =============================================================================

@dataclass
class PackLoadError(AgriPilotError):
    """Failed to load a product pack from file."""
    code: str = "AP_PACK_LOAD_ERROR"


@dataclass
class PackValidationError(AgriPilotError):
    """Product pack schema or reference validation failed."""
    code: str = "AP_PACK_VALIDATION_ERROR"


@dataclass
class ProductNotFoundError(AgriPilotError):
    """Requested base policy or data source not found in the catalog."""
    code: str = "AP_PRODUCT_NOT_FOUND"


# =============================================================================
# Telemetry Errors
# =============================================================================

@dataclass
class DataUnavailable(AgriPilotError):
    """
    No telemetry is available for a (farm, parameter) pair.

    The monitoring pipeline treats this as "condition did not fire"
    rather than as a failure.
    """
    code: str = "AP_DATA_UNAVAILABLE"


@dataclass
class FarmNotFoundError(AgriPilotError):
    """Farm is not known to the farm registry."""
    code: str = "AP_FARM_NOT_FOUND"


# =============================================================================
# Input Errors
# =============================================================================

@dataclass
class ValidationError(AgriPilotError):
    """Missing justification text or otherwise invalid input."""
    code: str = "AP_VALIDATION_ERROR"


# =============================================================================
# State Machine Errors
# =============================================================================

@dataclass
class InvalidStateTransition(AgriPilotError):
    """Requested transition is not allowed from the current state."""
    code: str = "AP_INVALID_STATE_TRANSITION"


@dataclass
class AlreadyDecided(InvalidStateTransition):
    """Claim was decided by a concurrent writer (reviewer or sweep)."""
    code: str = "AP_ALREADY_DECIDED"


@dataclass
class PolicyNotActiveError(InvalidStateTransition):
    """Registered policy is not in the status the operation requires."""
    code: str = "AP_POLICY_NOT_ACTIVE"


@dataclass
class DuplicateClaimError(AgriPilotError):
    """An open claim already exists for the same policy and trigger."""
    code: str = "AP_DUPLICATE_CLAIM"


@dataclass
class ReviewerConflictError(AgriPilotError):
    """Actor is not permitted to review or resolve this request."""
    code: str = "AP_REVIEWER_CONFLICT"


# =============================================================================
# Persistence Errors
# =============================================================================

@dataclass
class ConcurrencyConflict(AgriPilotError):
    """Write lost an optimistic revision check."""
    code: str = "AP_CONCURRENCY_CONFLICT"


@dataclass
class ClaimNotFoundError(AgriPilotError):
    """Claim does not exist."""
    code: str = "AP_CLAIM_NOT_FOUND"


@dataclass
class PolicyNotFoundError(AgriPilotError):
    """Registered policy does not exist."""
    code: str = "AP_POLICY_NOT_FOUND"


@dataclass
class CancelRequestNotFoundError(AgriPilotError):
    """Cancel request does not exist."""
    code: str = "AP_CANCEL_REQUEST_NOT_FOUND"


@dataclass
class PayoutNotFoundError(AgriPilotError):
    """Payout does not exist."""
    code: str = "AP_PAYOUT_NOT_FOUND"


NOT_FOUND_ERRORS = (
    ProductNotFoundError,
    FarmNotFoundError,
    ClaimNotFoundError,
    PolicyNotFoundError,
    CancelRequestNotFoundError,
    PayoutNotFoundError,
)
