"""
AgriPilot Policy Models

Base policies are insurance products loaded from product packs.
A registered policy binds a base policy to one farmer and one farm.

Key components:
- DataSource: Index parameter reference data (rainfall, NDVI, ...)
- TriggerCondition: One threshold test over an aggregated index window
- Trigger: Conditions combined under AND/OR, with blackout periods
- BasePolicy: Product terms (rates, multiplier, cap, durations)
- RegisteredPolicy: An issued policy with coverage amount and status
- Farm: Read-only farm facts used for hectare scaling
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from ..exceptions import ValidationError
from .enums import (
    AggregationFunction,
    BaselineFunction,
    LogicalOperator,
    MonitorFrequencyUnit,
    RegisteredPolicyStatus,
    ThresholdOperator,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Reference Data
# =============================================================================

@dataclass(frozen=True)
class DataSource:
    """
    A monitored index parameter.

    Attributes:
        id: Unique data source identifier
        parameter_name: Name used against the telemetry store (e.g. "rainfall")
        unit: Measurement unit (e.g. "mm", "celsius", "index")
        update_frequency: How often the provider publishes (e.g. "daily")
        base_cost: Cost of the data feed in minor units
        data_source_type: Category label (weather, satellite, ...)
        data_provider: Upstream provider name
    """
    id: str
    parameter_name: str
    unit: str
    update_frequency: str = "daily"
    base_cost: int = 0
    data_source_type: str = "weather"
    data_provider: Optional[str] = None


@dataclass(frozen=True)
class Farm:
    """Farm facts read from the farm registry."""
    id: str
    area_hectares: Decimal
    crop_type: str
    location: Optional[str] = None
    owner_id: Optional[str] = None


# =============================================================================
# Trigger Definition
# =============================================================================

def _parse_month_day(value: str) -> tuple[int, int]:
    try:
        month_text, day_text = value.split("-")
        month, day = int(month_text), int(day_text)
        # 2000 is a leap year so 02-29 is accepted
        date(2000, month, day)
    except ValueError as e:
        raise ValidationError(
            message=f"Blackout date must be MM-DD, got {value!r}",
            details={"value": value},
        ) from e
    return month, day


@dataclass(frozen=True)
class BlackoutPeriod:
    """
    Annually recurring date range during which a trigger cannot fire.

    Dates are "MM-DD" strings and both ends are inclusive. A period whose
    end falls before its start wraps across the new year, so
    "12-15" .. "01-15" covers the second half of December and the first
    half of January.
    """
    start: str
    end: str

    def __post_init__(self) -> None:
        _parse_month_day(self.start)
        _parse_month_day(self.end)

    @property
    def wraps_year(self) -> bool:
        return _parse_month_day(self.end) < _parse_month_day(self.start)

    def contains(self, on: date) -> bool:
        return self._contains_key((on.month, on.day))

    def _contains_key(self, key: tuple[int, int]) -> bool:
        start = _parse_month_day(self.start)
        end = _parse_month_day(self.end)
        if start <= end:
            return start <= key <= end
        return key >= start or key <= end

    def overlaps(self, other: BlackoutPeriod) -> bool:
        """True when the two periods share at least one calendar day."""
        return (
            self._contains_key(_parse_month_day(other.start))
            or self._contains_key(_parse_month_day(other.end))
            or other._contains_key(_parse_month_day(self.start))
            or other._contains_key(_parse_month_day(self.end))
        )

    def window_for(self, on: date) -> tuple[date, date]:
        """Concrete start/end dates of the occurrence that contains `on`."""
        start_month, start_day = _parse_month_day(self.start)
        end_month, end_day = _parse_month_day(self.end)
        start_year = on.year
        end_year = on.year
        if self.wraps_year:
            if (on.month, on.day) <= (end_month, end_day):
                start_year -= 1
            else:
                end_year += 1
        return (
            _safe_date(start_year, start_month, start_day),
            _safe_date(end_year, end_month, end_day),
        )


def _safe_date(year: int, month: int, day: int) -> date:
    # 02-29 in a non-leap year collapses to 02-28
    try:
        return date(year, month, day)
    except ValueError:
        return date(year, month, day - 1)


@dataclass(frozen=True)
class TriggerCondition:
    """
    One threshold comparison over an aggregated telemetry window.

    Attributes:
        id: Unique condition identifier
        data_source_id: Which DataSource supplies the series
        aggregation_function: Reduction over the aggregation window
        aggregation_window_days: Trailing window length
        threshold_operator: Comparison against threshold_value
        threshold_value: Contractual threshold
        early_warning_threshold: Advisory threshold, same direction
        consecutive_required: Cycles a breach must hold before firing
        baseline_window_days: Reference window before the aggregation window
        baseline_function: Reduction over the baseline window
        validation_window_days: Days a breach must persist before firing
        condition_order: Position within the trigger
    """
    id: str
    data_source_id: str
    aggregation_function: AggregationFunction
    aggregation_window_days: int
    threshold_operator: ThresholdOperator
    threshold_value: float
    early_warning_threshold: Optional[float] = None
    consecutive_required: Optional[int] = None
    baseline_window_days: Optional[int] = None
    baseline_function: Optional[BaselineFunction] = None
    validation_window_days: Optional[int] = None
    condition_order: int = 0

    def __post_init__(self) -> None:
        errors = []
        if self.aggregation_window_days < 1:
            errors.append("aggregation_window_days must be >= 1")
        needs_baseline = (
            self.aggregation_function == AggregationFunction.CHANGE
            or self.threshold_operator.is_change
        )
        if needs_baseline and not self.baseline_window_days:
            errors.append("change comparisons require baseline_window_days")
        if self.baseline_window_days is not None:
            if self.baseline_window_days < self.aggregation_window_days:
                errors.append("baseline_window_days must be >= aggregation_window_days")
            if (
                self.baseline_function is None
                and self.aggregation_function != AggregationFunction.CHANGE
            ):
                errors.append("baseline_window_days requires baseline_function")
        if self.consecutive_required is not None and self.consecutive_required < 1:
            errors.append("consecutive_required must be >= 1")
        if self.validation_window_days is not None and self.validation_window_days < 0:
            errors.append("validation_window_days must be >= 0")
        if self.early_warning_threshold is not None and self.early_warning_threshold < 0:
            errors.append("early_warning_threshold must be >= 0")
        if errors:
            raise ValidationError(
                message=f"Invalid trigger condition '{self.id}'",
                details={"errors": errors},
                entity_id=self.id,
            )

    @property
    def effective_baseline_function(self) -> BaselineFunction:
        return self.baseline_function or BaselineFunction.AVG


@dataclass(frozen=True)
class Trigger:
    """Conditions of a base policy and how they combine."""
    id: str
    base_policy_id: str
    logical_operator: LogicalOperator = LogicalOperator.AND
    conditions: tuple[TriggerCondition, ...] = ()
    growth_stage: Optional[str] = None
    monitor_interval: int = 1
    monitor_frequency_unit: MonitorFrequencyUnit = MonitorFrequencyUnit.DAY
    blackout_periods: tuple[BlackoutPeriod, ...] = ()

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.conditions, key=lambda c: c.condition_order))
        object.__setattr__(self, "conditions", ordered)

        periods = self.blackout_periods
        for i, period in enumerate(periods):
            for other in periods[i + 1:]:
                if period.overlaps(other):
                    raise ValidationError(
                        message=f"Blackout periods of trigger '{self.id}' overlap",
                        details={
                            "periods": [
                                f"{period.start}..{period.end}",
                                f"{other.start}..{other.end}",
                            ]
                        },
                        entity_id=self.id,
                    )

    def blackout_at(self, on: date) -> Optional[BlackoutPeriod]:
        for period in self.blackout_periods:
            if period.contains(on):
                return period
        return None

    def get_condition(self, condition_id: str) -> Optional[TriggerCondition]:
        for condition in self.conditions:
            if condition.id == condition_id:
                return condition
        return None


# =============================================================================
# Products
# =============================================================================

@dataclass(frozen=True)
class BasePolicy:
    """
    An insurance product.

    Monetary amounts are integer minor units of coverage_currency.
    Rates and multipliers are Decimals. A BasePolicy never changes once
    policies are issued against it; new terms ship as a new version.
    """
    id: str
    product_name: str
    product_code: str
    crop_type: str
    coverage_currency: str = "VND"
    coverage_duration_days: int = 365

    # Premium terms
    premium_base_rate: Decimal = Decimal("0")
    fix_premium_amount: int = 0
    is_per_hectare: bool = False

    # Payout terms
    payout_base_rate: Decimal = Decimal("1")
    fix_payout_amount: int = 0
    is_payout_per_hectare: bool = False
    over_threshold_multiplier: Decimal = Decimal("1")
    payout_cap: Optional[int] = None

    # Cancellation and renewal
    cancel_premium_rate: Decimal = Decimal("0")
    auto_renewal: bool = False
    renewal_discount_rate: Optional[Decimal] = None

    # Enrollment and validity
    enrollment_start: Optional[date] = None
    enrollment_end: Optional[date] = None
    insurance_valid_from: Optional[date] = None
    insurance_valid_to: Optional[date] = None

    # Partner review SLA; None means the engine default applies
    review_window_hours: Optional[int] = None
    version: int = 1
    trigger: Optional[Trigger] = None

    def is_enrollment_open(self, on: date) -> bool:
        if self.enrollment_start and on < self.enrollment_start:
            return False
        if self.enrollment_end and on > self.enrollment_end:
            return False
        return True


# =============================================================================
# Issued Policies
# =============================================================================

@dataclass
class RegisteredPolicy:
    """
    A base policy issued to a farmer for one farm.

    Attributes:
        id: Unique identifier
        policy_number: Human-facing policy number
        base_policy_id: Product the policy was issued from
        farmer_id: Policyholder
        farm_id: Insured farm
        coverage_amount: Sum insured in minor units
        coverage_start: First covered day
        coverage_end: Last covered day
        status: Lifecycle status
        open_cancel_request_id: Pending or disputed cancel request, if any
        reviewed_by: Underwriter who approved or rejected the application
        reviewed_at: When the application was reviewed
        review_notes: Approval notes or rejection reason
        revision: Optimistic concurrency counter
    """
    id: str
    policy_number: str
    base_policy_id: str
    farmer_id: str
    farm_id: str
    coverage_amount: int
    coverage_start: date
    coverage_end: date
    status: RegisteredPolicyStatus = RegisteredPolicyStatus.ACTIVE
    premium_amount: int = 0
    open_cancel_request_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    revision: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        base_policy_id: str,
        farmer_id: str,
        farm_id: str,
        coverage_amount: int,
        coverage_start: date,
        coverage_end: date,
        policy_number: Optional[str] = None,
        status: RegisteredPolicyStatus = RegisteredPolicyStatus.ACTIVE,
        premium_amount: int = 0,
    ) -> RegisteredPolicy:
        """Factory with a generated id and policy number."""
        policy_id = str(uuid4())
        return cls(
            id=policy_id,
            policy_number=policy_number or f"POL-{policy_id[:8].upper()}",
            base_policy_id=base_policy_id,
            farmer_id=farmer_id,
            farm_id=farm_id,
            coverage_amount=coverage_amount,
            coverage_start=coverage_start,
            coverage_end=coverage_end,
            status=status,
            premium_amount=premium_amount,
        )

    @property
    def is_active(self) -> bool:
        return self.status == RegisteredPolicyStatus.ACTIVE

    def covers(self, on: date) -> bool:
        return self.coverage_start <= on <= self.coverage_end

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "policy_number": self.policy_number,
            "base_policy_id": self.base_policy_id,
            "farmer_id": self.farmer_id,
            "farm_id": self.farm_id,
            "coverage_amount": self.coverage_amount,
            "coverage_start": self.coverage_start.isoformat(),
            "coverage_end": self.coverage_end.isoformat(),
            "status": self.status.value,
            "premium_amount": self.premium_amount,
            "open_cancel_request_id": self.open_cancel_request_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "revision": self.revision,
        }
