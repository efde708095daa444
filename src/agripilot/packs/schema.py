"""
AgriPilot Product Pack Schemas

Pydantic models for validating product pack YAML/JSON files.

A product pack declares the index data sources a product monitors and
one or more base policies, each with its trigger and conditions. The
loader converts these schemas into agripilot.models dataclasses.

Monetary amounts in a pack are major units of the policy currency
(e.g. 1500000 VND, 120.50 USD); the loader converts them to minor units.
"""
from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Schema Version
# =============================================================================

SCHEMA_VERSION = "1.0.0"


# =============================================================================
# Enums as Literals (for YAML validation)
# =============================================================================

AggregationFunctionValue = Literal["sum", "avg", "min", "max", "change"]

BaselineFunctionValue = Literal["sum", "avg", "min", "max"]

ThresholdOperatorValue = Literal[
    "<", ">", "<=", ">=", "==", "!=", "change_gt", "change_lt"
]

LogicalOperatorValue = Literal["AND", "OR"]

MonitorFrequencyUnitValue = Literal["hour", "day", "week", "month", "year"]

_MONTH_DAY = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$")


# =============================================================================
# Data Sources
# =============================================================================

class DataSourceSchema(BaseModel):
    """A monitored index parameter."""
    id: str = Field(..., description="Unique data source ID")
    parameter_name: str = Field(..., description="Telemetry parameter, e.g. 'rainfall'")
    unit: str = Field(..., description="Measurement unit, e.g. 'mm'")
    update_frequency: str = Field("daily", description="Provider publishing cadence")
    base_cost: Decimal = Field(Decimal("0"), ge=0, description="Feed cost in major units")
    data_source_type: str = Field("weather", description="weather, satellite, ...")
    data_provider: Optional[str] = Field(None, description="Upstream provider")


# =============================================================================
# Triggers
# =============================================================================

class BlackoutPeriodSchema(BaseModel):
    """Annually recurring MM-DD range, inclusive, may wrap the new year."""
    start: str = Field(..., description="MM-DD")
    end: str = Field(..., description="MM-DD")

    @field_validator("start", "end")
    @classmethod
    def validate_month_day(cls, v: str) -> str:
        if not _MONTH_DAY.match(v):
            raise ValueError(f"expected MM-DD, got {v!r}")
        return v


class TriggerConditionSchema(BaseModel):
    """One threshold comparison over an aggregated window."""
    id: str = Field(..., description="Unique condition ID")
    data_source_id: str = Field(..., description="DataSource reference")
    aggregation_function: AggregationFunctionValue
    aggregation_window_days: int = Field(..., ge=1)
    threshold_operator: ThresholdOperatorValue
    threshold_value: float
    early_warning_threshold: Optional[float] = Field(None, ge=0)
    consecutive_required: Optional[int] = Field(None, ge=1)
    baseline_window_days: Optional[int] = Field(None, ge=1)
    baseline_function: Optional[BaselineFunctionValue] = None
    validation_window_days: Optional[int] = Field(None, ge=0)
    condition_order: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_baseline(self) -> TriggerConditionSchema:
        needs_baseline = (
            self.aggregation_function == "change"
            or self.threshold_operator in ("change_gt", "change_lt")
        )
        if needs_baseline and self.baseline_window_days is None:
            raise ValueError("change comparisons require baseline_window_days")
        if self.baseline_window_days is not None:
            if self.baseline_window_days < self.aggregation_window_days:
                raise ValueError("baseline_window_days must be >= aggregation_window_days")
            if self.baseline_function is None and self.aggregation_function != "change":
                raise ValueError("baseline_window_days requires baseline_function")
        return self


class TriggerSchema(BaseModel):
    """Conditions of a base policy and how they combine."""
    id: str = Field(..., description="Unique trigger ID")
    logical_operator: LogicalOperatorValue = "AND"
    growth_stage: Optional[str] = Field(None, description="Crop growth stage label")
    monitor_interval: int = Field(1, ge=1)
    monitor_frequency_unit: MonitorFrequencyUnitValue = "day"
    blackout_periods: list[BlackoutPeriodSchema] = Field(default_factory=list)
    conditions: list[TriggerConditionSchema] = Field(default_factory=list)


# =============================================================================
# Base Policies
# =============================================================================

class BasePolicySchema(BaseModel):
    """An insurance product."""
    id: str = Field(..., description="Unique base policy ID")
    product_name: str
    product_code: str
    crop_type: str
    coverage_currency: str = Field("VND", min_length=3, max_length=3)
    coverage_duration_days: int = Field(365, ge=1)

    premium_base_rate: Decimal = Field(Decimal("0"), ge=0)
    fix_premium_amount: Decimal = Field(Decimal("0"), ge=0)
    is_per_hectare: bool = False

    payout_base_rate: Decimal = Field(..., gt=0)
    fix_payout_amount: Decimal = Field(Decimal("0"), ge=0)
    is_payout_per_hectare: bool = False
    over_threshold_multiplier: Decimal = Field(Decimal("1"), gt=0)
    payout_cap: Optional[Decimal] = Field(None, ge=0, description="Omit for no ceiling")

    cancel_premium_rate: Decimal = Field(Decimal("0"), ge=0, le=1)
    auto_renewal: bool = False
    renewal_discount_rate: Optional[Decimal] = Field(None, ge=0, le=1)

    enrollment_start: Optional[date] = None
    enrollment_end: Optional[date] = None
    insurance_valid_from: Optional[date] = None
    insurance_valid_to: Optional[date] = None

    review_window_hours: Optional[int] = Field(None, ge=0)
    version: int = Field(1, ge=1)
    trigger: Optional[TriggerSchema] = None

    @field_validator("coverage_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def validate_dates(self) -> BasePolicySchema:
        if self.enrollment_start and self.enrollment_end:
            if self.enrollment_end < self.enrollment_start:
                raise ValueError("enrollment_end is before enrollment_start")
        if self.insurance_valid_from and self.insurance_valid_to:
            if self.insurance_valid_to < self.insurance_valid_from:
                raise ValueError("insurance_valid_to is before insurance_valid_from")
        return self


class ProductPackSchema(BaseModel):
    """Top-level schema for a product pack YAML/JSON file."""
    schema_version: str = Field(SCHEMA_VERSION, description="Schema version for compatibility")
    id: str = Field(..., description="Pack identifier, e.g. 'vn-mekong-rice-2025'")
    name: str
    description: Optional[str] = None
    issuer: Optional[str] = Field(None, description="Partner insurer")

    data_sources: list[DataSourceSchema] = Field(default_factory=list)
    base_policies: list[BasePolicySchema] = Field(default_factory=list)

    model_config = {
        "extra": "forbid",  # Reject unknown fields
    }


# =============================================================================
# Validation Helpers
# =============================================================================

def validate_product_pack(data: dict[str, Any]) -> ProductPackSchema:
    """Validate raw pack data. Raises pydantic.ValidationError."""
    return ProductPackSchema.model_validate(data)


def check_schema_version(data: dict[str, Any]) -> bool:
    """Packs are compatible when the major version matches."""
    pack_version = str(data.get("schema_version", SCHEMA_VERSION))
    return pack_version.split(".")[0] == SCHEMA_VERSION.split(".")[0]
