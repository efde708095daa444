"""
AgriPilot Product Pack Loader

Loads and validates product packs from YAML or JSON files.

Converts Pydantic schema models to AgriPilot domain models.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError as SchemaValidationError

from ..exceptions import AgriPilotError, PackLoadError, PackValidationError
from ..models import (
    AggregationFunction,
    BaselineFunction,
    BasePolicy,
    BlackoutPeriod,
    DataSource,
    LogicalOperator,
    MonitorFrequencyUnit,
    ThresholdOperator,
    Trigger,
    TriggerCondition,
)
from ..money import to_minor
from .schema import (
    SCHEMA_VERSION,
    BasePolicySchema,
    DataSourceSchema,
    ProductPackSchema,
    TriggerConditionSchema,
    TriggerSchema,
    check_schema_version,
    validate_product_pack,
)


@dataclass
class ProductPack:
    """Domain view of one loaded pack."""
    id: str
    name: str
    schema_version: str
    data_sources: dict[str, DataSource] = field(default_factory=dict)
    base_policies: dict[str, BasePolicy] = field(default_factory=dict)
    issuer: Optional[str] = None
    source_path: Optional[str] = None


# =============================================================================
# Reference Integrity
# =============================================================================

def validate_reference_integrity(pack: ProductPack, path: str = "") -> None:
    """
    Check cross references inside a pack.

    Raises:
        ValueError: listing every problem found
    """
    errors = []
    for policy in pack.base_policies.values():
        if policy.trigger is None:
            continue
        seen_ids: set[str] = set()
        seen_orders: set[int] = set()
        for condition in policy.trigger.conditions:
            if condition.data_source_id not in pack.data_sources:
                errors.append(
                    f"{policy.id}: condition '{condition.id}' references unknown "
                    f"data source '{condition.data_source_id}'"
                )
            if condition.id in seen_ids:
                errors.append(f"{policy.id}: duplicate condition id '{condition.id}'")
            if condition.condition_order in seen_orders:
                errors.append(
                    f"{policy.id}: duplicate condition_order {condition.condition_order}"
                )
            seen_ids.add(condition.id)
            seen_orders.add(condition.condition_order)
    if errors:
        location = f" in {path}" if path else ""
        raise ValueError(f"Reference errors{location}: " + "; ".join(errors))


# =============================================================================
# Schema -> Model Conversion
# =============================================================================

def _convert_data_source(schema: DataSourceSchema) -> DataSource:
    return DataSource(
        id=schema.id,
        parameter_name=schema.parameter_name,
        unit=schema.unit,
        update_frequency=schema.update_frequency,
        # Feed costs are tracked in USD cents
        base_cost=to_minor(schema.base_cost, "USD"),
        data_source_type=schema.data_source_type,
        data_provider=schema.data_provider,
    )


def _convert_condition(schema: TriggerConditionSchema) -> TriggerCondition:
    return TriggerCondition(
        id=schema.id,
        data_source_id=schema.data_source_id,
        aggregation_function=AggregationFunction(schema.aggregation_function),
        aggregation_window_days=schema.aggregation_window_days,
        threshold_operator=ThresholdOperator(schema.threshold_operator),
        threshold_value=schema.threshold_value,
        early_warning_threshold=schema.early_warning_threshold,
        consecutive_required=schema.consecutive_required,
        baseline_window_days=schema.baseline_window_days,
        baseline_function=(
            BaselineFunction(schema.baseline_function) if schema.baseline_function else None
        ),
        validation_window_days=schema.validation_window_days,
        condition_order=schema.condition_order,
    )


def _convert_trigger(schema: TriggerSchema, base_policy_id: str) -> Trigger:
    return Trigger(
        id=schema.id,
        base_policy_id=base_policy_id,
        logical_operator=LogicalOperator(schema.logical_operator),
        conditions=tuple(_convert_condition(c) for c in schema.conditions),
        growth_stage=schema.growth_stage,
        monitor_interval=schema.monitor_interval,
        monitor_frequency_unit=MonitorFrequencyUnit(schema.monitor_frequency_unit),
        blackout_periods=tuple(
            BlackoutPeriod(start=b.start, end=b.end) for b in schema.blackout_periods
        ),
    )


def _convert_base_policy(schema: BasePolicySchema) -> BasePolicy:
    currency = schema.coverage_currency
    return BasePolicy(
        id=schema.id,
        product_name=schema.product_name,
        product_code=schema.product_code,
        crop_type=schema.crop_type,
        coverage_currency=currency,
        coverage_duration_days=schema.coverage_duration_days,
        premium_base_rate=schema.premium_base_rate,
        fix_premium_amount=to_minor(schema.fix_premium_amount, currency),
        is_per_hectare=schema.is_per_hectare,
        payout_base_rate=schema.payout_base_rate,
        fix_payout_amount=to_minor(schema.fix_payout_amount, currency),
        is_payout_per_hectare=schema.is_payout_per_hectare,
        over_threshold_multiplier=schema.over_threshold_multiplier,
        payout_cap=to_minor(schema.payout_cap, currency) if schema.payout_cap is not None else None,
        cancel_premium_rate=schema.cancel_premium_rate,
        auto_renewal=schema.auto_renewal,
        renewal_discount_rate=schema.renewal_discount_rate,
        enrollment_start=schema.enrollment_start,
        enrollment_end=schema.enrollment_end,
        insurance_valid_from=schema.insurance_valid_from,
        insurance_valid_to=schema.insurance_valid_to,
        review_window_hours=schema.review_window_hours,
        version=schema.version,
        trigger=_convert_trigger(schema.trigger, schema.id) if schema.trigger else None,
    )


def _convert_product_pack(schema: ProductPackSchema) -> ProductPack:
    return ProductPack(
        id=schema.id,
        name=schema.name,
        schema_version=schema.schema_version,
        issuer=schema.issuer,
        data_sources={ds.id: _convert_data_source(ds) for ds in schema.data_sources},
        base_policies={bp.id: _convert_base_policy(bp) for bp in schema.base_policies},
    )


# =============================================================================
# Loader
# =============================================================================

class ProductPackLoader:
    """
    Loads product packs from YAML or JSON files.

    Usage:
        loader = ProductPackLoader()
        pack = loader.load("packs/vn_mekong_rice.yaml")
    """

    def __init__(self, strict_version: bool = True):
        self.strict_version = strict_version

    def load(self, path: Union[str, Path]) -> ProductPack:
        """
        Load a product pack from a file.

        Raises:
            PackLoadError: If file cannot be read
            PackValidationError: If validation fails
        """
        path = Path(path)
        try:
            data = self._load_file(path)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise PackLoadError(
                message=f"Failed to load product pack: {e}",
                details={"path": str(path), "error": str(e)},
            ) from e
        pack = self.load_data(data, str(path))
        pack.source_path = str(path)
        return pack

    def load_data(self, data: Any, source: str = "<data>") -> ProductPack:
        """Validate and convert already-parsed pack data."""
        if not isinstance(data, dict):
            raise PackLoadError(
                message="Product pack must be a mapping",
                details={"path": source},
            )

        if self.strict_version and not check_schema_version(data):
            pack_version = data.get("schema_version", "unknown")
            raise PackValidationError(
                message=f"Schema version mismatch: pack has {pack_version}, expected {SCHEMA_VERSION}",
                details={"pack_version": pack_version, "expected_version": SCHEMA_VERSION},
            )

        try:
            schema = validate_product_pack(data)
        except SchemaValidationError as e:
            raise PackValidationError(
                message=f"Product pack validation failed: {e.error_count()} errors",
                details={
                    "errors": e.errors(
                        include_url=False, include_context=False, include_input=False
                    ),
                    "path": source,
                },
            ) from e

        try:
            pack = _convert_product_pack(schema)
            validate_reference_integrity(pack, source)
        except (ValueError, AgriPilotError) as e:
            raise PackValidationError(
                message="Reference integrity validation failed",
                details={"errors": str(e), "path": source},
            ) from e
        return pack

    def _load_file(self, path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                return json.load(f)
            return yaml.safe_load(f)


def load_product_pack_from_string(content: str, format: str = "yaml") -> ProductPack:
    """Load a pack from a YAML or JSON string."""
    try:
        data = yaml.safe_load(content) if format == "yaml" else json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise PackLoadError(message=f"Failed to parse product pack: {e}") from e
    return ProductPackLoader().load_data(data)


__all__ = [
    "ProductPack",
    "ProductPackLoader",
    "load_product_pack_from_string",
    "validate_reference_integrity",
]
