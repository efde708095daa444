"""
Tests for AgriPilot Product Pack Loader

Tests cover:
- Loading the bundled Mekong rice pack
- Schema validation errors
- Reference integrity
- Schema version checks
- Catalog lookups
"""
import json
import pytest
from decimal import Decimal
from pathlib import Path

from agripilot.catalog import ProductCatalog
from agripilot.exceptions import PackLoadError, PackValidationError, ProductNotFoundError
from agripilot.models import (
    AggregationFunction,
    BaselineFunction,
    LogicalOperator,
    ThresholdOperator,
)
from agripilot.packs import ProductPackLoader, load_product_pack_from_string

PACKS_DIR = Path(__file__).resolve().parent.parent / "packs"
MEKONG_PACK = PACKS_DIR / "vn_mekong_rice.yaml"


def make_pack_data(**overrides) -> dict:
    """Smallest valid pack: one data source, one single-condition product."""
    data = {
        "schema_version": "1.0.0",
        "id": "test-pack",
        "name": "Test Pack",
        "data_sources": [
            {"id": "ds-rain", "parameter_name": "rainfall", "unit": "mm"},
        ],
        "base_policies": [
            {
                "id": "bp-test",
                "product_name": "Test Drought",
                "product_code": "TEST-DROUGHT",
                "crop_type": "rice",
                "payout_base_rate": "1.0",
                "trigger": {
                    "id": "trg-test",
                    "conditions": [
                        {
                            "id": "cond-rain",
                            "data_source_id": "ds-rain",
                            "aggregation_function": "sum",
                            "aggregation_window_days": 7,
                            "threshold_operator": "<",
                            "threshold_value": 50,
                        }
                    ],
                },
            }
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def loader():
    return ProductPackLoader()


# =============================================================================
# Bundled Pack
# =============================================================================

class TestMekongPack:
    """The bundled vn_mekong_rice.yaml pack."""

    @pytest.fixture
    def pack(self, loader):
        return loader.load(MEKONG_PACK)

    def test_contents(self, pack):
        assert pack.id == "vn-mekong-rice-2025"
        assert set(pack.data_sources) == {
            "ds-rainfall-chirps", "ds-temperature-era5", "ds-ndvi-modis",
        }
        assert set(pack.base_policies) == {
            "vn-rice-drought-v1", "vn-rice-heat-drought-v1", "vn-rice-ndvi-v1",
        }
        assert pack.source_path == str(MEKONG_PACK)

    def test_drought_product(self, pack):
        base = pack.base_policies["vn-rice-drought-v1"]
        assert base.fix_payout_amount == 500_000
        assert base.is_payout_per_hectare is True
        assert base.payout_cap == 15_000_000
        assert base.review_window_hours == 48

        trigger = base.trigger
        assert trigger.blackout_periods[0].wraps_year
        condition = trigger.conditions[0]
        assert condition.threshold_operator == ThresholdOperator.LT
        assert condition.threshold_value == 50.0
        assert condition.early_warning_threshold == 65.0

    def test_heat_drought_product(self, pack):
        base = pack.base_policies["vn-rice-heat-drought-v1"]
        assert base.over_threshold_multiplier == Decimal("1.5")
        assert base.trigger.logical_operator == LogicalOperator.AND
        assert [c.id for c in base.trigger.conditions] == ["cond-rainfall-14d", "cond-heat-5d"]
        heat = base.trigger.get_condition("cond-heat-5d")
        assert heat.aggregation_function == AggregationFunction.MAX
        assert heat.consecutive_required == 2

    def test_ndvi_product(self, pack):
        condition = pack.base_policies["vn-rice-ndvi-v1"].trigger.conditions[0]
        assert condition.threshold_operator == ThresholdOperator.CHANGE_LT
        assert condition.baseline_window_days == 48
        assert condition.baseline_function == BaselineFunction.AVG
        assert condition.validation_window_days == 3

    def test_data_source_cost_in_cents(self, pack):
        assert pack.data_sources["ds-rainfall-chirps"].base_cost == 50


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Schema and reference errors become PackValidationError."""

    def test_minimal_pack(self, loader):
        pack = loader.load_data(make_pack_data())
        assert pack.base_policies["bp-test"].payout_cap is None

    def test_missing_required_field(self, loader):
        data = make_pack_data()
        del data["base_policies"][0]["payout_base_rate"]
        with pytest.raises(PackValidationError) as exc_info:
            loader.load_data(data)
        assert exc_info.value.details["errors"]

    def test_unknown_top_level_field(self, loader):
        with pytest.raises(PackValidationError):
            loader.load_data(make_pack_data(surprise=True))

    def test_unknown_operator(self, loader):
        data = make_pack_data()
        data["base_policies"][0]["trigger"]["conditions"][0]["threshold_operator"] = "=<"
        with pytest.raises(PackValidationError):
            loader.load_data(data)

    def test_change_without_baseline(self, loader):
        data = make_pack_data()
        data["base_policies"][0]["trigger"]["conditions"][0]["threshold_operator"] = "change_lt"
        with pytest.raises(PackValidationError):
            loader.load_data(data)

    def test_bad_blackout_date(self, loader):
        data = make_pack_data()
        data["base_policies"][0]["trigger"]["blackout_periods"] = [{"start": "13-01", "end": "01-10"}]
        with pytest.raises(PackValidationError):
            loader.load_data(data)

    def test_overlapping_blackouts(self, loader):
        data = make_pack_data()
        data["base_policies"][0]["trigger"]["blackout_periods"] = [
            {"start": "12-20", "end": "01-10"},
            {"start": "01-01", "end": "01-31"},
        ]
        with pytest.raises(PackValidationError):
            loader.load_data(data)

    def test_unknown_data_source(self, loader):
        data = make_pack_data()
        data["base_policies"][0]["trigger"]["conditions"][0]["data_source_id"] = "ds-missing"
        with pytest.raises(PackValidationError) as exc_info:
            loader.load_data(data)
        assert "ds-missing" in exc_info.value.details["errors"]

    def test_duplicate_condition_order(self, loader):
        data = make_pack_data()
        conditions = data["base_policies"][0]["trigger"]["conditions"]
        conditions.append(dict(conditions[0], id="cond-rain-2"))
        with pytest.raises(PackValidationError) as exc_info:
            loader.load_data(data)
        assert "condition_order" in exc_info.value.details["errors"]

    def test_major_version_mismatch(self, loader):
        with pytest.raises(PackValidationError) as exc_info:
            loader.load_data(make_pack_data(schema_version="2.0.0"))
        assert exc_info.value.details["expected_version"] == "1.0.0"

    def test_minor_version_accepted(self, loader):
        assert loader.load_data(make_pack_data(schema_version="1.3.0")).id == "test-pack"

    def test_version_check_can_be_relaxed(self):
        pack = ProductPackLoader(strict_version=False).load_data(make_pack_data(schema_version="2.0.0"))
        assert pack.id == "test-pack"

    def test_amounts_converted_to_minor_units(self, loader):
        data = make_pack_data()
        data["base_policies"][0].update(
            coverage_currency="usd", fix_payout_amount="12.345", payout_cap="1000"
        )
        base = loader.load_data(data).base_policies["bp-test"]
        assert base.coverage_currency == "USD"
        assert base.fix_payout_amount == 1235
        assert base.payout_cap == 100_000


class TestLoading:
    """File and string loading."""

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(PackLoadError):
            loader.load(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, loader, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("id: [unclosed", encoding="utf-8")
        with pytest.raises(PackLoadError):
            loader.load(path)

    def test_not_a_mapping(self, loader, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(PackLoadError):
            loader.load(path)

    def test_json_file(self, loader, tmp_path):
        path = tmp_path / "pack.json"
        path.write_text(json.dumps(make_pack_data()), encoding="utf-8")
        assert loader.load(path).id == "test-pack"

    def test_from_string(self):
        pack = load_product_pack_from_string(json.dumps(make_pack_data()), format="json")
        assert "bp-test" in pack.base_policies

    def test_from_yaml_string(self):
        content = MEKONG_PACK.read_text(encoding="utf-8")
        assert load_product_pack_from_string(content).id == "vn-mekong-rice-2025"


# =============================================================================
# Catalog
# =============================================================================

class TestCatalog:
    """ProductCatalog lookups."""

    @pytest.fixture
    def catalog(self):
        catalog = ProductCatalog()
        catalog.load_packs_from_directory(PACKS_DIR)
        return catalog

    def test_directory_load(self, catalog):
        assert catalog.pack_ids == ["vn-mekong-rice-2025"]
        assert catalog.get_data_source("ds-ndvi-modis").parameter_name == "ndvi"
        assert len(catalog.list_base_policies(crop_type="rice")) == 3
        assert catalog.list_base_policies(crop_type="maize") == []

    def test_latest_version(self, catalog):
        data = make_pack_data()
        data["data_sources"] = []
        data["base_policies"][0].update(
            id="vn-rice-drought-v2", product_code="RICE-DROUGHT", version=2, trigger=None
        )
        catalog.add_pack(ProductPackLoader().load_data(data))

        assert catalog.get_latest_version("RICE-DROUGHT").id == "vn-rice-drought-v2"
        assert catalog.get_base_policy("vn-rice-drought-v1").version == 1

    def test_unknown_lookups(self, catalog):
        with pytest.raises(ProductNotFoundError):
            catalog.get_base_policy("nope")
        with pytest.raises(ProductNotFoundError):
            catalog.get_latest_version("NOPE")
        with pytest.raises(ProductNotFoundError):
            catalog.get_data_source("nope")

    def test_missing_directory(self, tmp_path):
        assert ProductCatalog().load_packs_from_directory(tmp_path / "absent") == []
