"""
Pytest configuration and fixtures for AgriPilot tests.

Provides helper factories and common fixtures matching actual model definitions.
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from agripilot.catalog import ProductCatalog
from agripilot.engine import (
    CancellationManager,
    ClaimLifecycleManager,
    MonitoringPipeline,
    PayoutTracker,
    PolicyManager,
)
from agripilot.events import (
    CancelRequestStatusChanged,
    ClaimStatusChanged,
    EarlyWarningRaised,
    EventBus,
    PayoutRequested,
    PolicyStatusChanged,
)
from agripilot.models import (
    AggregationFunction,
    BasePolicy,
    BlackoutPeriod,
    BreachCounter,
    ConditionResult,
    DataSource,
    Farm,
    LogicalOperator,
    PayoutBreakdown,
    RegisteredPolicy,
    RegisteredPolicyStatus,
    ThresholdOperator,
    TriBool,
    Trigger,
    TriggerCondition,
)
from agripilot.store import InMemoryRepository
from agripilot.telemetry import (
    IndexDataAccessor,
    IndexSample,
    InMemoryFarmRegistry,
    InMemoryTelemetrySource,
)


UTC = timezone.utc

# Fixed evaluation instant used across tests
T0 = datetime(2025, 3, 15, 6, 0, tzinfo=UTC)


# =============================================================================
# Factory Helpers
# =============================================================================

def make_data_source(
    id: str = "ds-rain",
    parameter_name: str = "rainfall",
    unit: str = "mm",
) -> DataSource:
    """Create a DataSource with required fields."""
    return DataSource(id=id, parameter_name=parameter_name, unit=unit)


def make_condition(
    id: str = "cond-rain",
    data_source_id: str = "ds-rain",
    aggregation_function: AggregationFunction = AggregationFunction.SUM,
    aggregation_window_days: int = 7,
    threshold_operator: ThresholdOperator = ThresholdOperator.LT,
    threshold_value: float = 50.0,
    **kwargs,
) -> TriggerCondition:
    """Create a TriggerCondition. Defaults: 7-day rainfall sum < 50mm."""
    return TriggerCondition(
        id=id,
        data_source_id=data_source_id,
        aggregation_function=aggregation_function,
        aggregation_window_days=aggregation_window_days,
        threshold_operator=threshold_operator,
        threshold_value=threshold_value,
        **kwargs,
    )


def make_trigger(
    conditions=None,
    logical_operator: LogicalOperator = LogicalOperator.AND,
    blackout_periods=(),
    id: str = "trg-drought",
    base_policy_id: str = "bp-rice",
) -> Trigger:
    """Create a Trigger; one default rainfall condition when none given."""
    if conditions is None:
        conditions = [make_condition()]
    return Trigger(
        id=id,
        base_policy_id=base_policy_id,
        logical_operator=logical_operator,
        conditions=tuple(conditions),
        blackout_periods=tuple(
            p if isinstance(p, BlackoutPeriod) else BlackoutPeriod(*p) for p in blackout_periods
        ),
    )


def make_base_policy(
    id: str = "bp-rice",
    trigger: Trigger = None,
    payout_base_rate: Decimal = Decimal("1"),
    fix_payout_amount: int = 0,
    is_payout_per_hectare: bool = False,
    over_threshold_multiplier: Decimal = Decimal("1"),
    payout_cap: int = None,
    coverage_currency: str = "VND",
    review_window_hours: int = None,
    product_code: str = "RICE-DROUGHT",
    crop_type: str = "rice",
    **kwargs,
) -> BasePolicy:
    """Create a BasePolicy. No cap and no fixed component by default."""
    return BasePolicy(
        id=id,
        product_name="Rice Drought Cover",
        product_code=product_code,
        crop_type=crop_type,
        coverage_currency=coverage_currency,
        payout_base_rate=payout_base_rate,
        fix_payout_amount=fix_payout_amount,
        is_payout_per_hectare=is_payout_per_hectare,
        over_threshold_multiplier=over_threshold_multiplier,
        payout_cap=payout_cap,
        review_window_hours=review_window_hours,
        trigger=trigger,
        **kwargs,
    )


def make_registered_policy(
    base_policy_id: str = "bp-rice",
    farm_id: str = "farm-1",
    farmer_id: str = "farmer-1",
    coverage_amount: int = 10_000_000,
    coverage_start: date = date(2025, 1, 1),
    coverage_end: date = date(2025, 12, 31),
    status: RegisteredPolicyStatus = RegisteredPolicyStatus.ACTIVE,
) -> RegisteredPolicy:
    """Create a RegisteredPolicy (not yet stored)."""
    return RegisteredPolicy.create(
        base_policy_id=base_policy_id,
        farmer_id=farmer_id,
        farm_id=farm_id,
        coverage_amount=coverage_amount,
        coverage_start=coverage_start,
        coverage_end=coverage_end,
        status=status,
    )


def make_farm(id: str = "farm-1", area_hectares: str = "2.5") -> Farm:
    return Farm(id=id, area_hectares=Decimal(area_hectares), crop_type="rice", location="An Giang")


def make_breakdown(
    fix_payout: int = 0,
    threshold_payout: int = 3_600_000,
    currency: str = "VND",
    over_threshold_value: float = 0.36,
) -> PayoutBreakdown:
    return PayoutBreakdown(
        fix_payout=fix_payout,
        threshold_payout=threshold_payout,
        claim_amount=fix_payout + threshold_payout,
        currency=currency,
        over_threshold_value=over_threshold_value,
    )


def make_samples(values, end: datetime = T0, step: timedelta = timedelta(days=1)) -> list:
    """Daily samples, the last one at `end`."""
    count = len(values)
    return [
        IndexSample(end - step * (count - 1 - i), float(v))
        for i, v in enumerate(values)
    ]


def make_series(values, end: datetime = T0, step: timedelta = timedelta(days=1)) -> list:
    """(timestamp, value) pairs for InMemoryTelemetrySource.add_samples."""
    return [(s.timestamp, s.value) for s in make_samples(values, end, step)]


def make_condition_result(
    condition_id: str = "cond-rain",
    fired: TriBool = TriBool.TRUE,
    over_threshold_value: float = 0.36,
    early_warning: bool = False,
) -> ConditionResult:
    """A ConditionResult as the evaluator would produce it."""
    return ConditionResult(
        condition_id=condition_id,
        breached=fired,
        fired=fired,
        early_warning=early_warning,
        over_threshold_value=over_threshold_value if fired.is_true() else None,
        aggregated_value=32.0,
        counter=BreachCounter("pol-1", condition_id),
    )


def store_policy(repository, policy: RegisteredPolicy) -> RegisteredPolicy:
    with repository.transaction() as uow:
        uow.insert_policy(policy)
    return policy


class EventRecorder:
    """Subscriber that keeps every event it receives, in order."""

    def __init__(self, bus: EventBus, *event_types: type) -> None:
        self.events: list = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


# =============================================================================
# Common Fixtures
# =============================================================================

@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorder(events):
    """Records every domain event published on the bus."""
    return EventRecorder(
        events,
        ClaimStatusChanged,
        PayoutRequested,
        EarlyWarningRaised,
        PolicyStatusChanged,
        CancelRequestStatusChanged,
    )


@pytest.fixture
def lifecycle(repository, events):
    return ClaimLifecycleManager(repository, events, clock=lambda: T0)


@pytest.fixture
def payouts(repository, lifecycle, events):
    return PayoutTracker(repository, lifecycle, events, clock=lambda: T0)


@pytest.fixture
def cancellations(repository, events):
    return CancellationManager(repository, events, clock=lambda: T0)


@pytest.fixture
def policies(repository, events):
    return PolicyManager(repository, events, clock=lambda: T0)


@pytest.fixture
def base_policy():
    return make_base_policy(trigger=make_trigger())


@pytest.fixture
def active_policy(repository):
    return store_policy(repository, make_registered_policy())


@pytest.fixture
def catalog(base_policy):
    catalog = ProductCatalog()
    catalog.add_data_source(make_data_source())
    catalog.add_data_source(make_data_source("ds-temp", "temperature_max", "celsius"))
    catalog.add_base_policy(base_policy)
    return catalog


@pytest.fixture
def telemetry():
    return InMemoryTelemetrySource()


@pytest.fixture
def farms():
    return InMemoryFarmRegistry([make_farm()])


@pytest.fixture
def pipeline(repository, catalog, telemetry, farms, lifecycle, events):
    return MonitoringPipeline(
        repository=repository,
        catalog=catalog,
        accessor=IndexDataAccessor(telemetry),
        farms=farms,
        lifecycle=lifecycle,
        events=events,
        clock=lambda: T0,
    )
