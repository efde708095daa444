"""
Service wiring for the API.

Builds the repository, catalog, telemetry access and managers once at
startup. Route modules receive the Services object through their
set_services() hooks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from agripilot.catalog import ProductCatalog
from agripilot.config import Settings
from agripilot.engine import (
    AutoApprovalSweeper,
    CancellationManager,
    ClaimLifecycleManager,
    MonitoringPipeline,
    PayoutTracker,
    PolicyManager,
)
from agripilot.events import DOMAIN_EVENTS, EventBus, log_event
from agripilot.store import Repository, create_repository
from agripilot.telemetry import (
    FarmRegistry,
    IndexDataAccessor,
    InMemoryFarmRegistry,
    InMemoryTelemetrySource,
    TelemetrySource,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: Repository
    catalog: ProductCatalog
    telemetry: TelemetrySource
    farms: FarmRegistry
    events: EventBus
    lifecycle: ClaimLifecycleManager
    policies: PolicyManager
    pipeline: MonitoringPipeline
    payouts: PayoutTracker
    cancellations: CancellationManager
    sweeper: Optional[AutoApprovalSweeper] = None


def build_services(
    settings: Settings,
    repository: Optional[Repository] = None,
    catalog: Optional[ProductCatalog] = None,
    telemetry: Optional[TelemetrySource] = None,
    farms: Optional[FarmRegistry] = None,
    with_sweeper: bool = True,
) -> Services:
    """Wire every service from settings; pass components to override them."""
    repository = repository or create_repository(settings)
    if catalog is None:
        catalog = ProductCatalog()
        catalog.load_packs_from_directory(settings.packs_dir)
    telemetry = telemetry or InMemoryTelemetrySource()
    farms = farms or InMemoryFarmRegistry()
    events = EventBus()
    for event_type in DOMAIN_EVENTS:
        events.subscribe(event_type, log_event)
    policies = PolicyManager(repository, events)

    lifecycle = ClaimLifecycleManager(
        repository,
        events,
        default_review_window_hours=settings.default_review_window_hours,
    )
    pipeline = MonitoringPipeline(
        repository=repository,
        catalog=catalog,
        accessor=IndexDataAccessor(telemetry),
        farms=farms,
        lifecycle=lifecycle,
        events=events,
        policies=policies,
    )
    sweeper = None
    if with_sweeper and settings.sweep_interval_seconds > 0:
        sweeper = AutoApprovalSweeper(lifecycle, settings.sweep_interval_seconds)

    logger.info(
        "Services ready: store=%s, packs=%s", settings.store, ", ".join(catalog.pack_ids) or "none"
    )
    return Services(
        settings=settings,
        repository=repository,
        catalog=catalog,
        telemetry=telemetry,
        farms=farms,
        events=events,
        lifecycle=lifecycle,
        policies=policies,
        pipeline=pipeline,
        payouts=PayoutTracker(repository, lifecycle, events),
        cancellations=CancellationManager(repository, events),
        sweeper=sweeper,
    )
