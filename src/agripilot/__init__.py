"""
AgriPilot - Parametric Agricultural Insurance Engine

AgriPilot watches index data (rainfall, temperature, NDVI, ...) for
insured farms, fires triggers when contractual thresholds are breached,
turns fired triggers into claims and routes them through partner review,
automatic approval, settlement and cancellation disputes.

Core Principle: "The index decides. Partners review within the window."

Quick Start:
    from agripilot import ProductCatalog, Settings
    from agripilot.engine import ClaimLifecycleManager, MonitoringPipeline
    from agripilot.store import InMemoryRepository
    from agripilot.telemetry import (
        IndexDataAccessor, InMemoryFarmRegistry, InMemoryTelemetrySource,
    )

    catalog = ProductCatalog()
    catalog.load_packs_from_directory("packs/")

    repository = InMemoryRepository()
    lifecycle = ClaimLifecycleManager(repository)
    pipeline = MonitoringPipeline(
        repository, catalog,
        IndexDataAccessor(InMemoryTelemetrySource()),
        InMemoryFarmRegistry(),
        lifecycle,
    )
    evaluations = pipeline.run_cycle()

Version: 0.1.0
"""
from __future__ import annotations

__version__ = "0.1.0"

from .catalog import ProductCatalog
from .config import Settings
from .events import EventBus
from .exceptions import AgriPilotError

__all__ = [
    "__version__",
    "AgriPilotError",
    "EventBus",
    "ProductCatalog",
    "Settings",
]
