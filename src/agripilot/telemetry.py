"""
AgriPilot Index Data Access

Read boundary to the external time-series store and farm registry.
Reads are side-effect free and never take policy locks.

Key components:
- IndexSample: One (timestamp, value) observation
- TelemetrySource / FarmRegistry: Protocols for the external systems
- IndexDataAccessor: Fetches the sample range a condition needs
- InMemoryTelemetrySource / InMemoryFarmRegistry: Local implementations
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Protocol

from .exceptions import DataUnavailable, FarmNotFoundError
from .models import Farm, TriggerCondition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class IndexSample:
    """One index observation."""
    timestamp: datetime
    value: float


class TelemetrySource(Protocol):
    def get_series(
        self,
        farm_id: str,
        parameter_name: str,
        from_time: datetime,
        to_time: datetime,
    ) -> list[IndexSample]:
        """
        Samples with from_time <= timestamp <= to_time, ascending.

        Raises:
            DataUnavailable: The farm is not monitored for the parameter
        """
        ...


class FarmRegistry(Protocol):
    def get_farm(self, farm_id: str) -> Farm:
        ...


# =============================================================================
# Accessor
# =============================================================================

class IndexDataAccessor:
    """
    Fetches the samples needed to evaluate one condition.

    The range covers the aggregation window plus, when configured, the
    baseline window that precedes it. Aggregation applies the exact
    half-open window bounds; this class only bounds the query.
    """

    def __init__(self, source: TelemetrySource):
        self._source = source

    def lookback(self, condition: TriggerCondition) -> timedelta:
        days = condition.aggregation_window_days + (condition.baseline_window_days or 0)
        return timedelta(days=days)

    def series_for(
        self,
        farm_id: str,
        parameter_name: str,
        condition: TriggerCondition,
        as_of: datetime,
    ) -> list[IndexSample]:
        from_time = as_of - self.lookback(condition)
        samples = self._source.get_series(farm_id, parameter_name, from_time, as_of)
        logger.debug(
            "Fetched %d %s samples for farm %s",
            len(samples), parameter_name, farm_id,
        )
        return sorted(samples)


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryTelemetrySource:
    """Thread-safe in-memory series store keyed by (farm, parameter)."""

    def __init__(self) -> None:
        self._series: dict[tuple[str, str], list[IndexSample]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_samples(
        self,
        farm_id: str,
        parameter_name: str,
        samples: Iterable[tuple[datetime, float]],
    ) -> None:
        with self._lock:
            series = self._series[(farm_id, parameter_name)]
            series.extend(IndexSample(ts, float(v)) for ts, v in samples)
            series.sort()

    def get_series(
        self,
        farm_id: str,
        parameter_name: str,
        from_time: datetime,
        to_time: datetime,
    ) -> list[IndexSample]:
        with self._lock:
            key = (farm_id, parameter_name)
            if key not in self._series:
                raise DataUnavailable(
                    message=f"Farm is not monitored for '{parameter_name}'",
                    details={"farm_id": farm_id, "parameter_name": parameter_name},
                    entity_id=farm_id,
                )
            return [s for s in self._series[key] if from_time <= s.timestamp <= to_time]


class InMemoryFarmRegistry:
    def __init__(self, farms: Iterable[Farm] = ()) -> None:
        self._farms = {farm.id: farm for farm in farms}

    def add(self, farm: Farm) -> None:
        self._farms[farm.id] = farm

    def get_farm(self, farm_id: str) -> Farm:
        try:
            return self._farms[farm_id]
        except KeyError:
            raise FarmNotFoundError(
                message=f"Farm '{farm_id}' not found", entity_id=farm_id
            ) from None
