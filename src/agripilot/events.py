"""
AgriPilot Domain Events

Events are published after the transaction that caused them commits.
Subscribers run synchronously on the publishing thread; a failing
subscriber is logged and does not affect other subscribers or the
already-committed state change.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================

@dataclass(frozen=True)
class ClaimStatusChanged:
    claim_id: str
    old_status: Optional[str]
    new_status: str
    timestamp: datetime


@dataclass(frozen=True)
class PayoutRequested:
    """Handoff to the settlement subsystem. Emitted once per approved claim."""
    claim_id: str
    payout_id: str
    amount: int
    currency: str
    registered_policy_id: str


@dataclass(frozen=True)
class EarlyWarningRaised:
    registered_policy_id: str
    trigger_id: str
    condition_ids: tuple[str, ...]
    timestamp: datetime


@dataclass(frozen=True)
class PolicyStatusChanged:
    registered_policy_id: str
    old_status: Optional[str]
    new_status: str
    timestamp: datetime


@dataclass(frozen=True)
class CancelRequestStatusChanged:
    request_id: str
    registered_policy_id: str
    old_status: Optional[str]
    new_status: str
    timestamp: datetime


def event_to_dict(event: Any) -> dict[str, Any]:
    payload = asdict(event)
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    payload["event_type"] = type(event).__name__
    return payload


DOMAIN_EVENTS = (
    ClaimStatusChanged,
    PayoutRequested,
    EarlyWarningRaised,
    PolicyStatusChanged,
    CancelRequestStatusChanged,
)


def log_event(event: Any) -> None:
    """Subscriber that writes each event to the log as one structured record."""
    payload = event_to_dict(event)
    logger.info("%s", payload["event_type"], extra={"event": payload})


# =============================================================================
# Bus
# =============================================================================

Handler = Callable[[Any], None]


class EventBus:
    """
    Minimal in-process publish/subscribe.

    Usage:
        bus = EventBus()
        bus.subscribe(ClaimStatusChanged, notify_farmer)
        bus.publish(ClaimStatusChanged(...))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def publish(self, event: Any) -> None:
        with self._lock:
            handlers = list(self._handlers[type(event)])
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, type(event).__name__
                )

    def publish_all(self, events: list[Any]) -> None:
        for event in events:
            self.publish(event)

