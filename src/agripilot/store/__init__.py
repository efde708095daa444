"""
AgriPilot Persistence

Repositories for registered policies, claims, rejections, payouts,
cancel requests and breach counters.
"""
from __future__ import annotations

from ..config import Settings
from .base import Repository, UnitOfWork
from .memory import InMemoryRepository
from .sql import SqlRepository


def create_repository(settings: Settings) -> Repository:
    """Build the repository selected by AP_STORE."""
    if settings.store == "sql":
        return SqlRepository.from_url(settings.database_url)
    return InMemoryRepository()


__all__ = [
    "InMemoryRepository",
    "Repository",
    "SqlRepository",
    "UnitOfWork",
    "create_repository",
]
