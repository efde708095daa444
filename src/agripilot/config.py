"""
AgriPilot Configuration

All runtime settings come from AP_* environment variables, read once
by Settings.from_env().
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_PACKS_DIR = Path(__file__).resolve().parent.parent.parent / "packs"


@dataclass(frozen=True)
class Settings:
    """Engine and service settings."""
    database_url: str = "sqlite:///./agripilot.db"
    store: str = "memory"  # memory | sql
    log_level: str = "INFO"
    default_review_window_hours: int = 48
    sweep_interval_seconds: float = 300.0
    packs_dir: Path = DEFAULT_PACKS_DIR
    default_currency: str = "VND"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            database_url=os.getenv("AP_DATABASE_URL", cls.database_url),
            store=os.getenv("AP_STORE", cls.store).lower(),
            log_level=os.getenv("AP_LOG_LEVEL", cls.log_level).upper(),
            default_review_window_hours=int(
                os.getenv("AP_DEFAULT_REVIEW_WINDOW_HOURS", str(cls.default_review_window_hours))
            ),
            sweep_interval_seconds=float(
                os.getenv("AP_SWEEP_INTERVAL_SECONDS", str(cls.sweep_interval_seconds))
            ),
            packs_dir=Path(os.getenv("AP_PACKS_DIR", str(DEFAULT_PACKS_DIR))),
            default_currency=os.getenv("AP_DEFAULT_CURRENCY", cls.default_currency).upper(),
        )
