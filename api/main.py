"""
AgriPilot API

Parametric crop insurance: index monitoring, claims review, settlement
and cancellation disputes.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agripilot import __version__
from agripilot.config import Settings
from agripilot.exceptions import (
    NOT_FOUND_ERRORS,
    AgriPilotError,
    ConcurrencyConflict,
    DataUnavailable,
    DuplicateClaimError,
    InvalidStateTransition,
    PackValidationError,
    ReviewerConflictError,
    ValidationError,
)
from api.routes import cancellations, claims, monitoring, products, settlement
from api.schemas.responses import HealthResponse
from api.services import Services, build_services

# =============================================================================
# Logging
# =============================================================================

_LOG_EXTRA_FIELDS = (
    "claim_id",
    "request_id",
    "registered_policy_id",
    "base_policy_id",
    "status",
    "error_code",
    "event",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Add extra fields if present
        for name in _LOG_EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str) -> None:
    for name in ("agripilot", "api"):
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            logger.addHandler(handler)


logger = logging.getLogger("api")

# =============================================================================
# Error Mapping
# =============================================================================

# Checked in order; subclasses before their bases
_STATUS_BY_ERROR: tuple[tuple[tuple[type, ...], int], ...] = (
    (NOT_FOUND_ERRORS, 404),
    ((ValidationError, PackValidationError), 422),
    (
        (
            InvalidStateTransition,
            DuplicateClaimError,
            ConcurrencyConflict,
            ReviewerConflictError,
            DataUnavailable,
        ),
        409,
    ),
)


def status_for(error: AgriPilotError) -> int:
    for error_types, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_types):
            return status_code
    return 500


async def agripilot_error_handler(request: Request, exc: AgriPilotError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Unhandled engine error on %s: %s", request.url.path, exc,
                     extra={"error_code": exc.code})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# =============================================================================
# App
# =============================================================================

def wire_routes(services: Services) -> None:
    claims.set_services(services)
    cancellations.set_services(services)
    monitoring.set_services(services)
    settlement.set_services(services)
    products.set_services(services)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Pass `services` to run against pre-built components (tests do);
    otherwise they are built from AP_* settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = services
        if active is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level)
            active = build_services(settings)
        app.state.services = active
        wire_routes(active)
        if active.sweeper is not None:
            active.sweeper.start()
        logger.info("AgriPilot API started", extra={"status": "running"})

        yield

        if active.sweeper is not None:
            active.sweeper.stop()
        logger.info("AgriPilot API stopped")

    app = FastAPI(
        title="AgriPilot API",
        description="""
**Parametric agricultural insurance engine.**

Index data decides when a trigger fires. Partners review generated claims
within the review window, after which they are approved automatically.

## Quick Start

1. `GET /products` - Base policies loaded from product packs
2. `POST /policies` - Register a policy for a farm
3. `POST /monitoring/run` - Evaluate every active policy
4. `GET /claims?status=pending_partner_review` - Claims awaiting review
        """,
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(AgriPilotError, agripilot_error_handler)

    app.include_router(products.router)
    app.include_router(claims.router)
    app.include_router(cancellations.router)
    app.include_router(monitoring.router)
    app.include_router(settlement.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health():
        """Health check endpoint."""
        active: Services = app.state.services
        return HealthResponse(
            healthy=True,
            store=active.settings.store,
            packs_loaded=active.catalog.pack_ids,
            base_policies_loaded=len(active.catalog.list_base_policies()),
            sweeper_running=active.sweeper is not None and active.sweeper.running,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
