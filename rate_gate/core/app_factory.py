"""Application factory for the admission service.

Centralizes app construction (logging, middleware, handlers, routers and the
rate limiter) so tests can build isolated apps with their own limiter.
"""

from __future__ import annotations

from fastapi import FastAPI

from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore
from rate_gate.api.routes import admission_router, health_router
from rate_gate.core.config import settings
from rate_gate.core.exception_handlers import setup_exception_handlers
from rate_gate.core.logging import configure_logging
from rate_gate.core.middleware import request_id_middleware
from rate_gate.services.presets import build_regional_binder
from rate_gate.services.rate_limiter import RateLimiter


def build_default_limiter() -> RateLimiter:
    """Create a limiter with the regional preset and the configured store cap."""

    binder = build_regional_binder(settings.policy, settings.app)
    store = InMemoryClientStateStore(max_entries=settings.app.state_max_entries)
    return RateLimiter(binder, store=store)


def create_app(limiter: RateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Rate limiter to serve; built from settings when omitted.

    Returns:
        Configured FastAPI app.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="rate-gate",
        description=(
            "In-process admission control: decides per client token whether a "
            "request to a protected resource may proceed, based on composable "
            "fixed-window and cooldown rules."
        ),
        version="0.1.0",
        debug=settings.app.debug,
    )
    app.state.rate_limiter = limiter or build_default_limiter()

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(admission_router, prefix="/v1")
    app.include_router(health_router)

    return app
