"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build an app around their own accountant and settings.
"""

from __future__ import annotations

from fastapi import FastAPI

from rate_limiter.api.routes import health_router
from rate_limiter.core.accountant import RateLimitAccountant
from rate_limiter.core.config import Settings, settings
from rate_limiter.core.exception_handlers import setup_exception_handlers
from rate_limiter.core.logging import configure_logging
from rate_limiter.core.middleware import build_rate_limit_middleware, request_id_middleware


def create_app(
    accountant: RateLimitAccountant | None = None,
    app_settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        accountant: Accountant used by the rate limit middleware; the
            process-wide one is used when omitted.
        app_settings: Settings override; global settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Rate Limiter",
        description=(
            "Fixed-window request rate limiting per client IP, with hourly, "
            "per-minute and per-second thresholds backed by Redis."
        ),
        version="0.1.0",
    )

    # Registration order: the last middleware added runs first, so request
    # ids are bound before rate limiting and appear on 429 responses.
    app.middleware("http")(build_rate_limit_middleware(accountant, cfg.rate_limit))
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)

    return app
