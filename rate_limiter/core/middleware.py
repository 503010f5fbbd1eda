"""HTTP middleware for request correlation and rate limiting.

``request_id_middleware`` ensures every request/response pair carries a
unique request ID for log correlation.

``build_rate_limit_middleware`` returns the interceptor that counts each
request against the hourly, per-minute and per-second windows before the
route runs, and answers 429 once any window is exceeded.

Usage:
    app.middleware("http")(build_rate_limit_middleware())
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from rate_limiter.core.accountant import RateLimitAccountant
from rate_limiter.core.config import RateLimitSettings, settings
from rate_limiter.core.errors import RateLimitExceeded, StoreUnavailableError
from rate_limiter.core.exception_handlers import build_error_response
from rate_limiter.core.logging import clear_request_id, set_request_id
from rate_limiter.core.rate_limit import enforce_request_limits, get_accountant, most_restrictive

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate or generate a request ID and time the request.

    If the client provides the request id header (``LOG_REQUEST_ID_HEADER``,
    default X-Request-ID) that value is used, otherwise a UUID4 is generated.
    The id is bound to contextvars for the duration of the request and echoed
    back together with an X-Request-Duration-ms header.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with correlation headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


def build_rate_limit_middleware(
    accountant: RateLimitAccountant | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
):
    """Create the rate limiting middleware.

    Args:
        accountant: Accountant to record with; defaults to the process-wide
            one from ``get_accountant()`` (resolved on first request).
        rate_limit_settings: Window thresholds; defaults to global settings.

    Returns:
        An ``app.middleware("http")`` compatible coroutine function.
    """

    async def rate_limit_middleware(request: Request, call_next) -> Response:
        cfg = rate_limit_settings or settings.rate_limit
        if not cfg.enabled:
            return await call_next(request)

        acct = accountant or get_accountant()
        client_host = request.client.host if request.client else None

        # Store round-trips are blocking; keep them off the event loop.
        try:
            decisions = await run_in_threadpool(
                enforce_request_limits, acct, cfg, client_host, request.headers
            )
        except RateLimitExceeded as exc:
            return build_error_response(exc)
        except StoreUnavailableError as exc:
            logger.error(
                "rate_limit.expiration_arming_failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
            return build_error_response(exc)

        response: Response = await call_next(request)

        tightest = most_restrictive(decisions)
        if tightest is not None:
            for name, value in tightest.headers.items():
                response.headers[name] = value
        return response

    return rate_limit_middleware
