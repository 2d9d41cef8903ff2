"""Admission dependency for FastAPI routes.

Wires the RateLimiter into the HTTP layer:
- The limiter lives on ``app.state.rate_limiter`` (one per application, no
  module-level singleton).
- The client token is the X-API-Key header; requests without one are keyed
  by client IP.
- Denied requests get HTTP 429 with Retry-After rounded up to whole seconds.

Usage:
    @router.get("/reports", dependencies=[Depends(enforce_rate_limit("reports"))])
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Awaitable, Callable

from fastapi import Header, HTTPException, Request, status

from rate_gate.core.config import settings
from rate_gate.core.logging import hash_token
from rate_gate.services.rate_limiter import RateLimiter
from rate_gate.services.rules import Decision

logger = logging.getLogger(__name__)


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter attached to the running application."""

    return request.app.state.rate_limiter


def build_client_token(request: Request, x_api_key: str | None) -> str:
    """Pick the token identifying the caller.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        The API key itself, or a namespaced client IP when no key was sent.
    """

    if x_api_key:
        return x_api_key

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def retry_after_header(decision: Decision) -> str | None:
    if decision.retry_after is None:
        return None
    return str(max(0, math.ceil(decision.retry_after)))


def enforce_rate_limit(resource_id: str) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing admission for ``resource_id``.

    The service itself only exposes the check endpoint; applications embedding
    the limiter attach this to their own routes:

        @app.get("/reports", dependencies=[Depends(enforce_rate_limit("reports"))])

    Args:
        resource_id: Identifier the route is registered under in the PolicyBinder.

    Returns:
        Async dependency raising HTTP 429 when the request is denied.
    """

    async def _enforce(
        request: Request,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        if not settings.app.rate_limit_enabled:
            return

        limiter = get_rate_limiter(request)
        token = build_client_token(request, x_api_key)
        decision = limiter.check_now(token, resource_id)
        if decision.admitted:
            return

        retry_after = retry_after_header(decision)
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "token_hash": hash_token(token),
                "key_type": "api_key" if x_api_key else "ip",
                "resource_id": resource_id,
                "retry_after_s": decision.retry_after,
                "denied_by": list(decision.denied_by),
            },
        )

        headers: dict[str, str] = {}
        if settings.app.rate_limit_include_headers:
            if retry_after is not None:
                headers["Retry-After"] = retry_after
            headers["X-RateLimit-Policy"] = "; ".join(decision.denied_by)

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    return _enforce
