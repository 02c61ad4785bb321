"""FastAPI integration: 429 responses and per-request throttle dependencies."""

import hashlib
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from ratewarden.core.config import settings
from ratewarden.core.logging import get_log_context, get_logger
from ratewarden.engine import BucketStore
from ratewarden.exceptions import Throttled
from ratewarden.throttle import Throttle

logger = get_logger(__name__)

# Longer bearer tokens are rejected before hashing
MAX_API_KEY_LENGTH = 512


async def throttled_exception_handler(request: Request, exc: Throttled) -> JSONResponse:
    """Handle Throttled and return an HTTP 429 response with Retry-After."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "throttled",
            "message": exc.message,
            "retry_after": exc.retry_after,
        },
        headers={"Retry-After": str(exc.retry_after)},
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register the ratewarden exception handlers on ``app``."""
    app.add_exception_handler(Throttled, throttled_exception_handler)


def client_discriminator(request: Request) -> str:
    """Derive a discriminator for the client making ``request``.

    Uses the bearer token if present, otherwise the first X-Forwarded-For
    address or the peer address. Values are hashed with SHA-256 so raw keys
    and addresses never reach the store.

    Raises:
        HTTPException: 400 if the bearer token is unreasonably long
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise HTTPException(
                status_code=400,
                detail=f"API key too long (max {MAX_API_KEY_LENGTH} characters)",
            )
        return "apikey:" + hashlib.sha256(api_key.encode()).hexdigest()[:32]

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"
    return "ip:" + hashlib.sha256(client_ip.encode()).hexdigest()[:32]


def throttle_dependency(
    name: str,
    limit: float,
    period: float,
    block_for: float,
    n_tokens: float = 1,
    store: Optional[BucketStore] = None,
    discriminator: Callable[[Request], str] = client_discriminator,
    fail_closed: Optional[bool] = None,
) -> Callable[[Request], Awaitable[None]]:
    """Build a FastAPI dependency that throttles each request.

    Example:
        >>> @app.post("/login", dependencies=[Depends(throttle_dependency("logins", 5, 60, 300))])

    The limiter parameters are validated here, when the route is declared.
    If the store fails, ``fail_closed`` (default ``settings.fail_closed``)
    decides: answer 503, or let the request through and log a warning.
    """
    # Validate the configuration once, up front
    Throttle(name=name, limit=limit, period=period, block_for=block_for, store=store)

    async def dependency(request: Request) -> None:
        throttle = Throttle(name=name, limit=limit, period=period, block_for=block_for, store=store)
        throttle.add_discriminator(discriminator(request))
        try:
            remaining = await throttle.check(n_tokens=n_tokens)
        except RedisError as e:
            closed = settings.fail_closed if fail_closed is None else fail_closed
            if closed:
                logger.error(
                    f"Throttle {name} store unavailable, request denied: {e}",
                    extra=get_log_context(throttle_name=name),
                )
                raise HTTPException(status_code=503, detail="Rate limiter unavailable")
            logger.warning(
                f"Throttle {name} store unavailable, request allowed without check: {e}",
                extra=get_log_context(throttle_name=name),
            )
            return
        request.state.throttle_remaining = remaining

    return dependency
