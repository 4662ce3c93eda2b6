"""
OAuth Playground Proxy - HTTP Gateway

Main FastAPI application for the proxy server that handles:
- Authorization code exchange against provider token endpoints
- OIDC discovery (issuer + JWKS)
- Bearer token verification for the demo protected resource
- Fixed window rate limiting per client IP
- Security headers, health and Prometheus metrics
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from models.requests import DiscoveryRequest, ResourceValidationRequest, TokenExchangeRequest
from models.responses import (
    DiscoveryResponse,
    ErrorResponse,
    HealthResponse,
    ResourceValidationResponse,
    TokenExchangeResponse,
)
from observability.health_check import check_health
from observability.logging_config import bind_context, clear_context, configure_logging, get_logger
from observability.metrics import metrics
from playground.config import get_playground_config
from playground.endpoint_validator import EndpointValidator
from playground.errors import PlaygroundError, RateLimited
from playground.handlers import ProxyHandlers
from playground.rate_limiter import FixedWindowRateLimiter, get_client_ip
from playground.token_verifier import TokenVerifier
from playground.upstream import UpstreamClient

__version__ = "0.1.0"

config = get_playground_config()
configure_logging(config.log_level, config.log_json)

logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "X-DNS-Prefetch-Control": "off",
}

RATE_LIMITED_PATHS = frozenset({"/token-exchange", "/discover", "/resource"})

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# -----------------------------------------------------------------------------
# Application State
# -----------------------------------------------------------------------------


class AppState:
    """Application state container for initialized components."""

    def __init__(self):
        self.validator = EndpointValidator()
        self.upstream = UpstreamClient()
        self.verifier = TokenVerifier(self.validator, self.upstream)
        self.handlers = ProxyHandlers(self.validator, self.upstream, self.verifier)
        self.rate_limiter = FixedWindowRateLimiter()
        self.sweeper_task: Optional[asyncio.Task] = None

    @property
    def sweeper_running(self) -> bool:
        return self.sweeper_task is not None and not self.sweeper_task.done()

    async def initialize(self):
        """Start background maintenance."""
        if self.sweeper_running:
            return

        interval = get_playground_config().rate_limit_sweep_interval_seconds
        self.sweeper_task = asyncio.create_task(self.rate_limiter.run_sweeper(interval))
        metrics.set_app_info(__version__)
        logger.info("proxy_initialized", sweep_interval=interval)

    async def shutdown(self):
        """Cleanup on shutdown."""
        if self.sweeper_task is not None:
            self.sweeper_task.cancel()
            try:
                await self.sweeper_task
            except asyncio.CancelledError:
                pass
            self.sweeper_task = None
        await self.upstream.close()
        logger.info("proxy_shutdown_complete")


app_state = AppState()


# -----------------------------------------------------------------------------
# Application Lifespan
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("proxy_starting", host=config.host, port=config.port)
    await app_state.initialize()

    yield

    logger.info("proxy_stopping")
    await app_state.shutdown()


# -----------------------------------------------------------------------------
# Middleware
# -----------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add the fixed browser hardening headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Count proxy requests against the client's window.

    Runs before routing so a request is counted even when its body fails to
    parse or validate.
    """

    async def dispatch(self, request: Request, call_next):
        if request.url.path not in RATE_LIMITED_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request)
        clear_context()
        bind_context(client_ip=client_ip, path=request.url.path)

        if not get_playground_config().rate_limit_enabled:
            return await call_next(request)

        result = app_state.rate_limiter.check(client_ip)
        if not result.allowed:
            metrics.record_request(request.url.path, 0.0, error=RateLimited.error_code)
            exc = RateLimited(result.retry_after)
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers())

        response = await call_next(request)
        for name, value in result.get_headers().items():
            response.headers[name] = value
        return response


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------


app = FastAPI(
    title="OAuth Playground - Token Proxy",
    description="SSRF-safe token exchange, OIDC discovery and bearer token verification",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RateLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

if config.security_headers_enabled:
    app.add_middleware(SecurityHeadersMiddleware)


# -----------------------------------------------------------------------------
# Exception Handlers
# -----------------------------------------------------------------------------


@app.exception_handler(PlaygroundError)
async def playground_error_handler(request: Request, exc: PlaygroundError):
    """Render proxy errors as {"error", "detail", ...} with their status."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Wrong JSON types are an invalid_input 400, not FastAPI's default 422."""
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        detail = f"{location}: {errors[0].get('msg', 'invalid value')}" if location else errors[0].get("msg")
    else:
        detail = "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_input", "detail": detail or "Invalid request"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """
    Log unexpected failures and hide internals from the caller.

    Starlette runs this outside every user middleware, so the security
    headers are attached here.
    """
    logger.error(
        "unhandled_error",
        path=request.url.path,
        error_type=exc.__class__.__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error"},
        headers=SECURITY_HEADERS if config.security_headers_enabled else None,
    )


async def _timed(endpoint: str, call):
    """Await a handler call and record request metrics for it."""
    start_time = time.perf_counter()
    try:
        result = await call
    except PlaygroundError as e:
        metrics.record_request(endpoint, time.perf_counter() - start_time, error=e.error_code)
        raise
    metrics.record_request(endpoint, time.perf_counter() - start_time)
    return result


# -----------------------------------------------------------------------------
# Health & Metrics Endpoints
# -----------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint with component status."""
    health = await check_health(
        version=__version__,
        sweeper_running=app_state.sweeper_running,
        upstream_client_open=app_state.upstream.is_open,
    )
    return HealthResponse(
        status=health.status,
        version=health.version,
        timestamp=health.timestamp,
        checks=health.checks,
    )


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics in text exposition format."""
    body, content_type = metrics.render()
    return Response(content=body, media_type=content_type)


# -----------------------------------------------------------------------------
# Proxy Endpoints
# -----------------------------------------------------------------------------


@app.post(
    "/token-exchange",
    response_model=TokenExchangeResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
async def token_exchange(request: TokenExchangeRequest):
    """
    Exchange an authorization code at a provider token endpoint.

    Provider-side failures come back with success=false in a 200 body.
    """
    return await _timed("/token-exchange", app_state.handlers.exchange_token(request))


@app.post(
    "/discover",
    response_model=DiscoveryResponse,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
)
async def discover(request: DiscoveryRequest):
    """Fetch an OIDC discovery document and its JWKS."""
    return await _timed("/discover", app_state.handlers.discover(request))


@app.get(
    "/resource",
    response_model=ResourceValidationResponse,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
)
async def resource_get(
    jwks_uri: Optional[str] = None,
    secret: Optional[str] = None,
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
    authorization: Optional[str] = Header(None),
):
    """Verify the bearer token with key material passed as query parameters."""
    params = ResourceValidationRequest(
        jwks_uri=jwks_uri,
        secret=secret,
        issuer=issuer,
        audience=audience,
    )
    return await _timed("/resource", app_state.handlers.validate_resource(authorization, params))


@app.post(
    "/resource",
    response_model=ResourceValidationResponse,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
)
async def resource_post(
    params: Optional[ResourceValidationRequest] = None,
    authorization: Optional[str] = Header(None),
):
    """Verify the bearer token with key material (including inline JWKS) in the body."""
    params = params or ResourceValidationRequest()
    return await _timed("/resource", app_state.handlers.validate_resource(authorization, params))


def main():
    """Main entry point for the proxy server."""
    import uvicorn

    config = get_playground_config()
    uvicorn.run(
        "playground.gateway:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
    )


if __name__ == "__main__":
    main()
