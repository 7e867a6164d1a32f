"""Request pipeline middleware.

Installed outermost first: request logging, exception translation, rate
limiting, CORS, authentication, admin authorization. See ``storefront.main``.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.types import ASGIApp

from storefront.auth import ADMIN_ROLE
from storefront.contracts.errors import (
    ErrorResponse,
    RateLimitDetails,
    RateLimitErrorResponse,
)
from storefront.services.metrics import MetricsStore
from storefront.services.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitDecision,
    classify_route,
)

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Request-ID"
GENERIC_ERROR_MESSAGE = "An error occurred while processing your request"
READ_ONLY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
UNMATCHED_ROUTE = "<unmatched>"

ALWAYS_ADMIN_PREFIXES = ("/api/admin", "/api/auth/assign-role")
ADMIN_WRITE_PREFIXES = ("/api/categories",)

# ContextVar so the correlation ID is available to any code in the request path,
# including the logging filter below.
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_client_ip(conn: HTTPConnection) -> str:
    """Client address, preferring proxy headers over the socket peer."""
    forwarded_for = conn.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = conn.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if conn.client is not None:
        return conn.client.host
    return "unknown"


def route_template(request: Request) -> str:
    """Matched route path (``/api/orders/{order_id}``).

    Requests that matched no route share one key so URL scans cannot grow
    the endpoint table.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class CorrelationIDFilter(logging.Filter):
    """Logging filter that injects ``correlation_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()  # type: ignore[attr-defined]
        return True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request/response pair and meter it.

    If the client sends an ``X-Request-ID`` header it is preserved, otherwise
    a new ID is generated. The ID is stored on ``request.state`` and in a
    ``ContextVar`` so downstream logging includes it, and is echoed on the
    response. Completed requests are recorded in the metrics store, along
    with a user action for authenticated writes.
    """

    def __init__(self, app: ASGIApp, metrics: MetricsStore) -> None:
        super().__init__(app)
        self._metrics = metrics

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = cid
        token = correlation_id_var.set(cid)
        started = time.perf_counter()
        method = request.method
        logger.info(
            "Incoming %s %s from %s", method, request.url.path, get_client_ip(request)
        )

        # The correlation ID stays set until the response line is logged.
        try:
            try:
                response = await call_next(request)
            except Exception:
                self._meter(request, 500, started)
                logger.exception("Request %s %s failed", method, request.url.path)
                raise

            elapsed_ms = self._meter(request, response.status_code, started)
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "Response %s %s %s in %sms",
                method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            correlation_id_var.reset(token)

    def _meter(self, request: Request, status_code: int, started: float) -> int:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        method = request.method
        endpoint = route_template(request)
        self._metrics.record_api_call(endpoint, method, status_code, elapsed_ms)
        user = request.scope.get("user")
        if method not in READ_ONLY_METHODS and getattr(user, "is_authenticated", False):
            self._metrics.record_user_action(user.identity, f"{method} {endpoint}")
        return elapsed_ms


def translate_exception(exc: Exception) -> ErrorResponse:
    if isinstance(exc, ValueError):
        return ErrorResponse(message=str(exc), status_code=400)
    if isinstance(exc, LookupError):
        return ErrorResponse(message="Resource not found", status_code=404)
    return ErrorResponse(message=GENERIC_ERROR_MESSAGE, status_code=500)


class ExceptionTranslationMiddleware(BaseHTTPMiddleware):
    """Turn unhandled errors into structured JSON responses.

    Tracebacks go to the log, never to the client.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "An unhandled exception has occurred: %s", exc, exc_info=exc
            )
            payload = translate_exception(exc)
            return JSONResponse(
                status_code=payload.status_code, content=payload.model_dump(by_alias=True)
            )


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients that exceed their route-class quota with a 429."""

    def __init__(self, app: ASGIApp, limiter: FixedWindowRateLimiter) -> None:
        super().__init__(app)
        self._limiter = limiter

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        route_class = classify_route(request.method, request.url.path)
        if route_class is None:
            return await call_next(request)

        decision = self._limiter.hit(get_client_ip(request), route_class)
        if not decision.allowed:
            return self._reject(request, decision)

        response = await call_next(request)
        response.headers.update(rate_limit_headers(decision))
        return response

    @staticmethod
    def _reject(request: Request, decision: RateLimitDecision) -> JSONResponse:
        path = request.url.path
        reset_time = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(decision.reset_at))
        body = RateLimitErrorResponse(
            message=(
                f"Too many requests to {path}. Maximum {decision.limit} "
                f"attempts allowed per {decision.window}."
            ),
            retry_after=decision.retry_after,
            details=RateLimitDetails(
                endpoint=path,
                route_class=decision.route_class.value,
                limit=decision.limit,
                window=decision.window,
                reset_time=reset_time,
            ),
        )
        return JSONResponse(
            status_code=429,
            content=body.model_dump(by_alias=True),
            headers=rate_limit_headers(decision),
        )


def is_admin_endpoint(path: str, method: str) -> bool:
    path = path.lower()
    method = method.upper()
    if any(path.startswith(prefix) for prefix in ALWAYS_ADMIN_PREFIXES):
        return True
    if method != "GET" and any(path.startswith(prefix) for prefix in ADMIN_WRITE_PREFIXES):
        return True
    # Order status updates: PUT /api/orders/{id}/status
    return method == "PUT" and "/api/orders/" in path and path.rstrip("/").endswith("/status")


class AdminAuthorizationMiddleware(BaseHTTPMiddleware):
    """Require the admin scope on admin-only paths.

    Runs after authentication, so ``request.user`` and ``request.auth`` are set.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        method = request.method
        path = request.url.path
        if not is_admin_endpoint(path, method):
            return await call_next(request)

        client_ip = get_client_ip(request)
        if not request.user.is_authenticated:
            logger.warning(
                "Unauthorized access attempt to admin endpoint: %s %s from IP: %s",
                method,
                path,
                client_ip,
            )
            return PlainTextResponse("Unauthorized", status_code=401)

        if ADMIN_ROLE not in request.auth.scopes:
            logger.warning(
                "Access denied to admin endpoint: %s %s for user %s from IP: %s",
                method,
                path,
                request.user.identity,
                client_ip,
            )
            return PlainTextResponse("Access denied. Admin role required.", status_code=403)

        logger.info(
            "Admin access granted to %s %s for user %s from IP: %s",
            method,
            path,
            request.user.identity,
            client_ip,
        )
        return await call_next(request)
