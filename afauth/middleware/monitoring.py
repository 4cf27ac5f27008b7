"""Monitoring and observability middleware"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from afauth.utils.logger import logger


# ===== Prometheus Metrics =====

# Request metrics
http_requests_total = Counter(
    "afauth_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "afauth_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

http_errors_total = Counter(
    "afauth_http_errors_total",
    "Total HTTP errors",
    ["method", "endpoint", "status"]
)

# Domain metrics
github_oauth_operations_total = Counter(
    "afauth_github_oauth_operations_total",
    "GitHub OAuth operations",
    ["operation", "status"]  # operation: authorize, callback, exchange, refresh
)

jwt_operations_total = Counter(
    "afauth_jwt_operations_total",
    "JWT operations",
    ["operation", "status"]  # operation: issue, verify, refresh, revoke
)

token_revocation_checks_total = Counter(
    "afauth_token_revocation_checks_total",
    "Revocation ledger lookups",
    ["result"]  # revoked, not_revoked
)

auth_failures_total = Counter(
    "afauth_auth_failures_total",
    "Authentication failures",
    ["type", "reason"]
)

github_token_retrievals_total = Counter(
    "afauth_github_token_retrievals_total",
    "GitHub token retrieval requests from services",
    ["status"]  # success, or the error code
)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware for monitoring and metrics collection"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        method = request.method
        endpoint = request.url.path

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            http_errors_total.labels(method=method, endpoint=endpoint, status=500).inc()
            logger.error(
                f"Request failed: {method} {endpoint}",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": endpoint,
                    "duration": duration,
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        status = response.status_code
        route = request.scope.get("route")
        if route is not None and getattr(route, "path", None):
            endpoint = route.path

        duration = time.time() - start_time
        http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

        if duration > 1.0:
            logger.warning(
                f"Slow request detected: {method} {endpoint}",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": endpoint,
                    "duration": duration,
                    "status": status,
                },
            )

        if status >= 400:
            http_errors_total.labels(method=method, endpoint=endpoint, status=status).inc()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def record_github_oauth_operation(operation: str, success: bool):
    github_oauth_operations_total.labels(
        operation=operation,
        status="success" if success else "failure"
    ).inc()


def record_jwt_operation(operation: str, success: bool):
    jwt_operations_total.labels(
        operation=operation,
        status="success" if success else "failure"
    ).inc()


def record_revocation_check(revoked: bool):
    token_revocation_checks_total.labels(result="revoked" if revoked else "not_revoked").inc()


def record_auth_failure(auth_type: str, reason: str):
    """Record authentication failure"""
    auth_failures_total.labels(type=auth_type, reason=reason).inc()


def record_github_token_retrieval(status: str):
    github_token_retrievals_total.labels(status=status).inc()
