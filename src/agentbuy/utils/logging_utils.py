"""
# Logging Utilities

Cross-cutting logging helpers used by the application entry points:

- `RequestLoggingMiddleware`: logs one line per HTTP request with status and latency.
- `log_application_lifecycle`: structured startup/shutdown milestones.
- `log_error_with_context`: error plus a dict of context, with traceback.
- `log_performance`: decorator timing sync or async callables.
"""

import functools
import inspect
import time
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from agentbuy.managers.logging_manager import get_logger

request_logger = get_logger(prefix="[REQUEST]")
lifecycle_logger = get_logger(prefix="[LIFECYCLE]")
error_logger = get_logger(prefix="[ERROR]")
perf_logger = get_logger(prefix="[PERFORMANCE]")

SKIP_PATHS = {"/metrics", "/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status code and duration of every request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            request_logger.error(
                "%s %s failed after %.3fs from %s: %s", request.method, request.url.path, duration, client_ip, e
            )
            raise

        duration = time.time() - start_time
        log = request_logger.warning if response.status_code >= 400 else request_logger.info
        log(
            "%s %s -> %d in %.3fs from %s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            client_ip,
        )
        return response


def log_application_lifecycle(event: str, details: Optional[Dict[str, Any]] = None) -> None:
    """Log an application lifecycle milestone such as `startup_initiated`."""
    if details:
        lifecycle_logger.info("%s | %s", event, details)
    else:
        lifecycle_logger.info("%s", event)


def log_error_with_context(error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception together with the operation context it happened in."""
    error_logger.error(
        "%s: %s | context=%s", type(error).__name__, error, context or {}, exc_info=error
    )


def log_performance(operation: str) -> Callable:
    """
    Decorator that logs how long the wrapped callable took.

    Works for both plain functions and coroutines.
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return await func(*args, **kwargs)
                finally:
                    perf_logger.debug("%s completed in %.3fs", operation, time.time() - start_time)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                perf_logger.debug("%s completed in %.3fs", operation, time.time() - start_time)

        return sync_wrapper

    return decorator
