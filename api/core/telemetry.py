"""Request timing and dependency call tracking.

``RequestTimingMiddleware`` emits the wide event (see core.wide_event) as a
single ``request.completed`` line. ``track_dependency`` times calls to the
template host and Pinata.
"""

import inspect
import os
import time
import uuid
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.logger import get_logger
from core.wide_event import clear_wide_event, get_wide_event, init_wide_event

logger = get_logger(__name__)

SERVICE_NAME = os.getenv("SERVICE_NAME", "eduverse-certificates")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "0.1.0")

# Requests slower than this are always logged
SLOW_REQUEST_MS = 1000

P = ParamSpec("P")
R = TypeVar("R")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _should_emit(event: dict[str, Any]) -> bool:
    """Tail sampling: keep failures, slow requests and every certificate call."""
    status = event.get("http_status_code")
    return (
        status is None
        or status >= 400
        or event["duration_ms"] > SLOW_REQUEST_MS
        or bool(event.get("certificate_id") or event.get("cid"))
    )


class RequestTimingMiddleware:
    """Adds x-request-id / x-request-duration-ms and emits the wide event."""

    def __init__(self, app: ASGIApp):
        self.app = app

    @staticmethod
    def _open_event(scope: Scope, request_id: str) -> None:
        client = scope.get("client")
        init_wide_event().update(
            service_name=SERVICE_NAME,
            service_version=SERVICE_VERSION,
            request_id=request_id,
            http_method=scope.get("method", "UNKNOWN"),
            http_path=scope.get("path", ""),
            http_client_ip=client[0] if client else "unknown",
        )

    @staticmethod
    def _close_event(scope: Scope, started: float, **fields: Any) -> None:
        route = scope.get("route")
        event = get_wide_event()
        event.update(
            http_route=getattr(route, "path", None) or scope.get("path", ""),
            duration_ms=_elapsed_ms(started),
            **fields,
        )
        if fields.get("outcome") == "exception" or _should_emit(event):
            logger.info("request.completed", **event)
        clear_wide_event()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        request_id = str(uuid.uuid4())
        self._open_event(scope, request_id)
        status: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = int(message.get("status", 0))
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-request-duration-ms", f"{_elapsed_ms(started):.2f}".encode()),
                    (b"x-request-id", request_id.encode()),
                ]
            elif message["type"] == "http.response.body" and not message.get(
                "more_body", False
            ):
                self._close_event(
                    scope,
                    started,
                    http_status_code=status,
                    outcome="success" if status and status < 400 else "error",
                )
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            self._close_event(
                scope,
                started,
                outcome="exception",
                exception_type=type(exc).__name__,
            )
            raise


def _log_call(name: str, dependency_type: str, started: float, success: bool) -> None:
    logger.debug(
        "dependency.call",
        dependency_name=name,
        dependency_type=dependency_type,
        success=success,
        duration_ms=_elapsed_ms(started),
    )


def track_dependency(name: str, dependency_type: str = "custom"):
    """Log one ``dependency.call`` line per call; exceptions propagate unchanged."""

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                started = time.perf_counter()
                success = False
                try:
                    result = await func(*args, **kwargs)
                    success = True
                    return result
                finally:
                    _log_call(name, dependency_type, started, success)

            return cast(Callable[P, R], async_wrapper)

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            started = time.perf_counter()
            success = False
            try:
                result = func(*args, **kwargs)
                success = True
                return result
            finally:
                _log_call(name, dependency_type, started, success)

        return sync_wrapper

    return decorator
