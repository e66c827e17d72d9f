"""Request-scoped canonical log line for certificate requests.

RequestTimingMiddleware opens one event per HTTP request and logs it when the
response finishes. Pipeline code adds to it as it runs:

    set_wide_event_fields(certificate_id="cert-0042", course_id="7")
    set_wide_event_nested("publish", image_upload_ms=412.3)

    with timed_stage("pipeline", "compose"):
        ...  # records pipeline.compose_ms

Writes outside an open event (CLI runs, unit tests) are dropped silently.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_current: ContextVar[dict[str, Any] | None] = ContextVar(
    "certificate_wide_event", default=None
)


def init_wide_event() -> dict[str, Any]:
    """Open an empty event; the middleware fills in the request fields."""
    event: dict[str, Any] = {}
    _current.set(event)
    return event


def get_wide_event() -> dict[str, Any]:
    event = _current.get()
    return event if event is not None else {}


def _open_event() -> dict[str, Any] | None:
    # An event only counts as open once request context has been written
    event = _current.get()
    return event or None


def set_wide_event_fields(**fields: Any) -> None:
    event = _open_event()
    if event is not None:
        event.update(fields)


def set_wide_event_nested(category: str, **fields: Any) -> None:
    """Merge ``fields`` into the ``category`` sub-dict of the open event."""
    event = _open_event()
    if event is not None:
        event.setdefault(category, {}).update(fields)


@contextmanager
def timed_stage(category: str, stage: str) -> Iterator[None]:
    """Record ``{stage}_ms`` under ``category``, whether or not the block raises."""
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        set_wide_event_nested(category, **{f"{stage}_ms": elapsed_ms})


def clear_wide_event() -> None:
    _current.set({})
