"""Tracing helpers bound to structlog context variables."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, unbind_contextvars

_LOGGER = structlog.get_logger("eventsync.trace")


def set_context(*, run_id: str, source_id: Optional[str] = None) -> None:
    """Bind the run (and optionally source) to every log line that follows."""
    if source_id is None:
        bind_contextvars(run_id=run_id)
    else:
        bind_contextvars(run_id=run_id, source_id=source_id)
    _LOGGER.debug("trace_context", run_id=run_id, source_id=source_id)


def clear_source() -> None:
    unbind_contextvars("source_id")


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _LOGGER.info("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_retry(attempt: int, *, url: str, reason: str) -> None:
    _LOGGER.warning("fetch_retry", attempt=attempt, url=url, reason=reason)


def log_fetch_result(*, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    _LOGGER.info(
        "fetch_result",
        url=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )
