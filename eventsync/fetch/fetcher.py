"""High level fetching primitives with bounded retries."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx
import orjson
import structlog

from eventsync.errors import SourceFetchError
from eventsync.fetch.session import FetchSession, Params
from eventsync.observability.metrics import MetricsRegistry
from eventsync.observability.tracing import log_fetch_result, log_retry, span

LOGGER = structlog.get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


async def _do_fetch(
    session: FetchSession,
    url: str,
    *,
    params: Optional[Params],
    headers: Optional[Dict[str, str]],
    timeout: float,
    retries: int,
    metrics: Optional[MetricsRegistry],
) -> httpx.Response:
    delay = 0.5
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        try:
            with span(name="fetch", url=url):
                start = time.perf_counter()
                response = await session.get(url, params=params, headers=headers, timeout=timeout)
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log_fetch_result(
                url=url,
                status=response.status_code,
                bytes_read=len(response.content or b""),
                elapsed_ms=elapsed_ms,
            )
            if response.status_code in RETRYABLE_STATUS and attempt < attempts:
                raise httpx.HTTPStatusError(
                    f"retryable status {response.status_code}",
                    request=response.request,
                    response=response,
                )
            return response
        except httpx.HTTPError as exc:
            if metrics is not None:
                metrics.incr("retries")
            log_retry(attempt=attempt, url=url, reason=str(exc))
            if attempt == attempts:
                raise SourceFetchError(f"GET {url} failed: {exc}") from exc
            await asyncio.sleep(delay)
            delay *= 2
        except OSError as exc:
            raise SourceFetchError(f"GET {url} failed: {exc}") from exc
    raise SourceFetchError(f"GET {url} failed")


async def fetch_response(
    session: FetchSession,
    url: str,
    *,
    params: Optional[Params] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    retries: int = 2,
    metrics: Optional[MetricsRegistry] = None,
) -> httpx.Response:
    """GET ``url`` and raise :class:`SourceFetchError` for transport or HTTP errors."""
    response = await _do_fetch(
        session,
        url,
        params=params,
        headers=headers,
        timeout=timeout,
        retries=retries,
        metrics=metrics,
    )
    if metrics is not None:
        metrics.incr("requests")
        metrics.incr(f"http_{response.status_code // 100}xx")
    if response.status_code >= 400:
        raise SourceFetchError(f"GET {url} returned HTTP {response.status_code}")
    return response


async def fetch_text(session: FetchSession, url: str, **kwargs: Any) -> str:
    """Fetch a document body as text."""
    response = await fetch_response(session, url, **kwargs)
    return response.text


async def fetch_json(session: FetchSession, url: str, **kwargs: Any) -> Any:
    """Fetch and decode a JSON document."""
    response = await fetch_response(session, url, **kwargs)
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as exc:
        LOGGER.warning("invalid_json", url=url, error=str(exc))
        raise SourceFetchError(f"GET {url} returned invalid JSON: {exc}") from exc
