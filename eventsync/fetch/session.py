"""Factories for httpx-backed fetch sessions."""
from __future__ import annotations

import contextlib
from pathlib import Path
from typing import AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx

Params = Mapping[str, object]


class FetchSession:
    """Thin wrapper over ``httpx.AsyncClient`` that also serves ``file://`` URLs."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def get(
        self,
        url: str,
        *,
        params: Optional[Params] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
    ) -> httpx.Response:
        """Fetch a URL returning an HTTPX response object."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            location = (parsed.netloc + parsed.path) or parsed.path
            target = Path(location)
            if not target.is_absolute():
                target = Path.cwd() / target
            body = target.read_bytes()
            return httpx.Response(200, content=body, request=httpx.Request("GET", url))
        if self._client is None:
            raise RuntimeError("No fetch session available")
        return await self._client.get(url, params=params, headers=headers, timeout=timeout)


@contextlib.asynccontextmanager
async def create_fetch_session(*, user_agent: str, timeout: float, max_connections: int) -> AsyncIterator[FetchSession]:
    """Yield a configured `FetchSession` for the duration of the context."""
    headers = {
        "User-Agent": user_agent,
        "Accept-Language": "en-US,en;q=0.9",
    }
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout, follow_redirects=True) as client:
        yield FetchSession(client)
