import contextlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from eventsync.fetch.session import FetchSession
from eventsync.settings import ImportSettings
from eventsync.sources.base import SourceContext

FIXTURES = Path(__file__).parent / "fixtures"
# Noon in New York.
NOW = datetime(2025, 5, 1, 16, 0, tzinfo=timezone.utc)


class StubSession(FetchSession):
    """Serves canned bodies keyed by URL; a list of bodies is consumed in order."""

    def __init__(self, routes: Optional[Dict[str, object]] = None) -> None:
        super().__init__(client=None)
        self.routes = dict(routes or {})
        self.calls: List[Dict[str, object]] = []

    async def get(self, url, *, params=None, headers=None, timeout=30.0):  # type: ignore[override]
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        request = httpx.Request("GET", url)
        body = self.routes.get(url)
        if isinstance(body, list) and body and isinstance(body[0], (httpx.Response, Exception)):
            body = body.pop(0)
        if callable(body) and not isinstance(body, httpx.Response):
            body = body(dict(params or {}))
        if body is None:
            return httpx.Response(404, request=request)
        if isinstance(body, Exception):
            raise body
        if isinstance(body, httpx.Response):
            return body
        if isinstance(body, (dict, list)):
            return httpx.Response(200, json=body, request=request)
        return httpx.Response(200, text=str(body), request=request)


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def settings():
    return ImportSettings(user_agent="test-agent", timeout_seconds=5, max_concurrency=2, retries=0, timezone="America/New_York")


@pytest.fixture()
def make_context(settings, clock):
    def _make(routes: Optional[Dict[str, object]] = None) -> SourceContext:
        return SourceContext(session=StubSession(routes), settings=settings, clock=clock)

    return _make


@pytest.fixture()
def stub_session_factory():
    """Factory usable as ``Importer(session_factory=...)``."""

    def _factory(routes: Optional[Dict[str, object]] = None):
        session = StubSession(routes)

        @contextlib.asynccontextmanager
        async def _open(**_kwargs):
            yield session

        _open.session = session  # type: ignore[attr-defined]
        return _open

    return _factory


@pytest.fixture()
def stub_session():
    return StubSession
