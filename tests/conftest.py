from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

import httpx
import pytest

from config.settings import Settings
from ingestion.fetchers.alternate import AlternateDataSource
from ingestion.fetchers.states import StatesFetcher

BERLIN = ZoneInfo("Europe/Berlin")
ARCGIS_BASE = "https://arcgis.test/rest/services"
MIRROR_URL = "https://mirror.test/query"

Matcher = Callable[[httpx.Request], bool]


def where_is(clause: str) -> Matcher:
    return lambda r: r.url.host == "arcgis.test" and r.url.params.get("where") == clause


def where_starts(prefix: str) -> Matcher:
    return lambda r: r.url.host == "arcgis.test" and r.url.params.get("where", "").startswith(prefix)


def is_mirror(r: httpx.Request) -> bool:
    return r.url.host == "mirror.test"


def features(*attributes: dict[str, Any]) -> dict[str, Any]:
    return {"features": [{"attributes": a} for a in attributes]}


class FakeRki:
    """Routes requests to canned ArcGIS responses and records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[Matcher, dict[str, Any]]] = []

    def add(
        self,
        match: Matcher,
        json: Any = None,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._routes.append((match, {"status_code": status, "json": json, "headers": headers}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for match, spec in self._routes:
            if match(request):
                return httpx.Response(spec["status_code"], json=spec["json"], headers=spec["headers"])
        raise AssertionError(f"Unexpected request: {request.url}")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def mirror_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if is_mirror(r)]

    @property
    def arcgis_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "arcgis.test"]


@pytest.fixture
def settings() -> Settings:
    return Settings(arcgis_base_url=ARCGIS_BASE, alternate_source_url=MIRROR_URL)


@pytest.fixture
def fake() -> FakeRki:
    return FakeRki()


@pytest.fixture
def make_fetcher(settings: Settings, fake: FakeRki) -> Callable[..., StatesFetcher]:
    """Build a StatesFetcher whose clock reads ``now`` (Berlin time)."""

    def _make(now: datetime = datetime(2021, 5, 2, 10, 0, tzinfo=BERLIN)) -> StatesFetcher:
        alternate = AlternateDataSource(settings, transport=fake.transport, clock=lambda: now)
        return StatesFetcher(settings, transport=fake.transport, alternate=alternate)

    return _make
