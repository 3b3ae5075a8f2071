"""Shared pytest fixtures."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiohttp
import pytest

from smart_time_tracker.core.config import Config, get_config
from smart_time_tracker.trackers.events import TabInfo

EPOCH = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock; with ``step`` it also advances after every read."""

    def __init__(self, start: datetime = EPOCH, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.now
        self.now += timedelta(seconds=self.step)
        return now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, text: str = ""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self, content_type: str | None = "application/json") -> Any:
        return self._payload

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class FakeHttpSession:
    """Stands in for ``aiohttp.ClientSession``; records every request.

    ``responses`` are consumed in order; an exception instance is raised
    instead of returned.
    """

    def __init__(self, *responses: FakeResponse | BaseException):
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def __call__(self) -> FakeHttpSession:
        return self

    async def __aenter__(self) -> FakeHttpSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0) if self.responses else FakeResponse(200, {"success": True})
        if isinstance(response, BaseException):
            raise response
        return response

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, **kwargs)


class FakeResolver:
    """Tab resolver backed by a dict of tab id to URL."""

    def __init__(self, tabs: dict[str, str | None] | None = None, active: str | None = None):
        self.tabs = dict(tabs or {})
        self.active = active

    async def get_tab(self, tab_id: str) -> TabInfo:
        from smart_time_tracker.core.errors import TabUnavailable

        if tab_id not in self.tabs:
            raise TabUnavailable(f"no tab {tab_id}")
        return TabInfo(id=tab_id, url=self.tabs[tab_id])

    async def active_tab(self) -> TabInfo | None:
        if self.active is None:
            return None
        return TabInfo(id=self.active, url=self.tabs.get(self.active))


class FakeProbe:
    """Browser probe returning whatever the test sets."""

    def __init__(self, tab: TabInfo | None = None, idle: float = 0.0):
        self.tab = tab
        self.idle = idle

    def front_tab(self) -> TabInfo | None:
        return self.tab

    def idle_seconds(self) -> float:
        return self.idle


@pytest.fixture(autouse=True)
def clear_config_cache():
    """Reset the cached configuration before each test."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tracker.db"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        config_dir=tmp_path / "config",
        server={"database_url": "sqlite://"},
    )


@pytest.fixture
def network_error() -> aiohttp.ClientError:
    return aiohttp.ClientConnectionError("connection refused")
