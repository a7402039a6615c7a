from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from blog_server.config import Settings
from blog_server.content import InMemoryArticleStore
from blog_server.telemetry.runtime import RuntimeStats


class FakeStatsSource:
    """Runtime stats source returning fixed values."""

    def __init__(self, stats: RuntimeStats | None = None) -> None:
        self.stats = stats or RuntimeStats(task_count=4, thread_count=3, rss_bytes=2048, vms_bytes=4096)
        self.reads = 0

    def read(self) -> RuntimeStats:
        self.reads += 1
        return self.stats


class FakeCostSource:
    """Cost source serving canned (service, amount) pairs per look-back window."""

    def __init__(self, responses: dict[int, list[tuple[str, float]]] | None = None) -> None:
        self.responses = responses or {}
        self.error: Exception | None = None
        self.errors: list[Exception] = []
        self.calls: list[int] = []

    async def fetch(self, days: int) -> list[tuple[str, float]]:
        self.calls.append(days)
        if self.errors:
            raise self.errors.pop(0)
        if self.error is not None:
            raise self.error
        return list(self.responses.get(days, []))


class ForbiddenCostSource:
    """Cost source that fails the test when called."""

    async def fetch(self, days: int) -> list[tuple[str, float]]:
        pytest.fail("cost source must not be called when cost tracking is disabled")


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for testing."""
    monkeypatch.setenv("BLOG_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("BLOG_ENV", "test")
    monkeypatch.delenv("BLOG_COST_TRACKING_ENABLED", raising=False)
    monkeypatch.delenv("BLOG_PROFILING_ENABLED", raising=False)
    monkeypatch.delenv("BLOG_SITE_URL", raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        metric_export_interval_seconds=3600,
        runtime_sample_interval_seconds=3600,
    )


@pytest.fixture
def articles() -> InMemoryArticleStore:
    return InMemoryArticleStore(
        {
            "hello-world": "<h1>Hello, world</h1>",
            "second-post": "<h1>Second post</h1>",
        }
    )


@pytest.fixture
def stats_source() -> FakeStatsSource:
    return FakeStatsSource()


@pytest.fixture
async def app(settings: Settings, articles: InMemoryArticleStore, stats_source: FakeStatsSource):
    """Create a test FastAPI app with fake runtime stats and no cost tracking."""
    from blog_server.app import create_app

    yield create_app(settings, articles=articles, stats_source=stats_source)


@pytest.fixture
async def client(app) -> AsyncClient:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with LifespanManager(app):
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
