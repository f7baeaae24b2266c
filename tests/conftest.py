"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from vertiscale.decision.rules import ScaleRule
from vertiscale.drain.coordinator import DrainCoordinator
from vertiscale.execution.base import MockProvider
from vertiscale.execution.resize import ResizeCoordinator
from vertiscale.services.orchestrator import ScalingOrchestrator

LIST_EMPTY = "There are 0 out of maximum 20 players online.\n"


def list_reply(online: int, maximum: int = 20) -> str:
    """A `list` reply as the game server formats it."""
    return f"There are {online} out of maximum {maximum} players online.\n"


# ============================================================================
# Fakes
# ============================================================================


class FakeSession:
    """
    In-memory command session.

    `list` replies are served from `occupancy` in order, the last one
    repeating. Every other command gets an empty reply.
    """

    def __init__(self, occupancy: list[str] | None = None) -> None:
        self.occupancy = list(occupancy or [LIST_EMPTY])
        self.commands: list[str] = []
        self.connected = False
        self.closed = False
        self.connect_error: Exception | None = None
        self.fail_on: dict[str, Exception] = {}

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def command(self, command: str) -> str:
        self.commands.append(command)
        verb = command.split(" ", 1)[0]
        if verb in self.fail_on:
            raise self.fail_on[verb]
        if command == "list":
            if len(self.occupancy) > 1:
                return self.occupancy.pop(0)
            return self.occupancy[0]
        return ""

    async def close(self) -> None:
        self.closed = True


class FakeMetrics:
    """Metrics source returning canned results per query."""

    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results = results or {}
        self.queries: list[str] = []

    async def query(self, query: str) -> list[Any]:
        self.queries.append(query)
        result = self.results.get(query, [])
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    """Settable clock for cooldown tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def provider() -> MockProvider:
    """Mock provider with small/medium/large, currently medium."""
    return MockProvider()


@pytest.fixture
def session() -> FakeSession:
    """Fake RCON session for an empty server."""
    return FakeSession()


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    """Factory for fake sessions with scripted `list` replies."""

    def factory(*online: int) -> FakeSession:
        return FakeSession([list_reply(n) for n in online] if online else None)

    return factory


@pytest.fixture
def make_metrics() -> Callable[..., FakeMetrics]:
    """Factory for metrics sources with canned query results."""
    return FakeMetrics


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def drain(session: FakeSession) -> DrainCoordinator:
    """Drain coordinator without delays."""
    return DrainCoordinator(
        session_factory=lambda: session,
        message="Server resizing",
        poll_interval_seconds=0,
        timeout_seconds=5,
    )


@pytest.fixture
def resize(provider: MockProvider) -> ResizeCoordinator:
    """Resize coordinator over the mock provider without delays."""
    return ResizeCoordinator(
        provider,
        allowed_sizes=["small", "medium", "large"],
        poll_interval_seconds=0,
        max_attempts=24,
    )


@pytest.fixture
def make_orchestrator(
    resize: ResizeCoordinator,
    drain: DrainCoordinator,
    clock: FakeClock,
) -> Callable[..., ScalingOrchestrator]:
    """Factory for orchestrators sharing the default collaborators."""

    def factory(**kwargs: Any) -> ScalingOrchestrator:
        kwargs.setdefault("min_interval", timedelta(hours=1))
        return ScalingOrchestrator(
            resize_coordinator=kwargs.pop("resize_coordinator", resize),
            drain_coordinator=kwargs.pop("drain_coordinator", drain),
            clock=kwargs.pop("clock", clock),
            **kwargs,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., ScalingOrchestrator]) -> ScalingOrchestrator:
    return make_orchestrator()


@pytest.fixture
def grow_rule() -> ScaleRule:
    return ScaleRule(query="sum(players_online) > 15", action=1)


@pytest.fixture
def shrink_rule() -> ScaleRule:
    return ScaleRule(query="sum(players_online) < 2", action=-1)


@pytest.fixture
def mock_prometheus_response() -> dict[str, Any]:
    """Mock Prometheus API response."""
    return {
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [
                {
                    "metric": {"instance": "mc-1", "job": "minecraft"},
                    "value": [1704067200, "17"],
                }
            ],
        },
    }
