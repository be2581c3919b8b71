"""
Shared pytest fixtures for the perfcore test suite.

Executors here never touch the network: ``StubExecutor`` answers with a
canned response and remembers every resolved request it saw, so tests can
assert on variable resolution and ordering.
"""

import threading
from typing import Callable, List, Optional

import pytest

from perfcore.config import ExecutionConfig
from perfcore.executors.base import ExecutorRegistry, ResolvedRequest, Response
from perfcore.scenario.models import HttpRequest, RequestSpec, ScenarioSpec


class StubExecutor:
    """Returns ``status`` for every call and records the resolved requests."""

    def __init__(self, status: int = 200, body: str = "ok", delay: float = 0.0) -> None:
        self.status = status
        self.body = body
        self.delay = delay
        self.calls: List[ResolvedRequest] = []
        self._lock = threading.Lock()

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        with self._lock:
            self.calls.append(request)
        if self.delay:
            threading.Event().wait(self.delay)
        return Response(
            status_code=self.status,
            body=self.body,
            success=200 <= self.status < 400,
            received_bytes=len(self.body),
        )


class RaisingExecutor:
    """Raises on every call, like a buggy or crashing protocol backend."""

    def __init__(self, exc: Optional[Exception] = None) -> None:
        self.exc = exc or RuntimeError("backend exploded")
        self.calls = 0
        self._lock = threading.Lock()

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        with self._lock:
            self.calls += 1
        raise self.exc


# -----------------------------------------------------------------------------
# Executor fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def stub_executor():
    return StubExecutor()


@pytest.fixture
def registry(stub_executor):
    return ExecutorRegistry({"http": stub_executor})


@pytest.fixture
def execution_config():
    """Short global timeout so a hung test fails fast instead of blocking the run."""
    return ExecutionConfig(request_timeout_ms=1000, global_timeout_seconds=30.0)


# -----------------------------------------------------------------------------
# Scenario factories
# -----------------------------------------------------------------------------

@pytest.fixture
def make_request() -> Callable[..., RequestSpec]:
    def _make(name: str = "ping", endpoint: str = "http://svc.test/ping", **kwargs) -> RequestSpec:
        target = kwargs.pop("target", None) or HttpRequest(
            endpoint=endpoint,
            method=kwargs.pop("method", "GET"),
            headers=kwargs.pop("headers", {}),
            body=kwargs.pop("body", ""),
        )
        return RequestSpec(name=name, target=target, **kwargs)

    return _make


@pytest.fixture
def make_scenario(make_request) -> Callable[..., ScenarioSpec]:
    def _make(requests=None, **kwargs) -> ScenarioSpec:
        kwargs.setdefault("name", "smoke")
        return ScenarioSpec(requests=tuple(requests or [make_request()]), **kwargs)

    return _make
