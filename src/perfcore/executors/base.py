"""Executor contract and the protocol registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from perfcore.scenario.models import RequestKind, ScenarioSpec
from perfcore.scenario.validation import ConfigurationError

logger = logging.getLogger(__name__)


class ExecutorError(RuntimeError):
    """Unexpected executor failure. The scheduler records it as a failed sample."""


@dataclass(frozen=True)
class ResolvedRequest:
    """A request whose templates have all been substituted for one iteration."""

    name: str
    protocol: str
    payload: RequestKind
    variables: Mapping[str, str] = field(default_factory=dict)

    def variable(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.variables.get(key)
        return default if value in (None, "") else value


@dataclass
class Response:
    """Executor outcome. Ordinary failures set ``success=False`` and ``error``.

    ``fault`` carries a protocol-level failure reported inside an otherwise
    successful reply, such as GraphQL ``errors`` or a SOAP ``Fault``.
    """

    status_code: Optional[int] = None
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
    received_bytes: int = 0
    fault: Optional[str] = None

    @property
    def transport_failed(self) -> bool:
        """True when no response was received at all (timeout, refused connection)."""
        return self.status_code is None and self.error is not None

    @classmethod
    def failure(cls, error: str, elapsed_ms: float = 0.0, status_code: Optional[int] = None) -> "Response":
        return cls(status_code=status_code, elapsed_ms=elapsed_ms, success=False, error=error)


@runtime_checkable
class ProtocolExecutor(Protocol):
    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        ...


class ExecutorRegistry:
    """Maps protocol identifiers to executor instances.

    Lookups happen once per scenario, before workers start. ``close()`` closes
    every executor that has a ``close`` method plus any resource handed over
    with ``owns``.
    """

    def __init__(
        self,
        executors: Optional[Mapping[str, ProtocolExecutor]] = None,
        owns: Iterable[Any] = (),
    ) -> None:
        self._executors: Dict[str, ProtocolExecutor] = {}
        self._owned: List[Any] = list(owns)
        for protocol, executor in (executors or {}).items():
            self.register(protocol, executor)

    def register(self, protocol: str, executor: ProtocolExecutor) -> None:
        key = protocol.lower()
        if key in self._executors:
            logger.debug("Replacing executor for protocol %r", key)
        self._executors[key] = executor

    def protocols(self) -> Iterable[str]:
        return sorted(self._executors)

    def get(self, protocol: str) -> ProtocolExecutor:
        try:
            return self._executors[protocol.lower()]
        except KeyError:
            raise ConfigurationError(
                f"No executor registered for protocol {protocol!r}",
                [f"registered protocols: {', '.join(self.protocols()) or 'none'}"],
            ) from None

    def bind(self, scenario: ScenarioSpec) -> Dict[str, ProtocolExecutor]:
        """Resolve the executor for every request of ``scenario``, keyed by request name."""
        bound: Dict[str, ProtocolExecutor] = {}
        missing = []
        for request in scenario.requests:
            executor = self._executors.get(request.protocol_id)
            if executor is None:
                missing.append(f"request {request.name!r} uses unregistered protocol {request.protocol_id!r}")
                continue
            bound[request.name] = executor
        if missing:
            raise ConfigurationError(f"Cannot bind executors for scenario {scenario.name!r}", missing)
        return bound

    def close(self) -> None:
        seen = set()
        for executor in list(self._executors.values()) + self._owned:
            if id(executor) in seen:
                continue
            seen.add(id(executor))
            close = getattr(executor, "close", None)
            if callable(close):
                close()
        self._owned = []

    def __enter__(self) -> "ExecutorRegistry":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
