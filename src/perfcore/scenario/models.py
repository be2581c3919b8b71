"""Scenario and request definitions consumed read-only by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, ClassVar, Dict, Mapping, NamedTuple, Optional, Tuple, Union

if TYPE_CHECKING:  # pragma: no cover - only for typing
    from perfcore.engine.classification import Validator


class RequestSummary(NamedTuple):
    """Reporting view of a (resolved) request: where, how, and what was sent."""

    endpoint: str
    method: str
    headers: Dict[str, str]
    body: str


def _freeze(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class HttpRequest:
    """Plain HTTP call. Every string field and mapping value is a template."""

    protocol: ClassVar[str] = "http"

    endpoint: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze(self.headers))
        object.__setattr__(self, "params", _freeze(self.params))

    def summary(self) -> RequestSummary:
        return RequestSummary(self.endpoint, self.method, dict(self.headers), self.body)


@dataclass(frozen=True)
class GraphQLRequest:
    protocol: ClassVar[str] = "graphql"

    endpoint: str
    query: str
    variables: str = ""  # JSON object template
    operation_name: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _freeze(self.headers))

    def summary(self) -> RequestSummary:
        return RequestSummary(self.endpoint, "POST", dict(self.headers), self.query)


@dataclass(frozen=True)
class SoapRequest:
    protocol: ClassVar[str] = "soap"

    endpoint: str
    envelope: str
    action: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _freeze(self.headers))

    def summary(self) -> RequestSummary:
        return RequestSummary(self.endpoint, "POST", dict(self.headers), self.envelope)


@dataclass(frozen=True)
class JdbcRequest:
    """SQL statement executed through a DB-API connection.

    ``params`` are bound by name, so ``statement`` uses the driver's named
    paramstyle (``:name`` for sqlite3).
    """

    protocol: ClassVar[str] = "jdbc"

    statement: str
    params: Mapping[str, str] = field(default_factory=dict)
    fetch: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _freeze(self.params))

    def summary(self) -> RequestSummary:
        return RequestSummary("", "SQL", {}, self.statement)


RequestKind = Union[HttpRequest, GraphQLRequest, SoapRequest, JdbcRequest]


@dataclass(frozen=True)
class RequestSpec:
    """One templated request plus its classification rules.

    ``responses`` maps status label -> validator and is evaluated in insertion
    order. ``protocol`` overrides the identifier implied by ``target`` (e.g.
    ``"https"`` routed to a differently configured executor).
    """

    name: str
    target: RequestKind
    responses: Mapping[str, "Validator"] = field(default_factory=dict)
    variables: Mapping[str, str] = field(default_factory=dict)
    data_source: Optional[str] = None
    protocol: Optional[str] = None
    timeout_ms: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "responses", MappingProxyType(dict(self.responses)))
        object.__setattr__(self, "variables", _freeze(self.variables))

    @property
    def protocol_id(self) -> str:
        return (self.protocol or self.target.protocol).lower()


@dataclass(frozen=True)
class ScenarioSpec:
    name: str
    requests: Tuple[RequestSpec, ...]
    threads: int = 1
    iterations: int = 1
    ramp_up_seconds: float = 0.0
    hold_seconds: float = 0.0
    success_threshold: float = 100.0
    variables: Mapping[str, str] = field(default_factory=dict)
    data_source: Optional[str] = None
    max_duration_seconds: Optional[float] = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "requests", tuple(self.requests))
        object.__setattr__(self, "variables", _freeze(self.variables))

    def data_source_for(self, request: RequestSpec) -> Optional[str]:
        return request.data_source or self.data_source
