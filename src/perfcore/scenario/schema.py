"""Pydantic models that turn already-parsed configuration into scenario objects.

The expected document shape::

    {
      "name": "checkout",
      "threads": 4, "iterations": 10, "ramp_up_seconds": 2, "hold_seconds": 0,
      "success_threshold": 95,
      "variables": {"baseUrl": "https://shop.example"},
      "data_source": "users",
      "data": {"users": [{"user": "alice"}, {"user": "bob"}]},
      "requests": [
        {"name": "login", "kind": "http", "method": "POST", "endpoint": "/login",
         "body": "{\\"user\\": \\"${user}\\"}",
         "responses": {"Passed": {"status": [200]}, "Locked": {"status": [423], "success": false}}}
      ]
    }

``kind`` defaults to ``http``. File formats are the caller's concern.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from perfcore.data.rows import StaticRowSource
from perfcore.engine.classification import Validator, build_validator
from perfcore.scenario.models import (
    GraphQLRequest,
    HttpRequest,
    JdbcRequest,
    RequestKind,
    RequestSpec,
    ScenarioSpec,
    SoapRequest,
)
from perfcore.scenario.validation import ConfigurationError, validate_scenario


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _text_mapping(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _as_text(item) for key, item in value.items()}
    return value


class _RequestBase(BaseModel):
    """Fields shared by every request kind."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    responses: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    variables: Dict[str, str] = Field(default_factory=dict)
    data_source: Optional[str] = None
    protocol: Optional[str] = None
    timeout_ms: Optional[int] = Field(default=None, gt=0)

    @field_validator("variables", mode="before")
    @classmethod
    def stringify_variables(cls, value: Any) -> Any:
        return _text_mapping(value)

    def target(self) -> RequestKind:
        raise NotImplementedError

    def to_spec(self) -> RequestSpec:
        validators: Dict[str, Validator] = {}
        for label, definition in self.responses.items():
            try:
                validators[label] = build_validator(definition)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"Request {self.name!r} has an invalid validator",
                    [f"responses.{label}: {exc}"],
                ) from exc
        return RequestSpec(
            name=self.name,
            target=self.target(),
            responses=validators,
            variables=self.variables,
            data_source=self.data_source,
            protocol=self.protocol,
            timeout_ms=self.timeout_ms,
        )


class HttpRequestModel(_RequestBase):
    kind: Literal["http"] = "http"
    endpoint: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""
    params: Dict[str, str] = Field(default_factory=dict)

    @field_validator("headers", "params", mode="before")
    @classmethod
    def stringify_mappings(cls, value: Any) -> Any:
        return _text_mapping(value)

    @field_validator("body", mode="before")
    @classmethod
    def stringify_body(cls, value: Any) -> Any:
        return _as_text(value)

    def target(self) -> RequestKind:
        return HttpRequest(
            endpoint=self.endpoint,
            method=self.method,
            headers=self.headers,
            body=self.body,
            params=self.params,
        )


class GraphQLRequestModel(_RequestBase):
    kind: Literal["graphql"]
    endpoint: str
    query: str
    graphql_variables: str = Field(default="", alias="query_variables")
    operation_name: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, value: Any) -> Any:
        return _text_mapping(value)

    @field_validator("graphql_variables", mode="before")
    @classmethod
    def stringify_query_variables(cls, value: Any) -> Any:
        return _as_text(value)

    def target(self) -> RequestKind:
        return GraphQLRequest(
            endpoint=self.endpoint,
            query=self.query,
            variables=self.graphql_variables,
            operation_name=self.operation_name,
            headers=self.headers,
        )


class SoapRequestModel(_RequestBase):
    kind: Literal["soap"]
    endpoint: str
    envelope: str
    action: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, value: Any) -> Any:
        return _text_mapping(value)

    def target(self) -> RequestKind:
        return SoapRequest(endpoint=self.endpoint, envelope=self.envelope, action=self.action, headers=self.headers)


class JdbcRequestModel(_RequestBase):
    kind: Literal["jdbc"]
    statement: str
    params: Dict[str, str] = Field(default_factory=dict)
    fetch: bool = True

    @field_validator("params", mode="before")
    @classmethod
    def stringify_params(cls, value: Any) -> Any:
        return _text_mapping(value)

    def target(self) -> RequestKind:
        return JdbcRequest(statement=self.statement, params=self.params, fetch=self.fetch)


RequestModel = Annotated[
    Union[HttpRequestModel, GraphQLRequestModel, SoapRequestModel, JdbcRequestModel],
    Field(discriminator="kind"),
]


class ScenarioModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    threads: int = Field(default=1, ge=1)
    iterations: int = Field(default=1, ge=1)
    ramp_up_seconds: float = Field(default=0.0, ge=0)
    hold_seconds: float = Field(default=0.0, ge=0)
    success_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    max_duration_seconds: Optional[float] = Field(default=None, gt=0)
    variables: Dict[str, str] = Field(default_factory=dict)
    data_source: Optional[str] = None
    data: Dict[str, List[Dict[str, str]]] = Field(default_factory=dict)
    requests: List[RequestModel] = Field(min_length=1)

    @field_validator("variables", mode="before")
    @classmethod
    def stringify_variables(cls, value: Any) -> Any:
        return _text_mapping(value)

    @field_validator("data", mode="before")
    @classmethod
    def stringify_rows(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        return {
            str(name): [_text_mapping(row) for row in rows] if isinstance(rows, list) else rows
            for name, rows in value.items()
        }

    @field_validator("requests", mode="before")
    @classmethod
    def default_kind(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {**item, "kind": item.get("kind", "http")} if isinstance(item, Mapping) else item
            for item in value
        ]

    def to_spec(self, default_threshold: float = 100.0) -> ScenarioSpec:
        return ScenarioSpec(
            name=self.name,
            description=self.description,
            requests=tuple(request.to_spec() for request in self.requests),
            threads=self.threads,
            iterations=self.iterations,
            ramp_up_seconds=self.ramp_up_seconds,
            hold_seconds=self.hold_seconds,
            success_threshold=default_threshold if self.success_threshold is None else self.success_threshold,
            max_duration_seconds=self.max_duration_seconds,
            variables=self.variables,
            data_source=self.data_source,
        )

    def data_sources(self) -> Dict[str, StaticRowSource]:
        return {name: StaticRowSource(rows) for name, rows in self.data.items()}


def _problems(error: ValidationError) -> List[str]:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "scenario"
        problems.append(f"{location}: {item.get('msg', 'invalid value')}")
    return problems


def parse_scenario(document: Mapping[str, Any]) -> ScenarioModel:
    try:
        return ScenarioModel.model_validate(document)
    except ValidationError as exc:
        name = document.get("name") if isinstance(document, Mapping) else None
        raise ConfigurationError(f"Invalid scenario definition {name or ''}".rstrip(), _problems(exc)) from exc


def load_document(
    document: Mapping[str, Any],
    default_threshold: float = 100.0,
) -> Tuple[ScenarioSpec, Dict[str, StaticRowSource]]:
    """Build a validated scenario plus the inline data sources it declares.

    ``default_threshold`` applies when the document has no ``success_threshold``.
    """
    model = parse_scenario(document)
    scenario = model.to_spec(default_threshold)
    validate_scenario(scenario)
    return scenario, model.data_sources()


def load_scenario(document: Mapping[str, Any], default_threshold: float = 100.0) -> ScenarioSpec:
    scenario, _ = load_document(document, default_threshold)
    return scenario
