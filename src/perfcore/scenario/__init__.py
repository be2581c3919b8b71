"""Scenario definitions and validation."""

from .models import (
    GraphQLRequest,
    HttpRequest,
    JdbcRequest,
    RequestKind,
    RequestSpec,
    RequestSummary,
    ScenarioSpec,
    SoapRequest,
)
from .validation import ConfigurationError, validate_scenario

__all__ = [
    "ConfigurationError",
    "GraphQLRequest",
    "HttpRequest",
    "JdbcRequest",
    "RequestKind",
    "RequestSpec",
    "RequestSummary",
    "ScenarioSpec",
    "SoapRequest",
    "validate_scenario",
]
