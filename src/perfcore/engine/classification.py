"""Map executor responses to status labels and success flags."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Mapping, Optional, Protocol, Sequence, runtime_checkable

from perfcore.executors.base import Response
from perfcore.scenario.models import RequestSpec

LABEL_PASSED = "Passed"
LABEL_FAILED = "Failed"
LABEL_ERROR = "Error"

_MISSING = object()


@runtime_checkable
class Validator(Protocol):
    """Accepts or rejects a response. ``success`` is the flag assigned when it accepts."""

    success: bool

    def __call__(self, response: Response) -> bool:
        ...


@dataclass(frozen=True)
class Classification:
    label: str
    success: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class StatusValidator:
    codes: FrozenSet[int]
    success: bool = True

    def __call__(self, response: Response) -> bool:
        return response.status_code in self.codes


@dataclass(frozen=True)
class StatusRangeValidator:
    """Accept ``low <= status < high``."""

    low: int
    high: int
    success: bool = True

    def __call__(self, response: Response) -> bool:
        return response.status_code is not None and self.low <= response.status_code < self.high


@dataclass(frozen=True)
class BodyContainsValidator:
    text: str
    success: bool = True

    def __call__(self, response: Response) -> bool:
        return self.text in (response.body or "")


@dataclass(frozen=True)
class BodyRegexValidator:
    pattern: str
    success: bool = True
    _compiled: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def __call__(self, response: Response) -> bool:
        return self._compiled.search(response.body or "") is not None


@dataclass(frozen=True)
class JsonFieldValidator:
    """Accept when the JSON body has ``path`` (dotted, list indices allowed).

    With ``expected`` set, the value must also compare equal.
    """

    path: str
    expected: Any = _MISSING
    success: bool = True

    def __call__(self, response: Response) -> bool:
        try:
            document = json.loads(response.body or "")
        except ValueError:
            return False
        value = _lookup(document, self.path)
        if value is _MISSING:
            return False
        return self.expected is _MISSING or value == self.expected


@dataclass(frozen=True)
class PredicateValidator:
    predicate: Callable[[Response], bool]
    success: bool = True

    def __call__(self, response: Response) -> bool:
        return bool(self.predicate(response))


def _lookup(document: Any, path: str) -> Any:
    current = document
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def default_success(response: Response) -> bool:
    """Status in [200, 400) and no protocol fault. ``Response.success`` is not consulted."""
    if response.fault is not None:
        return False
    return response.status_code is not None and 200 <= response.status_code < 400


def classify(request: RequestSpec, response: Response) -> Classification:
    """Assign a status label to ``response``.

    Validators run in declaration order and the first one that accepts wins.
    Without validators, success means a 2xx/3xx status with no protocol
    fault (GraphQL ``errors``, SOAP ``Fault``). Responses that never
    arrived and validation misses are labelled ``Failed``.
    """
    if response.transport_failed:
        return Classification(LABEL_FAILED, False, response.error)

    if not request.responses:
        if default_success(response):
            return Classification(LABEL_PASSED, True)
        reason = response.fault or f"unexpected status {response.status_code}"
        return Classification(LABEL_FAILED, False, reason)

    for label, validator in request.responses.items():
        if validator(response):
            success = bool(getattr(validator, "success", True))
            return Classification(label, success, None if success else response.error or f"matched {label}")

    labels = ", ".join(request.responses)
    return Classification(LABEL_FAILED, False, f"no validator matched (tried {labels})")


def build_validator(definition: Mapping[str, Any]) -> Validator:
    """Build a validator from a plain mapping, as produced by a configuration loader.

    Supported keys: ``status`` (int or list), ``status_range`` ([low, high)),
    ``contains``, ``regex``, ``json_path`` (+ optional ``equals``). ``success``
    defaults to true.
    """
    success = bool(definition.get("success", True))
    if "status" in definition:
        raw = definition["status"]
        codes: Sequence[Any] = raw if isinstance(raw, (list, tuple, set, frozenset)) else [raw]
        return StatusValidator(frozenset(int(code) for code in codes), success=success)
    if "status_range" in definition:
        low, high = definition["status_range"]
        return StatusRangeValidator(int(low), int(high), success=success)
    if "contains" in definition:
        return BodyContainsValidator(str(definition["contains"]), success=success)
    if "regex" in definition:
        return BodyRegexValidator(str(definition["regex"]), success=success)
    if "json_path" in definition:
        expected = definition.get("equals", _MISSING)
        return JsonFieldValidator(str(definition["json_path"]), expected, success=success)
    raise ValueError(f"Unsupported validator definition: {sorted(definition)}")
