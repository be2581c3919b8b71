"""Up-front validation of scenario definitions."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from perfcore.scenario.models import ScenarioSpec

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a scenario cannot be run. Always raised before any worker starts."""

    def __init__(self, message: str, problems: Optional[Iterable[str]] = None) -> None:
        self.problems: List[str] = list(problems or [])
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        super().__init__(message)


def scenario_problems(scenario: ScenarioSpec) -> List[str]:
    problems: List[str] = []
    if not scenario.name or not scenario.name.strip():
        problems.append("scenario name must not be empty")
    if scenario.threads < 1:
        problems.append(f"threads must be >= 1 (got {scenario.threads})")
    if scenario.iterations < 1:
        problems.append(f"iterations must be >= 1 (got {scenario.iterations})")
    if scenario.ramp_up_seconds < 0:
        problems.append(f"ramp_up_seconds must be >= 0 (got {scenario.ramp_up_seconds})")
    if scenario.hold_seconds < 0:
        problems.append(f"hold_seconds must be >= 0 (got {scenario.hold_seconds})")
    if not 0 <= scenario.success_threshold <= 100:
        problems.append(f"success_threshold must be within [0, 100] (got {scenario.success_threshold})")
    if scenario.max_duration_seconds is not None and scenario.max_duration_seconds <= 0:
        problems.append(f"max_duration_seconds must be > 0 (got {scenario.max_duration_seconds})")
    if not scenario.requests:
        problems.append("scenario must declare at least one request")

    seen = set()
    for index, request in enumerate(scenario.requests):
        label = request.name or f"#{index}"
        if not request.name:
            problems.append(f"request {label} has no name")
        elif request.name in seen:
            problems.append(f"duplicate request name {request.name!r}")
        seen.add(request.name)
        if request.timeout_ms is not None and request.timeout_ms <= 0:
            problems.append(f"request {label} timeout_ms must be > 0")
        for status_label, validator in request.responses.items():
            if not status_label:
                problems.append(f"request {label} has an empty status label")
            if not callable(validator):
                problems.append(f"request {label} validator for {status_label!r} is not callable")
    return problems


def validate_scenario(scenario: ScenarioSpec) -> None:
    problems = scenario_problems(scenario)
    if problems:
        logger.error("Scenario %r rejected: %s", scenario.name, "; ".join(problems))
        raise ConfigurationError(f"Invalid scenario {scenario.name!r}", problems)
