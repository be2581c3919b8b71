"""Per-(worker, iteration) variable snapshots."""

from __future__ import annotations

import random
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from perfcore.variables.resolver import DynamicScope, VariableResolver


@dataclass(frozen=True)
class ExecutionContext:
    """Resolved variables for one (worker, iteration) pair.

    ``variables`` is the merged static view (global < scenario < request <
    data row). ``dynamic`` sits above it and is evaluated on every lookup.
    """

    worker_id: int
    iteration: int
    variables: Mapping[str, str]
    dynamic: DynamicScope

    @property
    def scopes(self) -> Tuple[Mapping, ...]:
        return (self.dynamic, self.variables)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for scope in self.scopes:
            if key in scope:
                return str(scope[key])
        return default


def build_context(
    worker_id: int,
    iteration: int,
    *,
    global_vars: Mapping[str, str],
    scenario_vars: Mapping[str, str],
    request_vars: Mapping[str, str],
    row: Mapping[str, str],
    resolver: VariableResolver,
    rng: Optional[random.Random] = None,
) -> ExecutionContext:
    """Merge the scopes in increasing precedence and snapshot the result.

    Declared variable values may reference other variables or dynamic
    functions; they are resolved once here against the raw chain. Data row
    values are taken literally.
    """
    dynamic = DynamicScope(iteration, worker_id, rng=rng)
    raw_chain = (dynamic, row, request_vars, scenario_vars, global_vars)

    merged: dict[str, str] = {}
    for scope in (global_vars, scenario_vars, request_vars):
        for key, value in scope.items():
            merged[key] = resolver.resolve(str(value), raw_chain)
    for key, value in row.items():
        merged[key] = "" if value is None else str(value)

    return ExecutionContext(
        worker_id=worker_id,
        iteration=iteration,
        variables=MappingProxyType(merged),
        dynamic=dynamic,
    )
