"""Single-pass ``${...}`` placeholder substitution over layered variable scopes.

Placeholders take two forms:

* ``${name}``: looked up in the scopes, highest precedence first.
* ``${function(args)}``: a dynamic function such as ``${randomInt(1,10)}``.

Substituted values are never re-scanned, so a value that itself contains
``${...}`` (or ``$``/``\\``) is emitted verbatim.
"""

from __future__ import annotations

import dataclasses
import logging
import random
import re
import string
import time
import uuid
from collections.abc import Mapping
from threading import Lock
from typing import Any, Callable, Iterator, Optional, Sequence, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")
_FUNCTION_CALL = re.compile(r"^([A-Za-z_]\w*)\((.*)\)$", re.DOTALL)

RANDOM_INT_DEFAULT_RANGE = (1, 1000)
RANDOM_STRING_DEFAULT_LENGTH = 10
_RANDOM_ALPHABET = string.ascii_letters + string.digits

T = TypeVar("T")


def split_expression(expression: str) -> Tuple[str, Optional[str]]:
    """Split ``randomInt(1, 5)`` into ``("randomInt", "1, 5")``; bare names get ``None`` args."""
    match = _FUNCTION_CALL.match(expression)
    if match is None:
        return expression, None
    return match.group(1), match.group(2)


class DynamicScope(Mapping):
    """Highest-precedence scope whose values are computed on every lookup.

    Nothing is cached: two lookups of ``uuid`` in the same iteration return
    different values.
    """

    BARE_NAMES = ("iteration", "threadId", "threadNum", "timestamp", "uuid", "randomInt", "randomString")
    FUNCTIONS = ("randomInt", "randomString")

    def __init__(
        self,
        iteration: int,
        worker_id: int,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.iteration = iteration
        self.worker_id = worker_id
        self._rng = rng or random.Random()
        self._clock = clock

    def __contains__(self, expression: object) -> bool:
        if not isinstance(expression, str):
            return False
        name, args = split_expression(expression)
        if args is None:
            return name in self.BARE_NAMES
        return name in self.FUNCTIONS

    def __getitem__(self, expression: str) -> str:
        if expression not in self:
            raise KeyError(expression)
        name, args = split_expression(expression)
        return self._evaluate(name, args)

    def __iter__(self) -> Iterator[str]:
        return iter(self.BARE_NAMES)

    def __len__(self) -> int:
        return len(self.BARE_NAMES)

    def _evaluate(self, name: str, args: Optional[str]) -> str:
        if name == "iteration":
            return str(self.iteration)
        if name in ("threadId", "threadNum"):
            return str(self.worker_id)
        if name == "timestamp":
            return str(int(self._clock() * 1000))
        if name == "uuid":
            return str(uuid.uuid4())
        if name == "randomInt":
            low, high = self._int_range(args)
            return str(self._rng.randint(low, high))
        # randomString
        length = self._string_length(args)
        return "".join(self._rng.choice(_RANDOM_ALPHABET) for _ in range(length))

    @staticmethod
    def _int_range(args: Optional[str]) -> Tuple[int, int]:
        if not args or not args.strip():
            return RANDOM_INT_DEFAULT_RANGE
        parts = [part.strip() for part in args.split(",")]
        if len(parts) != 2:
            logger.debug("randomInt expects two bounds, got %r; using defaults", args)
            return RANDOM_INT_DEFAULT_RANGE
        try:
            low, high = int(parts[0]), int(parts[1])
        except ValueError:
            logger.debug("Non-integer randomInt bounds %r; using defaults", args)
            return RANDOM_INT_DEFAULT_RANGE
        if low > high:
            low, high = high, low
        return low, high

    @staticmethod
    def _string_length(args: Optional[str]) -> int:
        if not args or not args.strip():
            return RANDOM_STRING_DEFAULT_LENGTH
        try:
            return max(0, int(args.strip()))
        except ValueError:
            return RANDOM_STRING_DEFAULT_LENGTH


class VariableResolver:
    """Resolve templates against an ordered chain of scopes (highest precedence first).

    Unresolved placeholders become an empty string. The first miss for each key
    is logged at WARNING, later ones at DEBUG.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._reported: Set[str] = set()

    def resolve(self, template: str, scopes: Sequence[Mapping]) -> str:
        if not template or "${" not in template:
            return template

        def _substitute(match: "re.Match[str]") -> str:
            expression = match.group(1).strip()
            for scope in scopes:
                if expression in scope:
                    return str(scope[expression])
            self._report_gap(expression)
            return ""

        return PLACEHOLDER_PATTERN.sub(_substitute, template)

    def resolve_mapping(self, mapping: Mapping, scopes: Sequence[Mapping]) -> dict:
        return {key: self.resolve(value, scopes) for key, value in mapping.items()}

    def resolve_fields(self, target: T, scopes: Sequence[Mapping]) -> T:
        """Return a copy of a request dataclass with every template field resolved."""
        changes: dict[str, Any] = {}
        for spec_field in dataclasses.fields(target):  # type: ignore[arg-type]
            value = getattr(target, spec_field.name)
            if isinstance(value, str):
                changes[spec_field.name] = self.resolve(value, scopes)
            elif isinstance(value, Mapping):
                changes[spec_field.name] = self.resolve_mapping(value, scopes)
        return dataclasses.replace(target, **changes)  # type: ignore[type-var]

    def unresolved_keys(self) -> Set[str]:
        with self._lock:
            return set(self._reported)

    def _report_gap(self, expression: str) -> None:
        with self._lock:
            first = expression not in self._reported
            self._reported.add(expression)
        if first:
            logger.warning("Unresolved variable ${%s}; substituting empty string", expression)
        else:
            logger.debug("Unresolved variable ${%s}", expression)


def resolve(template: str, scopes: Sequence[Mapping]) -> str:
    """Convenience wrapper around :meth:`VariableResolver.resolve`."""
    return VariableResolver().resolve(template, scopes)
