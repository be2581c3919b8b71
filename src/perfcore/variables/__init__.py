"""Template variable resolution."""

from .context import ExecutionContext, build_context
from .resolver import DynamicScope, VariableResolver, resolve

__all__ = [
    "DynamicScope",
    "ExecutionContext",
    "VariableResolver",
    "build_context",
    "resolve",
]
