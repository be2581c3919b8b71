"""Data row sources for data-driven iterations."""

from .rows import EMPTY_ROW, DataRowSource, RowCursor, StaticRowSource

__all__ = [
    "EMPTY_ROW",
    "DataRowSource",
    "RowCursor",
    "StaticRowSource",
]
