"""Data-driven iteration rows."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Protocol, Sequence, Tuple, runtime_checkable

logger = logging.getLogger(__name__)

EMPTY_ROW: Mapping[str, str] = MappingProxyType({})


@runtime_checkable
class DataRowSource(Protocol):
    """Supplies ordered rows of string key/value pairs. Read once before scheduling."""

    def rows(self) -> Sequence[Mapping[str, str]]:
        ...


class StaticRowSource:
    """In-memory row source, e.g. rows already parsed by a configuration loader."""

    def __init__(self, rows: Iterable[Mapping[str, str]]) -> None:
        self._rows = [dict(row) for row in rows]

    def rows(self) -> Sequence[Mapping[str, str]]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)


class RowCursor:
    """Immutable snapshot of a source's rows with round-robin access.

    Lookups are keyed by (worker, iteration) and never mutate state, so any
    number of workers may read concurrently. Every worker walks the rows in
    order: row0, row1, ..., wrapping when iterations exceed the row count.
    """

    def __init__(self, name: str, rows: Sequence[Mapping[str, str]]) -> None:
        self.name = name
        self._rows: Tuple[Mapping[str, str], ...] = tuple(
            MappingProxyType({str(key): value for key, value in row.items()}) for row in rows
        )
        if not self._rows:
            logger.warning("Data source %r has no rows; iterations will run without row data", name)

    @classmethod
    def load(cls, name: str, source: DataRowSource) -> "RowCursor":
        rows = source.rows()
        logger.info("Loaded %s row(s) from data source %r", len(rows), name)
        return cls(name, rows)

    def __len__(self) -> int:
        return len(self._rows)

    def row_for(self, worker_id: int, iteration: int) -> Mapping[str, str]:
        if not self._rows:
            return EMPTY_ROW
        return self._rows[iteration % len(self._rows)]
