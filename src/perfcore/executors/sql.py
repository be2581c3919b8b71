"""DB-API 2.0 executor for :class:`JdbcRequest` payloads."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, List, Optional, Tuple, Type

from perfcore.executors.base import ExecutorError, ResolvedRequest, Response
from perfcore.scenario.models import JdbcRequest

logger = logging.getLogger(__name__)


class DbApiExecutor:
    """Run SQL statements over connections produced by ``connect``.

    Each worker thread lazily opens its own connection, since most drivers do
    not allow sharing one across threads. Driver errors listed in
    ``error_types`` become unsuccessful responses; successful statements get
    status 200 and a JSON body with the fetched rows.

    DB-API has no portable statement timeout. ``apply_timeout(connection,
    timeout_ms)`` is called before every statement so a driver-specific bound
    can be installed (``SET statement_timeout`` on Postgres, a progress
    handler on sqlite3). Without it the statement runs to completion and is
    only reported as failed afterwards when it took longer than ``timeout_ms``.
    """

    def __init__(
        self,
        connect: Callable[[], Any],
        *,
        error_types: Tuple[Type[BaseException], ...],
        max_rows: int = 1000,
        apply_timeout: Optional[Callable[[Any, int], None]] = None,
    ) -> None:
        self._connect = connect
        self._apply_timeout = apply_timeout
        self._error_types = error_types
        self._max_rows = max_rows
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: List[Any] = []

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        payload = request.payload
        if not isinstance(payload, JdbcRequest):
            raise ExecutorError(f"DbApiExecutor cannot execute {type(payload).__name__} ({request.name})")

        start = time.perf_counter()
        try:
            connection = self._connection()
            if self._apply_timeout is not None and timeout_ms:
                self._apply_timeout(connection, timeout_ms)
            cursor = connection.cursor()
            try:
                cursor.execute(payload.statement, dict(payload.params))
                rows: list = []
                if payload.fetch and cursor.description is not None:
                    columns = [column[0] for column in cursor.description]
                    rows = [dict(zip(columns, row)) for row in cursor.fetchmany(self._max_rows)]
                affected = cursor.rowcount
            finally:
                cursor.close()
            connection.commit()
        except self._error_types as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("Statement for %s failed: %s", request.name, exc)
            self._rollback()
            return Response.failure(f"{type(exc).__name__}: {exc}", elapsed_ms=elapsed)

        elapsed = (time.perf_counter() - start) * 1000
        if timeout_ms and elapsed > timeout_ms:
            return Response.failure(f"statement exceeded {timeout_ms}ms ({elapsed:.1f}ms)", elapsed_ms=elapsed)

        body = json.dumps({"rows": rows, "rowcount": affected}, default=str)
        return Response(
            status_code=200,
            body=body,
            elapsed_ms=elapsed,
            success=True,
            received_bytes=len(body.encode("utf-8")),
        )

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.close()
            except self._error_types:
                logger.debug("Error while closing DB-API connection", exc_info=True)

    def _connection(self) -> Any:
        connection = getattr(self._local, "connection", None)
        if connection is None:
            connection = self._connect()
            self._local.connection = connection
            with self._lock:
                self._connections.append(connection)
        return connection

    def _rollback(self) -> None:
        connection = getattr(self._local, "connection", None)
        if connection is None:
            return
        try:
            connection.rollback()
        except self._error_types:
            logger.debug("Rollback failed", exc_info=True)
