"""Protocol executors and their registry."""

from __future__ import annotations

from typing import Optional

import httpx

from perfcore.config import Settings

from .base import ExecutorError, ExecutorRegistry, ProtocolExecutor, ResolvedRequest, Response
from .http import GraphQLExecutor, HttpExecutor, SoapExecutor
from .sql import DbApiExecutor


def default_registry(settings: Settings, client: Optional[httpx.Client] = None) -> ExecutorRegistry:
    """Registry with the httpx-backed executors sharing one client.

    ``jdbc`` is not registered: callers register a :class:`DbApiExecutor`
    bound to their driver. A passed ``client`` stays owned by the caller; when
    none is given the registry creates one and closes it in ``close()``.
    """
    owned = []
    shared = client
    if shared is None:
        shared = httpx.Client(verify=settings.verify_tls, follow_redirects=True)
        owned.append(shared)
    options = {"base_url": settings.http_base_url, "user_agent": settings.http_user_agent}
    http = HttpExecutor(shared, **options)
    return ExecutorRegistry(
        {
            "http": http,
            "https": http,
            "graphql": GraphQLExecutor(shared, **options),
            "soap": SoapExecutor(shared, **options),
        },
        owns=owned,
    )


__all__ = [
    "DbApiExecutor",
    "ExecutorError",
    "ExecutorRegistry",
    "GraphQLExecutor",
    "HttpExecutor",
    "ProtocolExecutor",
    "ResolvedRequest",
    "Response",
    "SoapExecutor",
    "default_registry",
]
