"""httpx-backed executors for HTTP, GraphQL and SOAP requests."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, Mapping, Optional

import httpx

from perfcore.executors.base import ExecutorError, ResolvedRequest, Response
from perfcore.scenario.models import GraphQLRequest, HttpRequest, SoapRequest

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"
_SOAP_FAULT = re.compile(r"<(?:[\w-]+:)?Fault[\s>]")


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


class HttpExecutor:
    """Send :class:`HttpRequest` payloads through a shared ``httpx.Client``.

    Relative endpoints are joined onto the ``baseUrl`` variable, falling back
    to ``base_url``. Non-2xx/3xx statuses, timeouts and connection errors are
    returned as unsuccessful responses, never raised.
    """

    payload_type: type = HttpRequest

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        base_url: Optional[str] = None,
        user_agent: str = "perfcore/0.1",
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(verify=verify, transport=transport, follow_redirects=True)
        self._base_url = base_url
        self._user_agent = user_agent

    def __enter__(self) -> "HttpExecutor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        payload = self._payload(request)
        headers = self._default_headers()
        headers.update(payload.headers)
        content = payload.body or None
        if content and not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = request.variable("contentType", DEFAULT_CONTENT_TYPE) or DEFAULT_CONTENT_TYPE
        return self._send(
            payload.method,
            self._url(payload.endpoint, request),
            headers=headers,
            params=dict(payload.params),
            content=content,
            timeout_ms=timeout_ms,
        )

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------
    def _payload(self, request: ResolvedRequest) -> Any:
        if not isinstance(request.payload, self.payload_type):
            raise ExecutorError(
                f"{type(self).__name__} cannot execute {type(request.payload).__name__} ({request.name})"
            )
        return request.payload

    def _default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self._user_agent, "Accept": "*/*"}

    def _url(self, endpoint: str, request: ResolvedRequest) -> str:
        if endpoint.lower().startswith(("http://", "https://")):
            return endpoint
        base_url = request.variable("baseUrl", self._base_url)
        if not base_url:
            return endpoint
        return base_url.rstrip("/") + "/" + endpoint.lstrip("/")

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        timeout_ms: int,
        params: Optional[Dict[str, str]] = None,
        content: Optional[str] = None,
        json_body: Any = None,
    ) -> Response:
        start = time.perf_counter()
        try:
            raw = self._client.request(
                method,
                url,
                headers=headers,
                params=params or None,
                content=content,
                json=json_body,
                timeout=timeout_ms / 1000.0,
            )
        except httpx.TimeoutException as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("%s %s timed out after %.1fms", method, url, elapsed)
            return Response.failure(f"timeout after {timeout_ms}ms: {exc}", elapsed_ms=elapsed)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("%s %s failed: %s", method, url, exc)
            return Response.failure(f"{type(exc).__name__}: {exc}", elapsed_ms=elapsed)

        elapsed = (time.perf_counter() - start) * 1000
        return self._to_response(raw, elapsed)

    def _to_response(self, raw: httpx.Response, elapsed_ms: float) -> Response:
        success = 200 <= raw.status_code < 400
        return Response(
            status_code=raw.status_code,
            body=raw.text,
            headers=dict(raw.headers),
            elapsed_ms=elapsed_ms,
            success=success,
            error=None if success else f"HTTP {raw.status_code}",
            received_bytes=len(raw.content),
        )


class GraphQLExecutor(HttpExecutor):
    """POST a GraphQL document; a 2xx response carrying ``errors`` is a failure."""

    payload_type = GraphQLRequest

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        payload: GraphQLRequest = self._payload(request)
        try:
            variables = json.loads(payload.variables) if payload.variables.strip() else {}
        except json.JSONDecodeError as exc:
            return Response.failure(f"invalid GraphQL variables: {exc}")

        document: Dict[str, Any] = {"query": payload.query, "variables": variables}
        if payload.operation_name:
            document["operationName"] = payload.operation_name

        headers = self._default_headers()
        headers["Accept"] = "application/json"
        headers.update(payload.headers)
        return self._send(
            "POST",
            self._url(payload.endpoint, request),
            headers=headers,
            json_body=document,
            timeout_ms=timeout_ms,
        )

    def _to_response(self, raw: httpx.Response, elapsed_ms: float) -> Response:
        response = super()._to_response(raw, elapsed_ms)
        if not response.success:
            return response
        try:
            body = raw.json()
        except ValueError:
            return response
        if isinstance(body, dict) and body.get("errors"):
            response.fault = f"GraphQL errors: {json.dumps(body['errors'])[:256]}"
            response.success = False
            response.error = response.fault
        return response


class SoapExecutor(HttpExecutor):
    """POST a SOAP envelope; a ``Fault`` element in the reply is a failure."""

    payload_type = SoapRequest

    def execute(self, request: ResolvedRequest, timeout_ms: int) -> Response:
        payload: SoapRequest = self._payload(request)
        headers = self._default_headers()
        headers["Content-Type"] = "text/xml; charset=utf-8"
        if payload.action:
            headers["SOAPAction"] = payload.action
        headers.update(payload.headers)
        return self._send(
            "POST",
            self._url(payload.endpoint, request),
            headers=headers,
            content=payload.envelope,
            timeout_ms=timeout_ms,
        )

    def _to_response(self, raw: httpx.Response, elapsed_ms: float) -> Response:
        response = super()._to_response(raw, elapsed_ms)
        if _SOAP_FAULT.search(response.body):
            response.fault = "SOAP fault"
            response.success = False
            response.error = response.error or response.fault
        return response
