"""Grocy REST API client.

Thin async wrapper around httpx. Every call carries the configured timeout,
SSL setting, custom headers and (when configured) the API key header.
Failures are raised as :class:`ApiError` with a ``kind`` that lets callers
tell HTTP errors, timeouts, connection resets and unreachable hosts apart.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from .config import API_KEY_HEADER, Settings

logger = logging.getLogger("grocy-mcp")

BODY_METHODS = ("POST", "PUT", "PATCH")


class ApiError(Exception):
    """Upstream failure.

    Attributes:
        kind: One of ``http``, ``timeout``, ``reset``, ``unreachable``, ``request``.
        status: HTTP status code for ``http`` errors.
        response: Decoded response body for ``http`` errors.
    """

    def __init__(self, message: str, kind: str = "request", status: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.response = response


@dataclass
class ApiResponse:
    data: Any
    status: int
    headers: dict[str, str] = field(default_factory=dict)


def normalize_endpoint(endpoint: str) -> str:
    """Map ``x``, ``/x``, ``api/x`` and ``/api/x`` to ``/api/x``."""
    if endpoint.startswith("/api/"):
        return endpoint
    if endpoint.startswith("api/"):
        return f"/{endpoint}"
    if endpoint.startswith("/"):
        return f"/api{endpoint}"
    return f"/api/{endpoint}"


def _decode(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text


class GrocyClient:
    """Client for a single Grocy instance.

    Args:
        settings: Deployment settings (base URL, key, timeout, SSL, headers).
        transport: Optional httpx transport, used by tests to stub the upstream.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.settings.grocy_base_url

    def default_headers(self) -> dict[str, str]:
        """Headers sent on every call, excluding the API key."""
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            **self.settings.custom_headers,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.request_timeout,
            verify=self.settings.ssl_verify,
            transport=self._transport,
        )

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
        query_params: Optional[dict[str, Any]] = None,
    ) -> ApiResponse:
        """Call a Grocy endpoint and return the decoded response.

        Raises:
            ApiError: On HTTP status >= 400, timeout, reset or unreachable host.
        """
        method = method.upper()
        url = normalize_endpoint(endpoint)
        request_headers = {**self.default_headers(), **(headers or {})}
        if self.settings.api_key:
            request_headers[API_KEY_HEADER] = self.settings.api_key

        kwargs: dict[str, Any] = {"headers": request_headers}
        if query_params:
            kwargs["params"] = {
                k: [str(i) for i in v] if isinstance(v, (list, tuple)) else str(v)
                for k, v in query_params.items()
            }
        if method in BODY_METHODS and body is not None:
            kwargs["json"] = body

        logger.info(f"[API] {method} {url}")
        try:
            async with self._client() as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ApiError("Connection timeout: The server took too long to respond", kind="timeout") from e
        except (httpx.RemoteProtocolError, httpx.ReadError) as e:
            raise ApiError("Connection reset: The server unexpectedly closed the connection", kind="reset") from e
        except httpx.ConnectError as e:
            raise ApiError("Network error: Unable to reach the Grocy server", kind="unreachable") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Request failed: {type(e).__name__}: {e}") from e

        data = _decode(resp)
        if resp.status_code >= 400:
            logger.error(f"[API] Error response ({resp.status_code}) from {method} {url}")
            raise ApiError(
                f"API error ({resp.status_code}): {json.dumps(data, default=str)}",
                kind="http",
                status=resp.status_code,
                response=data,
            )

        return ApiResponse(data=data, status=resp.status_code, headers=dict(resp.headers))

    # =========================================================================
    # Convenience methods
    # =========================================================================

    async def get(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="GET", **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="POST", body=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="PUT", body=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="DELETE", **kwargs)
