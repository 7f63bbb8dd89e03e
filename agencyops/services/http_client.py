"""
Guarded HTTP client for third-party JSON APIs.

Every request goes through the dependency's circuit breaker with a hard
timeout. Errors come back as distinct types so the log line alone tells an
operator what happened:

    CircuitOpenError       breaker refused, nothing was sent
    RemoteTimeoutError     request cancelled after `timeout` seconds
    RemoteTransportError   connection-level failure
    RemoteAPIError         non-2xx response (status code + reason)
    RemoteResponseError    body was not valid JSON

Timeouts, transport errors and 5xx responses count against the breaker.
4xx responses do not: the dependency answered, it just refused the request.
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import httpx

from agencyops.core.circuit_breaker import CircuitBreaker
from agencyops.core.exceptions import (
    RemoteAPIError,
    RemoteResponseError,
    RemoteTimeoutError,
    RemoteTransportError,
)
from agencyops.core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 5.0


def build_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop None values so they never reach the query string."""
    if not params:
        return {}
    return {key: value for key, value in params.items() if value is not None}


def unwrap_items(payload: Any, key: str = "items") -> List[Any]:
    """
    Return the list inside a paginated envelope.

    A bare list passes through; a payload without the envelope yields [].
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        items = payload.get(key)
        if isinstance(items, list):
            return items
    return []


class GuardedClient:
    """
    Base class for remote API clients.

    One instance per remote service; pass a shared breaker from
    CircuitBreakerRegistry so every client for that service trips together.
    """

    service_name = "remote"

    def __init__(
        self,
        base_url: str,
        breaker: CircuitBreaker,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.breaker = breaker
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=dict(headers or {}),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "GuardedClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        json: Any,
        headers: Optional[Mapping[str, str]],
    ) -> httpx.Response:
        """The guarded unit of work: one HTTP exchange under a hard timeout."""
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    params=build_params(params),
                    json=json,
                    headers=headers,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RemoteTimeoutError(self.service_name, self.timeout) from e
        except httpx.TransportError as e:
            raise RemoteTransportError(self.service_name, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 500:
            raise RemoteAPIError(self.service_name, response.status_code, response.reason_phrase)
        return response

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Send a request through the breaker and return the decoded JSON body."""
        try:
            response = await self.breaker.execute(
                lambda: self._send(method, path, params, json, headers)
            )
        except Exception as e:
            logger.error(
                f"{self.service_name} request failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        if response.is_error:
            logger.error(
                f"{self.service_name} request rejected",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise RemoteAPIError(self.service_name, response.status_code, response.reason_phrase)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RemoteResponseError(self.service_name, f"invalid JSON in response to {method} {path}: {e}") from e

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)
