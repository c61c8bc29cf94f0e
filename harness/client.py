"""
HTTP client for one platform service.

`send()` returns an `Ok`/`Err` result and never raises for an HTTP status or a
dead socket. The verb helpers (`get`, `post`, ...) unwrap that result: they
return an `ApiResponse` on 2xx, raise `ApiError` (with `.response.status` and
`.response.data`) when the service answered otherwise, and raise
`TransportError` (whose `.response` is None) when it did not answer at all.
"""
import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from .responses import ApiResponse, ApiResult, decode_response, transport_failure
from .settings import HarnessSettings, RetryPolicy
from .settings import settings as default_settings

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = ("GET", "HEAD", "OPTIONS")
NO_RETRY = RetryPolicy(attempts=0, delay_ms=0)


class ApiClient:
    """Talks to one service base URL, optionally as one identity."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        service: Optional[str] = None,
        timeout: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.service = service or self.base_url
        self.timeout = timeout if timeout is not None else default_settings.timeouts.api_seconds
        self.retry = retry or default_settings.retry
        self._transport = transport
        self._headers = dict(headers or {})

    def __repr__(self) -> str:
        return f"ApiClient(service={self.service!r}, base_url={self.base_url!r}, authenticated={self.token is not None})"

    def set_auth_token(self, token: str) -> None:
        self.token = token

    def clear_auth_token(self) -> None:
        self.token = None

    def with_token(self, token: Optional[str]) -> "ApiClient":
        """Same service and transport, different identity."""
        return ApiClient(
            self.base_url,
            token,
            service=self.service,
            timeout=self.timeout,
            retry=self.retry,
            transport=self._transport,
            headers=self._headers,
        )

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_headers(self, extra: Optional[dict]) -> dict:
        headers = {"Accept": "application/json", **self._headers}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _is_retriable(exc: httpx.TransportError, method: str) -> bool:
        if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
            return True
        return isinstance(exc, httpx.ReadTimeout) and method in IDEMPOTENT_METHODS

    async def send(
        self,
        method: str,
        path: str,
        json: Any = None,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> ApiResult:
        """Perform one request and decode it into `Ok` or `Err`."""
        method = method.upper()
        url = self._url(path)
        request_headers = self._request_headers(headers)
        policy = retry or self.retry
        total_attempts = policy.attempts + 1

        for attempt in range(1, total_attempts + 1):
            start = time.perf_counter()
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.request(
                        method, url, json=json, params=params, headers=request_headers
                    )
            except httpx.TransportError as e:
                if attempt < total_attempts and self._is_retriable(e, method):
                    logger.warning(
                        "%s %s failed (%s), retrying in %.1fs",
                        method, url, e.__class__.__name__, policy.delay_seconds,
                        extra={"service": self.service, "method": method, "path": path, "attempt": attempt},
                    )
                    await asyncio.sleep(policy.delay_seconds)
                    continue
                logger.warning(
                    "%s %s unreachable after %d attempt(s): %s",
                    method, url, attempt, e.__class__.__name__,
                    extra={"service": self.service, "method": method, "path": path, "attempt": attempt},
                )
                return transport_failure(e, method, url, service=self.service)

            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "%s %s -> %d",
                method, url, response.status_code,
                extra={
                    "service": self.service,
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            return decode_response(response, service=self.service)

        # range() always runs at least once
        raise AssertionError("unreachable")

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> ApiResponse:
        result = await self.send(method, path, body, params=params, headers=headers)
        return result.unwrap()

    async def get(self, path: str, *, params: Optional[dict] = None, headers: Optional[dict] = None) -> ApiResponse:
        return await self.request("GET", path, params=params, headers=headers)

    async def post(self, path: str, body: Any = None, *, params: Optional[dict] = None,
                   headers: Optional[dict] = None) -> ApiResponse:
        return await self.request("POST", path, body, params=params, headers=headers)

    async def put(self, path: str, body: Any = None, *, params: Optional[dict] = None,
                  headers: Optional[dict] = None) -> ApiResponse:
        return await self.request("PUT", path, body, params=params, headers=headers)

    async def patch(self, path: str, body: Any = None, *, params: Optional[dict] = None,
                    headers: Optional[dict] = None) -> ApiResponse:
        return await self.request("PATCH", path, body, params=params, headers=headers)

    async def delete(self, path: str, body: Any = None, *, params: Optional[dict] = None,
                     headers: Optional[dict] = None) -> ApiResponse:
        return await self.request("DELETE", path, body, params=params, headers=headers)

    async def health_check(self, path: str = "/health") -> bool:
        """True when the service answers its liveness endpoint with 2xx. Never raises."""
        try:
            result = await self.send("GET", path, retry=NO_RETRY)
        except Exception as e:
            logger.warning("Health check for %s failed: %s", self.service, e, extra={"service": self.service})
            return False
        return result.is_ok


def create_api_client(
    service: str,
    token: Optional[str] = None,
    *,
    settings: Optional[HarnessSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ApiClient:
    """Client for a named service (`auth`, `user`, ...) resolved from settings."""
    current = settings or default_settings
    return ApiClient(
        current.service_url(service),
        token,
        service=service,
        timeout=current.timeouts.api_seconds,
        retry=current.retry,
        transport=transport,
    )
