"""HTTP adapter for datastore API operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "PATCH", "PUT", "DELETE"})


class HTTPAPIClient:
    """
    HTTP client adapter for API calls.

    Implements IAPIClient protocol. Idempotent methods are retried on 5xx
    responses and transport errors with a linear back-off; POST only when
    the connection could not be opened.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        headers: Optional[Dict[str, str]] = None,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._headers = headers or {}
        self._max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, json: Dict) -> Any:
        return await self._request("POST", endpoint, json=json)

    async def patch(self, endpoint: str, json: Dict) -> Any:
        return await self._request("PATCH", endpoint, json=json)

    async def get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        return await self._request("GET", endpoint, params=params)

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        # A POST that reached the server may have been applied, so only
        # failures to connect are safe to repeat for it.
        repeatable = method in IDEMPOTENT_METHODS
        last_exception: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                response = await self._client.request(method, endpoint, **kwargs)

                if response.status_code >= 500 and repeatable and attempt < self._max_retries - 1:
                    logger.debug(f"{method} {endpoint} returned {response.status_code}, retrying")
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except Exception:
                        error_detail = response.text
                    raise RuntimeError(
                        f"API error {response.status_code} on {method} {endpoint}: {error_detail}"
                    )

                return response
            except httpx.RequestError as exc:
                last_exception = exc
                unsent = isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
                if (repeatable or unsent) and attempt < self._max_retries - 1:
                    logger.debug(f"{method} {endpoint} failed with {type(exc).__name__}, retrying")
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise

        if last_exception:
            raise last_exception
        raise RuntimeError(f"Failed to {method} {endpoint} after {self._max_retries} attempts")
