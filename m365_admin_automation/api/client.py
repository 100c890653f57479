"""
Async admin API client with pagination, throttling, retry, and request guarding.
One instance talks to one API host (Graph, Azure Resource Manager, Power Platform).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import httpx

from ..config import (
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    MAX_PAGES_PER_ENDPOINT,
    MAX_CONCURRENT_REQUESTS,
)
from ..safety.guardian import RequestGuard

logger = logging.getLogger("m365_admin_automation.api")

RETRYABLE_STATUS = (429, 503, 504)
NEXT_LINK_KEYS = ("@odata.nextLink", "nextLink")


class AdminApiError(Exception):
    """Raised when an admin API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.message = message
        self.url = url
        super().__init__(f"API Error {status_code} for {url}: {message}")


class AdminApiClient:
    """
    Async client for a Microsoft admin REST API.
    Features:
      - Guard-validated requests (allow-listed writes only)
      - Pagination over @odata.nextLink / nextLink
      - Exponential backoff on 429/503/504, timeouts and connection errors
      - Concurrent request semaphore
      - Location header surfaced for 202 Accepted operations
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        guard: RequestGuard,
        extra_headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_concurrency: int = MAX_CONCURRENT_REQUESTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.guard = guard
        self.extra_headers = extra_headers or {}
        self._transport = transport
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_concurrency = max_concurrency
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def open(self):
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=self._max_concurrency * 2,
                max_keepalive_connections=self._max_concurrency,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                **self.extra_headers,
            },
            transport=self._transport,
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from a relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint)
        self.guard.validate_request("GET", url)

        async with self._semaphore:
            return await self._execute_with_retry("GET", url, params=params)

    async def post(
        self,
        endpoint: str,
        json_body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """
        Execute a POST request with retry/throttle handling.
        For 202 Accepted responses the operation URL is returned under "_location".
        """
        url = self._build_url(endpoint)
        self.guard.validate_request("POST", url)

        async with self._semaphore:
            return await self._execute_with_retry(
                "POST", url, params=params, json_body=json_body
            )

    async def get_all_pages(self, endpoint: str, params: Optional[dict] = None) -> list[dict]:
        """Fetch all pages of a paginated endpoint into a list."""
        items = []
        async for item in self.get_all_pages_stream(endpoint, params):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> AsyncGenerator[dict, None]:
        """Stream all pages of a paginated endpoint, one item at a time."""
        url: Optional[str] = self._build_url(endpoint)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guard.validate_request("GET", url)

            async with self._semaphore:
                data = await self._execute_with_retry("GET", url, params=params)

            for item in data.get("value", []):
                yield item

            url = next_link(data)
            params = None  # nextLink carries the query string
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = INITIAL_BACKOFF_SECONDS

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
                self._request_count += 1

                if response.status_code in (200, 201):
                    if not response.content or not response.content.strip():
                        return {}
                    try:
                        return response.json()
                    except ValueError:
                        raise AdminApiError(
                            response.status_code, "Response body is not JSON", url
                        )

                if response.status_code in (202, 204):
                    data = _json_or_empty(response)
                    location = response.headers.get("Location")
                    if location:
                        data["_location"] = location
                    return data

                if response.status_code in RETRYABLE_STATUS and attempt < MAX_RETRIES:
                    self._throttle_count += 1
                    wait_time = max(_retry_after(response, backoff), backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    await self._sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                raise AdminApiError(response.status_code, _error_message(response), url)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{MAX_RETRIES}"
                )
                if attempt == MAX_RETRIES:
                    raise
                await self._sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise AdminApiError(0, "Maximum retries exceeded", url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("AdminApiClient not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        raise ValueError(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def next_link(data: dict) -> Optional[str]:
    """Return the continuation link of a paged response, if any."""
    for key in NEXT_LINK_KEYS:
        if data.get(key):
            return data[key]
    properties = data.get("properties")
    if isinstance(properties, dict) and properties.get("nextLink"):
        return properties["nextLink"]
    return None


def _json_or_empty(response: httpx.Response) -> dict:
    if not response.content or not response.content.strip():
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"value": data}


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def _error_message(response: httpx.Response) -> str:
    """Extract the error message from a Graph/ARM style error body."""
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or "Unknown error"
        if isinstance(error, str):
            return body.get("error_description", error)
    return response.text[:200]
