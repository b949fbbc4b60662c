"""
HTTP client for the RapidTriage usage endpoints.

Thin wrapper over a shared ``httpx.AsyncClient``:
- Bearer token and base URL applied to every request
- Transport errors and 5xx responses retried with exponential backoff
- 4xx responses are permanent and surface immediately
- Every failure is raised as ``UsageApiError``
"""

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from ..models.tiers import SubscriptionTier
from ..models.usage import UsageEvent

logger = logging.getLogger(__name__)


class UsageApiError(Exception):
    """Backend request failed.

    ``status_code`` is None for transport-level failures (DNS, refused
    connection, timeout) and the HTTP status otherwise.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if a failed request should be retried.

    Notes:
        - Transport failures (no status code) are transient and retryable
        - 5xx server errors are transient and retryable
        - 4xx client errors are permanent and NOT retryable
    """
    if isinstance(exception, UsageApiError):
        return exception.status_code is None or 500 <= exception.status_code < 600
    return False


class UsageApiClient:
    """Async client for ``/usage`` backend routes."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token: str | None = None,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Backend root, e.g. ``https://host/api/v1``
            timeout: Per-request timeout in seconds
            token: Bearer token (None to send no Authorization header)
            max_attempts: Attempts per request for retryable failures
            retry_wait: tenacity wait strategy between attempts
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._token = token
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=5)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is not None:
            return

        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )
        logger.info(f"UsageApiClient initialized: {self.base_url} (timeout={self.timeout}s)")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "UsageApiClient":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Endpoints ───────────────────────────────────────────────────────

    async def get_stats(self, user_id: str) -> dict[str, Any] | None:
        """``GET /usage/{userId}/stats``. Returns None when the user has no record (404)."""
        return await self._request("GET", f"/usage/{_seg(user_id)}/stats", not_found_ok=True)

    async def post_events(self, events: list[UsageEvent]) -> dict[str, Any]:
        """``POST /usage/events/batch``.

        Raises:
            UsageApiError: request failed or the backend reported ``success: false``
        """
        body = {"events": [event.to_wire() for event in events]}
        result = await self._request("POST", "/usage/events/batch", json=body)

        if isinstance(result, dict) and result.get("success") is False:
            raise UsageApiError(
                f"Backend rejected batch of {len(events)} events "
                f"(synced={result.get('syncedCount')}, failed={result.get('failedCount')})"
            )
        return result if isinstance(result, dict) else {}

    async def update_tier(self, user_id: str, tier: SubscriptionTier) -> None:
        """``POST /usage/{userId}/update-tier``."""
        await self._request("POST", f"/usage/{_seg(user_id)}/update-tier", json={"tier": tier.value})

    async def reset_period(self, user_id: str) -> None:
        """``POST /usage/{userId}/reset-period``."""
        await self._request("POST", f"/usage/{_seg(user_id)}/reset-period")

    async def get_analytics(self, user_id: str, start_date: datetime, end_date: datetime) -> dict[str, Any]:
        """``GET /usage/{userId}/analytics?startDate&endDate``."""
        params = {"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}
        result = await self._request("GET", f"/usage/{_seg(user_id)}/analytics", params=params)
        if not isinstance(result, dict):
            raise UsageApiError("Analytics response was not a JSON object")
        return result

    # ── Transport ───────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, not_found_ok: bool = False, **kwargs: Any) -> Any:
        """Send one request with retries; return the decoded JSON body (None if empty)."""
        await self.initialize()

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                return await self._send(method, path, not_found_ok, **kwargs)

    async def _send(self, method: str, path: str, not_found_ok: bool, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UsageApiError(f"{method} {path} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise UsageApiError(f"{method} {path} failed: {type(e).__name__}") from e

        if response.status_code == 404 and not_found_ok:
            return None

        if response.is_error:
            logger.debug(f"{method} {path} -> HTTP {response.status_code}")
            raise UsageApiError(f"{method} {path} returned HTTP {response.status_code}", response.status_code)

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise UsageApiError(f"{method} {path} returned a non-JSON body", response.status_code) from e


def _seg(value: str) -> str:
    """Escape a value for use as a single path segment."""
    return quote(value, safe="")
