"""HTTP plumbing shared by provider connectors and revocation services."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
import structlog

from saasguard.core.exceptions import APIError, AuthenticationError, ConnectionError
from saasguard.core.utils.url_validation import validate_url

logger = structlog.get_logger(__name__)

TOKEN_REFRESH_BUFFER_SECONDS = 300


@dataclass
class AccessToken:
    """A bearer token and its absolute expiry."""

    value: str
    expires_at: datetime

    @classmethod
    def from_expires_in(cls, value: str, expires_in: int) -> "AccessToken":
        return cls(value=value, expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)))

    def is_valid(self, buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS) -> bool:
        """True while the token has more than ``buffer_seconds`` left."""
        return self.expires_at > datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds)


class TokenCache:
    """Caches one access token and refreshes it before expiry.

    Concurrent callers waiting on an expired token share a single refresh.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[AccessToken]],
        buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS,
    ):
        self._fetch = fetch
        self._buffer_seconds = buffer_seconds
        self._token: Optional[AccessToken] = None
        self._lock: Optional[asyncio.Lock] = None

    async def get(self) -> str:
        if self._token and self._token.is_valid(self._buffer_seconds):
            return self._token.value

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            # Another waiter may have refreshed while we were queued
            if self._token and self._token.is_valid(self._buffer_seconds):
                return self._token.value

            self._token = await self._fetch()
            logger.debug("access_token_refreshed", expires_at=self._token.expires_at.isoformat())
            return self._token.value

    def invalidate(self) -> None:
        self._token = None


def raise_for_status(response: httpx.Response, provider: str, ok_statuses: Iterable[int] = ()) -> None:
    """Map an HTTP status to the saasguard error taxonomy.

    Args:
        response: Provider response
        provider: Provider label for error messages
        ok_statuses: Non-2xx statuses to accept as success

    Raises:
        ConnectionError: 5xx and 429 (retryable)
        AuthenticationError: 401 and 403
        APIError: Any other non-success status
    """
    status = response.status_code
    if response.is_success or status in ok_statuses:
        return

    if status >= 500 or status == 429:
        raise ConnectionError(f"{provider} server error: {status}")

    if status in (401, 403):
        raise AuthenticationError(f"{provider} rejected credentials: {status}")

    raise APIError(
        f"{provider} API error: {status}",
        status_code=status,
        response=response.text[:500],
    )


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    allowed_hosts: Iterable[str] = (),
    allowed_suffixes: Iterable[str] = (),
    ok_statuses: Iterable[int] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Validate the target host, send one request and check its status.

    Args:
        client: Shared async client
        method: HTTP method
        url: Absolute HTTPS URL
        provider: Provider label for errors and logs
        timeout: Per-request timeout in seconds
        allowed_hosts: Exact hostnames permitted
        allowed_suffixes: Domain suffixes permitted
        ok_statuses: Non-2xx statuses treated as success
        **kwargs: Passed to ``httpx.AsyncClient.request``

    Returns:
        The response

    Raises:
        ValidationError: Host not allowed
        ConnectionError: Timeout, transport failure, 5xx or 429
        AuthenticationError: 401 or 403
        APIError: Other error statuses
    """
    validate_url(url, allowed_hosts=allowed_hosts, allowed_suffixes=allowed_suffixes)

    try:
        response = await client.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException:
        raise ConnectionError(f"{provider} request timeout after {timeout}s")
    except httpx.TransportError as e:
        raise ConnectionError(f"{provider} connection failed: {e}")

    raise_for_status(response, provider, ok_statuses)
    return response


def parse_json(response: httpx.Response, provider: str) -> Any:
    """Decode a JSON body, treating an empty body as an empty object."""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise APIError(f"{provider} returned invalid JSON: {e}", status_code=response.status_code)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a provider payload."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
