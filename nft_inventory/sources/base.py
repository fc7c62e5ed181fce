"""
Base Data Source - Shared HTTP plumbing for listing and attribute sources.

All sources MUST:
- Raise RateLimitError for upstream throttling so the retry policy can see it
- Raise FetchError / ListingError for everything else
- Never retry internally (retries live in BatchFetcher)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import aiohttp

from nft_inventory.exceptions import (
    FetchError,
    InventoryError,
    ListingError,
    NormalizationError,
    RateLimitError,
)
from nft_inventory.models import (
    ListingRequest,
    PageResult,
    RawAttributes,
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceStatus,
    TokenId,
)


logger = logging.getLogger(__name__)


class BaseSource(ABC):
    """
    Abstract base class for every upstream the pipeline talks to.

    Provides:
    - aiohttp session ownership (or an injected session)
    - _make_request() with 429 → RateLimitError, >=400 → FetchError
    - Health status transitions and a bounded incident log
    """

    DEFAULT_TIMEOUT = 30.0
    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    DEFAULT_RETRY_AFTER = 60

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=datetime.utcnow(),
        )
        self._incidents: list[SourceIncident] = []
        self._max_incidents = 100

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @abstractmethod
    def metadata(self) -> SourceMetadata:
        """Static description of this source."""
        pass

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "nft-inventory/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make HTTP request with error handling and health tracking."""
        session = await self._get_session()
        self._health.requests_total += 1

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            ) as response:
                self._health.latency_ms = (time.time() - start_time) * 1000
                self._parse_rate_limit_headers(response.headers)

                if response.status == 429:
                    retry_after = (
                        await _retry_after_from_body(response)
                        or _parse_retry_after(response.headers.get("Retry-After"))
                    )
                    raise RateLimitError(
                        message="Rate limit exceeded (429)",
                        source_name=self.name,
                        retry_after_seconds=retry_after or self.DEFAULT_RETRY_AFTER,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise NormalizationError(
                        message="Invalid JSON body",
                        source_name=self.name,
                        original_error=e,
                    ) from e

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error = FetchError(
                message=f"Connection error: {e}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )
            self._on_error(error)
            raise error from e
        except InventoryError as e:
            self._on_error(e)
            raise

        self._on_success()
        return data

    def _parse_rate_limit_headers(self, headers: Mapping[str, str]) -> None:
        """Parse rate limit info from response headers."""
        remaining = headers.get("X-RateLimit-Remaining") or headers.get("X-Rate-Limit-Remaining")
        if remaining:
            try:
                self._health.rate_limit_remaining = int(remaining)
            except ValueError:
                logger.debug(f"[{self.name}] Ignoring rate limit header {remaining!r}")

    # ─────────────────────────────────────────────────────────────
    # Health & Error Tracking
    # ─────────────────────────────────────────────────────────────

    def _on_success(self) -> None:
        self._health.consecutive_failures = 0
        self._health.last_check = datetime.utcnow()

        if self._health.status != SourceStatus.HEALTHY:
            if self._health.status != SourceStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = SourceStatus.HEALTHY

    def _on_error(
        self,
        error: InventoryError,
        token_ids: Optional[list[TokenId]] = None,
    ) -> None:
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = datetime.utcnow()

        if isinstance(error, RateLimitError):
            self._health.status = SourceStatus.RATE_LIMITED
            self._health.rate_limit_remaining = 0
            if error.retry_after_seconds:
                self._health.rate_limit_reset = datetime.utcnow() + timedelta(
                    seconds=error.retry_after_seconds
                )
        elif self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != SourceStatus.UNAVAILABLE:
                self._health.status = SourceStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != SourceStatus.DEGRADED:
                self._health.status = SourceStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED")

        self._log_incident(error, token_ids)

    def _log_incident(
        self,
        error: InventoryError,
        token_ids: Optional[list[TokenId]] = None,
    ) -> None:
        incident = SourceIncident(
            source_name=self.name,
            incident_type=error.__class__.__name__,
            timestamp=datetime.utcnow(),
            error_message=str(error),
            token_ids=token_ids,
            context=error.context or None,
        )
        self._incidents.append(incident)

        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.debug(f"[{self.name}] Incident: {error}")

    def get_health(self) -> SourceHealth:
        """Get current health status."""
        return self._health

    def get_incidents(self, limit: int = 10) -> list[SourceIncident]:
        """Get recent incidents."""
        return self._incidents[-limit:]

    def is_healthy(self) -> bool:
        return self._health.is_healthy()

    def is_usable(self) -> bool:
        return self._health.is_usable()

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"


class ListingSource(BaseSource):
    """Enumerates the identifiers owned by a wallet, one page at a time."""

    @abstractmethod
    async def fetch_page(
        self,
        request: ListingRequest,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> PageResult:
        """
        Fetch one page of identifiers.

        Args:
            request: Owner and collection to list
            page_size: Maximum identifiers per page
            cursor: Opaque continuation token, None for the first page

        Raises:
            ListingError: If the page cannot be produced
            RateLimitError: If the upstream throttled the call
        """
        pass


class AttributesSource(BaseSource):
    """Fetches on-chain attributes for a bounded batch of identifiers."""

    @abstractmethod
    async def fetch_attributes(self, token_ids: list[TokenId]) -> list[RawAttributes]:
        """
        Fetch attributes for every id in `token_ids`.

        Output order is not guaranteed; BatchFetcher restores it.
        """
        pass


def _parse_retry_after(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


async def _retry_after_from_body(response: aiohttp.ClientResponse) -> Optional[int]:
    """Read a `retryAfter` field from a 429 JSON body, if there is one."""
    try:
        body = await response.json(content_type=None)
    except (aiohttp.ClientError, ValueError):
        return None
    if not isinstance(body, dict):
        return None
    return _parse_retry_after(body.get("retryAfter"))


def parse_token_id(value: Any) -> Optional[TokenId]:
    """Parse a token id from an indexer (decimal or 0x-hex string, or int)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            return None
    return None


def parse_offset_cursor(cursor: Optional[str], source_name: str) -> int:
    """Decode a decimal offset cursor; None means the first page."""
    if cursor is None:
        return 0
    try:
        offset = int(cursor)
    except ValueError as e:
        raise ListingError(
            message=f"Invalid offset cursor {cursor!r}",
            source_name=source_name,
            cursor=cursor,
            original_error=e,
        ) from e
    if offset < 0:
        raise ListingError(
            message=f"Negative offset cursor {cursor!r}",
            source_name=source_name,
            cursor=cursor,
        )
    return offset
