"""
Tiered Cache - Memory → cache endpoint → pipeline → last good snapshot.

Tiers, in order:
1. Memory: the last complete collection while younger than the TTL
2. Cache API: a pre-built collection served by the cache endpoint,
   skipped while its rate-limit window is exhausted
3. Pipeline: a full AggregationPipeline run
4. Legacy: the last complete collection regardless of age, marked stale

Nothing at all available raises CacheError.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from nft_inventory.clock import ClockProtocol, SystemClock
from nft_inventory.exceptions import (
    CacheError,
    FetchError,
    InventoryError,
    NormalizationError,
    RateLimitError,
)
from nft_inventory.models import (
    CacheEntry,
    CacheResult,
    EnrichedRecord,
    PipelineState,
    RateLimitStatus,
    SourceMetadata,
)
from nft_inventory.pipeline import AggregationPipeline
from nft_inventory.sources.base import BaseSource


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_RATE_LIMIT = 1
DEFAULT_RATE_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class CacheApiResponse:
    """Parsed body of the cache endpoint."""
    records: tuple[EnrichedRecord, ...]
    total_count: int
    rate_limit: Optional[RateLimitStatus] = None
    cache_status: Optional[Any] = None
    from_cache: bool = True


class CacheApiClient(BaseSource):
    """
    Client for the cache endpoint.

    Accepts both `{success, nfts, totalHeld}` and
    `{success, data: {nfts, totalHeld, cacheStatus, fromCache}, rateLimit}`.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.url = url

    @property
    def name(self) -> str:
        return "cache_api"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Inventory cache endpoint",
            kind="cache",
            base_url=self.url,
            tags=["cache", "rate-limited"],
        )

    async def fetch(self) -> CacheApiResponse:
        """
        GET the cache endpoint.

        Raises:
            RateLimitError: On 429, with retry_after_seconds from the body,
                the Retry-After header, or 60
            FetchError: On transport errors, non-2xx or success=false
            NormalizationError: If the body has no nfts list
        """
        data = await self._make_request("GET", self.url)
        return self.parse(data)

    def parse(self, data: Any) -> CacheApiResponse:
        if not isinstance(data, dict):
            raise NormalizationError(
                message="Cache response is not an object",
                source_name=self.name,
                raw_data=data,
            )
        if data.get("success") is False:
            raise FetchError(
                message=f"Cache endpoint reported failure: {data.get('error', 'unknown')}",
                source_name=self.name,
                request_url=self.url,
            )

        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        nfts = payload.get("nfts")
        if not isinstance(nfts, list):
            raise NormalizationError(
                message="Cache response missing nfts",
                source_name=self.name,
                raw_data=data,
                field_name="nfts",
            )

        records = []
        for item in nfts:
            try:
                records.append(EnrichedRecord.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.debug(f"[{self.name}] Skipping malformed record: {e}")

        total = payload.get("totalHeld")
        rate = data.get("rateLimit")
        rate_limit = None
        if isinstance(rate, dict):
            rate_limit = RateLimitStatus(
                limit=int(rate.get("limit", DEFAULT_RATE_LIMIT)),
                remaining=int(rate.get("remaining", 0)),
                reset_in_seconds=float(rate.get("resetIn", 0)),
            )

        return CacheApiResponse(
            records=tuple(records),
            total_count=int(total) if total is not None else len(records),
            rate_limit=rate_limit,
            cache_status=payload.get("cacheStatus"),
            from_cache=bool(payload.get("fromCache", True)),
        )


class TieredCache:
    """
    Serves the collection from the cheapest tier that has it.

    Within the TTL get() returns the identical CacheResult object. The
    rate-limit window decays with the injected clock, independent of
    fetch activity.
    """

    def __init__(
        self,
        pipeline: AggregationPipeline,
        api_client: Optional[CacheApiClient] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[ClockProtocol] = None,
        rate_limit: int = DEFAULT_RATE_LIMIT,
        rate_window_seconds: float = DEFAULT_RATE_WINDOW_SECONDS,
    ) -> None:
        self.pipeline = pipeline
        self.api_client = api_client
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self.rate_window_seconds = rate_window_seconds

        self._entry: Optional[CacheEntry] = None
        self._result: Optional[CacheResult] = None
        self._last_good: Optional[CacheEntry] = None
        self._force_refresh = False
        self._lock = asyncio.Lock()

        self._limit = rate_limit
        self._remaining = rate_limit
        self._reset_at: Optional[float] = None

        self._hits = 0
        self._misses = 0
        self._api_loads = 0
        self._pipeline_loads = 0
        self._stale_served = 0

    # ─────────────────────────────────────────────────────────────
    # Public surface
    # ─────────────────────────────────────────────────────────────

    @property
    def entry(self) -> Optional[CacheEntry]:
        """Memory-tier entry, valid or not."""
        return self._entry

    async def get(self) -> CacheResult:
        """Return the collection from the first tier that can produce it."""
        cached = self._memory_hit()
        if cached is not None:
            return cached

        async with self._lock:
            # Another caller may have loaded while we waited.
            cached = self._memory_hit()
            if cached is not None:
                return cached

            self._force_refresh = False
            self._misses += 1
            return await self._load()

    async def refresh(self) -> CacheResult:
        """Bypass the memory tier for the next load only."""
        self._force_refresh = True
        return await self.get()

    def invalidate(self) -> None:
        """Drop the memory tier; the legacy snapshot survives."""
        self._entry = None
        self._result = None

    def rate_limit_status(self) -> RateLimitStatus:
        """Current cache-endpoint budget, decayed to the clock's now."""
        now = self.clock.timestamp()
        if self._reset_at is not None and now >= self._reset_at:
            self._remaining = self._limit
            self._reset_at = None
        reset_in = max(0.0, self._reset_at - now) if self._reset_at is not None else 0.0
        return RateLimitStatus(
            limit=self._limit,
            remaining=self._remaining,
            reset_in_seconds=reset_in,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "api_loads": self._api_loads,
            "pipeline_loads": self._pipeline_loads,
            "stale_served": self._stale_served,
            "entry_age_seconds": (
                self._entry.age_seconds(self.clock.timestamp()) if self._entry else None
            ),
            "rate_limit": self.rate_limit_status().to_dict(),
        }

    # ─────────────────────────────────────────────────────────────
    # Tiers
    # ─────────────────────────────────────────────────────────────

    def _memory_hit(self) -> Optional[CacheResult]:
        if self._force_refresh or self._entry is None or self._result is None:
            return None
        if not self._entry.is_valid(self.clock.timestamp(), self.ttl_seconds):
            return None
        self._hits += 1
        return self._result

    async def _load(self) -> CacheResult:
        if self.api_client is not None:
            status = self.rate_limit_status()
            if status.is_limited:
                logger.info(
                    f"[cache] Skipping cache API, rate limited for "
                    f"{status.reset_in_seconds:.0f}s"
                )
            else:
                result = await self._load_from_api()
                if result is not None:
                    return result

        result = await self._load_from_pipeline()
        if result is not None:
            return result

        if self._last_good is not None:
            self._stale_served += 1
            age = self._last_good.age_seconds(self.clock.timestamp())
            logger.warning(f"[cache] Serving stale collection (age={age:.1f}s)")
            return CacheResult(
                records=self._last_good.records,
                total_count=self._last_good.total_count,
                is_from_cache=True,
                source="stale",
                fetched_at=self._last_good.fetched_at,
                is_stale=True,
            )

        raise CacheError(
            "No cache tier could produce a collection",
            source_name="cache",
            tier="legacy",
        )

    async def _load_from_api(self) -> Optional[CacheResult]:
        self._consume_request()
        try:
            response = await self.api_client.fetch()
        except RateLimitError as e:
            self._exhaust(e.retry_after_seconds or DEFAULT_RATE_WINDOW_SECONDS)
            logger.warning(f"[cache] Cache API rate limited, retry in {e.retry_after_seconds}s")
            return None
        except InventoryError as e:
            logger.warning(f"[cache] Cache API failed, falling back to pipeline: {e}")
            return None

        if response.rate_limit is not None:
            self._apply_rate_limit(response.rate_limit)

        self._api_loads += 1
        logger.info(
            f"[cache] Loaded {len(response.records)} records from cache API "
            f"(fromCache={response.from_cache})"
        )
        return self._store(response.records, response.total_count, "cache_api")

    async def _load_from_pipeline(self) -> Optional[CacheResult]:
        snapshot = await self.pipeline.run()
        if snapshot is None:
            logger.warning("[cache] Pipeline already running, no fresh collection")
            return None
        if snapshot.state != PipelineState.DONE:
            logger.warning(f"[cache] Pipeline ended in {snapshot.state.value}: {snapshot.error}")
            return None

        self._pipeline_loads += 1
        return self._store(snapshot.records, snapshot.total_count, "pipeline")

    def _store(self, records: tuple[EnrichedRecord, ...], total_count: int, source: str) -> CacheResult:
        now = self.clock.timestamp()
        self._entry = CacheEntry(
            records=tuple(records),
            total_count=total_count,
            fetched_at=now,
            source=source,
        )
        self._last_good = self._entry
        self._result = CacheResult(
            records=self._entry.records,
            total_count=total_count,
            is_from_cache=source == "cache_api",
            source=source,
            fetched_at=now,
        )
        return self._result

    # ─────────────────────────────────────────────────────────────
    # Rate-limit window
    # ─────────────────────────────────────────────────────────────

    def _consume_request(self) -> None:
        self.rate_limit_status()
        self._remaining = max(0, self._remaining - 1)
        if self._reset_at is None:
            self._reset_at = self.clock.timestamp() + self.rate_window_seconds

    def _exhaust(self, retry_after: float) -> None:
        self._remaining = 0
        self._reset_at = self.clock.timestamp() + retry_after

    def _apply_rate_limit(self, status: RateLimitStatus) -> None:
        self._limit = status.limit
        self._remaining = status.remaining
        if status.reset_in_seconds > 0:
            self._reset_at = self.clock.timestamp() + status.reset_in_seconds
        elif status.remaining >= status.limit:
            self._reset_at = None
