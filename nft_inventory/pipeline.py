"""
AggregationPipeline - Progressive inventory assembly.

IDLE → LISTING → BATCH_FETCHING → METADATA_ENRICHING → PUBLISHING
     → (LISTING | DONE), with ERROR on a listing failure.

Every publish hands subscribers a new immutable InventorySnapshot. Within
a run the published collection only grows and a token id appears at most
once; it is reset only when a new run starts.
"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from nft_inventory.batch_fetcher import BatchFetcher, split_batches
from nft_inventory.classification import classify
from nft_inventory.exceptions import InventoryError
from nft_inventory.metadata import MetadataResolver
from nft_inventory.models import (
    EnrichedRecord,
    InventorySnapshot,
    ListingRequest,
    PipelineState,
    ResolvedMetadata,
    SourceIncident,
    TokenId,
)
from nft_inventory.page_walker import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, PageWalker
from nft_inventory.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES
from nft_inventory.sources.base import AttributesSource, ListingSource


logger = logging.getLogger(__name__)

DEFAULT_METADATA_BATCH_SIZE = 20
DEFAULT_BATCH_DELAY = 0.8
DEFAULT_PAGE_DELAY = 0.5

Subscriber = Callable[[InventorySnapshot], Union[None, Awaitable[None]]]


class AggregationPipeline:
    """
    Lists, fetches, classifies and enriches a wallet's tokens.

    Usage:
        pipeline = AggregationPipeline(listing, attributes, request, resolver)
        unsubscribe = pipeline.subscribe(lambda snap: print(len(snap)))
        snapshot = await pipeline.run()
    """

    def __init__(
        self,
        listing_source: ListingSource,
        attributes_source: AttributesSource,
        request: ListingRequest,
        resolver: Optional[MetadataResolver] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        attributes_batch_size: int = 30,
        metadata_batch_size: int = DEFAULT_METADATA_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        page_delay: float = DEFAULT_PAGE_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        request.validate()
        if metadata_batch_size <= 0:
            raise ValueError("metadata_batch_size must be positive")

        self.listing_source = listing_source
        self.attributes_source = attributes_source
        self.request = request
        self.resolver = resolver or MetadataResolver()
        self.page_size = page_size
        self.max_pages = max_pages
        self.metadata_batch_size = metadata_batch_size
        self.batch_delay = batch_delay
        self.page_delay = page_delay
        self._sleep = sleep

        self.fetcher = BatchFetcher(
            attributes_source,
            max_batch_size=attributes_batch_size,
            max_retries=max_retries,
            base_delay=retry_base_delay,
            sleep=sleep,
        )

        self._state = PipelineState.IDLE
        self._snapshot = InventorySnapshot()
        self._subscribers: list[Subscriber] = []
        self._running = False
        self._run_id = 0
        self._offset = 0
        self._walker: Optional[PageWalker] = None

        self._records: dict[TokenId, EnrichedRecord] = {}
        self._total_count = 0
        self._has_more = False

        self._incidents: list[SourceIncident] = []
        self._max_incidents = 100
        self._dropped_ids = 0
        self._publishes = 0

    # ─────────────────────────────────────────────────────────────
    # Public surface
    # ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def snapshot(self) -> InventorySnapshot:
        """Latest published snapshot."""
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every publish.

        Returns a function that removes the callback again.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def run(self) -> Optional[InventorySnapshot]:
        """
        Assemble the inventory from scratch.

        Returns the final snapshot (state DONE or ERROR), or None when a run
        is already in flight and this trigger was ignored.
        """
        if self._running:
            logger.info(f"[pipeline] Run {self._run_id} in flight, ignoring trigger")
            return None

        self._running = True
        try:
            return await self._run()
        finally:
            self._running = False

    def get_incidents(self, limit: int = 10) -> list[SourceIncident]:
        return self._incidents[-limit:]

    def stats(self) -> dict[str, Any]:
        return {
            "run_id": self._run_id,
            "state": self._state.value,
            "records": len(self._records),
            "total_count": self._total_count,
            "offset": self._offset,
            "publishes": self._publishes,
            "dropped_ids": self._dropped_ids,
            "incidents": len(self._incidents),
            "walker": self._walker.stats() if self._walker else None,
            "fetcher": self.fetcher.stats(),
            "metadata": self.resolver.stats(),
        }

    # ─────────────────────────────────────────────────────────────
    # Run algorithm
    # ─────────────────────────────────────────────────────────────

    async def _run(self) -> InventorySnapshot:
        self._run_id += 1
        self._records = {}
        self._offset = 0
        self._total_count = 0
        self._has_more = False
        await self._publish(PipelineState.IDLE)

        logger.info(
            f"[pipeline] Run {self._run_id}: listing {self.request.owner} "
            f"via {self.listing_source.name}"
        )

        self._walker = PageWalker(
            self.listing_source,
            self.request,
            page_size=self.page_size,
            max_pages=self.max_pages,
        )
        self._set_state(PipelineState.LISTING)

        try:
            async for page in self._walker.walk():
                self._total_count = page.total_count
                self._has_more = self._walker.has_more and self._walker.pages_fetched < self.max_pages
                if page.is_empty:
                    break

                page_ids = await self._fetch_page_records(list(page.identifiers))
                await self._publish(PipelineState.PUBLISHING)
                await self._enrich(page_ids)

                self._offset += len(page)
                logger.info(
                    f"[pipeline] Page {self._walker.pages_fetched}: "
                    f"{len(self._records)}/{self._total_count} records"
                )

                if self._has_more:
                    await self._sleep(self.page_delay)
                    self._set_state(PipelineState.LISTING)

        except Exception as e:
            logger.error(
                f"[pipeline] Run {self._run_id} failed while listing: {e} "
                f"({len(self._records)} records kept)"
            )
            self._record_incident(self.listing_source.name, e, None)
            self._has_more = False
            return await self._publish(PipelineState.ERROR, error=str(e))

        self._has_more = self._walker.ceiling_reached
        snapshot = await self._publish(PipelineState.DONE)
        logger.info(f"[pipeline] Run {self._run_id} done: {len(snapshot)} records")
        return snapshot

    async def _fetch_page_records(self, identifiers: list[TokenId]) -> list[TokenId]:
        """Fetch attributes for new ids on a page; returns the ids added."""
        self._set_state(PipelineState.BATCH_FETCHING)

        new_ids: list[TokenId] = []
        seen: set[TokenId] = set()
        for token_id in identifiers:
            if token_id in self._records or token_id in seen:
                continue
            seen.add(token_id)
            new_ids.append(token_id)

        added: list[TokenId] = []
        for i, chunk in enumerate(split_batches(new_ids, self.fetcher.max_batch_size)):
            if i > 0:
                await self._sleep(self.batch_delay)
            try:
                attributes = await self.fetcher.fetch_batch(chunk)
            except Exception as e:
                self._dropped_ids += len(chunk)
                logger.warning(
                    f"[pipeline] Dropping {len(chunk)} ids after attribute fetch failure: {e}"
                )
                self._record_incident(self.attributes_source.name, e, chunk)
                continue

            for attrs in attributes:
                self._records[attrs.token_id] = EnrichedRecord(
                    token_id=attrs.token_id,
                    attributes=attrs,
                    metadata=ResolvedMetadata.placeholder(attrs.token_id, attrs.token_uri),
                    kind=classify(attrs),
                )
                added.append(attrs.token_id)
            logger.debug(f"[pipeline] Sub-batch {i + 1}: {len(attributes)} records")

        return added

    async def _enrich(self, token_ids: list[TokenId]) -> None:
        self._set_state(PipelineState.METADATA_ENRICHING)

        for i, chunk in enumerate(split_batches(token_ids, self.metadata_batch_size)):
            if i > 0:
                await self._sleep(self.batch_delay)
            resolved = await self.resolver.resolve_many(
                (token_id, self._records[token_id].attributes.token_uri) for token_id in chunk
            )
            for token_id, metadata in resolved.items():
                self._records[token_id] = self._records[token_id].with_metadata(metadata)
            await self._publish(PipelineState.METADATA_ENRICHING)

    # ─────────────────────────────────────────────────────────────
    # Publishing
    # ─────────────────────────────────────────────────────────────

    def _set_state(self, state: PipelineState) -> None:
        if state != self._state:
            logger.debug(f"[pipeline] {self._state.value} -> {state.value}")
        self._state = state

    async def _publish(
        self,
        state: PipelineState,
        error: Optional[str] = None,
    ) -> InventorySnapshot:
        self._set_state(state)
        self._snapshot = InventorySnapshot.build(
            records=tuple(self._records.values()),
            state=state,
            total_count=self._total_count,
            has_more=self._has_more,
            error=error,
            run_id=self._run_id,
        )
        self._publishes += 1
        await self._notify(self._snapshot)
        return self._snapshot

    async def _notify(self, snapshot: InventorySnapshot) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[pipeline] Subscriber {callback!r} failed: {e}")

    def _record_incident(
        self,
        source_name: str,
        error: Exception,
        token_ids: Optional[list[TokenId]],
    ) -> None:
        context = error.to_dict() if isinstance(error, InventoryError) else None
        self._incidents.append(SourceIncident(
            source_name=source_name,
            incident_type=error.__class__.__name__,
            timestamp=datetime.utcnow(),
            error_message=str(error),
            token_ids=list(token_ids) if token_ids is not None else None,
            context=context,
        ))
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]
