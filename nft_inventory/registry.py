"""
Source Registry - Strategy selection and component wiring.

The listing strategy is chosen once, from configuration, when the
pipeline is built. Everything downstream of the listing source is the
same for every strategy.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from nft_inventory.cache import CacheApiClient, TieredCache
from nft_inventory.clock import ClockProtocol
from nft_inventory.config import InventoryConfig
from nft_inventory.exceptions import ConfigurationError
from nft_inventory.metadata import MetadataResolver
from nft_inventory.pipeline import AggregationPipeline
from nft_inventory.sources import (
    AlchemyListingSource,
    ContractAttributesSource,
    EnumerableListingSource,
    HeldTokensListingSource,
    ListingSource,
    TransferLogListingSource,
)


logger = logging.getLogger(__name__)

ListingFactory = Callable[[InventoryConfig, Optional[aiohttp.ClientSession]], ListingSource]


class SourceRegistry:
    """
    Maps strategy names to listing-source factories.

    Usage:
        registry = SourceRegistry()
        registry.register("alchemy", lambda cfg, session: AlchemyListingSource(...))
        source = registry.create_listing_source(config)
    """

    def __init__(self) -> None:
        self._factories: dict[str, ListingFactory] = {}

    def register(self, name: str, factory: ListingFactory) -> None:
        if name in self._factories:
            logger.warning(f"Listing source '{name}' already registered, replacing")
        self._factories[name] = factory
        logger.debug(f"Registered listing source '{name}'")

    def unregister(self, name: str) -> Optional[ListingFactory]:
        return self._factories.pop(name, None)

    def list_sources(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def create_listing_source(
        self,
        config: InventoryConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ListingSource:
        factory = self._factories.get(config.listing_source)
        if factory is None:
            raise ConfigurationError(
                f"No listing source registered as {config.listing_source!r}",
                config_key="listing_source",
            )
        source = factory(config, session)
        logger.info(f"Using listing source '{source.name}'")
        return source


def _alchemy(config: InventoryConfig, session: Optional[aiohttp.ClientSession]) -> ListingSource:
    return AlchemyListingSource(
        api_key=config.alchemy_api_key,
        base_url=config.alchemy_base_url,
        session=session,
    )


def _held_tokens(config: InventoryConfig, session: Optional[aiohttp.ClientSession]) -> ListingSource:
    return HeldTokensListingSource(rpc_url=config.rpc_url, session=session)


def _enumerable(config: InventoryConfig, session: Optional[aiohttp.ClientSession]) -> ListingSource:
    return EnumerableListingSource(rpc_url=config.rpc_url, session=session)


def _transfer_logs(config: InventoryConfig, session: Optional[aiohttp.ClientSession]) -> ListingSource:
    return TransferLogListingSource(
        rpc_url=config.rpc_url,
        from_block=config.logs_from_block,
        session=session,
    )


# =============================================================
# GLOBAL REGISTRY SINGLETON
# =============================================================


_default_registry: Optional[SourceRegistry] = None


def get_default_registry() -> SourceRegistry:
    """Registry with every built-in listing strategy."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SourceRegistry()
        _default_registry.register("alchemy", _alchemy)
        _default_registry.register("held_tokens", _held_tokens)
        _default_registry.register("enumerable", _enumerable)
        _default_registry.register("transfer_logs", _transfer_logs)
    return _default_registry


# =============================================================
# WIRING
# =============================================================


def create_pipeline(
    config: InventoryConfig,
    registry: Optional[SourceRegistry] = None,
    session: Optional[aiohttp.ClientSession] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AggregationPipeline:
    """Build a pipeline for the configured strategy."""
    config.validate()
    registry = registry or get_default_registry()

    listing = registry.create_listing_source(config, session)
    attributes = ContractAttributesSource(
        rpc_url=config.rpc_url,
        contract_address=config.nft_contract,
        session=session,
    )
    resolver = MetadataResolver(
        gateways=config.metadata.gateways,
        timeout=config.metadata.timeout,
        metadata_url_template=config.metadata.url_template,
        session=session,
    )

    return AggregationPipeline(
        listing_source=listing,
        attributes_source=attributes,
        request=config.listing_request(),
        resolver=resolver,
        page_size=config.batch.page_size,
        max_pages=config.batch.max_pages,
        attributes_batch_size=config.batch.attributes_batch_size,
        metadata_batch_size=config.batch.metadata_batch_size,
        batch_delay=config.batch.batch_delay,
        page_delay=config.batch.page_delay,
        max_retries=config.retry.max_retries,
        retry_base_delay=config.retry.base_delay,
        sleep=sleep,
    )


def create_cache(
    config: InventoryConfig,
    pipeline: Optional[AggregationPipeline] = None,
    clock: Optional[ClockProtocol] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> TieredCache:
    """Build a tiered cache in front of `pipeline` (or a new one)."""
    pipeline = pipeline or create_pipeline(config, session=session)
    api_client = (
        CacheApiClient(config.cache.api_url, session=session)
        if config.cache.api_url
        else None
    )
    return TieredCache(
        pipeline=pipeline,
        api_client=api_client,
        ttl_seconds=config.cache.ttl_seconds,
        clock=clock,
        rate_limit=config.cache.rate_limit,
        rate_window_seconds=config.cache.rate_window_seconds,
    )


async def close_all(cache: TieredCache) -> None:
    """Close every HTTP session owned by the cache and its pipeline."""
    pipeline = cache.pipeline
    await pipeline.listing_source.close()
    await pipeline.attributes_source.close()
    await pipeline.resolver.close()
    if cache.api_client is not None:
        await cache.api_client.close()
