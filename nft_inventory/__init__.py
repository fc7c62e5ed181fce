"""
NFT Inventory - Progressive, rate-limit-aware NFT collection assembly.

Lists every token a wallet (or pool contract) holds, enriches each one
with on-chain attributes and off-chain metadata, and publishes the
growing collection as immutable snapshots.

Quick start:
    from nft_inventory import InventoryConfig, create_cache

    config = InventoryConfig.from_env()
    cache = create_cache(config)
    cache.pipeline.subscribe(lambda snap: print(f"{len(snap)} loaded"))
    result = await cache.get()

Listing strategies: alchemy, held_tokens, enumerable, transfer_logs.
"""

from nft_inventory.batch_fetcher import BatchFetcher
from nft_inventory.cache import CacheApiClient, TieredCache
from nft_inventory.classification import CLASSIFICATION_ORDER, classify
from nft_inventory.clock import ClockProtocol, MockClock, SystemClock
from nft_inventory.config import (
    BatchSettings,
    CacheSettings,
    InventoryConfig,
    MetadataSettings,
    RetrySettings,
    configure_logging,
)
from nft_inventory.exceptions import (
    CacheError,
    ConfigurationError,
    FetchError,
    InventoryError,
    ListingError,
    MetadataError,
    NormalizationError,
    RateLimitError,
)
from nft_inventory.metadata import MetadataResolver
from nft_inventory.models import (
    CacheEntry,
    CacheResult,
    EnrichedRecord,
    InventorySnapshot,
    ListingRequest,
    PageResult,
    PipelineState,
    RateLimitStatus,
    RawAttributes,
    RecordKind,
    ResolvedMetadata,
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceStatus,
)
from nft_inventory.page_walker import PageWalker
from nft_inventory.pipeline import AggregationPipeline
from nft_inventory.registry import (
    SourceRegistry,
    close_all,
    create_cache,
    create_pipeline,
    get_default_registry,
)
from nft_inventory.retry import is_rate_limit_error, retry_with_backoff
from nft_inventory.selection import SelectionSet


__all__ = [
    # Components
    "AggregationPipeline",
    "BatchFetcher",
    "CacheApiClient",
    "MetadataResolver",
    "PageWalker",
    "SelectionSet",
    "TieredCache",
    # Wiring
    "SourceRegistry",
    "close_all",
    "create_cache",
    "create_pipeline",
    "get_default_registry",
    # Config
    "BatchSettings",
    "CacheSettings",
    "InventoryConfig",
    "MetadataSettings",
    "RetrySettings",
    "configure_logging",
    # Models
    "CacheEntry",
    "CacheResult",
    "EnrichedRecord",
    "InventorySnapshot",
    "ListingRequest",
    "PageResult",
    "PipelineState",
    "RateLimitStatus",
    "RawAttributes",
    "RecordKind",
    "ResolvedMetadata",
    "SourceHealth",
    "SourceIncident",
    "SourceMetadata",
    "SourceStatus",
    # Classification / retry
    "CLASSIFICATION_ORDER",
    "classify",
    "is_rate_limit_error",
    "retry_with_backoff",
    # Clock
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    # Exceptions
    "CacheError",
    "ConfigurationError",
    "FetchError",
    "InventoryError",
    "ListingError",
    "MetadataError",
    "NormalizationError",
    "RateLimitError",
]
