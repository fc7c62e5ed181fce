"""
Inventory Configuration.

============================================================
CONFIGURABLE INVENTORY ASSEMBLY
============================================================

Configuration can be loaded from:
- Default values
- Environment variables (optionally via a .env file)
- YAML config file

Invalid configuration raises ConfigurationError; it is never
silently replaced with defaults.

============================================================
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

from nft_inventory.exceptions import ConfigurationError
from nft_inventory.metadata import DEFAULT_GATEWAYS
from nft_inventory.models import ListingRequest


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LISTING_SOURCES = ("alchemy", "held_tokens", "enumerable", "transfer_logs")


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure root logging in the project's standard format."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


# =============================================================
# SECTIONS
# =============================================================


@dataclass
class BatchSettings:
    """Page and sub-batch sizing, and the pauses between them."""
    page_size: int = 100
    max_pages: int = 100
    attributes_batch_size: int = 30
    metadata_batch_size: int = 20
    batch_delay: float = 0.8
    page_delay: float = 0.5

    def validate(self) -> None:
        for key in ("page_size", "max_pages", "attributes_batch_size", "metadata_batch_size"):
            if getattr(self, key) <= 0:
                raise ConfigurationError(f"{key} must be positive", config_key=key)
        for key in ("batch_delay", "page_delay"):
            if getattr(self, key) < 0:
                raise ConfigurationError(f"{key} cannot be negative", config_key=key)


@dataclass
class RetrySettings:
    """Backoff for rate-limited attribute batches."""
    max_retries: int = 4
    base_delay: float = 2.0

    def validate(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative", config_key="max_retries")
        if self.base_delay < 0:
            raise ConfigurationError("base_delay cannot be negative", config_key="base_delay")


@dataclass
class MetadataSettings:
    """Metadata resolution: timeout, gateways, optional URL template."""
    timeout: float = 10.0
    gateways: list[str] = field(default_factory=lambda: list(DEFAULT_GATEWAYS))
    url_template: Optional[str] = None

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("metadata timeout must be positive", config_key="timeout")
        if not self.gateways:
            raise ConfigurationError("at least one gateway is required", config_key="gateways")
        if self.url_template and "{token_id}" not in self.url_template:
            raise ConfigurationError(
                "url_template must contain {token_id}",
                config_key="url_template",
            )


@dataclass
class CacheSettings:
    """Memory TTL and the cache endpoint's request budget."""
    ttl_seconds: float = 300.0
    api_url: Optional[str] = None
    rate_limit: int = 1
    rate_window_seconds: float = 60.0

    def validate(self) -> None:
        if self.ttl_seconds < 0:
            raise ConfigurationError("ttl_seconds cannot be negative", config_key="ttl_seconds")
        if self.rate_limit <= 0:
            raise ConfigurationError("rate_limit must be positive", config_key="rate_limit")
        if self.rate_window_seconds <= 0:
            raise ConfigurationError(
                "rate_window_seconds must be positive",
                config_key="rate_window_seconds",
            )


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class InventoryConfig:
    """
    Main configuration.

    listing_source selects the enumeration strategy once at startup.
    For "held_tokens" the pool contract is listed; every other strategy
    lists the owner wallet.
    """
    listing_source: str = "held_tokens"
    owner: str = ""
    nft_contract: str = ""
    pool_contract: str = ""
    rpc_url: str = "https://mainnet.base.org"
    alchemy_api_key: str = ""
    alchemy_base_url: str = "https://base-mainnet.g.alchemy.com/nft/v3"
    logs_from_block: str = "0x0"

    batch: BatchSettings = field(default_factory=BatchSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    metadata: MetadataSettings = field(default_factory=MetadataSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)

    def listing_request(self) -> ListingRequest:
        """Build the request the configured strategy lists."""
        owner = self.pool_contract if self.listing_source == "held_tokens" else self.owner
        return ListingRequest(owner=owner, contract_address=self.nft_contract)

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid setting."""
        if self.listing_source not in LISTING_SOURCES:
            raise ConfigurationError(
                f"Unknown listing source {self.listing_source!r}; "
                f"expected one of {', '.join(LISTING_SOURCES)}",
                config_key="listing_source",
            )
        if self.listing_source == "alchemy" and not self.alchemy_api_key:
            raise ConfigurationError("alchemy listing requires ALCHEMY_API_KEY", config_key="alchemy_api_key")
        if self.listing_source == "held_tokens" and not self.pool_contract:
            raise ConfigurationError("held_tokens listing requires a pool contract", config_key="pool_contract")
        if not self.rpc_url:
            raise ConfigurationError("rpc_url is required", config_key="rpc_url")

        try:
            self.listing_request().validate()
        except ValueError as e:
            raise ConfigurationError(str(e), config_key="owner", original_error=e) from e

        self.batch.validate()
        self.retry.validate()
        self.metadata.validate()
        self.cache.validate()

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        load_env_file: bool = True,
    ) -> "InventoryConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - INVENTORY_LISTING_SOURCE, INVENTORY_OWNER, INVENTORY_NFT_CONTRACT
        - INVENTORY_POOL_CONTRACT, INVENTORY_RPC_URL
        - ALCHEMY_API_KEY, INVENTORY_ALCHEMY_BASE_URL
        - INVENTORY_LOGS_FROM_BLOCK
        - INVENTORY_PAGE_SIZE, INVENTORY_MAX_PAGES
        - INVENTORY_ATTRIBUTES_BATCH_SIZE, INVENTORY_METADATA_BATCH_SIZE
        - INVENTORY_BATCH_DELAY, INVENTORY_PAGE_DELAY
        - INVENTORY_MAX_RETRIES, INVENTORY_RETRY_BASE_DELAY
        - INVENTORY_METADATA_TIMEOUT, INVENTORY_IPFS_GATEWAYS (comma list)
        - INVENTORY_METADATA_URL_TEMPLATE
        - INVENTORY_CACHE_TTL, INVENTORY_CACHE_API_URL
        - INVENTORY_CACHE_RATE_LIMIT, INVENTORY_CACHE_RATE_WINDOW
        """
        if load_env_file:
            load_dotenv(env_file)

        config = cls()

        config.listing_source = os.getenv("INVENTORY_LISTING_SOURCE", config.listing_source)
        config.owner = os.getenv("INVENTORY_OWNER", config.owner)
        config.nft_contract = os.getenv("INVENTORY_NFT_CONTRACT", config.nft_contract)
        config.pool_contract = os.getenv("INVENTORY_POOL_CONTRACT", config.pool_contract)
        config.rpc_url = os.getenv("INVENTORY_RPC_URL", config.rpc_url)
        config.alchemy_api_key = os.getenv("ALCHEMY_API_KEY", config.alchemy_api_key)
        config.alchemy_base_url = os.getenv("INVENTORY_ALCHEMY_BASE_URL", config.alchemy_base_url)
        config.logs_from_block = os.getenv("INVENTORY_LOGS_FROM_BLOCK", config.logs_from_block)

        config.batch.page_size = _env_int("INVENTORY_PAGE_SIZE", config.batch.page_size)
        config.batch.max_pages = _env_int("INVENTORY_MAX_PAGES", config.batch.max_pages)
        config.batch.attributes_batch_size = _env_int(
            "INVENTORY_ATTRIBUTES_BATCH_SIZE", config.batch.attributes_batch_size
        )
        config.batch.metadata_batch_size = _env_int(
            "INVENTORY_METADATA_BATCH_SIZE", config.batch.metadata_batch_size
        )
        config.batch.batch_delay = _env_float("INVENTORY_BATCH_DELAY", config.batch.batch_delay)
        config.batch.page_delay = _env_float("INVENTORY_PAGE_DELAY", config.batch.page_delay)

        config.retry.max_retries = _env_int("INVENTORY_MAX_RETRIES", config.retry.max_retries)
        config.retry.base_delay = _env_float("INVENTORY_RETRY_BASE_DELAY", config.retry.base_delay)

        config.metadata.timeout = _env_float("INVENTORY_METADATA_TIMEOUT", config.metadata.timeout)
        if os.getenv("INVENTORY_IPFS_GATEWAYS"):
            config.metadata.gateways = [
                gw.strip() for gw in os.getenv("INVENTORY_IPFS_GATEWAYS", "").split(",") if gw.strip()
            ]
        config.metadata.url_template = os.getenv("INVENTORY_METADATA_URL_TEMPLATE") or None

        config.cache.ttl_seconds = _env_float("INVENTORY_CACHE_TTL", config.cache.ttl_seconds)
        config.cache.api_url = os.getenv("INVENTORY_CACHE_API_URL") or None
        config.cache.rate_limit = _env_int("INVENTORY_CACHE_RATE_LIMIT", config.cache.rate_limit)
        config.cache.rate_window_seconds = _env_float(
            "INVENTORY_CACHE_RATE_WINDOW", config.cache.rate_window_seconds
        )

        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "InventoryConfig":
        """
        Load configuration from a YAML file.

        Top-level keys mirror the dataclass fields; `batch`, `retry`,
        `metadata` and `cache` are nested mappings.
        """
        import yaml

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load YAML config from {path}: {e}",
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"YAML config {path} must be a mapping")

        sections = {
            "batch": BatchSettings,
            "retry": RetrySettings,
            "metadata": MetadataSettings,
            "cache": CacheSettings,
        }
        kwargs: dict[str, Any] = {}
        try:
            for key, value in data.items():
                if key in sections:
                    kwargs[key] = sections[key](**(value or {}))
                else:
                    kwargs[key] = value
            config = cls(**kwargs)
        except TypeError as e:
            raise ConfigurationError(f"Invalid key in {path}: {e}", original_error=e) from e

        logger.info(f"Loaded inventory config from {path}")
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, with the API key masked."""
        data = asdict(self)
        if data.get("alchemy_api_key"):
            data["alchemy_api_key"] = "***"
        return data


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", config_key=name) from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", config_key=name) from e
