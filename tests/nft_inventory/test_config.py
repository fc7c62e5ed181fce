"""
Tests for configuration loading and component wiring.
"""

import os

import pytest

from nft_inventory.cache import CacheApiClient, TieredCache
from nft_inventory.config import InventoryConfig, configure_logging
from nft_inventory.exceptions import ConfigurationError
from nft_inventory.pipeline import AggregationPipeline
from nft_inventory.registry import SourceRegistry, close_all, create_cache, create_pipeline, get_default_registry
from nft_inventory.sources import (
    AlchemyListingSource,
    EnumerableListingSource,
    HeldTokensListingSource,
    TransferLogListingSource,
)


OWNER = "0x" + "11" * 20
NFT_CONTRACT = "0x" + "22" * 20
POOL_CONTRACT = "0x" + "33" * 20


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("INVENTORY_") or key == "ALCHEMY_API_KEY":
            monkeypatch.delenv(key, raising=False)


def valid_config(**overrides) -> InventoryConfig:
    config = InventoryConfig(owner=OWNER, nft_contract=NFT_CONTRACT, pool_contract=POOL_CONTRACT)
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


# ============================================================
# DEFAULTS AND VALIDATION
# ============================================================

class TestValidation:

    def test_defaults(self):
        config = InventoryConfig()
        assert config.listing_source == "held_tokens"
        assert config.batch.page_size == 100
        assert config.batch.attributes_batch_size == 30
        assert config.batch.metadata_batch_size == 20
        assert config.batch.batch_delay == 0.8
        assert config.batch.page_delay == 0.5
        assert config.retry.max_retries == 4
        assert config.retry.base_delay == 2.0
        assert config.metadata.timeout == 10.0
        assert config.cache.ttl_seconds == 300.0
        assert config.cache.rate_limit == 1

    def test_valid_config(self):
        valid_config().validate()

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError) as exc_info:
            valid_config(listing_source="opensea").validate()
        assert exc_info.value.config_key == "listing_source"

    def test_alchemy_requires_key(self):
        with pytest.raises(ConfigurationError):
            valid_config(listing_source="alchemy").validate()
        valid_config(listing_source="alchemy", alchemy_api_key="k").validate()

    def test_held_tokens_requires_pool(self):
        with pytest.raises(ConfigurationError):
            valid_config(pool_contract="").validate()

    def test_bad_owner_address(self):
        with pytest.raises(ConfigurationError):
            valid_config(listing_source="enumerable", owner="0x1234").validate()

    def test_bad_batch_size(self):
        config = valid_config()
        config.batch.attributes_batch_size = 0
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_template_needs_placeholder(self):
        config = valid_config()
        config.metadata.url_template = "https://meta.example/static.json"
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_listing_request_per_strategy(self):
        assert valid_config().listing_request().owner == POOL_CONTRACT
        assert valid_config(listing_source="enumerable").listing_request().owner == OWNER

    def test_to_dict_masks_api_key(self):
        data = valid_config(alchemy_api_key="secret").to_dict()
        assert data["alchemy_api_key"] == "***"
        assert data["batch"]["page_size"] == 100


# ============================================================
# ENVIRONMENT AND YAML
# ============================================================

class TestLoading:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("INVENTORY_LISTING_SOURCE", "alchemy")
        monkeypatch.setenv("INVENTORY_OWNER", OWNER)
        monkeypatch.setenv("INVENTORY_NFT_CONTRACT", NFT_CONTRACT)
        monkeypatch.setenv("ALCHEMY_API_KEY", "abc")
        monkeypatch.setenv("INVENTORY_PAGE_SIZE", "50")
        monkeypatch.setenv("INVENTORY_BATCH_DELAY", "1.5")
        monkeypatch.setenv("INVENTORY_IPFS_GATEWAYS", "https://a.example, https://b.example,")
        monkeypatch.setenv("INVENTORY_CACHE_API_URL", "https://cache.example/api")
        monkeypatch.setenv("INVENTORY_LOGS_FROM_BLOCK", "0x10")

        config = InventoryConfig.from_env(load_env_file=False)

        assert config.listing_source == "alchemy"
        assert config.alchemy_api_key == "abc"
        assert config.batch.page_size == 50
        assert config.batch.batch_delay == 1.5
        assert config.metadata.gateways == ["https://a.example", "https://b.example"]
        assert config.cache.api_url == "https://cache.example/api"
        assert config.logs_from_block == "0x10"
        config.validate()

    def test_from_env_rejects_bad_number(self, monkeypatch):
        monkeypatch.setenv("INVENTORY_MAX_RETRIES", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            InventoryConfig.from_env(load_env_file=False)
        assert exc_info.value.config_key == "INVENTORY_MAX_RETRIES"

    def test_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(f"INVENTORY_OWNER={OWNER}\nINVENTORY_MAX_PAGES=7\n")

        try:
            config = InventoryConfig.from_env(env_file)
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("INVENTORY_OWNER", None)
            os.environ.pop("INVENTORY_MAX_PAGES", None)

        assert config.owner == OWNER
        assert config.batch.max_pages == 7

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text(
            "listing_source: transfer_logs\n"
            f"owner: '{OWNER}'\n"
            f"nft_contract: '{NFT_CONTRACT}'\n"
            "logs_from_block: '0x100'\n"
            "batch:\n"
            "  page_size: 25\n"
            "cache:\n"
            "  ttl_seconds: 60\n"
        )

        config = InventoryConfig.from_yaml(path)

        assert config.listing_source == "transfer_logs"
        assert config.batch.page_size == 25
        assert config.batch.metadata_batch_size == 20
        assert config.cache.ttl_seconds == 60
        config.validate()

    def test_from_yaml_unknown_key(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("batch:\n  page_sz: 25\n")
        with pytest.raises(ConfigurationError):
            InventoryConfig.from_yaml(path)

    def test_from_yaml_not_a_mapping(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            InventoryConfig.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            InventoryConfig.from_yaml(tmp_path / "absent.yaml")

    def test_configure_logging_accepts_names(self):
        configure_logging("debug")
        configure_logging(20)


# ============================================================
# REGISTRY AND WIRING
# ============================================================

class TestRegistry:

    @pytest.mark.parametrize("name,expected", [
        ("held_tokens", HeldTokensListingSource),
        ("enumerable", EnumerableListingSource),
        ("transfer_logs", TransferLogListingSource),
        ("alchemy", AlchemyListingSource),
    ])
    def test_default_strategies(self, name, expected):
        config = valid_config(listing_source=name, alchemy_api_key="k")
        source = get_default_registry().create_listing_source(config)
        assert isinstance(source, expected)

    def test_unregistered_strategy(self):
        registry = SourceRegistry()
        with pytest.raises(ConfigurationError):
            registry.create_listing_source(valid_config())

    def test_register_and_unregister(self):
        registry = SourceRegistry()
        registry.register("custom", lambda config, session: EnumerableListingSource(config.rpc_url))

        assert "custom" in registry
        assert registry.list_sources() == ["custom"]
        assert registry.unregister("custom") is not None
        assert "custom" not in registry

    def test_create_pipeline(self):
        config = valid_config()
        config.batch.page_size = 40

        pipeline = create_pipeline(config)

        assert isinstance(pipeline, AggregationPipeline)
        assert isinstance(pipeline.listing_source, HeldTokensListingSource)
        assert pipeline.request.owner == POOL_CONTRACT
        assert pipeline.page_size == 40
        assert pipeline.fetcher.max_batch_size == 30
        assert pipeline.resolver.gateways[0] == config.metadata.gateways[0]

    def test_create_pipeline_validates(self):
        with pytest.raises(ConfigurationError):
            create_pipeline(valid_config(listing_source="alchemy"))

    def test_create_cache(self):
        config = valid_config()
        config.cache.api_url = "https://cache.example/api"
        config.cache.ttl_seconds = 120

        cache = create_cache(config)

        assert isinstance(cache, TieredCache)
        assert isinstance(cache.api_client, CacheApiClient)
        assert cache.ttl_seconds == 120

    def test_create_cache_without_api(self):
        assert create_cache(valid_config()).api_client is None

    @pytest.mark.asyncio
    async def test_close_all_without_sessions(self):
        cache = create_cache(valid_config())
        await close_all(cache)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
