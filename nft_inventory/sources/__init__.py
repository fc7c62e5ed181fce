"""
Upstream data sources.

Listing sources enumerate token ids page by page; attribute sources read
on-chain state for bounded batches.
"""

from nft_inventory.sources.alchemy import AlchemyListingSource
from nft_inventory.sources.base import (
    AttributesSource,
    BaseSource,
    ListingSource,
    parse_offset_cursor,
    parse_token_id,
)
from nft_inventory.sources.contract_attributes import ContractAttributesSource
from nft_inventory.sources.enumerable import EnumerableListingSource
from nft_inventory.sources.held_tokens import HeldTokensListingSource
from nft_inventory.sources.rpc import JsonRpcMixin
from nft_inventory.sources.transfer_logs import TransferLogListingSource


__all__ = [
    "AlchemyListingSource",
    "AttributesSource",
    "BaseSource",
    "ContractAttributesSource",
    "EnumerableListingSource",
    "HeldTokensListingSource",
    "JsonRpcMixin",
    "ListingSource",
    "TransferLogListingSource",
    "parse_offset_cursor",
    "parse_token_id",
]
