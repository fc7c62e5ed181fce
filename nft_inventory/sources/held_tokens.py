"""
Held-tokens listing source.

Reads a pool contract's paginated view
`getHeldNFTs(address nft, uint256 offset, uint256 limit)`, which returns
`(uint256[] tokenIds, uint256 totalHeld, uint256 returned, bool hasMore)`.
The cursor is the decimal offset of the next page.
"""

import logging
from typing import Optional

import aiohttp

from nft_inventory import abi
from nft_inventory.exceptions import FetchError, ListingError, NormalizationError, RateLimitError
from nft_inventory.models import ListingRequest, PageResult, SourceMetadata
from nft_inventory.sources.base import ListingSource, parse_offset_cursor
from nft_inventory.sources.rpc import JsonRpcMixin


logger = logging.getLogger(__name__)


class HeldTokensListingSource(JsonRpcMixin, ListingSource):
    """
    Lists tokens held by a pool contract.

    `request.owner` is the pool contract; `request.contract_address` is the
    NFT collection passed as the first view argument.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.rpc_url = rpc_url

    @property
    def name(self) -> str:
        return "held_tokens"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Pool getHeldNFTs view",
            kind="listing",
            base_url=self.rpc_url,
            tags=["rpc", "offset"],
        )

    async def fetch_page(
        self,
        request: ListingRequest,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> PageResult:
        offset = parse_offset_cursor(cursor, self.name)
        data = abi.encode_call(
            abi.SELECTOR_GET_HELD_NFTS,
            abi.encode_address(request.contract_address),
            abi.encode_uint(offset),
            abi.encode_uint(page_size),
        )

        try:
            raw = await self.eth_call(request.owner, data)
        except RateLimitError:
            raise
        except FetchError as e:
            raise ListingError(
                message=f"getHeldNFTs failed at offset {offset}: {e.message}",
                source_name=self.name,
                cursor=cursor,
                status_code=e.status_code,
                original_error=e,
            ) from e

        try:
            token_ids, total_held, returned, has_more = abi.decode_held_page(raw)
        except ValueError as e:
            raise NormalizationError(
                message=f"Undecodable getHeldNFTs result: {e}",
                source_name=self.name,
                raw_data=raw,
                original_error=e,
            ) from e

        if returned != len(token_ids):
            logger.debug(
                f"[{self.name}] returned={returned} but {len(token_ids)} ids decoded"
            )

        next_offset = offset + len(token_ids)
        return PageResult(
            identifiers=tuple(token_ids),
            next_cursor=str(next_offset) if has_more else None,
            total_count=total_held,
            has_more=has_more,
        )

