"""
ERC-721 Enumerable listing source.

balanceOf(owner) gives the total; each page is one JSON-RPC batch of
tokenOfOwnerByIndex(owner, i) calls. The cursor is the next index.
"""

import logging
from typing import Optional

import aiohttp

from nft_inventory import abi
from nft_inventory.exceptions import (
    FetchError,
    InventoryError,
    ListingError,
    NormalizationError,
    RateLimitError,
)
from nft_inventory.models import ListingRequest, PageResult, SourceMetadata
from nft_inventory.sources.base import ListingSource, parse_offset_cursor
from nft_inventory.sources.rpc import JsonRpcMixin


logger = logging.getLogger(__name__)


class EnumerableListingSource(JsonRpcMixin, ListingSource):
    """Lists a wallet's tokens via the collection's enumerable extension."""

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
        return "enumerable"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="ERC-721 Enumerable",
            kind="listing",
            base_url=self.rpc_url,
            tags=["rpc", "index"],
        )

    async def fetch_page(
        self,
        request: ListingRequest,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> PageResult:
        start = parse_offset_cursor(cursor, self.name)
        try:
            balance = abi.decode_uint(await self.eth_call(
                request.contract_address,
                abi.encode_call(abi.SELECTOR_BALANCE_OF, abi.encode_address(request.owner)),
            ))
            end = min(start + page_size, balance)
            indexes = list(range(start, end))
            outcomes = await self.eth_call_batch([
                (
                    request.contract_address,
                    abi.encode_call(
                        abi.SELECTOR_TOKEN_OF_OWNER_BY_INDEX,
                        abi.encode_address(request.owner),
                        abi.encode_uint(i),
                    ),
                )
                for i in indexes
            ])
        except RateLimitError:
            raise
        except FetchError as e:
            raise ListingError(
                message=f"Enumeration failed at index {start}: {e.message}",
                source_name=self.name,
                cursor=cursor,
                status_code=e.status_code,
                original_error=e,
            ) from e
        except ValueError as e:
            raise NormalizationError(
                message=f"Undecodable balanceOf result: {e}",
                source_name=self.name,
                original_error=e,
            ) from e

        token_ids = []
        for index, outcome in zip(indexes, outcomes):
            if isinstance(outcome, RateLimitError):
                raise outcome
            if isinstance(outcome, InventoryError):
                raise ListingError(
                    message=f"tokenOfOwnerByIndex({index}) failed: {outcome.message}",
                    source_name=self.name,
                    cursor=cursor,
                    original_error=outcome,
                )
            try:
                token_ids.append(abi.decode_uint(outcome))
            except (AttributeError, TypeError, ValueError) as e:
                raise NormalizationError(
                    message=f"Undecodable tokenOfOwnerByIndex({index}) result",
                    source_name=self.name,
                    raw_data=outcome,
                    original_error=e,
                ) from e

        has_more = end < balance
        return PageResult(
            identifiers=tuple(token_ids),
            next_cursor=str(end) if has_more else None,
            total_count=balance,
            has_more=has_more,
        )
