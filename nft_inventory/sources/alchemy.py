"""
Alchemy NFT API listing source.

Uses getNFTsForOwner filtered to one collection, without metadata
(attributes and metadata are fetched separately). Pages are chained with
the opaque `pageKey` cursor the API returns.

Limits:
- pageSize at most 100
- Compute-unit throttling answered with HTTP 429
"""

import logging
from typing import Any, Optional

import aiohttp

from nft_inventory.exceptions import FetchError, ListingError, NormalizationError, RateLimitError
from nft_inventory.models import ListingRequest, PageResult, SourceMetadata
from nft_inventory.sources.base import ListingSource, parse_token_id


logger = logging.getLogger(__name__)


class AlchemyListingSource(ListingSource):
    """Lists a wallet's tokens through Alchemy's NFT API v3."""

    DEFAULT_BASE_URL = "https://base-mainnet.g.alchemy.com/nft/v3"
    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "alchemy"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Alchemy NFT API",
            kind="listing",
            max_page_size=self.MAX_PAGE_SIZE,
            requires_api_key=True,
            base_url=self._base_url,
            documentation_url="https://docs.alchemy.com/reference/getnftsforowner-v3",
            tags=["indexer", "cursor"],
        )

    def _endpoint(self) -> str:
        return f"{self._base_url}/{self._api_key}/getNFTsForOwner"

    async def fetch_page(
        self,
        request: ListingRequest,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> PageResult:
        params: dict[str, Any] = {
            "owner": request.owner,
            "contractAddresses[]": request.contract_address,
            "withMetadata": "false",
            "pageSize": str(min(page_size, self.MAX_PAGE_SIZE)),
        }
        if cursor:
            params["pageKey"] = cursor

        try:
            data = await self._make_request("GET", self._endpoint(), params=params)
        except RateLimitError:
            raise
        except FetchError as e:
            raise ListingError(
                message=f"getNFTsForOwner failed: {e.message}",
                source_name=self.name,
                cursor=cursor,
                status_code=e.status_code,
                original_error=e,
            ) from e

        return self.normalize(data, cursor)

    def normalize(self, data: Any, cursor: Optional[str] = None) -> PageResult:
        """Map a getNFTsForOwner response onto a PageResult."""
        if not isinstance(data, dict) or "ownedNfts" not in data:
            raise NormalizationError(
                message="Response missing ownedNfts",
                source_name=self.name,
                raw_data=data,
                field_name="ownedNfts",
            )

        identifiers = []
        for nft in data.get("ownedNfts") or []:
            token_id = parse_token_id(nft.get("tokenId")) if isinstance(nft, dict) else None
            if token_id is None:
                logger.debug(f"[{self.name}] Skipping unparseable token id: {nft!r}")
                continue
            identifiers.append(token_id)

        next_cursor = data.get("pageKey") or None
        total = data.get("totalCount")
        try:
            total_count = int(total) if total is not None else len(identifiers)
        except (TypeError, ValueError):
            total_count = len(identifiers)

        logger.debug(
            f"[{self.name}] Page cursor={cursor!r}: {len(identifiers)} ids, "
            f"total={total_count}, more={next_cursor is not None}"
        )

        return PageResult(
            identifiers=tuple(identifiers),
            next_cursor=next_cursor,
            total_count=total_count,
            has_more=next_cursor is not None,
        )
