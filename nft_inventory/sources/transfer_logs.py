"""
Transfer-log listing source.

Replays the collection's ERC-721 Transfer events to and from the owner:
owned = received - sent, applied in (block, log index) order. The owned
set is computed once per walk (on the first page) and then served in
pages; the cursor is the decimal offset into it.
"""

import logging
from typing import Any, Optional

import aiohttp

from nft_inventory import abi
from nft_inventory.exceptions import FetchError, ListingError, NormalizationError, RateLimitError
from nft_inventory.models import ListingRequest, PageResult, SourceMetadata, TokenId
from nft_inventory.sources.base import ListingSource, parse_offset_cursor
from nft_inventory.sources.rpc import JsonRpcMixin


logger = logging.getLogger(__name__)


class TransferLogListingSource(JsonRpcMixin, ListingSource):
    """Derives current holdings from Transfer event history."""

    def __init__(
        self,
        rpc_url: str,
        from_block: str = "0x0",
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.rpc_url = rpc_url
        self._from_block = from_block
        self._owned: dict[ListingRequest, list[TokenId]] = {}

    @property
    def name(self) -> str:
        return "transfer_logs"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="ERC-721 Transfer logs",
            kind="listing",
            base_url=self.rpc_url,
            tags=["rpc", "logs"],
        )

    async def fetch_page(
        self,
        request: ListingRequest,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> PageResult:
        offset = parse_offset_cursor(cursor, self.name)
        if cursor is None or request not in self._owned:
            self._owned[request] = await self._compute_owned(request)

        owned = self._owned[request]
        page = owned[offset:offset + page_size]
        end = offset + len(page)
        has_more = end < len(owned)
        return PageResult(
            identifiers=tuple(page),
            next_cursor=str(end) if has_more else None,
            total_count=len(owned),
            has_more=has_more,
        )

    async def _get_logs(self, request: ListingRequest, topics: list[Optional[str]]) -> list[dict[str, Any]]:
        result = await self._rpc_call("eth_getLogs", [{
            "address": request.contract_address,
            "fromBlock": self._from_block,
            "toBlock": "latest",
            "topics": topics,
        }])
        if not isinstance(result, list):
            raise NormalizationError(
                message="eth_getLogs returned a non-list result",
                source_name=self.name,
                raw_data=result,
            )
        return result

    async def _compute_owned(self, request: ListingRequest) -> list[TokenId]:
        owner_topic = abi.address_topic(request.owner)
        try:
            received = await self._get_logs(request, [abi.TRANSFER_EVENT_TOPIC, None, owner_topic])
            sent = await self._get_logs(request, [abi.TRANSFER_EVENT_TOPIC, owner_topic])
        except RateLimitError:
            raise
        except FetchError as e:
            raise ListingError(
                message=f"eth_getLogs failed: {e.message}",
                source_name=self.name,
                status_code=e.status_code,
                original_error=e,
            ) from e

        events = []
        for direction, logs in ((1, received), (-1, sent)):
            for log in logs:
                try:
                    token_id = abi.decode_topic_uint(log["topics"][3])
                    position = (int(log["blockNumber"], 16), int(log["logIndex"], 16))
                except (KeyError, IndexError, TypeError, ValueError) as e:
                    raise NormalizationError(
                        message="Malformed Transfer log",
                        source_name=self.name,
                        raw_data=log,
                        original_error=e,
                    ) from e
                events.append((position, direction, token_id))

        owned: set[TokenId] = set()
        for _, direction, token_id in sorted(events):
            if direction > 0:
                owned.add(token_id)
            else:
                owned.discard(token_id)

        logger.info(
            f"[{self.name}] {len(received)} received / {len(sent)} sent transfers "
            f"-> {len(owned)} held by {request.owner}"
        )
        return sorted(owned)
