"""
Contract attributes source.

One JSON-RPC batch per call: getTokenInfo(uint256[]) for the whole batch
plus tokenURI(id) for every id. A failed tokenURI leaves that record's
token_uri as None; a failed getTokenInfo fails the batch.
"""

import logging
from typing import Optional

import aiohttp

from nft_inventory import abi
from nft_inventory.exceptions import InventoryError, NormalizationError
from nft_inventory.models import RawAttributes, SourceMetadata, TokenId
from nft_inventory.sources.base import AttributesSource
from nft_inventory.sources.rpc import JsonRpcMixin


logger = logging.getLogger(__name__)


class ContractAttributesSource(JsonRpcMixin, AttributesSource):
    """Reads token state and locators from the collection contract."""

    MAX_BATCH_SIZE = 30

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout=timeout, session=session)
        self.rpc_url = rpc_url
        self.contract_address = contract_address

    @property
    def name(self) -> str:
        return "contract_attributes"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="getTokenInfo + tokenURI",
            kind="attributes",
            max_batch_size=self.MAX_BATCH_SIZE,
            base_url=self.rpc_url,
            tags=["rpc", "batch"],
        )

    async def fetch_attributes(self, token_ids: list[TokenId]) -> list[RawAttributes]:
        if not token_ids:
            return []

        calls = [(self.contract_address, abi.encode_uint_array_call(abi.SELECTOR_GET_TOKEN_INFO, token_ids))]
        calls.extend(
            (self.contract_address, abi.encode_call(abi.SELECTOR_TOKEN_URI, abi.encode_uint(token_id)))
            for token_id in token_ids
        )
        info_outcome, *uri_outcomes = await self.eth_call_batch(calls)

        if isinstance(info_outcome, InventoryError):
            self._on_error(info_outcome, token_ids)
            raise info_outcome

        token_uris: dict[TokenId, str] = {}
        for token_id, outcome in zip(token_ids, uri_outcomes):
            if isinstance(outcome, InventoryError) or not outcome:
                logger.debug(f"[{self.name}] tokenURI({token_id}) unavailable: {outcome}")
                continue
            try:
                token_uris[token_id] = abi.decode_string(outcome)
            except (AttributeError, ValueError, UnicodeDecodeError) as e:
                logger.debug(f"[{self.name}] tokenURI({token_id}) undecodable: {e}")

        try:
            return abi.decode_token_info_array(info_outcome, token_uris)
        except (AttributeError, ValueError) as e:
            raise NormalizationError(
                message=f"Undecodable getTokenInfo result: {e}",
                source_name=self.name,
                raw_data=info_outcome,
                original_error=e,
            ) from e
