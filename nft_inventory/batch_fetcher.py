"""
BatchFetcher - Bounded, retried attribute lookups.

A batch never exceeds the source's batch ceiling and comes back in the
order the ids went in, whatever order the source answered in.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from nft_inventory.exceptions import ConfigurationError, NormalizationError
from nft_inventory.models import RawAttributes, TokenId
from nft_inventory.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES, retry_with_backoff
from nft_inventory.sources.base import AttributesSource


logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 30


class BatchFetcher:
    """Fetches attributes for at most max_batch_size ids per call."""

    def __init__(
        self,
        source: AttributesSource,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_batch_size <= 0:
            raise ConfigurationError(
                "max_batch_size must be positive",
                source_name=source.name,
                config_key="max_batch_size",
            )
        self.source = source
        self.max_batch_size = max_batch_size
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

        self._batches = 0
        self._attempts = 0
        self._retries = 0
        self._failures = 0
        self._total_delay = 0.0

    async def fetch_batch(self, identifiers: list[TokenId]) -> list[RawAttributes]:
        """
        Fetch attributes for `identifiers`, retrying on rate limits.

        Args:
            identifiers: At most max_batch_size ids

        Returns:
            One RawAttributes per id, in input order

        Raises:
            ConfigurationError: If the batch is larger than max_batch_size
            NormalizationError: If the source omitted a requested id
            The source's error once retries are exhausted
        """
        if len(identifiers) > self.max_batch_size:
            raise ConfigurationError(
                f"Batch of {len(identifiers)} exceeds maximum of {self.max_batch_size}",
                source_name=self.source.name,
                config_key="max_batch_size",
            )
        if not identifiers:
            return []

        ids = list(identifiers)
        self._batches += 1

        async def attempt() -> list[RawAttributes]:
            self._attempts += 1
            return await self.source.fetch_attributes(ids)

        try:
            results = await retry_with_backoff(
                attempt,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                sleep=self._sleep,
                on_retry=self._on_retry,
                label=f"[{self.source.name}] getTokenInfo({len(ids)} ids)",
            )
        except Exception:
            self._failures += 1
            raise

        return self._reorder(ids, results)

    def _on_retry(self, attempt: int, delay: float, error: BaseException) -> None:
        self._retries += 1
        self._total_delay += delay

    def _reorder(self, ids: list[TokenId], results: list[RawAttributes]) -> list[RawAttributes]:
        by_id = {attrs.token_id: attrs for attrs in results}
        missing = [token_id for token_id in ids if token_id not in by_id]
        if missing:
            raise NormalizationError(
                message=f"Source omitted {len(missing)} requested ids",
                source_name=self.source.name,
                raw_data=missing,
                field_name="token_id",
            )
        return [by_id[token_id] for token_id in ids]

    def stats(self) -> dict[str, float]:
        return {
            "batches": self._batches,
            "attempts": self._attempts,
            "retries": self._retries,
            "failures": self._failures,
            "total_retry_delay": self._total_delay,
        }


def split_batches(identifiers: list[TokenId], size: int) -> list[list[TokenId]]:
    """Split ids into consecutive chunks of at most `size`."""
    return [identifiers[i:i + size] for i in range(0, len(identifiers), size)]
