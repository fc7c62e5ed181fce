"""
PageWalker - Cursor-driven enumeration of a listing source.

Listing errors are never skipped: a page that cannot be fetched leaves a
gap the caller cannot detect, so the error propagates to the pipeline.
"""

import logging
from typing import AsyncIterator, Optional

from nft_inventory.models import ListingRequest, PageResult
from nft_inventory.sources.base import ListingSource


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 100


class PageWalker:
    """
    Walks a ListingSource from the first cursor to exhaustion.

    Stops when a page reports has_more=False, when a page comes back
    empty, or when max_pages pages have been fetched.
    """

    def __init__(
        self,
        source: ListingSource,
        request: ListingRequest,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if max_pages <= 0:
            raise ValueError("max_pages must be positive")

        self.source = source
        self.request = request
        self.page_size = page_size
        self.max_pages = max_pages

        self.pages_fetched = 0
        self.identifiers_seen = 0
        self.total_count = 0
        self.has_more = True
        self.ceiling_reached = False
        self._cursor: Optional[str] = None

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def exhausted(self) -> bool:
        return not self.has_more or self.ceiling_reached

    async def next_page(self, cursor: Optional[str] = None) -> PageResult:
        """Fetch the page at `cursor` and update walk statistics."""
        page = await self.source.fetch_page(self.request, self.page_size, cursor)

        self.pages_fetched += 1
        self.identifiers_seen += len(page)
        self.total_count = page.total_count
        self.has_more = page.has_more and not page.is_empty
        self._cursor = page.next_cursor

        logger.debug(
            f"[{self.source.name}] Page {self.pages_fetched}: {len(page)} ids "
            f"({self.identifiers_seen}/{self.total_count})"
        )
        return page

    async def walk(self) -> AsyncIterator[PageResult]:
        """Yield every page, starting from the first cursor."""
        self._cursor = None
        self.pages_fetched = 0
        self.identifiers_seen = 0
        self.has_more = True
        self.ceiling_reached = False

        while True:
            page = await self.next_page(self._cursor)
            yield page

            if not self.has_more:
                break
            if self._cursor is None:
                logger.warning(
                    f"[{self.source.name}] has_more without a cursor after page "
                    f"{self.pages_fetched}, stopping"
                )
                self.has_more = False
                break
            if self.pages_fetched >= self.max_pages:
                # Source exhausted the page budget; treat as a normal end.
                self.ceiling_reached = True
                logger.warning(
                    f"[{self.source.name}] Page ceiling of {self.max_pages} reached "
                    f"with {self.identifiers_seen}/{self.total_count} ids listed"
                )
                break

    def stats(self) -> dict[str, object]:
        return {
            "pages_fetched": self.pages_fetched,
            "identifiers_seen": self.identifiers_seen,
            "total_count": self.total_count,
            "has_more": self.has_more,
            "ceiling_reached": self.ceiling_reached,
        }
