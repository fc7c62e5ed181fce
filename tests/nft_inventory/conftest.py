"""
Shared fixtures for inventory tests.

FakeSession stands in for aiohttp.ClientSession: request()/get()/post()
return async context managers yielding FakeResponse objects, either
from a queue or from a responder callable.
"""

import json
from typing import Any, Callable, Optional

import pytest

from nft_inventory.models import (
    ListingRequest,
    PageResult,
    RawAttributes,
    SourceMetadata,
)
from nft_inventory.sources.base import AttributesSource, ListingSource, parse_offset_cursor


OWNER = "0x" + "11" * 20
NFT_CONTRACT = "0x" + "22" * 20
POOL_CONTRACT = "0x" + "33" * 20


class FakeResponse:
    """Minimal aiohttp response double."""

    def __init__(
        self,
        status: int = 200,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status = status
        self._payload = payload
        self.headers = headers or {}

    async def json(self, content_type: Optional[str] = "application/json") -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def text(self) -> str:
        if isinstance(self._payload, str):
            return self._payload
        return json.dumps(self._payload)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSession:
    """Records calls; answers from a responder or a response queue."""

    def __init__(self, responses: list[Any], responder: Optional[Callable[..., Any]] = None) -> None:
        self._responses = list(responses)
        self._responder = responder
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> Any:
        self.calls.append((method, url, kwargs))
        if self._responder is not None:
            result = self._responder(method, url, kwargs)
        elif len(self._responses) > 1:
            result = self._responses.pop(0)
        else:
            result = self._responses[0]
        if isinstance(result, Exception):
            raise result
        return result

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        return self._next(method, url, kwargs)

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._next("GET", url, kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next("POST", url, kwargs)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_response():
    """Factory for FakeResponse objects."""
    return FakeResponse


@pytest.fixture
def make_session():
    """
    Factory for FakeSession objects.

    make_session(resp1, resp2, ...) answers from a queue (last one repeats);
    make_session(responder=fn) answers with fn(method, url, kwargs).
    """
    def factory(*responses: Any, responder: Optional[Callable[..., Any]] = None) -> FakeSession:
        return FakeSession(list(responses), responder)
    return factory


@pytest.fixture
def word():
    """Encode an int as one 32-byte ABI word (hex, no prefix)."""
    return lambda value: format(value, "x").zfill(64)


@pytest.fixture
def recorded_sleep():
    """An async sleep that records requested delays without waiting."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


# ============================================================
# FAKE SOURCES
# ============================================================

class FakeListingSource(ListingSource):
    """Offset-cursor listing over a fixed id list."""

    def __init__(self, token_ids: list[int], failures: Optional[dict[Optional[str], Exception]] = None) -> None:
        super().__init__()
        self.token_ids = list(token_ids)
        self.failures = failures or {}
        self.cursors: list[Optional[str]] = []

    @property
    def name(self) -> str:
        return "fake_listing"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(name=self.name, display_name="Fake listing", kind="listing")

    async def fetch_page(self, request: ListingRequest, page_size: int, cursor: Optional[str] = None) -> PageResult:
        self.cursors.append(cursor)
        if cursor in self.failures:
            raise self.failures[cursor]
        offset = parse_offset_cursor(cursor, self.name)
        end = min(offset + page_size, len(self.token_ids))
        has_more = end < len(self.token_ids)
        return PageResult(
            identifiers=tuple(self.token_ids[offset:end]),
            next_cursor=str(end) if has_more else None,
            total_count=len(self.token_ids),
            has_more=has_more,
        )


class FakeAttributesSource(AttributesSource):
    """
    Answers getTokenInfo-style lookups in reverse order.

    failures maps a batch's first id to a list of errors raised on
    successive calls for that batch; once the list runs out calls succeed.
    """

    def __init__(
        self,
        failures: Optional[dict[int, list[Exception]]] = None,
        attributes: Optional[Callable[[int], dict[str, Any]]] = None,
    ) -> None:
        super().__init__()
        self.failures = {key: list(errors) for key, errors in (failures or {}).items()}
        self.attributes = attributes or (lambda token_id: {})
        self.batches: list[list[int]] = []

    @property
    def name(self) -> str:
        return "fake_attributes"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(name=self.name, display_name="Fake attributes", kind="attributes")

    async def fetch_attributes(self, token_ids: list[int]) -> list[RawAttributes]:
        self.batches.append(list(token_ids))
        pending = self.failures.get(token_ids[0]) if token_ids else None
        if pending:
            raise pending.pop(0)
        return [
            RawAttributes(
                token_id=token_id,
                token_uri=f"ipfs://cid/{token_id}.json",
                **self.attributes(token_id),
            )
            for token_id in reversed(token_ids)
        ]


@pytest.fixture
def listing_request():
    return ListingRequest(owner=OWNER, contract_address=NFT_CONTRACT)


@pytest.fixture
def fake_listing():
    """Factory: fake_listing(ids, failures={cursor: error})."""
    return FakeListingSource


@pytest.fixture
def fake_attributes():
    """Factory: fake_attributes(failures={first_id: [errors]}, attributes=fn)."""
    return FakeAttributesSource
