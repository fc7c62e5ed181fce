"""
MetadataResolver - Locator → metadata document, never failing.

Content-addressed locators (ipfs://, ipns://, /ipfs/..., bare CIDs) are
tried against each gateway in turn. Any failure, including a timeout or a
document without a name or image, yields the token's placeholder.
"""

import asyncio
import base64
import json
import logging
import re
from typing import Any, Iterable, Optional
from urllib.parse import unquote

import aiohttp

from nft_inventory.exceptions import MetadataError
from nft_inventory.models import ResolvedMetadata, TokenId


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

DEFAULT_GATEWAYS = (
    "https://surrounding-amaranth-catshark.myfilebase.com",
    "https://cloudflare-ipfs.com",
    "https://ipfs.io",
    "https://gateway.pinata.cloud",
    "https://dweb.link",
)

# CIDv0 (base58 "Qm...") or CIDv1 in base32 ("b...")
_BARE_CID = re.compile(r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}|b[a-z2-7]{58,})(/.*)?$")

_DATA_JSON_PREFIX = "data:application/json"


def content_path(locator: str) -> Optional[tuple[str, str]]:
    """
    Split a content-addressed locator into (namespace, path).

    Returns None for locators that are not content-addressed.

    >>> content_path("ipfs://ipfs/QmX/1.json")
    ('ipfs', 'QmX/1.json')
    """
    if locator.startswith("ipfs://"):
        path = locator[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return "ipfs", path
    if locator.startswith("ipns://"):
        return "ipns", locator[len("ipns://"):]
    for namespace in ("ipfs", "ipns"):
        prefix = f"/{namespace}/"
        if locator.startswith(prefix):
            return namespace, locator[len(prefix):]
    if _BARE_CID.match(locator):
        return "ipfs", locator
    return None


def gateway_url(gateway: str, namespace: str, path: str) -> str:
    return f"{gateway.rstrip('/')}/{namespace}/{path.lstrip('/')}"


def decode_data_uri(locator: str) -> Any:
    """Decode a data:application/json URI (base64 or URL-encoded)."""
    header, sep, payload = locator.partition(",")
    if not sep:
        raise ValueError("data URI without payload")
    if header.endswith(";base64"):
        text = base64.b64decode(payload).decode("utf-8")
    else:
        text = unquote(payload)
    return json.loads(text)


class MetadataResolver:
    """
    Resolves token metadata with a fixed per-token timeout.

    Gateways are tried in order; the first is also used to rewrite
    content-addressed image fields. When metadata_url_template is set it
    replaces the on-chain locator, e.g.
    "https://gw.example/ipns/<key>/{token_id}.json".
    """

    def __init__(
        self,
        gateways: Optional[Iterable[str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        metadata_url_template: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.gateways = tuple(gateways) if gateways else DEFAULT_GATEWAYS
        self.timeout = timeout
        self.metadata_url_template = metadata_url_template
        self._session = session
        self._owns_session = session is None

        self._resolved = 0
        self._placeholders = 0
        self._gateway_failures = 0

    @property
    def name(self) -> str:
        return "metadata"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    # ─────────────────────────────────────────────────────────────
    # Locator handling
    # ─────────────────────────────────────────────────────────────

    def effective_locator(self, token_id: TokenId, locator: Optional[str]) -> Optional[str]:
        if self.metadata_url_template:
            return self.metadata_url_template.format(token_id=token_id)
        return locator

    def candidate_urls(self, locator: str) -> list[str]:
        """Every URL worth trying for `locator`, in preference order."""
        parsed = content_path(locator)
        if parsed is not None:
            namespace, path = parsed
            return [gateway_url(gw, namespace, path) for gw in self.gateways]
        return [locator]

    def rewrite_image(self, image: str) -> str:
        """Translate a content-addressed image locator via the primary gateway."""
        parsed = content_path(image) if image else None
        if parsed is None:
            return image
        namespace, path = parsed
        return gateway_url(self.gateways[0], namespace, path)

    # ─────────────────────────────────────────────────────────────
    # Resolution
    # ─────────────────────────────────────────────────────────────

    async def resolve(self, token_id: TokenId, locator: Optional[str]) -> ResolvedMetadata:
        """Resolve one token's metadata; returns the placeholder on any failure."""
        target = self.effective_locator(token_id, locator)
        if not target:
            self._placeholders += 1
            return ResolvedMetadata.placeholder(token_id, locator)

        try:
            document = await asyncio.wait_for(self._load(token_id, target), timeout=self.timeout)
            metadata = self._build(token_id, target, document)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Token {token_id}: timed out after {self.timeout}s")
            self._placeholders += 1
            return ResolvedMetadata.placeholder(token_id, locator)
        except MetadataError as e:
            logger.warning(f"[{self.name}] Token {token_id}: {e.message}")
            self._placeholders += 1
            return ResolvedMetadata.placeholder(token_id, locator)

        self._resolved += 1
        return metadata

    async def resolve_many(
        self,
        pairs: Iterable[tuple[TokenId, Optional[str]]],
    ) -> dict[TokenId, ResolvedMetadata]:
        """Resolve several tokens concurrently, keyed by token id."""
        pairs = list(pairs)
        results = await asyncio.gather(*(self.resolve(token_id, locator) for token_id, locator in pairs))
        return {token_id: metadata for (token_id, _), metadata in zip(pairs, results)}

    async def _load(self, token_id: TokenId, locator: str) -> Any:
        if locator.startswith(_DATA_JSON_PREFIX):
            try:
                return decode_data_uri(locator)
            except ValueError as e:
                raise MetadataError(
                    f"Undecodable data URI: {e}",
                    token_id=token_id,
                    locator=locator[:80],
                    original_error=e,
                ) from e

        urls = self.candidate_urls(locator)
        # Equal share per location; resolve() still caps the whole load
        per_url_timeout = self.timeout / len(urls)
        last_error: Optional[Exception] = None
        for url in urls:
            try:
                return await asyncio.wait_for(self._fetch_json(url), timeout=per_url_timeout)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, MetadataError) as e:
                self._gateway_failures += 1
                logger.debug(f"[{self.name}] Token {token_id}: {url} failed: {e}")
                last_error = e

        raise MetadataError(
            f"All {len(urls)} locations failed: {last_error}",
            token_id=token_id,
            locator=locator,
            original_error=last_error,
        )

    async def _fetch_json(self, url: str) -> Any:
        session = await self._get_session()
        async with session.get(url) as response:
            if response.status >= 400:
                raise MetadataError(f"HTTP {response.status} from {url}", locator=url)
            return await response.json(content_type=None)

    def _build(self, token_id: TokenId, locator: str, document: Any) -> ResolvedMetadata:
        if not isinstance(document, dict):
            raise MetadataError(
                "Metadata document is not a JSON object",
                token_id=token_id,
                locator=locator,
            )
        name = document.get("name")
        image = document.get("image") or document.get("image_url")
        if not name and not image:
            raise MetadataError(
                "Metadata document has neither name nor image",
                token_id=token_id,
                locator=locator,
            )

        traits = document.get("attributes")
        return ResolvedMetadata(
            name=str(name) if name else f"#{token_id}",
            image=self.rewrite_image(str(image)) if image else "",
            description=document.get("description"),
            attributes=tuple(t for t in traits if isinstance(t, dict)) if isinstance(traits, list) else (),
            raw=document,
        )

    def stats(self) -> dict[str, int]:
        return {
            "resolved": self._resolved,
            "placeholders": self._placeholders,
            "gateway_failures": self._gateway_failures,
        }

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
