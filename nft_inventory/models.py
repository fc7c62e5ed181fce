"""
Inventory Data Models - Records, pages, snapshots and health state.

Everything handed to consumers is immutable. A record is never changed
in place: a refreshed record replaces the old one inside a new snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional


TokenId = int


class SourceStatus(Enum):
    """Health status of a data source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RecordKind(Enum):
    """Derived classification of a token."""
    WARDEN = "warden"
    EGG = "egg"
    SNAKE = "snake"
    HUMAN = "human"


class PipelineState(Enum):
    """Aggregation pipeline state machine."""
    IDLE = "idle"
    LISTING = "listing"
    BATCH_FETCHING = "batch_fetching"
    METADATA_ENRICHING = "metadata_enriching"
    PUBLISHING = "publishing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ListingRequest:
    """Whose tokens to list, and from which collection."""
    owner: str
    contract_address: str

    def validate(self) -> None:
        """Validate request parameters."""
        for label, value in (("owner", self.owner), ("contract_address", self.contract_address)):
            if not value or not value.startswith("0x") or len(value) != 42:
                raise ValueError(f"{label} must be a 0x-prefixed 20-byte address")


@dataclass(frozen=True)
class PageResult:
    """One page of identifiers from a listing source."""
    identifiers: tuple[TokenId, ...]
    next_cursor: Optional[str]
    total_count: int
    has_more: bool

    @property
    def is_empty(self) -> bool:
        return not self.identifiers

    def __len__(self) -> int:
        return len(self.identifiers)


@dataclass(frozen=True)
class RawAttributes:
    """
    On-chain state for one token, as returned by getTokenInfo.

    token_uri is the content locator for the token's metadata document.
    """
    token_id: TokenId
    owner: str = ""
    exists: bool = True
    is_snake: bool = False
    is_jailed: bool = False
    jail_time: int = 0
    is_egg: bool = False
    mint_time: int = 0
    force_hatched: bool = False
    evolved: bool = False
    owner_is_warden: bool = False
    owner_is_jail_exempt: bool = False
    swap_mint_time: int = 0
    can_unwrap: bool = False
    token_uri: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape used by the cache endpoint."""
        return {
            "tokenId": self.token_id,
            "owner": self.owner,
            "exists": self.exists,
            "isSnake": self.is_snake,
            "isJailed": self.is_jailed,
            "jailTime": self.jail_time,
            "isEgg": self.is_egg,
            "mintTime": self.mint_time,
            "forceHatched": self.force_hatched,
            "evolved": self.evolved,
            "ownerIsWarden": self.owner_is_warden,
            "ownerIsJailExempt": self.owner_is_jail_exempt,
            "swapMintTime": self.swap_mint_time,
            "canUnwrap": self.can_unwrap,
            "tokenUri": self.token_uri,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawAttributes":
        """Create from the camelCase cache shape."""
        return cls(
            token_id=int(data["tokenId"]),
            owner=data.get("owner", "") or "",
            exists=bool(data.get("exists", True)),
            is_snake=bool(data.get("isSnake", False)),
            is_jailed=bool(data.get("isJailed", False)),
            jail_time=int(data.get("jailTime") or 0),
            is_egg=bool(data.get("isEgg", False)),
            mint_time=int(data.get("mintTime") or 0),
            force_hatched=bool(data.get("forceHatched", False)),
            evolved=bool(data.get("evolved", False)),
            owner_is_warden=bool(data.get("ownerIsWarden", False)),
            owner_is_jail_exempt=bool(data.get("ownerIsJailExempt", False)),
            swap_mint_time=int(data.get("swapMintTime") or 0),
            can_unwrap=bool(data.get("canUnwrap", False)),
            token_uri=data.get("tokenUri"),
        )


@dataclass(frozen=True)
class ResolvedMetadata:
    """Human-facing metadata for one token."""
    name: str
    image: str
    description: Optional[str] = None
    attributes: tuple[Mapping[str, Any], ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict)
    is_placeholder: bool = False

    @classmethod
    def placeholder(cls, token_id: TokenId, locator: Optional[str] = None) -> "ResolvedMetadata":
        """Deterministic stand-in used until (or instead of) real metadata."""
        return cls(
            name=f"#{token_id}",
            image=locator or "",
            is_placeholder=True,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "name": self.name,
            "image": self.image,
        })
        if self.description is not None:
            data["description"] = self.description
        if self.attributes:
            data["attributes"] = [dict(a) for a in self.attributes]
        return data


@dataclass(frozen=True)
class EnrichedRecord:
    """The unit surfaced to consumers: attributes + metadata + kind."""
    token_id: TokenId
    attributes: RawAttributes
    metadata: ResolvedMetadata
    kind: RecordKind

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def image_url(self) -> str:
        return self.metadata.image

    @property
    def is_resolved(self) -> bool:
        return not self.metadata.is_placeholder

    def with_metadata(self, metadata: ResolvedMetadata) -> "EnrichedRecord":
        """Return a copy carrying refreshed metadata."""
        return replace(self, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the cache endpoint's flat camelCase shape."""
        data = self.attributes.to_dict()
        data.update({
            "imageUrl": self.metadata.image,
            "name": self.metadata.name,
            "nftType": self.kind.value,
            "metadata": self.metadata.to_dict(),
        })
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnrichedRecord":
        """Create from the cache endpoint's flat camelCase shape."""
        from nft_inventory.classification import classify

        attributes = RawAttributes.from_dict(data)
        raw_meta = data.get("metadata")
        if not isinstance(raw_meta, Mapping):
            raw_meta = {}
        name = data.get("name") or raw_meta.get("name") or f"#{attributes.token_id}"
        image = data.get("imageUrl") or raw_meta.get("image") or ""
        metadata = ResolvedMetadata(
            name=name,
            image=image,
            description=raw_meta.get("description"),
            attributes=tuple(raw_meta.get("attributes") or ()),
            raw=dict(raw_meta),
            is_placeholder=not raw_meta and not data.get("name"),
        )
        kind_value = data.get("nftType")
        try:
            kind = RecordKind(kind_value) if kind_value else classify(attributes)
        except ValueError:
            kind = classify(attributes)
        return cls(
            token_id=attributes.token_id,
            attributes=attributes,
            metadata=metadata,
            kind=kind,
        )


def _build_index(records: tuple[EnrichedRecord, ...]) -> Mapping[TokenId, int]:
    return MappingProxyType({record.token_id: i for i, record in enumerate(records)})


@dataclass(frozen=True)
class InventorySnapshot:
    """
    Immutable view of the published collection.

    records is a flat tuple; index maps token id to position in it.
    """
    records: tuple[EnrichedRecord, ...] = ()
    index: Mapping[TokenId, int] = field(default_factory=lambda: MappingProxyType({}))
    state: PipelineState = PipelineState.IDLE
    total_count: int = 0
    has_more: bool = False
    error: Optional[str] = None
    run_id: int = 0

    @classmethod
    def build(
        cls,
        records: tuple[EnrichedRecord, ...],
        state: PipelineState,
        total_count: int = 0,
        has_more: bool = False,
        error: Optional[str] = None,
        run_id: int = 0,
    ) -> "InventorySnapshot":
        records = tuple(records)
        return cls(
            records=records,
            index=_build_index(records),
            state=state,
            total_count=total_count,
            has_more=has_more,
            error=error,
            run_id=run_id,
        )

    def get(self, token_id: TokenId) -> Optional[EnrichedRecord]:
        position = self.index.get(token_id)
        return self.records[position] if position is not None else None

    def token_ids(self) -> list[TokenId]:
        return [record.token_id for record in self.records]

    @property
    def is_complete(self) -> bool:
        return self.state == PipelineState.DONE

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[EnrichedRecord]:
        return iter(self.records)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self.index

    def to_dict(self) -> dict[str, Any]:
        return {
            "nfts": [record.to_dict() for record in self.records],
            "state": self.state.value,
            "totalHeld": self.total_count,
            "hasMore": self.has_more,
            "error": self.error,
            "runId": self.run_id,
        }


@dataclass
class CacheEntry:
    """Snapshot of a complete collection with its fetch time."""
    records: tuple[EnrichedRecord, ...]
    total_count: int
    fetched_at: float
    source: str = "pipeline"

    @property
    def count(self) -> int:
        return len(self.records)

    def age_seconds(self, now: float) -> float:
        return now - self.fetched_at

    def is_valid(self, now: float, ttl_seconds: float) -> bool:
        return self.age_seconds(now) < ttl_seconds


@dataclass(frozen=True)
class CacheResult:
    """What TieredCache.get() hands back."""
    records: tuple[EnrichedRecord, ...]
    total_count: int
    is_from_cache: bool
    source: str
    fetched_at: float
    is_stale: bool = False

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RateLimitStatus:
    """Remaining requests and countdown for the cache endpoint window."""
    limit: int
    remaining: int
    reset_in_seconds: float

    @property
    def is_limited(self) -> bool:
        return self.remaining <= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "resetIn": round(self.reset_in_seconds),
        }


@dataclass
class SourceHealth:
    """Health status of a data source."""
    status: SourceStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def is_healthy(self) -> bool:
        """Check if source is operational."""
        return self.status == SourceStatus.HEALTHY

    def is_usable(self) -> bool:
        """Check if source can still be used."""
        return self.status in (SourceStatus.HEALTHY, SourceStatus.DEGRADED, SourceStatus.UNKNOWN)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "rate_limit_remaining": self.rate_limit_remaining,
            "rate_limit_reset": self.rate_limit_reset.isoformat() if self.rate_limit_reset else None,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }


@dataclass
class SourceMetadata:
    """Static description of a data source."""
    name: str
    display_name: str
    kind: str  # "listing" or "attributes"
    max_batch_size: Optional[int] = None
    max_page_size: Optional[int] = None
    requires_api_key: bool = False
    base_url: str = ""
    documentation_url: str = ""
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "kind": self.kind,
            "max_batch_size": self.max_batch_size,
            "max_page_size": self.max_page_size,
            "requires_api_key": self.requires_api_key,
            "base_url": self.base_url,
            "documentation_url": self.documentation_url,
            "tags": self.tags,
        }


@dataclass
class SourceIncident:
    """Record of a failure absorbed somewhere in the pipeline."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    token_ids: Optional[list[TokenId]] = None
    context: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "incident_type": self.incident_type,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "token_ids": self.token_ids,
            "context": self.context,
        }
