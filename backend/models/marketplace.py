"""
Marketplace Models
Explicit DTOs for everything that crosses a data-source boundary

The subgraph returns BigInts as strings and enums as either strings or
integers, the contract returns nested tuples, Neynar returns nested dicts.
Everything is converted once, here, so core logic never touches raw payloads.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

# type(uint48).max: an end time that never arrives
MAX_UINT48 = 281474976710655
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ============================================
# ENUMS
# ============================================

class ListingType(str, Enum):
    INVALID = "INVALID"
    INDIVIDUAL_AUCTION = "INDIVIDUAL_AUCTION"
    FIXED_PRICE = "FIXED_PRICE"
    DYNAMIC_PRICE = "DYNAMIC_PRICE"
    OFFERS_ONLY = "OFFERS_ONLY"
    UNKNOWN = "UNKNOWN"


class TokenSpec(str, Enum):
    NONE = "NONE"
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"
    UNDEFINED = "UNDEFINED"


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FINALIZED = "FINALIZED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


class IdentitySource(str, Enum):
    SOCIAL = "social"
    ENS = "ens"
    UNRESOLVED = "unresolved"


class ContractSource(str, Enum):
    EXPLORER_API = "explorer-api"
    ONCHAIN = "on-chain"


# ============================================
# HELPERS
# ============================================

def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _lower(value: Any) -> Optional[str]:
    return value.lower() if isinstance(value, str) and value else None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


# ============================================
# IDENTITY
# ============================================

@dataclass
class Identity(_Serializable):
    """What is known about one address"""
    address: str
    source: IdentitySource
    fid: Optional[int] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    ens_name: Optional[str] = None
    verified_wallets: List[str] = field(default_factory=list)
    cached_at: Optional[float] = None
    expires_at: Optional[float] = None

    # How this particular resolution was satisfied: cached | social | ens
    resolved_via: Optional[str] = None

    def __post_init__(self):
        self.address = self.address.lower()
        self.source = IdentitySource(self.source)
        wallets = [self.address]
        for wallet in self.verified_wallets or []:
            w = _lower(wallet)
            if w and w not in wallets:
                wallets.append(w)
        self.verified_wallets = wallets

    @property
    def is_resolved(self) -> bool:
        return self.source is not IdentitySource.UNRESOLVED

    @property
    def label(self) -> Optional[str]:
        """Best human-readable name"""
        return self.display_name or self.username or self.ens_name

    def to_cache_value(self) -> Dict[str, Any]:
        return {
            "fid": self.fid,
            "username": self.username,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "ens_name": self.ens_name,
            "verified_wallets": self.verified_wallets,
            "source": self.source.value,
        }

    @classmethod
    def from_cache(cls, entry, resolved_via: str = "cached") -> "Identity":
        value = entry.value
        return cls(
            address=value["address"],
            source=value.get("source") or IdentitySource.UNRESOLVED,
            fid=value.get("fid"),
            username=value.get("username"),
            display_name=value.get("display_name"),
            avatar_url=value.get("avatar_url"),
            ens_name=value.get("ens_name"),
            verified_wallets=value.get("verified_wallets") or [],
            cached_at=entry.cached_at,
            expires_at=entry.expires_at,
            resolved_via=resolved_via,
        )


@dataclass
class SocialUser:
    """A Farcaster user as returned by Neynar"""
    fid: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    custody_address: Optional[str] = None
    verified_addresses: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SocialUser":
        verified = data.get("verified_addresses") or {}
        if isinstance(verified, dict):
            eth = verified.get("eth_addresses") or []
        else:
            eth = verified
        return cls(
            fid=_int(data.get("fid")),
            username=data.get("username"),
            display_name=data.get("display_name"),
            pfp_url=data.get("pfp_url"),
            custody_address=_lower(data.get("custody_address")),
            verified_addresses=[a.lower() for a in eth if isinstance(a, str)],
        )


# ============================================
# CONTRACT / TOKEN FACTS
# ============================================

@dataclass
class ContractInfo(_Serializable):
    contract_address: str
    creator_address: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    source: Optional[ContractSource] = None

    def __post_init__(self):
        self.contract_address = self.contract_address.lower()
        self.creator_address = _lower(self.creator_address)
        if self.source is not None:
            self.source = ContractSource(self.source)

    def to_cache_value(self) -> Dict[str, Any]:
        return {
            "creator_address": self.creator_address,
            "name": self.name,
            "symbol": self.symbol,
            "source": self.source.value if self.source else None,
        }

    @classmethod
    def from_cache(cls, entry) -> "ContractInfo":
        v = entry.value
        return cls(
            contract_address=v["contract_address"],
            creator_address=v.get("creator_address"),
            name=v.get("name"),
            symbol=v.get("symbol"),
            source=v.get("source"),
        )


@dataclass
class TokenSupplyFact(_Serializable):
    contract_address: str
    token_id: str
    total_supply: int
    is_lazy_mint: bool = False
    cached_at: Optional[float] = None
    expires_at: Optional[float] = None

    @classmethod
    def from_cache(cls, entry) -> "TokenSupplyFact":
        v = entry.value
        return cls(
            contract_address=v["contract_address"],
            token_id=v["token_id"],
            total_supply=v["total_supply"],
            is_lazy_mint=v["is_lazy_mint"],
            cached_at=entry.cached_at,
            expires_at=entry.expires_at,
        )


@dataclass
class TokenInfo(_Serializable):
    """Payment token (ERC-20 or native ETH)"""
    symbol: str
    decimals: int
    address: Optional[str] = None
    is_native: bool = False


@dataclass
class NFTMetadata(_Serializable):
    name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    artist: Optional[str] = None
    creator: Optional[str] = None
    attributes: List[Dict[str, Any]] = field(default_factory=list)
    token_uri: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any], token_uri: Optional[str] = None) -> "NFTMetadata":
        attributes = data.get("attributes")
        meta = cls(
            name=data.get("name"),
            title=data.get("title"),
            description=data.get("description"),
            image=data.get("image") or data.get("image_url"),
            artist=data.get("artist"),
            creator=data.get("creator") if isinstance(data.get("creator"), str) else None,
            attributes=attributes if isinstance(attributes, list) else [],
            token_uri=token_uri,
        )
        if not meta.title and meta.name:
            meta.title = meta.name
        if not meta.artist and meta.creator:
            meta.artist = meta.creator
        return meta


# ============================================
# SUBGRAPH ROWS
# ============================================

@dataclass
class BidRecord(_Serializable):
    id: str
    bidder: str
    amount: str
    timestamp: int

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "BidRecord":
        return cls(
            id=str(data.get("id", "")),
            bidder=_lower(data.get("bidder")) or "",
            amount=str(data.get("amount") or "0"),
            timestamp=_int(data.get("timestamp")),
        )


@dataclass
class PurchaseRecord(_Serializable):
    id: str
    buyer: str
    amount: str
    count: int
    timestamp: int
    transaction_hash: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "PurchaseRecord":
        return cls(
            id=str(data.get("id", "")),
            buyer=_lower(data.get("buyer")) or "",
            amount=str(data.get("amount") or "0"),
            count=_int(data.get("count"), 1),
            timestamp=_int(data.get("timestamp")),
            transaction_hash=data.get("transactionHash"),
        )


@dataclass
class OfferRecord(_Serializable):
    id: str
    offerer: str
    amount: str
    timestamp: int
    status: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "OfferRecord":
        return cls(
            id=str(data.get("id", "")),
            offerer=_lower(data.get("offerer")) or "",
            amount=str(data.get("amount") or "0"),
            timestamp=_int(data.get("timestamp")),
            status=data.get("status"),
        )


@dataclass
class IndexedListing:
    """A listing row from the subgraph. Enum fields stay raw until normalized."""
    id: str
    listing_id: str
    seller: str
    token_address: Optional[str]
    token_id: Optional[str]
    token_spec_raw: Any
    listing_type_raw: Any
    initial_amount: str
    total_available: int
    total_per_sale: int
    start_time: int
    end_time: int
    lazy: bool
    status_raw: Any
    total_sold: int
    has_bid: bool
    finalized: bool
    erc20: Optional[str] = None
    marketplace: Optional[str] = None
    created_at: Optional[int] = None
    created_at_block: Optional[int] = None
    updated_at: Optional[int] = None
    bids: List[BidRecord] = field(default_factory=list)
    purchases: List[PurchaseRecord] = field(default_factory=list)
    offers: List[OfferRecord] = field(default_factory=list)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "IndexedListing":
        listing_id = str(data.get("listingId") or data.get("id") or "")
        return cls(
            id=str(data.get("id") or listing_id),
            listing_id=listing_id,
            seller=_lower(data.get("seller")) or "",
            token_address=_lower(data.get("tokenAddress")),
            token_id=str(data["tokenId"]) if data.get("tokenId") is not None else None,
            token_spec_raw=data.get("tokenSpec"),
            listing_type_raw=data.get("listingType"),
            initial_amount=str(data.get("initialAmount") or "0"),
            total_available=_int(data.get("totalAvailable")),
            total_per_sale=_int(data.get("totalPerSale")),
            start_time=_int(data.get("startTime")),
            end_time=_int(data.get("endTime")),
            lazy=bool(data.get("lazy")),
            status_raw=data.get("status"),
            total_sold=_int(data.get("totalSold")),
            has_bid=bool(data.get("hasBid")),
            finalized=bool(data.get("finalized")),
            erc20=_lower(data.get("erc20")),
            marketplace=_lower(data.get("marketplace")),
            created_at=_int(data.get("createdAt"), None),
            created_at_block=_int(data.get("createdAtBlock"), None),
            updated_at=_int(data.get("updatedAt"), None),
            bids=[BidRecord.from_graph(b) for b in data.get("bids") or []],
            purchases=[PurchaseRecord.from_graph(p) for p in data.get("purchases") or []],
            offers=[OfferRecord.from_graph(o) for o in data.get("offers") or []],
        )

    def comparable(self) -> Dict[str, Any]:
        """Fields shared with the on-chain struct, for reconciliation"""
        return {
            "seller": self.seller,
            "listingType": self.listing_type_raw,
            "tokenSpec": self.token_spec_raw,
            "totalAvailable": self.total_available,
            "totalSold": self.total_sold,
            "totalPerSale": self.total_per_sale,
            "finalized": self.finalized,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


@dataclass
class OnChainListing:
    """Decoded marketplace getListing(uint40) struct"""
    id: int
    seller: str
    finalized: bool
    total_sold: int
    marketplace_bps: int
    referrer_bps: int
    initial_amount: int
    listing_type_raw: int
    total_available: int
    total_per_sale: int
    extension_interval: int
    min_increment_bps: int
    erc20: str
    identity_verifier: str
    start_time: int
    end_time: int
    token_id: int
    token_address: str
    token_spec_raw: int
    lazy: bool
    bid_amount: int = 0
    bidder: Optional[str] = None
    bid_timestamp: int = 0

    @classmethod
    def from_chain(cls, raw: Any) -> "OnChainListing":
        """
        Decode the tuple web3 returns for the Listing struct:
        (id, seller, finalized, totalSold, marketplaceBPS, referrerBPS,
         details, token, receivers, fees, bid, offersAccepted)
        """
        details = raw[6]
        token = raw[7]
        bid = raw[10] if len(raw) > 10 else None

        bidder = _lower(bid[1]) if bid else None
        if bidder == ZERO_ADDRESS:
            bidder = None

        return cls(
            id=int(raw[0]),
            seller=raw[1].lower(),
            finalized=bool(raw[2]),
            total_sold=int(raw[3]),
            marketplace_bps=int(raw[4]),
            referrer_bps=int(raw[5]),
            initial_amount=int(details[0]),
            listing_type_raw=int(details[1]),
            total_available=int(details[2]),
            total_per_sale=int(details[3]),
            extension_interval=int(details[4]),
            min_increment_bps=int(details[5]),
            erc20=details[6].lower(),
            identity_verifier=details[7].lower(),
            start_time=int(details[8]),
            end_time=int(details[9]),
            token_id=int(token[0]),
            token_address=token[1].lower(),
            token_spec_raw=int(token[2]),
            lazy=bool(token[3]),
            bid_amount=int(bid[0]) if bid else 0,
            bidder=bidder,
            bid_timestamp=int(bid[5]) if bid else 0,
        )

    @property
    def exists(self) -> bool:
        """getListing returns a zeroed struct for unknown ids"""
        return self.seller != ZERO_ADDRESS

    def comparable(self) -> Dict[str, Any]:
        return {
            "seller": self.seller,
            "listingType": self.listing_type_raw,
            "tokenSpec": self.token_spec_raw,
            "totalAvailable": self.total_available,
            "totalSold": self.total_sold,
            "totalPerSale": self.total_per_sale,
            "finalized": self.finalized,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


# ============================================
# ENRICHED VIEWS
# ============================================

@dataclass
class FieldDiscrepancy(_Serializable):
    field: str
    indexed: Any
    onchain: Any
    chosen: str


@dataclass
class SourceComparison(_Serializable):
    listing_id: str
    priority: str
    indexed: Optional[Dict[str, Any]] = None
    onchain: Optional[Dict[str, Any]] = None
    discrepancies: List[FieldDiscrepancy] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.indexed is not None and self.onchain is not None and not self.discrepancies


@dataclass
class EnrichedListing(_Serializable):
    """The resolved view handed to consumers"""
    listing_id: str
    seller: str
    listing_type: ListingType
    token_spec: TokenSpec
    status: ListingStatus
    token_address: Optional[str]
    token_id: Optional[str]
    initial_amount: str
    total_available: int
    total_per_sale: int
    total_sold: int
    start_time: int
    end_time: int
    effective_end_time: Optional[int]
    lazy: bool
    finalized: bool
    has_bid: bool
    erc20: Optional[str] = None

    bid_count: int = 0
    highest_bid: Optional[BidRecord] = None
    bids: List[BidRecord] = field(default_factory=list)
    purchases: List[PurchaseRecord] = field(default_factory=list)
    offers: List[OfferRecord] = field(default_factory=list)

    title: Optional[str] = None
    artist: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[NFTMetadata] = None

    payment_token: Optional[TokenInfo] = None
    token_supply: Optional[TokenSupplyFact] = None
    collection_supply: Optional[int] = None
    contract: Optional[ContractInfo] = None
    artist_name: Optional[str] = None
    seller_identity: Optional[Identity] = None

    discrepancies: List[FieldDiscrepancy] = field(default_factory=list)
    data_source: str = "subgraph"
