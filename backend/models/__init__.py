"""
Auctionhouse domain models
Typed DTOs for subgraph rows, on-chain structs, social users and enriched views
"""

from .marketplace import (
    ListingType,
    TokenSpec,
    ListingStatus,
    IdentitySource,
    ContractSource,
    Identity,
    SocialUser,
    ContractInfo,
    TokenSupplyFact,
    TokenInfo,
    NFTMetadata,
    BidRecord,
    PurchaseRecord,
    OfferRecord,
    IndexedListing,
    OnChainListing,
    FieldDiscrepancy,
    SourceComparison,
    EnrichedListing,
    MAX_UINT48,
)

__all__ = [
    "ListingType",
    "TokenSpec",
    "ListingStatus",
    "IdentitySource",
    "ContractSource",
    "Identity",
    "SocialUser",
    "ContractInfo",
    "TokenSupplyFact",
    "TokenInfo",
    "NFTMetadata",
    "BidRecord",
    "PurchaseRecord",
    "OfferRecord",
    "IndexedListing",
    "OnChainListing",
    "FieldDiscrepancy",
    "SourceComparison",
    "EnrichedListing",
    "MAX_UINT48",
]
