"""
Auctionhouse Services
Listing and identity resolution on top of the data sources
"""

from .normalization import (
    normalize_listing_type,
    normalize_token_spec,
    normalize_status,
    normalize_address,
)
from .auction_time import effective_end_time
from .background_discovery import BackgroundDiscovery
from .identity_resolver import IdentityResolver, is_valid_address
from .token_supply import TokenSupplyService
from .contract_info import ContractInfoService
from .listing_resolver import ListingResolver

__all__ = [
    # Normalization
    "normalize_listing_type",
    "normalize_token_spec",
    "normalize_status",
    "normalize_address",

    # Timing
    "effective_end_time",

    # Identity
    "IdentityResolver",
    "BackgroundDiscovery",
    "is_valid_address",

    # Enrichment
    "TokenSupplyService",
    "ContractInfoService",

    # Listings (MAIN ENTRY POINT)
    "ListingResolver",
]
