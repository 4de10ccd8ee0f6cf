"""
Listing Resolver
Builds one EnrichedListing out of the subgraph row, live contract state,
token metadata, supply facts, payment token info and creator identity.

Flow for get_listing(id):
1. 120s read-through cache (per-key lock) under a hard timeout -> None on timeout
2. subgraph listing(id) through RetryPolicy; absent -> None
3. bid aggregates (count, highest)
4. concurrent optional enrichments, each under its own deadline; a failure or
   timeout is logged and left empty
5. canonical enums via normalization (lazy flag as context)
6. effective end time for start-on-first-bid auctions
7. background identity discovery for seller and bidders
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from data_sources.nft_metadata import NFTMetadataFetcher
from data_sources.onchain import OnChainClient
from data_sources.subgraph import SubgraphClient
from infrastructure.api_cache import ApiCache, CacheEndpointType
from infrastructure.config import SourcePriority
from infrastructure.errors import UpstreamUnavailableError
from models.marketplace import (
    BidRecord,
    EnrichedListing,
    FieldDiscrepancy,
    IndexedListing,
    OnChainListing,
    SourceComparison,
    TokenSpec,
)
from services.auction_time import effective_end_time
from services.contract_info import ContractInfoService
from services.identity_resolver import IdentityResolver
from services.normalization import (
    normalize_listing_type,
    normalize_status,
    normalize_token_spec,
)
from services.token_supply import TokenSupplyService
from sentry_config import capture_upstream_breadcrumb, set_listing_context

logger = logging.getLogger("ListingResolver")

# Mutable listing state where the live contract and the subgraph can drift apart
STATE_FIELDS = ("totalAvailable", "totalSold", "totalPerSale", "finalized", "startTime", "endTime")
COMPARED_FIELDS = ("seller", "listingType", "tokenSpec") + STATE_FIELDS

_STATE_ATTRS = {
    "totalAvailable": "total_available",
    "totalSold": "total_sold",
    "totalPerSale": "total_per_sale",
    "finalized": "finalized",
    "startTime": "start_time",
    "endTime": "end_time",
}

# Concurrent row enrichments for an active-listings page
ACTIVE_ENRICH_CONCURRENCY = 10


def _amount(bid: BidRecord) -> int:
    try:
        return int(bid.amount)
    except (TypeError, ValueError):
        return 0


def summarize_bids(bids: List[BidRecord]) -> Tuple[int, Optional[BidRecord]]:
    """
    Bid count and highest bid.
    The subgraph query orders bids by amount descending, but the highest bid is
    picked by value so a change in that ordering cannot silently break it.
    """
    if not bids:
        return 0, None
    return len(bids), max(bids, key=_amount)


def is_sold_out(listing: IndexedListing) -> bool:
    return listing.total_available > 0 and listing.total_sold >= listing.total_available


def _comparable_value(name: str, value: Any, lazy: Optional[bool]) -> Any:
    if name == "listingType":
        return normalize_listing_type(value, lazy=lazy).value
    if name == "tokenSpec":
        return normalize_token_spec(value).value
    if name == "seller" and isinstance(value, str):
        return value.lower()
    return value


def diff_sources(
    indexed: IndexedListing,
    live: OnChainListing,
    priority: SourcePriority,
) -> List[FieldDiscrepancy]:
    """Field-level differences between the subgraph row and the live struct"""
    left = indexed.comparable()
    right = live.comparable()
    discrepancies = []
    for name in COMPARED_FIELDS:
        a = _comparable_value(name, left.get(name), indexed.lazy)
        b = _comparable_value(name, right.get(name), live.lazy)
        if a != b:
            discrepancies.append(FieldDiscrepancy(field=name, indexed=a, onchain=b, chosen=priority.value))
    return discrepancies


async def _none():
    return None


class ListingResolver:
    """
    Usage:
        resolver = ListingResolver(subgraph, identity_resolver, onchain=onchain, ...)
        listing = await resolver.get_listing("42")
    """

    def __init__(
        self,
        subgraph: SubgraphClient,
        identity_resolver: IdentityResolver,
        onchain: Optional[OnChainClient] = None,
        metadata: Optional[NFTMetadataFetcher] = None,
        token_supply: Optional[TokenSupplyService] = None,
        contract_info: Optional[ContractInfoService] = None,
        listing_cache: Optional[ApiCache] = None,
        marketplace_address: Optional[str] = None,
        source_priority: SourcePriority = SourcePriority.ONCHAIN,
        onchain_crosscheck: bool = False,
        timeout: float = 10.0,
        enrichment_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.subgraph = subgraph
        self.identity_resolver = identity_resolver
        self.onchain = onchain
        self.metadata = metadata
        self.token_supply = token_supply
        self.contract_info = contract_info
        self.listing_cache = listing_cache
        self.marketplace_address = marketplace_address
        self.source_priority = source_priority
        self.onchain_crosscheck = onchain_crosscheck
        self.timeout = timeout
        # each optional enrichment must finish well inside the listing deadline
        self.enrichment_timeout = enrichment_timeout if enrichment_timeout is not None else timeout * 0.4
        self._clock = clock

    @property
    def can_read_onchain(self) -> bool:
        return self.onchain is not None and bool(self.marketplace_address)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_listing(self, listing_id: str) -> Optional[EnrichedListing]:
        """Enriched listing, or None when absent or when resolution times out"""
        listing_id = str(listing_id).strip()
        if not listing_id.isdigit():
            logger.info(f"[Listing] ignoring non-numeric listing id {listing_id!r}")
            return None

        try:
            return await asyncio.wait_for(self._read_through(listing_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Listing] resolution of {listing_id} timed out after {self.timeout}s")
            capture_upstream_breadcrumb("listing", "timeout", {"listing_id": listing_id, "timeout": self.timeout})
            return None

    async def resolve_listing(self, listing_id: str) -> Optional[EnrichedListing]:
        """Uncached, unbounded resolution"""
        indexed = await self.subgraph.get_listing(listing_id)
        if indexed is None:
            return None

        set_listing_context(indexed.listing_id, indexed.seller)
        listing = await self._enrich(indexed, full=True)

        self.identity_resolver.resolve_in_background(indexed.seller)
        self.identity_resolver.background.discover_many(b.bidder for b in indexed.bids)

        return listing

    async def get_active_listings(self, first: int = 16, skip: int = 0, enrich: bool = True) -> List[EnrichedListing]:
        """Active, unfinalized, not sold-out listings, newest first"""
        first = max(1, min(first, 1000))
        skip = max(0, skip)

        async def _fetch():
            return await self.subgraph.get_active_listings(first=first, skip=skip)

        if self.listing_cache is not None:
            rows = await self.listing_cache.get(
                "active_listings",
                {"first": first, "skip": skip},
                CacheEndpointType.ACTIVE_LISTINGS,
                fetcher=_fetch,
            )
        else:
            rows = await _fetch()

        rows = [row for row in rows or [] if not is_sold_out(row)]

        if enrich:
            slots = asyncio.Semaphore(ACTIVE_ENRICH_CONCURRENCY)

            async def _enrich_row(row: IndexedListing) -> EnrichedListing:
                async with slots:
                    return await self._enrich(row, full=False)

            listings = await asyncio.gather(*(_enrich_row(row) for row in rows))
        else:
            listings = [self._base_view(row) for row in rows]

        self.identity_resolver.background.discover_many(row.seller for row in rows)
        return list(listings)

    async def compare_sources(self, listing_id: str) -> Optional[SourceComparison]:
        """Diagnostic: the subgraph row next to the live getListing struct"""
        if not self.can_read_onchain:
            raise UpstreamUnavailableError("onchain", "Marketplace address not configured. Set MARKETPLACE_ADDRESS")

        listing_id = str(listing_id).strip()
        if not listing_id.isdigit():
            return None

        indexed, live = await asyncio.gather(
            self.subgraph.get_listing(listing_id),
            self.onchain.get_listing(self.marketplace_address, int(listing_id)),
        )
        if indexed is None and live is None:
            return None

        comparison = SourceComparison(
            listing_id=listing_id,
            priority=self.source_priority.value,
            indexed=indexed.comparable() if indexed else None,
            onchain=live.comparable() if live else None,
        )
        if indexed is not None and live is not None:
            comparison.discrepancies = diff_sources(indexed, live, self.source_priority)

        if comparison.discrepancies:
            logger.warning(
                f"[Listing] {listing_id}: sources disagree on "
                f"{', '.join(d.field for d in comparison.discrepancies)}"
            )
        return comparison

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read_through(self, listing_id: str) -> Optional[EnrichedListing]:
        if self.listing_cache is None:
            return await self.resolve_listing(listing_id)

        return await self.listing_cache.get(
            "listing",
            {"id": listing_id},
            CacheEndpointType.LISTING,
            fetcher=lambda: self.resolve_listing(listing_id),
        )

    def _base_view(self, indexed: IndexedListing) -> EnrichedListing:
        bid_count, highest = summarize_bids(indexed.bids)
        return EnrichedListing(
            listing_id=indexed.listing_id,
            seller=indexed.seller,
            listing_type=normalize_listing_type(indexed.listing_type_raw, lazy=indexed.lazy),
            token_spec=normalize_token_spec(indexed.token_spec_raw),
            status=normalize_status(indexed.status_raw),
            token_address=indexed.token_address,
            token_id=indexed.token_id,
            initial_amount=indexed.initial_amount,
            total_available=indexed.total_available,
            total_per_sale=indexed.total_per_sale,
            total_sold=indexed.total_sold,
            start_time=indexed.start_time,
            end_time=indexed.end_time,
            effective_end_time=effective_end_time(
                indexed.start_time, indexed.end_time, indexed.bids, int(self._clock())
            ),
            lazy=indexed.lazy,
            finalized=indexed.finalized,
            has_bid=indexed.has_bid or bid_count > 0,
            erc20=indexed.erc20,
            bid_count=bid_count,
            highest_bid=highest,
            bids=indexed.bids,
            purchases=indexed.purchases,
            offers=indexed.offers,
        )

    async def _optional(self, label: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.enrichment_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Listing] optional enrichment '{label}' timed out after {self.enrichment_timeout}s")
            capture_upstream_breadcrumb(label, "enrichment timeout", {"timeout": self.enrichment_timeout})
            return None
        except Exception as e:
            logger.warning(f"[Listing] optional enrichment '{label}' failed: {e}")
            capture_upstream_breadcrumb(label, "enrichment failed", {"error": str(e)})
            return None

    async def _enrich(self, indexed: IndexedListing, full: bool) -> EnrichedListing:
        listing = self._base_view(indexed)
        token_address = indexed.token_address
        spec = listing.token_spec

        metadata_task = (
            self.metadata.fetch(token_address, indexed.token_id, spec)
            if self.metadata and token_address else _none()
        )
        payment_task = self.onchain.get_erc20_info(indexed.erc20) if self.onchain else _none()

        if not full:
            metadata, payment = await asyncio.gather(
                self._optional("metadata", metadata_task),
                self._optional("payment token", payment_task),
            )
            self._apply_metadata(listing, metadata)
            listing.payment_token = payment
            return listing

        supply_task = _none()
        collection_task = _none()
        if self.token_supply and token_address:
            if spec is TokenSpec.ERC1155 and indexed.token_id is not None:
                supply_task = self.token_supply.get_erc1155_supply(token_address, indexed.token_id, indexed.lazy)
            elif spec is TokenSpec.ERC721:
                collection_task = self.token_supply.get_collection_supply(token_address)

        contract_task = (
            self._contract_and_artist(token_address, indexed.token_id)
            if self.contract_info and token_address else _none()
        )
        live_task = (
            self.onchain.get_listing(self.marketplace_address, int(indexed.listing_id))
            if self.onchain_crosscheck and self.can_read_onchain else _none()
        )
        seller_task = self.identity_resolver.resolve(indexed.seller, cache_only=True)

        (metadata, payment, supply, collection_supply, contract_and_artist, live, seller) = await asyncio.gather(
            self._optional("metadata", metadata_task),
            self._optional("payment token", payment_task),
            self._optional("token supply", supply_task),
            self._optional("collection supply", collection_task),
            self._optional("contract info", contract_task),
            self._optional("on-chain listing", live_task),
            self._optional("seller identity", seller_task),
        )
        contract, artist_name = contract_and_artist or (None, None)

        self._apply_metadata(listing, metadata)
        listing.payment_token = payment
        listing.token_supply = supply
        listing.collection_supply = collection_supply
        listing.contract = contract
        listing.artist_name = artist_name
        listing.seller_identity = seller
        if not listing.artist and artist_name:
            listing.artist = artist_name

        if live is not None:
            self._reconcile(listing, indexed, live)

        return listing

    async def _contract_and_artist(self, token_address: str, token_id: Optional[str]):
        """One contract lookup feeding the artist name; the artist step may fail alone"""
        contract = await self.contract_info.get_contract_info(token_address, token_id)
        try:
            artist_name = await self.contract_info.artist_name_for(contract)
        except Exception as e:
            logger.warning(f"[Listing] optional enrichment 'artist name' failed: {e}")
            artist_name = None
        return contract, artist_name

    @staticmethod
    def _apply_metadata(listing: EnrichedListing, metadata):
        if metadata is None:
            return
        listing.metadata = metadata
        listing.title = metadata.title or metadata.name
        listing.artist = metadata.artist or metadata.creator
        listing.image = metadata.image
        listing.description = metadata.description

    def _reconcile(self, listing: EnrichedListing, indexed: IndexedListing, live: OnChainListing):
        """Record disagreements and apply the configured winner to mutable state"""
        listing.discrepancies = diff_sources(indexed, live, self.source_priority)
        listing.data_source = "subgraph+onchain"

        if not listing.discrepancies:
            return

        logger.info(
            f"[Listing] {listing.listing_id}: {len(listing.discrepancies)} field(s) differ, "
            f"{self.source_priority.value} wins"
        )

        if self.source_priority is not SourcePriority.ONCHAIN:
            return

        for discrepancy in listing.discrepancies:
            attr = _STATE_ATTRS.get(discrepancy.field)
            if attr:
                setattr(listing, attr, getattr(live, attr))

        listing.effective_end_time = effective_end_time(
            listing.start_time, listing.end_time, listing.bids, int(self._clock())
        )
