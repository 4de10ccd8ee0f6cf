"""
Listing Resolver Tests
Canonical enums, effective end time, read-through caching, degraded enrichment
and source reconciliation

Run: python -m pytest tests/test_listing_resolver.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from infrastructure.api_cache import ApiCache
from infrastructure.config import SourcePriority
from infrastructure.errors import ExternalAPIError, UpstreamUnavailableError
from models.marketplace import (
    IndexedListing,
    ListingType,
    NFTMetadata,
    OnChainListing,
    TokenInfo,
    TokenSpec,
)
from services.contract_info import ContractInfoService
from services.identity_resolver import IdentityResolver
from services.listing_resolver import ACTIVE_ENRICH_CONCURRENCY, ListingResolver, diff_sources, summarize_bids


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def subgraph():
    client = MagicMock()
    client.get_listing = AsyncMock(return_value=None)
    client.get_active_listings = AsyncMock(return_value=[])
    return client


@pytest.fixture
def onchain():
    client = MagicMock()
    client.get_erc20_info = AsyncMock(return_value=TokenInfo(symbol="ETH", decimals=18, is_native=True))
    client.get_listing = AsyncMock(return_value=None)
    return client


@pytest.fixture
def identity_resolver(cache_store):
    ens = MagicMock()
    ens.reverse_lookup = AsyncMock(return_value=None)
    return IdentityResolver(cache_store, neynar=None, ens=ens)


@pytest.fixture
def make_resolver(subgraph, onchain, identity_resolver, clock):
    def _make(**kwargs):
        options = {
            "onchain": onchain,
            "listing_cache": ApiCache(clock=clock),
            "clock": clock,
        }
        options.update(kwargs)
        return ListingResolver(subgraph, identity_resolver, **options)
    return _make


def live_listing(indexed: IndexedListing, **overrides) -> OnChainListing:
    values = dict(
        id=int(indexed.listing_id),
        seller=indexed.seller,
        finalized=indexed.finalized,
        total_sold=indexed.total_sold,
        marketplace_bps=500,
        referrer_bps=0,
        initial_amount=int(indexed.initial_amount),
        listing_type_raw=1,
        total_available=indexed.total_available,
        total_per_sale=indexed.total_per_sale,
        extension_interval=900,
        min_increment_bps=500,
        erc20=indexed.erc20,
        identity_verifier="0x0000000000000000000000000000000000000000",
        start_time=indexed.start_time,
        end_time=indexed.end_time,
        token_id=int(indexed.token_id),
        token_address=indexed.token_address,
        token_spec_raw=1,
        lazy=indexed.lazy,
    )
    values.update(overrides)
    return OnChainListing(**values)


# =============================================================================
# TEST: End-to-end resolution
# =============================================================================

class TestResolution:

    @pytest.mark.asyncio
    async def test_mixed_enum_encodings(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(
            listing_payload("42", listingType=1, tokenSpec="ERC721", lazy=False)
        )
        resolver = make_resolver()

        listing = await resolver.get_listing("42")

        assert listing.listing_type is ListingType.INDIVIDUAL_AUCTION
        assert listing.token_spec is TokenSpec.ERC721
        assert listing.payment_token.symbol == "ETH"
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_duration_end_time_after_first_bid(self, make_resolver, subgraph, identity_resolver, listing_payload, test_addresses):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload(
            "7",
            startTime="0",
            endTime="86400",
            hasBid=True,
            bids=[{"id": "b1", "bidder": test_addresses["bidder"], "amount": "5", "timestamp": "1700000000"}],
        ))
        resolver = make_resolver()

        listing = await resolver.get_listing("7")

        assert listing.end_time == 86400
        assert listing.effective_end_time == 1_700_000_000 + 86_400
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_missing_listing(self, make_resolver, subgraph):
        resolver = make_resolver()
        assert await resolver.get_listing("999") is None
        assert await resolver.get_listing("abc") is None
        subgraph.get_listing.assert_awaited_once_with("999")

    @pytest.mark.asyncio
    async def test_highest_bid_by_value(self, make_resolver, subgraph, identity_resolver, listing_payload):
        bids = [
            {"id": "1", "bidder": "0x" + "1" * 40, "amount": "900", "timestamp": "1700000001"},
            {"id": "2", "bidder": "0x" + "2" * 40, "amount": "10000", "timestamp": "1700000002"},
            {"id": "3", "bidder": "0x" + "3" * 40, "amount": "5000", "timestamp": "1700000003"},
        ]
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("5", bids=bids))

        listing = await make_resolver().get_listing("5")

        assert listing.bid_count == 3
        assert listing.highest_bid.amount == "10000"
        assert listing.has_bid is True
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_seller_and_bidders_discovered_in_background(self, make_resolver, subgraph, identity_resolver, listing_payload, test_addresses):
        bids = [{"id": "1", "bidder": test_addresses["bidder"], "amount": "1", "timestamp": "1700000001"}]
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("8", bids=bids))

        await make_resolver().get_listing("8")
        await identity_resolver.background.drain()

        looked_up = {call.args[0] for call in identity_resolver.ens.reverse_lookup.await_args_list}
        assert looked_up == {test_addresses["seller"].lower(), test_addresses["bidder"].lower()}

    @pytest.mark.asyncio
    async def test_cached_seller_identity_attached(self, make_resolver, subgraph, cache_store, identity_resolver, listing_payload, test_addresses):
        from infrastructure.cache_store import CacheTable

        seller = test_addresses["seller"].lower()
        await cache_store.upsert(
            CacheTable.IDENTITY,
            seller,
            {"fid": 9, "username": "artist", "display_name": "The Artist", "avatar_url": None,
             "ens_name": None, "verified_wallets": [seller], "source": "social"},
            ttl=3600,
        )
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("3"))

        listing = await make_resolver().get_listing("3")

        assert listing.seller_identity.username == "artist"
        await identity_resolver.background.drain()


# =============================================================================
# TEST: Caching and timeouts
# =============================================================================

class TestCaching:

    @pytest.mark.asyncio
    async def test_repeated_reads_are_identical(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))
        resolver = make_resolver()

        first = await resolver.get_listing("42")
        second = await resolver.get_listing("42")

        assert first.to_dict() == second.to_dict()
        assert subgraph.get_listing.await_count == 1
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_cache_expires_after_listing_ttl(self, make_resolver, subgraph, identity_resolver, clock, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))
        resolver = make_resolver()

        await resolver.get_listing("42")
        clock.advance(121)
        await resolver.get_listing("42")

        assert subgraph.get_listing.await_count == 2
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self, make_resolver, subgraph):
        async def slow(_):
            await asyncio.sleep(5)

        subgraph.get_listing.side_effect = slow
        resolver = make_resolver(timeout=0.05)

        assert await resolver.get_listing("42") is None

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_propagates(self, make_resolver, subgraph):
        subgraph.get_listing.side_effect = ExternalAPIError("subgraph", upstream_status=429)

        with pytest.raises(ExternalAPIError):
            await make_resolver().get_listing("42")


# =============================================================================
# TEST: Optional enrichments
# =============================================================================

class TestEnrichment:

    @pytest.mark.asyncio
    async def test_failed_enrichments_leave_fields_empty(self, make_resolver, subgraph, onchain, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42", tokenSpec="ERC1155"))
        onchain.get_erc20_info.side_effect = RuntimeError("rpc down")

        metadata = MagicMock()
        metadata.fetch = AsyncMock(side_effect=RuntimeError("ipfs timeout"))
        token_supply = MagicMock()
        token_supply.get_erc1155_supply = AsyncMock(side_effect=RuntimeError("reverted"))
        contract_info = MagicMock()
        contract_info.get_contract_info = AsyncMock(side_effect=RuntimeError("explorer down"))
        contract_info.artist_name_for = AsyncMock(side_effect=RuntimeError("identity down"))

        listing = await make_resolver(
            metadata=metadata,
            token_supply=token_supply,
            contract_info=contract_info,
        ).get_listing("42")

        assert listing is not None
        assert listing.title is None
        assert listing.payment_token is None
        assert listing.token_supply is None
        assert listing.contract is None
        assert listing.artist_name is None
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_metadata_and_artist_fallback(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))

        metadata = MagicMock()
        metadata.fetch = AsyncMock(return_value=NFTMetadata.from_json({"name": "Sunrise", "image": "ipfs://abc"}))
        token_supply = MagicMock()
        token_supply.get_collection_supply = AsyncMock(return_value=100)
        contract_info = MagicMock()
        contract_info.get_contract_info = AsyncMock(return_value=None)
        contract_info.artist_name_for = AsyncMock(return_value="Creator Name")

        listing = await make_resolver(
            metadata=metadata,
            token_supply=token_supply,
            contract_info=contract_info,
        ).get_listing("42")

        assert listing.title == "Sunrise"
        assert listing.artist == "Creator Name"
        assert listing.collection_supply == 100
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_slow_metadata_does_not_hide_listing(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))

        async def stalled_gateway(*args):
            await asyncio.sleep(1.0)

        metadata = MagicMock()
        metadata.fetch = AsyncMock(side_effect=stalled_gateway)

        resolver = make_resolver(metadata=metadata, timeout=0.3)
        listing = await resolver.get_listing("42")

        assert resolver.enrichment_timeout < resolver.timeout
        assert listing is not None
        assert listing.listing_id == "42"
        assert listing.metadata is None
        assert listing.payment_token.symbol == "ETH"
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_explicit_enrichment_timeout(self, make_resolver, subgraph, onchain, identity_resolver, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))

        async def slow_token(*args):
            await asyncio.sleep(0.5)

        onchain.get_erc20_info.side_effect = slow_token

        listing = await make_resolver(timeout=5.0, enrichment_timeout=0.05).get_listing("42")

        assert listing is not None
        assert listing.payment_token is None
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_contract_creator_looked_up_once(self, make_resolver, subgraph, onchain, identity_resolver, cache_store, listing_payload):
        subgraph.get_listing.return_value = IndexedListing.from_graph(listing_payload("42"))
        onchain.get_contract_owner = AsyncMock(return_value=None)
        onchain.get_contract_creator = AsyncMock(return_value=None)
        onchain.get_royalty_receiver = AsyncMock(return_value=None)
        onchain.get_name_and_symbol = AsyncMock(return_value=("Sunrise Editions", "SUN"))
        explorer = MagicMock()
        explorer.enabled = True
        explorer.get_contract_creator = AsyncMock(return_value=None)
        contract_info = ContractInfoService(cache_store, onchain, explorer=explorer, identity_resolver=identity_resolver)

        resolver = make_resolver(contract_info=contract_info)
        first = await resolver.resolve_listing("42")
        assert explorer.get_contract_creator.await_count == 1

        second = await resolver.resolve_listing("42")
        assert explorer.get_contract_creator.await_count == 1
        assert onchain.get_contract_owner.await_count == 1
        assert first.contract.name == second.contract.name == "Sunrise Editions"
        assert second.contract.creator_address is None
        assert second.artist_name is None
        await identity_resolver.background.drain()


# =============================================================================
# TEST: Source reconciliation
# =============================================================================

class TestReconciliation:

    @pytest.mark.asyncio
    async def test_onchain_priority_overrides_state(self, make_resolver, subgraph, onchain, identity_resolver, listing_payload, test_addresses):
        indexed = IndexedListing.from_graph(listing_payload("42", totalSold="0"))
        subgraph.get_listing.return_value = indexed
        onchain.get_listing.return_value = live_listing(indexed, total_sold=1, finalized=True)

        listing = await make_resolver(
            marketplace_address=test_addresses["marketplace"],
            onchain_crosscheck=True,
            source_priority=SourcePriority.ONCHAIN,
        ).get_listing("42")

        assert listing.total_sold == 1
        assert listing.finalized is True
        assert listing.data_source == "subgraph+onchain"
        assert {d.field for d in listing.discrepancies} == {"totalSold", "finalized"}
        assert all(d.chosen == "onchain" for d in listing.discrepancies)
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_subgraph_priority_keeps_indexed_state(self, make_resolver, subgraph, onchain, identity_resolver, listing_payload, test_addresses):
        indexed = IndexedListing.from_graph(listing_payload("42", totalSold="0"))
        subgraph.get_listing.return_value = indexed
        onchain.get_listing.return_value = live_listing(indexed, total_sold=1)

        listing = await make_resolver(
            marketplace_address=test_addresses["marketplace"],
            onchain_crosscheck=True,
            source_priority=SourcePriority.SUBGRAPH,
        ).get_listing("42")

        assert listing.total_sold == 0
        assert listing.discrepancies[0].field == "totalSold"
        assert listing.discrepancies[0].chosen == "subgraph"
        await identity_resolver.background.drain()

    def test_enum_encodings_are_not_discrepancies(self, listing_payload):
        indexed = IndexedListing.from_graph(listing_payload("42", listingType="INDIVIDUAL_AUCTION", tokenSpec="ERC721"))
        live = live_listing(indexed, listing_type_raw=1, token_spec_raw=1)
        assert diff_sources(indexed, live, SourcePriority.ONCHAIN) == []

    @pytest.mark.asyncio
    async def test_compare_sources(self, make_resolver, subgraph, onchain, listing_payload, test_addresses):
        indexed = IndexedListing.from_graph(listing_payload("42"))
        subgraph.get_listing.return_value = indexed
        onchain.get_listing.return_value = live_listing(indexed, end_time=indexed.end_time + 900)

        comparison = await make_resolver(marketplace_address=test_addresses["marketplace"]).compare_sources("42")

        assert not comparison.in_sync
        assert [d.field for d in comparison.discrepancies] == ["endTime"]
        onchain.get_listing.assert_awaited_once_with(test_addresses["marketplace"], 42)

    @pytest.mark.asyncio
    async def test_compare_requires_marketplace(self, make_resolver):
        with pytest.raises(UpstreamUnavailableError):
            await make_resolver().compare_sources("42")


# =============================================================================
# TEST: Active listings
# =============================================================================

class TestActiveListings:

    @pytest.mark.asyncio
    async def test_sold_out_filtered(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_active_listings.return_value = [
            IndexedListing.from_graph(listing_payload("1")),
            IndexedListing.from_graph(listing_payload("2", totalAvailable="5", totalSold="5")),
        ]

        listings = await make_resolver().get_active_listings(enrich=False)

        assert [listing.listing_id for listing in listings] == ["1"]
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_enrichment_fan_out_is_bounded(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_active_listings.return_value = [
            IndexedListing.from_graph(listing_payload(str(n))) for n in range(1, 31)
        ]
        in_flight = {"now": 0, "peak": 0}

        async def fetch(token_address, token_id, spec):
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            try:
                await asyncio.sleep(0.01)
            finally:
                in_flight["now"] -= 1
            return NFTMetadata.from_json({"name": "Sunrise"})

        metadata = MagicMock()
        metadata.fetch = AsyncMock(side_effect=fetch)

        listings = await make_resolver(metadata=metadata).get_active_listings(first=30)

        assert len(listings) == 30
        assert all(listing.title == "Sunrise" for listing in listings)
        assert in_flight["peak"] <= ACTIVE_ENRICH_CONCURRENCY
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_stalled_row_enrichment_degrades(self, make_resolver, subgraph, identity_resolver, listing_payload):
        subgraph.get_active_listings.return_value = [IndexedListing.from_graph(listing_payload("1"))]

        async def stalled(*args):
            await asyncio.sleep(1.0)

        metadata = MagicMock()
        metadata.fetch = AsyncMock(side_effect=stalled)

        listings = await make_resolver(metadata=metadata, enrichment_timeout=0.05).get_active_listings()

        assert [listing.listing_id for listing in listings] == ["1"]
        assert listings[0].metadata is None
        await identity_resolver.background.drain()

    @pytest.mark.asyncio
    async def test_stale_page_served_when_upstream_fails(self, make_resolver, subgraph, identity_resolver, clock, listing_payload):
        subgraph.get_active_listings.return_value = [IndexedListing.from_graph(listing_payload("1"))]
        resolver = make_resolver()

        await resolver.get_active_listings(enrich=False)
        subgraph.get_active_listings.side_effect = ExternalAPIError("subgraph", upstream_status=502)
        clock.advance(60)

        listings = await resolver.get_active_listings(enrich=False)

        assert [listing.listing_id for listing in listings] == ["1"]
        await identity_resolver.background.drain()


def test_summarize_bids_empty():
    assert summarize_bids([]) == (0, None)
