"""
API Tests
Routers, status codes and error envelopes over a stubbed service container

Run: python -m pytest tests/test_api.py -v
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from infrastructure.errors import ExternalAPIError, UpstreamUnavailableError
from models.marketplace import (
    ContractInfo,
    EnrichedListing,
    Identity,
    IdentitySource,
    ListingStatus,
    ListingType,
    SourceComparison,
    TokenSpec,
)
from services.container import set_container


# =============================================================================
# FIXTURES
# =============================================================================

def enriched(listing_id="42", seller="0x" + "a" * 40):
    return EnrichedListing(
        listing_id=listing_id,
        seller=seller,
        listing_type=ListingType.INDIVIDUAL_AUCTION,
        token_spec=TokenSpec.ERC721,
        status=ListingStatus.ACTIVE,
        token_address="0x" + "b" * 40,
        token_id="7",
        initial_amount="1000",
        total_available=1,
        total_per_sale=1,
        total_sold=0,
        start_time=0,
        end_time=86400,
        effective_end_time=None,
        lazy=False,
        finalized=False,
        has_bid=False,
    )


@pytest.fixture
def container():
    listing_resolver = MagicMock()
    listing_resolver.get_listing = AsyncMock(return_value=None)
    listing_resolver.get_active_listings = AsyncMock(return_value=[])
    listing_resolver.compare_sources = AsyncMock(return_value=None)

    identity_resolver = MagicMock()
    identity_resolver.resolve = AsyncMock(return_value=None)
    identity_resolver.resolve_username = AsyncMock(return_value=None)
    identity_resolver.background.get_stats.return_value = {"scheduled": 0, "pending": 0}

    health = MagicMock()
    health.check_all = AsyncMock(return_value={"database": {"status": "healthy"}, "caches": {}})

    store = MagicMock()
    store.purge_expired = AsyncMock(return_value=3)

    contract_info = MagicMock()
    contract_info.backfill = AsyncMock()

    stub = SimpleNamespace(
        listing_resolver=listing_resolver,
        identity_resolver=identity_resolver,
        health=health,
        store=store,
        contract_info=contract_info,
        listing_cache=MagicMock(),
    )
    set_container(stub)
    yield stub
    set_container(None)


@pytest.fixture
def client(container):
    from main import create_app

    # Lifespan is not entered: the stub container needs no startup
    return TestClient(create_app(), raise_server_exceptions=False)


# =============================================================================
# TEST: Listings
# =============================================================================

class TestListingRoutes:

    def test_listing_found(self, client, container):
        container.listing_resolver.get_listing.return_value = enriched("42")

        response = client.get("/api/listings/42")

        assert response.status_code == 200
        body = response.json()
        assert body["listing"]["listing_type"] == "INDIVIDUAL_AUCTION"
        assert body["listing"]["token_spec"] == "ERC721"

    def test_listing_not_found(self, client):
        response = client.get("/api/listings/999")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_rate_limited_upstream_is_429(self, client, container):
        container.listing_resolver.get_listing.side_effect = ExternalAPIError("subgraph", upstream_status=429)

        response = client.get("/api/listings/42")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMITED"

    def test_unconfigured_upstream_is_503(self, client, container):
        container.listing_resolver.compare_sources.side_effect = UpstreamUnavailableError("onchain")

        response = client.get("/api/listings/42/compare")

        assert response.status_code == 503

    def test_compare(self, client, container):
        container.listing_resolver.compare_sources.return_value = SourceComparison(
            listing_id="42", priority="onchain", indexed={"totalSold": 0}, onchain={"totalSold": 0}
        )

        response = client.get("/api/listings/42/compare")

        assert response.status_code == 200
        assert response.json()["in_sync"] is True

    def test_active_listings(self, client, container):
        container.listing_resolver.get_active_listings.return_value = [enriched("1"), enriched("2")]

        response = client.get("/api/listings/active?first=2&enrich=false")

        assert response.status_code == 200
        assert response.json()["count"] == 2
        container.listing_resolver.get_active_listings.assert_awaited_once_with(first=2, skip=0, enrich=False)

    def test_unexpected_error_is_500(self, client, container):
        container.listing_resolver.get_listing.side_effect = KeyError("boom")

        response = client.get("/api/listings/42")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"


# =============================================================================
# TEST: Users
# =============================================================================

class TestUserRoutes:

    def test_invalid_address_is_400(self, client):
        response = client.get("/api/users/0x123")
        assert response.status_code == 400

    def test_unknown_identity_is_404(self, client):
        response = client.get("/api/users/" + "0x" + "c" * 40)
        assert response.status_code == 404

    def test_cache_only_forwarded(self, client, container):
        address = "0x" + "c" * 40
        container.identity_resolver.resolve.return_value = Identity(
            address=address, source=IdentitySource.SOCIAL, username="alice", fid=7
        )

        response = client.get(f"/api/users/{address}?cache_only=true")

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"
        assert response.json()["user"]["source"] == "social"
        container.identity_resolver.resolve.assert_awaited_once_with(address, cache_only=True)

    def test_by_username(self, client, container):
        container.identity_resolver.resolve_username.return_value = Identity(
            address="0x" + "d" * 40, source=IdentitySource.SOCIAL, username="bob"
        )

        response = client.get("/api/users/by-username/@bob")

        assert response.status_code == 200
        container.identity_resolver.resolve_username.assert_awaited_once_with("bob")


# =============================================================================
# TEST: Admin / health
# =============================================================================

class TestAdminRoutes:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_backfill(self, client, container):
        contract = "0x" + "b" * 40
        creator = "0x" + "a" * 40
        container.contract_info.backfill.return_value = ContractInfo(contract_address=contract, creator_address=creator)

        response = client.post(f"/api/admin/contracts/{contract}/backfill", json={"creator_address": creator})

        assert response.status_code == 200
        assert response.json()["contract"]["creator_address"] == creator

    def test_backfill_rejects_bad_creator(self, client):
        response = client.post("/api/admin/contracts/" + "0x" + "b" * 40 + "/backfill", json={"creator_address": "nope"})
        assert response.status_code == 400

    def test_purge(self, client, container):
        response = client.post("/api/admin/cache/purge?listings=true")

        assert response.status_code == 200
        assert response.json()["purged_rows"] == 3
        container.listing_cache.clear.assert_called_once()
