"""
Subgraph Client Tests
GraphQL transport, error classification and row decoding

Run: python -m pytest tests/test_subgraph.py -v
"""

import json

import httpx
import pytest

from data_sources.subgraph import SubgraphClient
from infrastructure.errors import ExternalAPIError, UpstreamUnavailableError
from infrastructure.retry import RetryPolicy, is_rate_limit_error

SUBGRAPH_URL = "https://gateway.thegraph.com/api/subgraphs/id/test"


def make_client(handler, sleep, api_key=None):
    return SubgraphClient(
        SUBGRAPH_URL,
        api_key=api_key,
        retry=RetryPolicy(max_retries=2, initial_delay=1.0, sleep=sleep),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestQuery:

    @pytest.mark.asyncio
    async def test_get_listing_decodes_row(self, recorded_sleep, listing_payload, test_addresses):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": {"listing": listing_payload("42", tokenSpec=1)}})

        client = make_client(handler, recorded_sleep, api_key="graph-key")
        listing = await client.get_listing("42")

        assert listing.listing_id == "42"
        assert listing.seller == test_addresses["seller"].lower()
        assert listing.token_spec_raw == 1
        assert listing.total_available == 1
        assert seen[0].headers["Authorization"] == "Bearer graph-key"
        assert json.loads(seen[0].content)["variables"] == {"id": "42"}

    @pytest.mark.asyncio
    async def test_missing_listing_is_none(self, recorded_sleep):
        client = make_client(lambda request: httpx.Response(200, json={"data": {"listing": None}}), recorded_sleep)
        assert await client.get_listing("404") is None

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, recorded_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": {"listings": []}})

        await make_client(handler, recorded_sleep).get_active_listings()
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_active_listings_filter(self, recorded_sleep, listing_payload):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"listings": [listing_payload("1"), listing_payload("2")]}})

        listings = await make_client(handler, recorded_sleep).get_active_listings(first=5000, skip=-3)

        assert [row.listing_id for row in listings] == ["1", "2"]
        variables = seen[0]["variables"]
        assert variables["where"] == {"status": "ACTIVE", "finalized": False}
        assert variables["first"] == 1000
        assert variables["skip"] == 0


class TestErrors:

    @pytest.mark.asyncio
    async def test_graphql_rate_limit_is_retried(self, recorded_sleep):
        responses = [
            httpx.Response(200, json={"errors": [{"message": "Too many requests"}]}),
            httpx.Response(200, json={"data": {"listing": None}}),
        ]
        client = make_client(lambda request: responses.pop(0), recorded_sleep)

        assert await client.get_listing("1") is None
        assert recorded_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, recorded_sleep):
        client = make_client(
            lambda request: httpx.Response(200, json={"errors": [{"message": "Type `Query` has no field `foo`"}]}),
            recorded_sleep,
        )
        with pytest.raises(ExternalAPIError) as exc_info:
            await client.query("{ foo }")

        assert exc_info.value.errors[0]["message"].startswith("Type")
        assert recorded_sleep.delays == []

    @pytest.mark.asyncio
    async def test_http_429_exhausts_and_stays_classifiable(self, recorded_sleep):
        client = make_client(lambda request: httpx.Response(429, text="slow down"), recorded_sleep)

        with pytest.raises(ExternalAPIError) as exc_info:
            await client.get_listing("1")

        assert is_rate_limit_error(exc_info.value)
        assert recorded_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_missing_url(self, recorded_sleep):
        client = SubgraphClient(None, retry=RetryPolicy(sleep=recorded_sleep))
        with pytest.raises(UpstreamUnavailableError):
            await client.get_listing("1")
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error(self, recorded_sleep):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await make_client(handler, recorded_sleep).get_listing("1")
