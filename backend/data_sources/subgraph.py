"""
Auctionhouse Subgraph Client
Queries the indexed marketplace feed (The Graph) for listings, bids, purchases and offers

Features:
- Single listing lookup with nested bid / purchase / offer history
- Filtered, paginated listing queries
- Bearer auth when a Graph Studio API key is configured
- GraphQL error lists surfaced on ExternalAPIError (rate limits are classified by RetryPolicy)

The subgraph is treated strictly as a query surface: it is eventually consistent
and may lag the chain by a few blocks.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from infrastructure.errors import ExternalAPIError, UpstreamUnavailableError
from infrastructure.retry import RetryPolicy
from models.marketplace import IndexedListing

logger = logging.getLogger("Subgraph")

LISTING_FIELDS = """
    id
    listingId
    marketplace
    seller
    tokenAddress
    tokenId
    tokenSpec
    listingType
    initialAmount
    totalAvailable
    totalPerSale
    startTime
    endTime
    lazy
    status
    totalSold
    hasBid
    finalized
    erc20
    createdAt
    createdAtBlock
    updatedAt
"""

# Bids come back sorted by amount descending; the resolver does not rely on it
LISTING_BY_ID_QUERY = """
query ListingById($id: ID!) {
    listing(id: $id) {
        %s
        bids(orderBy: amount, orderDirection: desc, first: 1000) {
            id
            bidder
            amount
            timestamp
        }
        purchases(orderBy: timestamp, orderDirection: desc, first: 1000) {
            id
            buyer
            amount
            count
            timestamp
            transactionHash
        }
        offers(orderBy: timestamp, orderDirection: desc, first: 1000) {
            id
            offerer
            amount
            timestamp
            status
        }
    }
}
""" % LISTING_FIELDS

LISTINGS_QUERY = """
query Listings($where: Listing_filter, $first: Int!, $skip: Int!, $orderBy: Listing_orderBy, $orderDirection: OrderDirection) {
    listings(
        where: $where
        first: $first
        skip: $skip
        orderBy: $orderBy
        orderDirection: $orderDirection
    ) {
        %s
        bids(orderBy: amount, orderDirection: desc, first: 1000) {
            id
            bidder
            amount
            timestamp
        }
    }
}
""" % LISTING_FIELDS

MAX_PAGE_SIZE = 1000


class SubgraphClient:
    """
    GraphQL client for the auctionhouse subgraph.

    Usage:
        client = SubgraphClient(url, api_key=key)
        listing = await client.get_listing("42")
        page = await client.get_listings(where={"status": "ACTIVE"}, first=16)
    """

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.retry = retry or RetryPolicy()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a GraphQL query (through RetryPolicy) and return its data dict"""
        if not self.url:
            raise UpstreamUnavailableError(
                "subgraph",
                "Auctionhouse subgraph endpoint not configured. Set AUCTIONHOUSE_SUBGRAPH_URL",
            )

        async def _post() -> Dict[str, Any]:
            response = await self.client.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                headers=self._headers(),
            )

            if response.status_code != 200:
                raise ExternalAPIError(
                    "subgraph",
                    upstream_status=response.status_code,
                    message=f"Subgraph HTTP {response.status_code}: {response.text[:200]}",
                )

            data = response.json()
            if "errors" in data and data["errors"]:
                errors = data["errors"]
                first = errors[0].get("message", "") if isinstance(errors[0], dict) else str(errors[0])
                raise ExternalAPIError("subgraph", message=f"Subgraph error: {first}", errors=errors)

            return data.get("data") or {}

        try:
            return await self.retry.run(_post, label="subgraph")
        except httpx.TransportError as e:
            raise UpstreamUnavailableError("subgraph", f"Subgraph unreachable: {e}") from e

    async def get_listing(self, listing_id: str) -> Optional[IndexedListing]:
        """Fetch one listing with its bid / purchase / offer history, or None"""
        data = await self.query(LISTING_BY_ID_QUERY, {"id": str(listing_id)})
        row = data.get("listing")
        if not row:
            logger.info(f"[Subgraph] listing {listing_id} not found")
            return None
        return IndexedListing.from_graph(row)

    async def get_listings(
        self,
        where: Optional[Dict[str, Any]] = None,
        first: int = 16,
        skip: int = 0,
        order_by: str = "createdAt",
        order_direction: str = "desc",
    ) -> List[IndexedListing]:
        """Fetch a page of listings matching a Listing_filter"""
        variables = {
            "where": where or {},
            "first": max(0, min(first, MAX_PAGE_SIZE)),
            "skip": max(0, skip),
            "orderBy": order_by,
            "orderDirection": order_direction,
        }
        data = await self.query(LISTINGS_QUERY, variables)
        rows = data.get("listings") or []
        logger.debug(f"[Subgraph] fetched {len(rows)} listings")
        return [IndexedListing.from_graph(row) for row in rows]

    async def get_active_listings(self, first: int = 16, skip: int = 0) -> List[IndexedListing]:
        return await self.get_listings(
            where={"status": "ACTIVE", "finalized": False},
            first=first,
            skip=skip,
        )

    async def close(self):
        await self.client.aclose()


# ============================================
# CLI TEST
# ============================================

if __name__ == "__main__":
    import sys

    from infrastructure.config import get_config

    async def main():
        cfg = get_config()
        client = SubgraphClient(cfg.subgraph.url, cfg.subgraph.api_key)
        try:
            listing_id = sys.argv[1] if len(sys.argv) > 1 else "1"
            listing = await client.get_listing(listing_id)
            print(listing)
        finally:
            await client.close()

    asyncio.run(main())
