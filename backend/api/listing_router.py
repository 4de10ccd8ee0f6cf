"""
Listing API Router
Enriched marketplace listings for the frontend and share-card renderers
"""

from fastapi import APIRouter, Query

from infrastructure.errors import NotFoundError

router = APIRouter(prefix="/api/listings", tags=["Listings"])


def get_listing_resolver():
    from services.container import get_container
    return get_container().listing_resolver


@router.get("/active")
async def get_active_listings(
    first: int = Query(16, ge=1, le=100),
    skip: int = Query(0, ge=0),
    enrich: bool = True,
):
    """Browse page: active listings, newest first, sold-out listings hidden"""
    resolver = get_listing_resolver()
    listings = await resolver.get_active_listings(first=first, skip=skip, enrich=enrich)

    return {
        "success": True,
        "source": "subgraph",
        "listings": [listing.to_dict() for listing in listings],
        "count": len(listings),
    }


@router.get("/{listing_id}")
async def get_listing(listing_id: str):
    """One fully enriched listing"""
    resolver = get_listing_resolver()
    listing = await resolver.get_listing(listing_id)

    if listing is None:
        raise NotFoundError("Listing", listing_id)

    return {"success": True, "listing": listing.to_dict()}


@router.get("/{listing_id}/compare")
async def compare_listing_sources(listing_id: str):
    """Subgraph row next to the live contract struct, with field-level differences"""
    resolver = get_listing_resolver()
    comparison = await resolver.compare_sources(listing_id)

    if comparison is None:
        raise NotFoundError("Listing", listing_id)

    return {
        "success": True,
        "in_sync": comparison.in_sync,
        "comparison": comparison.to_dict(),
    }
