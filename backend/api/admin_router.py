"""
Admin & Health Router
Health checks and cache maintenance endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

router = APIRouter(prefix="/api", tags=["Admin"])


def get_container():
    from services.container import get_container as _get_container
    return _get_container()


class BackfillRequest(BaseModel):
    creator_address: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None


# ============================================
# HEALTH
# ============================================

@router.get("/health")
async def health_check():
    """
    Persistence and cache health.
    Always 200 while the API is up; inspect "status" for degradation.
    """
    from infrastructure import error_tracker

    container = get_container()
    checks = await container.health.check_all()
    database = checks.get("database", {}).get("status")

    return {
        "status": "degraded" if database == "unhealthy" else "healthy",
        "checks": checks,
        "discovery": container.identity_resolver.background.get_stats(),
        "errors": error_tracker.get_stats(),
        "timestamp": datetime.now().isoformat(),
    }


# ============================================
# ADMIN
# ============================================

@router.post("/admin/contracts/{address}/backfill")
async def backfill_contract(address: str, request: BackfillRequest):
    """Overwrite cached creator / name / symbol for a contract"""
    from services.identity_resolver import is_valid_address

    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid contract address: {address}")
    if request.creator_address and not is_valid_address(request.creator_address):
        raise HTTPException(status_code=400, detail=f"Invalid creator address: {request.creator_address}")

    container = get_container()
    info = await container.contract_info.backfill(
        address,
        creator_address=request.creator_address,
        name=request.name,
        symbol=request.symbol,
    )
    return {"success": True, "contract": info.to_dict()}


@router.post("/admin/cache/purge")
async def purge_cache(listings: bool = False):
    """Delete expired persistent rows; optionally drop cached listing views"""
    container = get_container()
    removed = await container.store.purge_expired()

    if listings:
        container.listing_cache.clear()

    return {
        "success": True,
        "purged_rows": removed,
        "listings_cleared": listings,
    }
