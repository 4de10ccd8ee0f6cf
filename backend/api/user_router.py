"""
User API Router
Farcaster / ENS identity for wallet addresses
"""

from fastapi import APIRouter

from infrastructure.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/api/users", tags=["Users"])


def get_identity_resolver():
    from services.container import get_container
    return get_container().identity_resolver


@router.get("/by-username/{username}")
async def get_user_by_username(username: str):
    """Look up a Farcaster username and cache the identity under its wallet"""
    resolver = get_identity_resolver()
    identity = await resolver.resolve_username(username.lstrip("@"))

    if identity is None:
        raise NotFoundError("User", f"@{username}")

    return {"success": True, "user": identity.to_dict()}


@router.get("/{address}")
async def get_user(address: str, cache_only: bool = False):
    """
    Identity for an address.
    cache_only=true never calls upstream services (used on hot render paths).
    """
    from services.identity_resolver import is_valid_address

    if not is_valid_address(address):
        raise ValidationError(f"Invalid address: {address}", {"address": address})

    resolver = get_identity_resolver()
    identity = await resolver.resolve(address, cache_only=cache_only)

    if identity is None:
        raise NotFoundError("Identity", address)

    return {"success": True, "user": identity.to_dict()}
