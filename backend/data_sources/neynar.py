"""
Neynar Social Graph Client
Farcaster user lookup by verified address or by username

API: https://api.neynar.com/v2/farcaster
- GET /user/bulk-by-address/?addresses=0x..,0x..   -> {"0x..": [user, ...], ...}
- GET /user/by_username?username=alice              -> {"user": {...}}
"""

import logging
from typing import Dict, List, Optional

import httpx

from infrastructure.errors import ExternalAPIError
from infrastructure.retry import RetryPolicy
from models.marketplace import SocialUser

logger = logging.getLogger("Neynar")

# bulk-by-address accepts up to 350 addresses per call
MAX_BULK_ADDRESSES = 350


class NeynarClient:
    """
    Usage:
        neynar = NeynarClient(api_key)
        users = await neynar.fetch_bulk_users_by_address(["0xabc..."])
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.neynar.com/v2/farcaster",
        retry: Optional[RetryPolicy] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retry = retry or RetryPolicy()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: Dict[str, str]) -> Optional[dict]:
        """GET through RetryPolicy. Returns None on 404."""

        async def _request():
            response = await self.client.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"x-api-key": self.api_key, "accept": "application/json"},
            )
            if response.status_code == 404:
                return None
            if response.status_code != 200:
                raise ExternalAPIError(
                    "neynar",
                    upstream_status=response.status_code,
                    message=f"Neynar HTTP {response.status_code}: {response.text[:200]}",
                )
            return response.json()

        return await self.retry.run(_request, label=f"neynar{path}")

    async def fetch_bulk_users_by_address(self, addresses: List[str]) -> Dict[str, List[SocialUser]]:
        """Map each lowercase address to the Farcaster users that verified it"""
        if not self.enabled or not addresses:
            return {}

        result: Dict[str, List[SocialUser]] = {}
        unique = list(dict.fromkeys(a.lower() for a in addresses))

        for i in range(0, len(unique), MAX_BULK_ADDRESSES):
            chunk = unique[i:i + MAX_BULK_ADDRESSES]
            data = await self._get("/user/bulk-by-address/", {"addresses": ",".join(chunk)})
            for address, users in (data or {}).items():
                if isinstance(users, list):
                    result[address.lower()] = [SocialUser.from_api(u) for u in users if isinstance(u, dict)]

        logger.debug(f"[Neynar] bulk lookup: {len(result)}/{len(unique)} addresses matched")
        return result

    async def fetch_user_by_address(self, address: str) -> Optional[SocialUser]:
        users = await self.fetch_bulk_users_by_address([address])
        matches = users.get(address.lower()) or []
        return matches[0] if matches else None

    async def fetch_user_by_username(self, username: str) -> Optional[SocialUser]:
        if not self.enabled or not username:
            return None

        data = await self._get("/user/by_username", {"username": username.lstrip("@")})
        user = (data or {}).get("user")
        return SocialUser.from_api(user) if isinstance(user, dict) else None

    async def close(self):
        await self.client.aclose()
