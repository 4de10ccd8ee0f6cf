"""
Identity Resolver
Address -> Farcaster / ENS identity, with a persistent negative cache

Resolution order (first success wins):
1. CacheStore (primary address, then verified-wallet membership)  -> "cached"
2. Neynar bulk-by-address                                          -> "social"
3. ENS reverse lookup on mainnet                                   -> "ens"
4. persist an "unresolved" row, return None

An "unresolved" row is a real cache hit: later calls short-circuit at step 1
until it expires. It is not written when an upstream call failed, so a
transient outage does not hide an identity for the whole negative TTL.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from data_sources.ens import ENSResolver
from data_sources.neynar import NeynarClient
from infrastructure.cache_store import CacheStore, CacheTable
from infrastructure.errors import ValidationError
from models.marketplace import Identity, IdentitySource, SocialUser
from services.background_discovery import BackgroundDiscovery

logger = logging.getLogger("IdentityResolver")

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

DAY = 86400
_NOT_FETCHED = object()


def is_valid_address(address: Any) -> bool:
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address.strip()))


class IdentityResolver:
    """
    Usage:
        resolver = IdentityResolver(store, neynar, ens)
        identity = await resolver.resolve("0xAbC...")
        identities = await resolver.resolve_many([...])
        resolver.resolve_in_background(bidder)
    """

    def __init__(
        self,
        store: CacheStore,
        neynar: Optional[NeynarClient] = None,
        ens: Optional[ENSResolver] = None,
        identity_ttl: float = 30 * DAY,
        unresolved_ttl: float = DAY,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.store = store
        self.neynar = neynar
        self.ens = ens
        self.identity_ttl = identity_ttl
        self.unresolved_ttl = unresolved_ttl
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self._sleep = sleep
        self.background = BackgroundDiscovery(self)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        address: str,
        cache_only: bool = False,
        fail_silently: bool = True,
    ) -> Optional[Identity]:
        """Resolve one address. None means 'no identity known'."""
        normalized = self._validate(address, fail_silently)
        if normalized is None:
            return None

        cached = await self._lookup_cache(normalized)
        if cached is not None:
            return cached if cached.is_resolved else None

        if cache_only:
            return None

        return await self._resolve_upstream(normalized, fail_silently)

    async def resolve_many(
        self,
        addresses: Iterable[str],
        cache_only: bool = False,
        fail_silently: bool = True,
    ) -> Dict[str, Optional[Identity]]:
        """
        Resolve many addresses. Cache first, then Neynar in chunks of
        batch_size with batch_delay between chunks.
        """
        results: Dict[str, Optional[Identity]] = {}
        pending: List[str] = []

        for raw in addresses:
            normalized = self._validate(raw, fail_silently)
            if normalized is None:
                if isinstance(raw, str):
                    results[raw.strip().lower()] = None
                continue
            if normalized in results or normalized in pending:
                continue

            cached = await self._lookup_cache(normalized)
            if cached is not None:
                results[normalized] = cached if cached.is_resolved else None
            elif cache_only:
                results[normalized] = None
            else:
                pending.append(normalized)

        for index in range(0, len(pending), self.batch_size):
            if index:
                await (self._sleep or asyncio.sleep)(self.batch_delay)

            chunk = pending[index:index + self.batch_size]
            social, social_failed = await self._lookup_social_bulk(chunk, fail_silently)

            resolved = await asyncio.gather(*(
                self._resolve_upstream(
                    address,
                    fail_silently,
                    social_users=social.get(address, []),
                    social_failed=social_failed,
                )
                for address in chunk
            ))
            results.update(zip(chunk, resolved))

        logger.info(
            f"[Identity] batch resolved {sum(1 for v in results.values() if v)}/{len(results)} addresses"
        )
        return results

    def resolve_in_background(self, address: str):
        """Fire-and-forget resolution; outcome and errors are never surfaced."""
        self.background.discover(address)

    async def resolve_username(self, username: str, fail_silently: bool = True) -> Optional[Identity]:
        """Look up a Farcaster username and cache it under its primary verified wallet"""
        if not username or self.neynar is None or not self.neynar.enabled:
            return None

        try:
            user = await self.neynar.fetch_user_by_username(username)
        except Exception as e:
            if not fail_silently:
                raise
            logger.warning(f"[Identity] username lookup failed for {username}: {e}")
            return None

        if user is None:
            return None

        primary = (user.verified_addresses or [None])[0] or user.custody_address
        if not primary:
            logger.info(f"[Identity] @{username} has no wallet to key the identity on")
            return None

        return await self._persist(self._from_social(primary, user), self.identity_ttl)

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _validate(self, address: Any, fail_silently: bool) -> Optional[str]:
        if is_valid_address(address):
            return address.strip().lower()
        if fail_silently:
            logger.debug(f"[Identity] ignoring invalid address {address!r}")
            return None
        raise ValidationError(f"Invalid address: {address!r}", {"address": str(address)})

    async def _lookup_cache(self, address: str) -> Optional[Identity]:
        entry = await self.store.get(CacheTable.IDENTITY, address)
        if entry is None:
            entry = await self.store.find_identity_by_wallet(address)
        return Identity.from_cache(entry, resolved_via="cached") if entry else None

    async def _lookup_social_bulk(
        self, addresses: List[str], fail_silently: bool
    ) -> Tuple[Dict[str, List[SocialUser]], bool]:
        if self.neynar is None or not self.neynar.enabled:
            return {}, False
        try:
            return await self.neynar.fetch_bulk_users_by_address(addresses), False
        except Exception as e:
            if not fail_silently:
                raise
            logger.warning(f"[Identity] Neynar lookup failed for {len(addresses)} addresses: {e}")
            return {}, True

    async def _lookup_ens(self, address: str, fail_silently: bool) -> Tuple[Optional[str], bool]:
        if self.ens is None:
            return None, False
        try:
            return await self.ens.reverse_lookup(address), False
        except Exception as e:
            if not fail_silently:
                raise
            logger.warning(f"[Identity] ENS lookup failed for {address}: {e}")
            return None, True

    async def _resolve_upstream(
        self,
        address: str,
        fail_silently: bool,
        social_users: Any = _NOT_FETCHED,
        social_failed: bool = False,
    ) -> Optional[Identity]:
        upstream_failed = social_failed

        if social_users is _NOT_FETCHED:
            social, failed = await self._lookup_social_bulk([address], fail_silently)
            social_users = social.get(address, [])
            upstream_failed = upstream_failed or failed

        if social_users:
            identity = self._from_social(address, social_users[0])
            logger.info(f"[Identity] {address[:10]}... -> @{identity.username} (social)")
            return await self._persist(identity, self.identity_ttl)

        ens_name, ens_failed = await self._lookup_ens(address, fail_silently)
        upstream_failed = upstream_failed or ens_failed

        if ens_name:
            identity = Identity(address=address, source=IdentitySource.ENS, ens_name=ens_name, resolved_via="ens")
            logger.info(f"[Identity] {address[:10]}... -> {ens_name} (ens)")
            return await self._persist(identity, self.identity_ttl)

        if upstream_failed:
            logger.info(f"[Identity] {address[:10]}... unresolved after upstream failure, not caching")
            return None

        await self._persist(
            Identity(address=address, source=IdentitySource.UNRESOLVED),
            self.unresolved_ttl,
        )
        logger.debug(f"[Identity] {address[:10]}... unresolved, negative entry cached")
        return None

    @staticmethod
    def _from_social(address: str, user: SocialUser) -> Identity:
        return Identity(
            address=address,
            source=IdentitySource.SOCIAL,
            fid=user.fid,
            username=user.username,
            display_name=user.display_name,
            avatar_url=user.pfp_url,
            verified_wallets=[address] + list(user.verified_addresses),
            resolved_via="social",
        )

    async def _persist(self, identity: Identity, ttl: float) -> Identity:
        entry = await self.store.upsert(CacheTable.IDENTITY, identity.address, identity.to_cache_value(), ttl)
        identity.cached_at = entry.cached_at
        identity.expires_at = entry.expires_at
        return identity
