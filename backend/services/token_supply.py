"""
Token Supply Service
Cached total-supply facts for ERC-1155 token ids and ERC-721 collections

cache hit -> live totalSupply read -> persist with TTL
(1 day when lazy mint is suspected since supply can still grow, else 30 days)
Every failure returns None; supply is an optional enrichment.
"""

import logging
from typing import Optional

from data_sources.onchain import OnChainClient
from infrastructure.cache_store import CacheStore, CacheTable
from models.marketplace import TokenSupplyFact

logger = logging.getLogger("TokenSupply")

DAY = 86400

# ERC-721 collection supply shares the table under this pseudo token id
COLLECTION_TOKEN_ID = "collection"


class TokenSupplyService:
    def __init__(
        self,
        store: CacheStore,
        onchain: OnChainClient,
        supply_ttl: float = 30 * DAY,
        lazy_supply_ttl: float = DAY,
    ):
        self.store = store
        self.onchain = onchain
        self.supply_ttl = supply_ttl
        self.lazy_supply_ttl = lazy_supply_ttl

    def ttl_for(self, is_lazy_mint: bool) -> float:
        return self.lazy_supply_ttl if is_lazy_mint else self.supply_ttl

    async def get_erc1155_supply(
        self,
        contract_address: str,
        token_id: str,
        is_lazy_mint: bool = False,
    ) -> Optional[TokenSupplyFact]:
        """totalSupply(id) for one ERC-1155 token"""
        key = (contract_address.lower(), str(token_id))

        cached = await self.store.get(CacheTable.TOKEN_SUPPLY, key)
        if cached is not None:
            return TokenSupplyFact.from_cache(cached)

        try:
            supply = await self.onchain.get_erc1155_total_supply(contract_address, int(token_id))
        except Exception as e:
            logger.warning(f"[Supply] totalSupply({token_id}) failed for {contract_address}: {e}")
            return None

        if supply is None:
            return None

        entry = await self.store.upsert(
            CacheTable.TOKEN_SUPPLY,
            key,
            {"total_supply": supply, "is_lazy_mint": is_lazy_mint},
            self.ttl_for(is_lazy_mint),
        )
        return TokenSupplyFact.from_cache(entry)

    async def get_collection_supply(self, contract_address: str) -> Optional[int]:
        """totalSupply() for an ERC-721 collection (when the contract exposes it)"""
        key = (contract_address.lower(), COLLECTION_TOKEN_ID)

        cached = await self.store.get(CacheTable.TOKEN_SUPPLY, key)
        if cached is not None:
            return cached.value["total_supply"]

        try:
            supply = await self.onchain.get_collection_total_supply(contract_address)
        except Exception as e:
            logger.warning(f"[Supply] collection totalSupply failed for {contract_address}: {e}")
            return None

        if supply is None:
            return None

        # Collections keep minting; use the short TTL
        await self.store.upsert(
            CacheTable.TOKEN_SUPPLY,
            key,
            {"total_supply": supply, "is_lazy_mint": True},
            self.lazy_supply_ttl,
        )
        return supply

    async def invalidate(self, contract_address: str, token_id: str):
        """Drop a cached supply (e.g. after a lazy mint purchase)"""
        await self.store.delete(CacheTable.TOKEN_SUPPLY, (contract_address.lower(), str(token_id)))
