"""
Contract Info Service
Creator / name / symbol for NFT contracts, and the artist name behind them

Creator lookup order:
1. contract_cache
2. Etherscan getcontractcreation          (source: explorer-api)
3. owner(), creator(), royaltyInfo()      (source: on-chain)

A contract is deployed once, so a known creator is never overwritten except by
an explicit backfill and is stored without expiry. A contract with no
discoverable creator is stored for missing_creator_ttl and looked up again
after that.
"""

import asyncio
import logging
from typing import Optional

from data_sources.explorer import ExplorerClient
from data_sources.onchain import OnChainClient
from infrastructure.cache_store import CacheStore, CacheTable
from models.marketplace import ContractInfo, ContractSource

logger = logging.getLogger("ContractInfo")

DAY = 86400


class ContractInfoService:
    def __init__(
        self,
        store: CacheStore,
        onchain: OnChainClient,
        explorer: Optional[ExplorerClient] = None,
        identity_resolver=None,
        missing_creator_ttl: float = DAY,
    ):
        self.store = store
        self.onchain = onchain
        self.explorer = explorer
        self.identity_resolver = identity_resolver
        self.missing_creator_ttl = missing_creator_ttl

    async def get_contract_info(self, contract_address: str, token_id: Optional[str] = None) -> Optional[ContractInfo]:
        address = contract_address.lower()

        cached = await self.store.get(CacheTable.CONTRACT, address)
        if cached is not None:
            info = ContractInfo.from_cache(cached)
            # a creatorless row without expiry is from before negative caching
            if info.creator_address or cached.expires_at is not None:
                return info

        (creator, source), (name, symbol) = await asyncio.gather(
            self._find_creator(address, token_id),
            self._name_and_symbol(address),
        )

        if cached is not None:
            previous = ContractInfo.from_cache(cached)
            name = name or previous.name
            symbol = symbol or previous.symbol

        info = ContractInfo(
            contract_address=address,
            creator_address=creator,
            name=name,
            symbol=symbol,
            source=source,
        )
        ttl = None if creator else self.missing_creator_ttl
        if not creator:
            logger.info(f"[Contract] no creator found for {address}, retrying after {ttl}s")
        await self.store.upsert(CacheTable.CONTRACT, address, info.to_cache_value(), ttl=ttl)
        return info

    async def get_artist_name(self, contract_address: str, token_id: Optional[str] = None) -> Optional[str]:
        """Creator's display name, username or ENS name"""
        if self.identity_resolver is None:
            return None

        info = await self.get_contract_info(contract_address, token_id)
        return await self.artist_name_for(info)

    async def artist_name_for(self, info: Optional[ContractInfo]) -> Optional[str]:
        """Artist name for contract info the caller already holds"""
        if self.identity_resolver is None or info is None or not info.creator_address:
            return None

        identity = await self.identity_resolver.resolve(info.creator_address, fail_silently=True)
        return identity.label if identity else None

    async def backfill(
        self,
        contract_address: str,
        creator_address: Optional[str] = None,
        name: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> ContractInfo:
        """Admin overwrite, including the creator"""
        address = contract_address.lower()
        cached = await self.store.get(CacheTable.CONTRACT, address)
        previous = ContractInfo.from_cache(cached) if cached else ContractInfo(contract_address=address)

        info = ContractInfo(
            contract_address=address,
            creator_address=creator_address or previous.creator_address,
            name=name or previous.name,
            symbol=symbol or previous.symbol,
            source=previous.source,
        )
        ttl = None if info.creator_address else self.missing_creator_ttl
        await self.store.upsert(CacheTable.CONTRACT, address, info.to_cache_value(), ttl=ttl)
        logger.info(f"[Contract] backfilled {address} creator={info.creator_address}")
        return info

    async def _find_creator(self, address: str, token_id: Optional[str]):
        if self.explorer is not None and self.explorer.enabled:
            try:
                creator = await self.explorer.get_contract_creator(address)
                if creator:
                    return creator, ContractSource.EXPLORER_API
            except Exception as e:
                logger.warning(f"[Contract] explorer lookup failed for {address}: {e}")

        try:
            creator = (
                await self.onchain.get_contract_owner(address)
                or await self.onchain.get_contract_creator(address)
                or await self.onchain.get_royalty_receiver(address, int(token_id) if token_id else 1)
            )
        except Exception as e:
            logger.warning(f"[Contract] on-chain creator lookup failed for {address}: {e}")
            creator = None

        return (creator, ContractSource.ONCHAIN) if creator else (None, None)

    async def _name_and_symbol(self, address: str):
        try:
            return await self.onchain.get_name_and_symbol(address)
        except Exception as e:
            logger.debug(f"[Contract] name/symbol unavailable for {address}: {e}")
            return None, None
