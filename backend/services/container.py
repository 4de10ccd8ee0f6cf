"""
Service Container
Builds every client and service once from AuctionhouseConfig and owns their lifecycle.

Routers reach services through get_container(); main.py calls startup()/shutdown()
from the FastAPI lifespan.
"""

import logging
from typing import Optional

from data_sources.ens import ENSResolver
from data_sources.explorer import ExplorerClient
from data_sources.neynar import NeynarClient
from data_sources.nft_metadata import NFTMetadataFetcher
from data_sources.onchain import OnChainClient
from data_sources.subgraph import SubgraphClient
from infrastructure.api_cache import ApiCache, CacheEndpointType
from infrastructure.cache_store import CacheStore
from infrastructure.config import AuctionhouseConfig, get_config
from infrastructure.database import DatabasePool, HealthChecker
from infrastructure.retry import RetryPolicy
from services.contract_info import ContractInfoService
from services.identity_resolver import IdentityResolver
from services.listing_resolver import ListingResolver
from services.token_supply import TokenSupplyService

logger = logging.getLogger("Container")


class ServiceContainer:
    def __init__(
        self,
        config: AuctionhouseConfig,
        db: Optional[DatabasePool],
        store: CacheStore,
        subgraph: SubgraphClient,
        onchain: OnChainClient,
        neynar: NeynarClient,
        explorer: ExplorerClient,
        metadata: NFTMetadataFetcher,
        identity_resolver: IdentityResolver,
        token_supply: TokenSupplyService,
        contract_info: ContractInfoService,
        listing_cache: ApiCache,
        listing_resolver: ListingResolver,
    ):
        self.config = config
        self.db = db
        self.store = store
        self.subgraph = subgraph
        self.onchain = onchain
        self.neynar = neynar
        self.explorer = explorer
        self.metadata = metadata
        self.identity_resolver = identity_resolver
        self.token_supply = token_supply
        self.contract_info = contract_info
        self.listing_cache = listing_cache
        self.listing_resolver = listing_resolver
        self.health = HealthChecker(db, cache_store=store, listing_cache=listing_cache)

    @classmethod
    def from_config(cls, config: Optional[AuctionhouseConfig] = None) -> "ServiceContainer":
        config = config or get_config()

        db = DatabasePool(config.cache.sqlite_path) if config.cache.enabled else None
        store = CacheStore(
            db,
            memory_ttl=config.cache.memory_ttl,
            memory_max_entries=config.cache.memory_max_entries,
        )
        retry = RetryPolicy(
            max_retries=config.retry.max_retries,
            initial_delay=config.retry.initial_delay,
        )

        subgraph = SubgraphClient(
            config.subgraph.url,
            api_key=config.subgraph.api_key,
            retry=retry,
            timeout=config.subgraph.timeout,
        )
        onchain = OnChainClient(rpc_url=config.blockchain.rpc_url, retry=retry)
        neynar = NeynarClient(
            config.api.neynar_api_key,
            base_url=config.api.neynar_url,
            retry=retry,
            timeout=config.api.request_timeout,
        )
        explorer = ExplorerClient(
            config.api.etherscan_api_key,
            base_url=config.api.etherscan_url,
            chain_id=config.blockchain.chain_id,
            retry=retry,
            timeout=config.api.request_timeout,
        )
        metadata = NFTMetadataFetcher(
            onchain,
            gateway=config.api.ipfs_gateway,
            timeout=config.api.request_timeout,
        )

        identity_resolver = IdentityResolver(
            store,
            neynar=neynar,
            ens=ENSResolver(retry=retry),
            identity_ttl=config.cache.identity_ttl,
            unresolved_ttl=config.cache.unresolved_identity_ttl,
            batch_size=config.resolution.discovery_batch_size,
            batch_delay=config.resolution.discovery_batch_delay,
        )
        token_supply = TokenSupplyService(
            store,
            onchain,
            supply_ttl=config.cache.supply_ttl,
            lazy_supply_ttl=config.cache.lazy_supply_ttl,
        )
        contract_info = ContractInfoService(
            store,
            onchain,
            explorer=explorer,
            identity_resolver=identity_resolver,
            missing_creator_ttl=config.cache.missing_creator_ttl,
        )

        listing_cache = ApiCache(
            ttl_config={
                CacheEndpointType.LISTING: {
                    "ttl": config.cache.listing_ttl,
                    "stale_ttl": config.cache.listing_ttl,
                },
                CacheEndpointType.ACTIVE_LISTINGS: {
                    "ttl": 30,
                    "stale_ttl": config.cache.active_fallback_ttl,
                },
            }
        )
        listing_resolver = ListingResolver(
            subgraph,
            identity_resolver,
            onchain=onchain,
            metadata=metadata,
            token_supply=token_supply,
            contract_info=contract_info,
            listing_cache=listing_cache,
            marketplace_address=config.blockchain.marketplace_address,
            source_priority=config.resolution.source_priority,
            onchain_crosscheck=config.resolution.onchain_crosscheck,
            timeout=config.resolution.listing_timeout,
            enrichment_timeout=config.resolution.enrichment_timeout,
        )

        return cls(
            config=config,
            db=db,
            store=store,
            subgraph=subgraph,
            onchain=onchain,
            neynar=neynar,
            explorer=explorer,
            metadata=metadata,
            identity_resolver=identity_resolver,
            token_supply=token_supply,
            contract_info=contract_info,
            listing_cache=listing_cache,
            listing_resolver=listing_resolver,
        )

    async def startup(self):
        if self.db is not None:
            await self.db.initialize()
        logger.info(
            f"[Container] ready (subgraph={'set' if self.subgraph.url else 'missing'}, "
            f"neynar={'on' if self.neynar.enabled else 'off'}, "
            f"priority={self.config.resolution.source_priority.value})"
        )

    async def shutdown(self):
        await self.identity_resolver.background.drain()
        for client in (self.subgraph, self.neynar, self.explorer, self.metadata):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"[Container] failed to close {type(client).__name__}: {e}")
        if self.db is not None:
            await self.db.close()
        logger.info("[Container] shut down")


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Process-wide container, built lazily from the global config"""
    global _container
    if _container is None:
        _container = ServiceContainer.from_config()
    return _container


def set_container(container: Optional[ServiceContainer]):
    """Install a prebuilt container (tests, scripts)"""
    global _container
    _container = container
