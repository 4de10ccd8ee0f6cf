"""
Configuration Management for the Auctionhouse backend
Environment-based configuration for the listing/identity enrichment pipeline

Features:
- Environment-based config (dev/staging/prod)
- Upstream endpoints and API keys (subgraph, Neynar, Etherscan, RPC)
- Cache TTLs and retry policy
- Source priority for on-chain vs indexed reconciliation
- Dynamic reload
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Config")

DAY = 86400


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class SourcePriority(str, Enum):
    """Which source wins when the live contract and the subgraph disagree"""
    ONCHAIN = "onchain"
    SUBGRAPH = "subgraph"


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class SubgraphConfig:
    """Indexed feed (GraphQL) configuration"""
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 10.0


@dataclass
class BlockchainConfig:
    """Blockchain configuration"""
    rpc_url: str = "https://mainnet.base.org"
    mainnet_rpc_url: str = "https://eth.llamarpc.com"
    chain_id: int = 8453
    marketplace_address: Optional[str] = None
    request_timeout: int = 10


@dataclass
class APIConfig:
    """External API configuration"""
    neynar_url: str = "https://api.neynar.com/v2/farcaster"
    neynar_api_key: Optional[str] = None
    etherscan_url: str = "https://api.etherscan.io/v2/api"
    etherscan_api_key: Optional[str] = None
    ipfs_gateway: str = "https://ipfs.io/ipfs/"

    # Timeouts
    request_timeout: float = 15.0


@dataclass
class CacheConfig:
    """Persistent + in-memory cache configuration"""
    enabled: bool = True
    sqlite_path: str = "auctionhouse_cache.db"

    identity_ttl: int = 30 * DAY
    unresolved_identity_ttl: int = DAY
    supply_ttl: int = 30 * DAY
    lazy_supply_ttl: int = DAY
    missing_creator_ttl: int = DAY
    listing_ttl: int = 120
    active_fallback_ttl: int = 600

    # In-memory layer in front of sqlite
    memory_ttl: int = 300
    memory_max_entries: int = 1000


@dataclass
class RetryConfig:
    """Rate-limit retry policy"""
    max_retries: int = 3
    initial_delay: float = 1.0


@dataclass
class ResolutionConfig:
    """Listing / identity resolution tuning"""
    listing_timeout: float = 10.0
    enrichment_timeout: float = 4.0
    discovery_batch_size: int = 10
    discovery_batch_delay: float = 0.1
    source_priority: SourcePriority = SourcePriority.ONCHAIN
    onchain_crosscheck: bool = False


@dataclass
class AuctionhouseConfig:
    """Main application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True

    # Component configs
    subgraph: SubgraphConfig = field(default_factory=SubgraphConfig)
    blockchain: BlockchainConfig = field(default_factory=BlockchainConfig)
    api: APIConfig = field(default_factory=APIConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)

    @classmethod
    def from_env(cls) -> "AuctionhouseConfig":
        """Create configuration from environment variables"""
        env = os.environ.get("AUCTIONHOUSE_ENV", "development").lower()

        config = cls(
            environment=Environment(env) if env in [e.value for e in Environment] else Environment.DEVELOPMENT,
            debug=_env_bool("DEBUG", "true"),
        )

        config.subgraph = SubgraphConfig(
            url=os.environ.get("AUCTIONHOUSE_SUBGRAPH_URL") or None,
            api_key=os.environ.get("GRAPH_STUDIO_API_KEY") or None,
            timeout=float(os.environ.get("SUBGRAPH_TIMEOUT", "10")),
        )

        config.blockchain = BlockchainConfig(
            rpc_url=os.environ.get("ALCHEMY_RPC_URL") or os.environ.get("BASE_RPC_URL") or "https://mainnet.base.org",
            mainnet_rpc_url=os.environ.get("MAINNET_RPC_URL", "https://eth.llamarpc.com"),
            chain_id=int(os.environ.get("CHAIN_ID", "8453")),
            marketplace_address=os.environ.get("MARKETPLACE_ADDRESS") or None,
        )

        config.api = APIConfig(
            neynar_api_key=os.environ.get("NEYNAR_API_KEY") or None,
            etherscan_api_key=os.environ.get("ETHERSCAN_API_KEY") or None,
            ipfs_gateway=os.environ.get("IPFS_GATEWAY", "https://ipfs.io/ipfs/"),
        )

        config.cache = CacheConfig(
            enabled=_env_bool("CACHE_ENABLED", "true"),
            sqlite_path=os.environ.get("SQLITE_PATH", "auctionhouse_cache.db"),
            identity_ttl=int(os.environ.get("IDENTITY_TTL", str(30 * DAY))),
            unresolved_identity_ttl=int(os.environ.get("UNRESOLVED_IDENTITY_TTL", str(DAY))),
            supply_ttl=int(os.environ.get("SUPPLY_TTL", str(30 * DAY))),
            lazy_supply_ttl=int(os.environ.get("LAZY_SUPPLY_TTL", str(DAY))),
            missing_creator_ttl=int(os.environ.get("MISSING_CREATOR_TTL", str(DAY))),
            listing_ttl=int(os.environ.get("LISTING_CACHE_TTL", "120")),
        )

        config.retry = RetryConfig(
            max_retries=int(os.environ.get("RETRY_MAX_RETRIES", "3")),
            initial_delay=float(os.environ.get("RETRY_INITIAL_DELAY", "1.0")),
        )

        priority = os.environ.get("LISTING_SOURCE_PRIORITY", "onchain").lower()
        config.resolution = ResolutionConfig(
            listing_timeout=float(os.environ.get("LISTING_TIMEOUT", "10")),
            enrichment_timeout=float(os.environ.get("ENRICHMENT_TIMEOUT", "4")),
            discovery_batch_size=int(os.environ.get("DISCOVERY_BATCH_SIZE", "10")),
            discovery_batch_delay=float(os.environ.get("DISCOVERY_BATCH_DELAY", "0.1")),
            source_priority=SourcePriority(priority) if priority in [p.value for p in SourcePriority] else SourcePriority.ONCHAIN,
            onchain_crosscheck=_env_bool("LISTING_ONCHAIN_CROSSCHECK", "false"),
        )

        if config.environment == Environment.PRODUCTION:
            config.debug = False

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (hiding secrets)"""
        hidden = ("key", "secret", "password")

        def sanitize(obj):
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items() if not any(h in k.lower() for h in hidden)}
            elif hasattr(obj, '__dataclass_fields__'):
                return sanitize({k: getattr(obj, k) for k in obj.__dataclass_fields__})
            elif isinstance(obj, Enum):
                return obj.value
            else:
                return obj

        return sanitize(self)


# ============================================
# GLOBAL INSTANCES
# ============================================

# Load configuration on module import
config = AuctionhouseConfig.from_env()

logger.info(f"Configuration loaded for environment: {config.environment.value}")


def get_config() -> AuctionhouseConfig:
    """Get the global configuration"""
    return config


def reload_config() -> AuctionhouseConfig:
    """Reload configuration from environment"""
    global config
    config = AuctionhouseConfig.from_env()
    logger.info("Configuration reloaded")
    return config
