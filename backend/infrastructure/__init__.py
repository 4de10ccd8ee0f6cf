"""
Auctionhouse Infrastructure Module
Persistence, caching, retry and error handling for the enrichment pipeline
"""

from .database import (
    DatabasePool,
    QueryResult,
    HealthChecker,
    CACHE_SCHEMA,
)

from .cache_store import (
    CacheStore,
    CacheTable,
    CacheEntry,
)

from .api_cache import (
    ApiCache,
    CacheEndpointType,
)

from .errors import (
    AuctionhouseError,
    ValidationError,
    NotFoundError,
    RateLimitError,
    UpstreamUnavailableError,
    ExternalAPIError,
    BlockchainError,
    ErrorCode,
    ErrorTracker,
    error_tracker,
    register_exception_handlers,
)

from .retry import (
    RetryPolicy,
    with_retry,
    retry_on_rate_limit,
    is_rate_limit_error,
)

from .config import (
    AuctionhouseConfig,
    Environment,
    SourcePriority,
    config,
    get_config,
    reload_config,
)

__all__ = [
    # Database
    "DatabasePool",
    "QueryResult",
    "HealthChecker",
    "CACHE_SCHEMA",

    # Caches
    "CacheStore",
    "CacheTable",
    "CacheEntry",
    "ApiCache",
    "CacheEndpointType",

    # Errors
    "AuctionhouseError",
    "ValidationError",
    "NotFoundError",
    "RateLimitError",
    "UpstreamUnavailableError",
    "ExternalAPIError",
    "BlockchainError",
    "ErrorCode",
    "ErrorTracker",
    "error_tracker",
    "register_exception_handlers",

    # Retry
    "RetryPolicy",
    "with_retry",
    "retry_on_rate_limit",
    "is_rate_limit_error",

    # Config
    "AuctionhouseConfig",
    "Environment",
    "SourcePriority",
    "config",
    "get_config",
    "reload_config",
]
