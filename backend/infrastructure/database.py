"""
Database Layer for the Auctionhouse backend
Async SQLite persistence for the identity / contract / token-supply caches

Features:
- Async operations (aiosqlite)
- Schema bootstrap for the cache tables
- Query logging
- Health checks
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional
from contextlib import asynccontextmanager

import aiosqlite

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("DatabaseLayer")


CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS identity_cache (
    address TEXT PRIMARY KEY,
    fid INTEGER,
    username TEXT,
    display_name TEXT,
    avatar_url TEXT,
    ens_name TEXT,
    verified_wallets TEXT NOT NULL DEFAULT '[]',
    source TEXT NOT NULL,
    cached_at REAL NOT NULL,
    expires_at REAL
);

CREATE INDEX IF NOT EXISTS idx_identity_cache_expires ON identity_cache (expires_at);

CREATE TABLE IF NOT EXISTS contract_cache (
    contract_address TEXT PRIMARY KEY,
    creator_address TEXT,
    name TEXT,
    symbol TEXT,
    source TEXT,
    cached_at REAL NOT NULL,
    expires_at REAL
);

CREATE TABLE IF NOT EXISTS token_supply_cache (
    contract_address TEXT NOT NULL,
    token_id TEXT NOT NULL,
    total_supply TEXT NOT NULL,
    is_lazy_mint INTEGER NOT NULL DEFAULT 0,
    cached_at REAL NOT NULL,
    expires_at REAL,
    PRIMARY KEY (contract_address, token_id)
);

CREATE INDEX IF NOT EXISTS idx_token_supply_cache_expires ON token_supply_cache (expires_at);
"""


class QueryResult:
    """Wrapper for query results"""

    def __init__(self, rows: List[Dict], rowcount: int = 0):
        self.rows = rows
        self.rowcount = rowcount

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    def first(self) -> Optional[Dict]:
        return self.rows[0] if self.rows else None

    def all(self) -> List[Dict]:
        return self.rows


class DatabasePool:
    """
    Async SQLite connection holder.
    aiosqlite serializes statements on one worker thread, so a single
    connection is shared by the whole process.
    """

    def __init__(self, sqlite_path: str = "auctionhouse_cache.db", log_queries: bool = False):
        self.sqlite_path = sqlite_path
        self.log_queries = log_queries
        self._conn: Optional[aiosqlite.Connection] = None
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def initialize(self, create_schema: bool = True):
        """Open the connection and (optionally) create the cache tables"""
        if self._is_initialized:
            return

        self._conn = await aiosqlite.connect(self.sqlite_path)
        self._conn.row_factory = aiosqlite.Row
        self._is_initialized = True
        logger.info(f"SQLite initialized: {self.sqlite_path}")

        if create_schema:
            await self.execute_script(CACHE_SCHEMA)

    async def close(self):
        """Close the connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None

        self._is_initialized = False
        logger.info("Database closed")

    @asynccontextmanager
    async def acquire(self):
        """Acquire the shared connection"""
        if not self._is_initialized:
            await self.initialize()
        yield self._conn

    async def execute(self, query: str, params: tuple = None) -> QueryResult:
        """Execute a query and return results"""
        start_time = datetime.now()

        if self.log_queries:
            logger.debug(f"Query: {query[:100]}... Params: {params}")

        try:
            async with self.acquire() as conn:
                cursor = await conn.execute(query, params or ())
                rows = await cursor.fetchall()
                result = QueryResult([dict(row) for row in rows], cursor.rowcount)
                await conn.commit()

            duration = (datetime.now() - start_time).total_seconds() * 1000
            if self.log_queries:
                logger.debug(f"Query completed in {duration:.2f}ms, {len(result)} rows")

            return result

        except Exception as e:
            logger.debug(f"Query failed: {query[:100]}... Error: {e}")
            raise

    async def execute_script(self, script: str):
        """Execute a SQL script (schema bootstrap)"""
        async with self.acquire() as conn:
            await conn.executescript(script)
            await conn.commit()


# ============================================
# HEALTH CHECKS
# ============================================

class HealthChecker:
    """Health check for the persistence layer and caches"""

    def __init__(self, db: Optional[DatabasePool], cache_store=None, listing_cache=None):
        self.db = db
        self.cache_store = cache_store
        self.listing_cache = listing_cache

    async def check_database(self) -> Dict:
        """Check database health"""
        if self.db is None:
            return {"status": "disabled"}

        try:
            start = datetime.now()
            await self.db.execute("SELECT 1")
            latency = (datetime.now() - start).total_seconds() * 1000

            return {
                "status": "healthy",
                "type": "sqlite",
                "latency_ms": round(latency, 2)
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    def check_caches(self) -> Dict:
        """Report in-memory cache statistics"""
        stats: Dict = {}
        if self.cache_store is not None:
            stats["cache_store"] = self.cache_store.get_stats()
        if self.listing_cache is not None:
            stats["listing_cache"] = self.listing_cache.get_stats()
        return stats

    async def check_all(self) -> Dict:
        """Check all components"""
        return {
            "database": await self.check_database(),
            "caches": self.check_caches(),
            "timestamp": datetime.now().isoformat()
        }
