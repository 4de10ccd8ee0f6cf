"""
Cache Store - TTL-keyed persistent tables for identities, contracts and token supply

WHY: Neynar, ENS, explorer and RPC lookups are slow and rate limited, and most
of the facts they return change rarely (a contract is deployed once, a
Farcaster profile changes every few weeks at most).

DESIGN:
- sqlite (aiosqlite) tables as the durable tier
- in-memory layer in front (short TTL, bounded size, evicts oldest 10%)
- get() returns None for both "never cached" and "expired"
- upsert() is last-write-wins; ttl=None stores a row that never expires
- any storage problem (missing table, closed db) degrades to a miss, never raises
"""

import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .database import DatabasePool

logger = logging.getLogger("CacheStore")


class CacheTable(str, Enum):
    IDENTITY = "identity_cache"
    CONTRACT = "contract_cache"
    TOKEN_SUPPLY = "token_supply_cache"


@dataclass(frozen=True)
class TableSpec:
    key_columns: Tuple[str, ...]
    value_columns: Tuple[str, ...]
    json_columns: Tuple[str, ...] = ()
    bool_columns: Tuple[str, ...] = ()
    # uint256 values stored as TEXT so they survive sqlite's 64-bit INTEGER
    bigint_columns: Tuple[str, ...] = ()


TABLES: Dict[CacheTable, TableSpec] = {
    CacheTable.IDENTITY: TableSpec(
        key_columns=("address",),
        value_columns=("fid", "username", "display_name", "avatar_url", "ens_name", "verified_wallets", "source"),
        json_columns=("verified_wallets",),
    ),
    CacheTable.CONTRACT: TableSpec(
        key_columns=("contract_address",),
        value_columns=("creator_address", "name", "symbol", "source"),
    ),
    CacheTable.TOKEN_SUPPLY: TableSpec(
        key_columns=("contract_address", "token_id"),
        value_columns=("total_supply", "is_lazy_mint"),
        bool_columns=("is_lazy_mint",),
        bigint_columns=("total_supply",),
    ),
}

CacheKey = Union[str, Tuple[Any, ...]]
STORAGE_ERRORS = (sqlite3.Error, ValueError)
# json.JSONDecodeError is a ValueError
DECODE_ERRORS = (ValueError, TypeError)


@dataclass
class CacheEntry:
    """One cached row, decoded"""
    table: CacheTable
    key: Tuple[str, ...]
    value: Dict[str, Any]
    cached_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class _MemorySlot:
    entry: CacheEntry
    stored_at: float
    memory_expires_at: float


class CacheStore:
    """
    Two-tier cache (memory -> sqlite) for enrichment facts.

    Usage:
        store = CacheStore(db)
        await store.upsert(CacheTable.IDENTITY, "0xabc...", {...}, ttl=86400)
        entry = await store.get(CacheTable.IDENTITY, "0xabc...")
    """

    def __init__(
        self,
        db: Optional[DatabasePool] = None,
        memory_ttl: float = 300,
        memory_max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.memory_ttl = memory_ttl
        self.memory_max_entries = memory_max_entries
        self._clock = clock
        self._memory: Dict[Tuple[CacheTable, Tuple[str, ...]], _MemorySlot] = {}

        self._stats = {
            "memory_hits": 0,
            "db_hits": 0,
            "misses": 0,
            "writes": 0,
            "storage_errors": 0,
            "evictions": 0,
        }

    # ------------------------------------------------------------------
    # Keys and row codecs
    # ------------------------------------------------------------------

    @staticmethod
    def _key(table: CacheTable, key: CacheKey) -> Tuple[str, ...]:
        parts = key if isinstance(key, tuple) else (key,)
        spec = TABLES[table]
        if len(parts) != len(spec.key_columns):
            raise ValueError(f"{table.value} expects key {spec.key_columns}, got {parts!r}")
        return tuple(str(p).lower() for p in parts)

    @staticmethod
    def _encode(table: CacheTable, value: Dict[str, Any]) -> Dict[str, Any]:
        spec = TABLES[table]
        unknown = set(value) - set(spec.value_columns) - set(spec.key_columns)
        if unknown:
            raise ValueError(f"Unknown columns for {table.value}: {sorted(unknown)}")

        row = {}
        for column in spec.value_columns:
            v = value.get(column)
            if column in spec.json_columns:
                v = json.dumps(list(v or []))
            elif column in spec.bool_columns:
                v = 1 if v else 0
            elif column in spec.bigint_columns and v is not None:
                v = str(int(v))
            row[column] = v
        return row

    @staticmethod
    def _decode(table: CacheTable, row: Dict[str, Any]) -> Dict[str, Any]:
        spec = TABLES[table]
        value = {c: row.get(c) for c in spec.key_columns + spec.value_columns}
        for column in spec.json_columns:
            raw = value.get(column)
            value[column] = json.loads(raw) if raw else []
        for column in spec.bool_columns:
            value[column] = bool(value.get(column))
        for column in spec.bigint_columns:
            if value.get(column) is not None:
                value[column] = int(value[column])
        return value

    def _entry_from_row(self, table: CacheTable, key: Tuple[str, ...], row: Dict[str, Any]) -> Optional[CacheEntry]:
        """Decode a sqlite row; a corrupt row counts as a storage error and a miss"""
        try:
            return CacheEntry(
                table=table,
                key=key,
                value=self._decode(table, row),
                cached_at=float(row["cached_at"]),
                expires_at=row.get("expires_at"),
            )
        except DECODE_ERRORS as e:
            self._stats["storage_errors"] += 1
            self._stats["misses"] += 1
            logger.warning(f"[CacheStore] corrupt row in {table.value} for {key}, treating as miss: {e}")
            return None

    # ------------------------------------------------------------------
    # Memory tier
    # ------------------------------------------------------------------

    def _remember(self, entry: CacheEntry):
        now = self._clock()
        slot_key = (entry.table, entry.key)

        if slot_key not in self._memory and len(self._memory) >= self.memory_max_entries:
            self._evict_oldest()

        memory_expires_at = now + self.memory_ttl
        if entry.expires_at is not None:
            memory_expires_at = min(memory_expires_at, entry.expires_at)

        self._memory[slot_key] = _MemorySlot(entry, now, memory_expires_at)

    def _recall(self, table: CacheTable, key: Tuple[str, ...]) -> Optional[CacheEntry]:
        slot = self._memory.get((table, key))
        if slot is None:
            return None
        if self._clock() >= slot.memory_expires_at:
            del self._memory[(table, key)]
            return None
        return slot.entry

    def _evict_oldest(self):
        """Drop the oldest 10% of memory entries"""
        ordered = sorted(self._memory.items(), key=lambda item: item[1].stored_at)
        to_remove = max(1, len(ordered) // 10)
        for slot_key, _ in ordered[:to_remove]:
            del self._memory[slot_key]
            self._stats["evictions"] += 1

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, table: CacheTable, key: CacheKey) -> Optional[CacheEntry]:
        """Return the unexpired entry for key, or None"""
        k = self._key(table, key)

        entry = self._recall(table, k)
        if entry is not None:
            self._stats["memory_hits"] += 1
            return entry

        if self.db is None:
            self._stats["misses"] += 1
            return None

        spec = TABLES[table]
        where = " AND ".join(f"{c} = ?" for c in spec.key_columns)
        try:
            result = await self.db.execute(f"SELECT * FROM {table.value} WHERE {where}", k)
        except STORAGE_ERRORS as e:
            self._stats["storage_errors"] += 1
            logger.warning(f"[CacheStore] read {table.value} failed, treating as miss: {e}")
            return None

        row = result.first()
        if row is None:
            self._stats["misses"] += 1
            return None

        entry = self._entry_from_row(table, k, row)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._stats["misses"] += 1
            return None

        self._stats["db_hits"] += 1
        self._remember(entry)
        return entry

    async def upsert(
        self,
        table: CacheTable,
        key: CacheKey,
        value: Dict[str, Any],
        ttl: Optional[float],
    ) -> CacheEntry:
        """Write value under key (last write wins). ttl=None never expires."""
        k = self._key(table, key)
        spec = TABLES[table]
        encoded = self._encode(table, value)

        now = self._clock()
        expires_at = now + ttl if ttl is not None else None

        entry = CacheEntry(
            table=table,
            key=k,
            value=self._decode(table, {**dict(zip(spec.key_columns, k)), **encoded}),
            cached_at=now,
            expires_at=expires_at,
        )
        self._remember(entry)
        self._stats["writes"] += 1

        if self.db is None:
            return entry

        columns = spec.key_columns + spec.value_columns + ("cached_at", "expires_at")
        updates = ", ".join(f"{c} = excluded.{c}" for c in spec.value_columns + ("cached_at", "expires_at"))
        query = (
            f"INSERT INTO {table.value} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT ({', '.join(spec.key_columns)}) DO UPDATE SET {updates}"
        )
        params = k + tuple(encoded[c] for c in spec.value_columns) + (now, expires_at)

        try:
            await self.db.execute(query, params)
        except STORAGE_ERRORS as e:
            self._stats["storage_errors"] += 1
            logger.warning(f"[CacheStore] write {table.value} failed, kept in memory only: {e}")

        return entry

    async def delete(self, table: CacheTable, key: CacheKey):
        """Explicitly invalidate one entry"""
        k = self._key(table, key)
        self._memory.pop((table, k), None)

        if self.db is None:
            return

        where = " AND ".join(f"{c} = ?" for c in TABLES[table].key_columns)
        try:
            await self.db.execute(f"DELETE FROM {table.value} WHERE {where}", k)
        except STORAGE_ERRORS as e:
            self._stats["storage_errors"] += 1
            logger.warning(f"[CacheStore] delete {table.value} failed: {e}")

    async def find_identity_by_wallet(self, address: str) -> Optional[CacheEntry]:
        """Find an unexpired identity whose verified wallets include address"""
        address = address.lower()
        now = self._clock()

        for (table, _), slot in list(self._memory.items()):
            if table is not CacheTable.IDENTITY or now >= slot.memory_expires_at:
                continue
            if address in slot.entry.value.get("verified_wallets", []):
                return slot.entry

        if self.db is None:
            return None

        query = (
            "SELECT identity_cache.* FROM identity_cache, json_each(identity_cache.verified_wallets) AS w "
            "WHERE w.value = ? AND (identity_cache.expires_at IS NULL OR identity_cache.expires_at > ?) "
            "ORDER BY identity_cache.cached_at DESC LIMIT 1"
        )
        try:
            result = await self.db.execute(query, (address, now))
        except STORAGE_ERRORS as e:
            self._stats["storage_errors"] += 1
            logger.warning(f"[CacheStore] verified-wallet lookup failed: {e}")
            return None

        row = result.first()
        if row is None:
            return None

        entry = self._entry_from_row(CacheTable.IDENTITY, (row["address"],), row)
        if entry is not None:
            self._remember(entry)
        return entry

    async def purge_expired(self) -> int:
        """Delete expired rows from memory and sqlite. Returns rows removed."""
        now = self._clock()
        removed = 0

        for slot_key, slot in list(self._memory.items()):
            if slot.entry.is_expired(now) or now >= slot.memory_expires_at:
                del self._memory[slot_key]

        if self.db is None:
            return removed

        for table in CacheTable:
            try:
                result = await self.db.execute(
                    f"DELETE FROM {table.value} WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    (now,),
                )
                removed += max(0, result.rowcount)
            except STORAGE_ERRORS as e:
                self._stats["storage_errors"] += 1
                logger.warning(f"[CacheStore] purge {table.value} failed: {e}")

        logger.info(f"[CacheStore] purged {removed} expired rows")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics for monitoring."""
        return {
            **self._stats,
            "memory_entries": len(self._memory),
            "memory_max_entries": self.memory_max_entries,
            "persistent": self.db is not None,
        }

    def clear_memory(self):
        self._memory.clear()
