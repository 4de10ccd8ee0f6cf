"""
Background Identity Discovery
Fire-and-forget cache warming for addresses seen incidentally (sellers, bidders, buyers)

Semantics:
- discover() returns immediately; no result is observed by the caller
- tasks carry no deadline and cannot be cancelled by the caller
- failures are logged at DEBUG and dropped
- an address already being discovered is not scheduled twice
"""

import asyncio
import logging
import re
from typing import Iterable, Set

logger = logging.getLogger("BackgroundDiscovery")

_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")


class BackgroundDiscovery:
    """
    Detached task driver on top of an IdentityResolver.

    Usage:
        discovery = BackgroundDiscovery(resolver)
        discovery.discover(listing.seller)
        discovery.discover_many(bid.bidder for bid in listing.bids)
    """

    def __init__(self, resolver):
        self.resolver = resolver
        self._tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[str] = set()
        self._stats = {"scheduled": 0, "coalesced": 0, "failed": 0}

    def _accept(self, addresses: Iterable[str]) -> list:
        accepted = []
        for address in addresses:
            if not isinstance(address, str) or not _ADDRESS.match(address.strip()):
                continue
            normalized = address.strip().lower()
            if normalized in self._in_flight or normalized in accepted:
                self._stats["coalesced"] += 1
                continue
            accepted.append(normalized)
        return accepted

    def _spawn(self, coro, addresses: list):
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # No running loop (sync caller): nothing to warm
            coro.close()
            return

        self._in_flight.update(addresses)
        self._tasks.add(task)
        self._stats["scheduled"] += 1

        def _done(t: asyncio.Task):
            self._tasks.discard(t)
            self._in_flight.difference_update(addresses)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                self._stats["failed"] += 1
                logger.debug(f"[Discovery] background resolution failed for {addresses}: {error}")

        task.add_done_callback(_done)

    def discover(self, address: str):
        """Schedule resolution of one address"""
        accepted = self._accept([address])
        if accepted:
            self._spawn(self.resolver.resolve(accepted[0], fail_silently=True), accepted)

    def discover_many(self, addresses: Iterable[str]):
        """Schedule one batched resolution for all new addresses"""
        accepted = self._accept(addresses)
        if accepted:
            self._spawn(self.resolver.resolve_many(accepted, fail_silently=True), accepted)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for all scheduled work (shutdown and tests)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self):
        return {**self._stats, "pending": len(self._tasks)}
