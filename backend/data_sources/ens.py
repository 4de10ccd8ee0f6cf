"""
ENS Reverse Resolution
Address -> primary ENS name on Ethereum mainnet (web3's ENS module)
"""
import asyncio
import logging
from typing import Optional

from web3 import Web3

from infrastructure.retry import RetryPolicy
from infrastructure.rpc import get_mainnet_w3

logger = logging.getLogger("ENS")


class ENSResolver:
    """Reverse lookup with forward verification (name must resolve back to the address)"""

    def __init__(self, w3: Optional[Web3] = None, retry: Optional[RetryPolicy] = None):
        self._w3 = w3
        self.retry = retry or RetryPolicy()

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = get_mainnet_w3()
        return self._w3

    def _reverse_sync(self, address: str) -> Optional[str]:
        checksum = Web3.to_checksum_address(address)
        name = self.w3.ens.name(checksum)
        if not name:
            return None
        forward = self.w3.ens.address(name)
        if forward is None or forward.lower() != address.lower():
            logger.debug(f"[ENS] {name} does not resolve back to {address}")
            return None
        return name

    async def reverse_lookup(self, address: str) -> Optional[str]:
        """Primary ENS name for address, or None. Errors propagate to the caller."""
        loop = asyncio.get_running_loop()

        async def _run():
            return await loop.run_in_executor(None, self._reverse_sync, address)

        return await self.retry.run(_run, label="ens")
