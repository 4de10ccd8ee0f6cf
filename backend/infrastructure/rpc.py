# infrastructure/rpc.py
"""
Centralized RPC configuration for the Auctionhouse backend.
Base for marketplace / token reads, Ethereum mainnet for ENS.
"""
from typing import Optional

from web3 import Web3

from .config import get_config


def get_rpc_url() -> str:
    """Get the Base RPC URL from config."""
    return get_config().blockchain.rpc_url


def get_mainnet_rpc_url() -> str:
    """Get the Ethereum mainnet RPC URL (ENS lives on L1)."""
    return get_config().blockchain.mainnet_rpc_url


def get_web3(rpc_url: Optional[str] = None, timeout: Optional[int] = None) -> Web3:
    """Get a Web3 instance (Base unless another RPC URL is given)."""
    url = rpc_url or get_rpc_url()
    timeout = timeout or get_config().blockchain.request_timeout
    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))


# Lazily created mainnet instance (ENS)
mainnet_w3 = None


def get_mainnet_w3() -> Web3:
    """Get cached mainnet Web3 instance (lazy initialization)."""
    global mainnet_w3
    if mainnet_w3 is None:
        mainnet_w3 = get_web3(get_mainnet_rpc_url())
    return mainnet_w3


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
