"""
On-chain Data Client
Live contract reads on Base: marketplace listings, ERC-20 payment tokens,
ERC-721 / ERC-1155 ownership, supply and token URIs, contract provenance.

web3's HTTPProvider is synchronous, so every call runs in the default
executor and is awaited from the event loop.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Tuple

from web3 import Web3

from infrastructure.errors import BlockchainError
from infrastructure.retry import RetryPolicy, is_rate_limit_error
from infrastructure.rpc import ZERO_ADDRESS, get_web3
from models.marketplace import OnChainListing, TokenInfo, TokenSpec

logger = logging.getLogger("OnChain")

# Returned when an ERC-20 cannot be read
UNKNOWN_TOKEN_SYMBOL = "???"

_LISTING_DETAILS = {
    "name": "details",
    "type": "tuple",
    "components": [
        {"name": "initialAmount", "type": "uint256"},
        {"name": "type_", "type": "uint8"},
        {"name": "totalAvailable", "type": "uint24"},
        {"name": "totalPerSale", "type": "uint24"},
        {"name": "extensionInterval", "type": "uint16"},
        {"name": "minIncrementBPS", "type": "uint16"},
        {"name": "erc20", "type": "address"},
        {"name": "identityVerifier", "type": "address"},
        {"name": "startTime", "type": "uint48"},
        {"name": "endTime", "type": "uint48"},
    ],
}

_LISTING_TOKEN = {
    "name": "token",
    "type": "tuple",
    "components": [
        {"name": "id", "type": "uint256"},
        {"name": "address_", "type": "address"},
        {"name": "spec", "type": "uint8"},
        {"name": "lazy", "type": "bool"},
    ],
}

MARKETPLACE_ABI = [
    {
        "inputs": [{"name": "listingId", "type": "uint40"}],
        "name": "getListing",
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "seller", "type": "address"},
                    {"name": "finalized", "type": "bool"},
                    {"name": "totalSold", "type": "uint24"},
                    {"name": "marketplaceBPS", "type": "uint16"},
                    {"name": "referrerBPS", "type": "uint16"},
                    _LISTING_DETAILS,
                    _LISTING_TOKEN,
                    {
                        "name": "receivers",
                        "type": "tuple[]",
                        "components": [
                            {"name": "receiver", "type": "address"},
                            {"name": "receiverBPS", "type": "uint16"},
                        ],
                    },
                    {
                        "name": "fees",
                        "type": "tuple",
                        "components": [
                            {"name": "deliverBPS", "type": "uint16"},
                            {"name": "deliverFixed", "type": "uint240"},
                        ],
                    },
                    {
                        "name": "bid",
                        "type": "tuple",
                        "components": [
                            {"name": "amount", "type": "uint256"},
                            {"name": "bidder", "type": "address"},
                            {"name": "delivered", "type": "bool"},
                            {"name": "settled", "type": "bool"},
                            {"name": "refunded", "type": "bool"},
                            {"name": "timestamp", "type": "uint48"},
                            {"name": "referrer", "type": "address"},
                        ],
                    },
                    {"name": "offersAccepted", "type": "bool"},
                ],
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

# ERC20 ABI for token info
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    },
]

ERC721_ABI = [
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
]

ERC1155_ABI = [
    {
        "inputs": [{"name": "id", "type": "uint256"}],
        "name": "uri",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "id", "type": "uint256"}],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
]

# owner() / creator() / royaltyInfo(): creator provenance when no explorer data exists
PROVENANCE_ABI = [
    {
        "inputs": [],
        "name": "owner",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "creator",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "tokenId", "type": "uint256"},
            {"name": "salePrice", "type": "uint256"},
        ],
        "name": "royaltyInfo",
        "outputs": [
            {"name": "receiver", "type": "address"},
            {"name": "royaltyAmount", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function"
    },
]

ROYALTY_SALE_PRICE = 1_000_000


def _is_zero(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


class OnChainClient:
    """
    Read-only contract client for Base.

    Usage:
        client = OnChainClient()
        listing = await client.get_listing(marketplace, 42)
        token = await client.get_erc20_info("0x8335...")
    """

    def __init__(
        self,
        w3: Optional[Web3] = None,
        rpc_url: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        chain: str = "base",
    ):
        self._w3 = w3
        self.rpc_url = rpc_url
        self.retry = retry or RetryPolicy()
        self.chain = chain

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = get_web3(self.rpc_url)
        return self._w3

    def _contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _call(self, fn: Callable[[], Any], label: str) -> Any:
        """Run a blocking contract call in the executor, under RetryPolicy"""
        loop = asyncio.get_running_loop()

        async def _run():
            return await loop.run_in_executor(None, fn)

        return await self.retry.run(_run, label=f"rpc:{label}")

    async def _optional_call(self, fn: Callable[[], Any], label: str) -> Any:
        """Contract call whose failure (revert, missing function) means 'no value'"""
        try:
            return await self._call(fn, label)
        except Exception as e:
            logger.debug(f"[OnChain] {label} unavailable: {e}")
            return None

    # ------------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------------

    async def get_listing(self, marketplace_address: str, listing_id: int) -> Optional[OnChainListing]:
        """Live getListing(uint40) read. None for ids the contract does not know."""
        contract = self._contract(marketplace_address, MARKETPLACE_ABI)
        try:
            raw = await self._call(
                lambda: contract.functions.getListing(int(listing_id)).call(),
                f"getListing({listing_id})",
            )
        except Exception as e:
            if is_rate_limit_error(e):
                raise
            raise BlockchainError(self.chain, f"getListing({listing_id}) failed: {e}") from e

        listing = OnChainListing.from_chain(raw)
        return listing if listing.exists else None

    # ------------------------------------------------------------------
    # Payment tokens
    # ------------------------------------------------------------------

    async def get_erc20_info(self, address: Optional[str]) -> TokenInfo:
        """Symbol/decimals for a payment token. Zero or missing address is native ETH."""
        if _is_zero(address):
            return TokenInfo(symbol="ETH", decimals=18, address=None, is_native=True)

        try:
            contract = self._contract(address, ERC20_ABI)
            symbol, decimals = await asyncio.gather(
                self._call(lambda: contract.functions.symbol().call(), "symbol"),
                self._call(lambda: contract.functions.decimals().call(), "decimals"),
            )
            return TokenInfo(symbol=symbol, decimals=int(decimals), address=address.lower())
        except Exception as e:
            logger.warning(f"[OnChain] ERC20 info failed for {address}: {e}")
            return TokenInfo(symbol=UNKNOWN_TOKEN_SYMBOL, decimals=18, address=address.lower())

    # ------------------------------------------------------------------
    # NFTs
    # ------------------------------------------------------------------

    async def get_erc1155_total_supply(self, contract_address: str, token_id: int) -> Optional[int]:
        contract = self._contract(contract_address, ERC1155_ABI)
        supply = await self._optional_call(
            lambda: contract.functions.totalSupply(int(token_id)).call(), "totalSupply(id)"
        )
        return int(supply) if supply is not None else None

    async def get_collection_total_supply(self, contract_address: str) -> Optional[int]:
        contract = self._contract(contract_address, ERC721_ABI)
        supply = await self._optional_call(
            lambda: contract.functions.totalSupply().call(), "totalSupply()"
        )
        return int(supply) if supply is not None else None

    async def get_token_uri(self, contract_address: str, token_id: int, spec: TokenSpec) -> Optional[str]:
        if spec is TokenSpec.ERC721:
            contract = self._contract(contract_address, ERC721_ABI)
            fn = lambda: contract.functions.tokenURI(int(token_id)).call()
        elif spec is TokenSpec.ERC1155:
            contract = self._contract(contract_address, ERC1155_ABI)
            fn = lambda: contract.functions.uri(int(token_id)).call()
        else:
            return None
        uri = await self._optional_call(fn, "tokenURI")
        return uri.strip() if isinstance(uri, str) and uri.strip() else None

    async def get_name_and_symbol(self, contract_address: str) -> Tuple[Optional[str], Optional[str]]:
        contract = self._contract(contract_address, ERC721_ABI)
        name, symbol = await asyncio.gather(
            self._optional_call(lambda: contract.functions.name().call(), "name"),
            self._optional_call(lambda: contract.functions.symbol().call(), "symbol"),
        )
        return name or None, symbol or None

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    async def get_contract_owner(self, contract_address: str) -> Optional[str]:
        contract = self._contract(contract_address, PROVENANCE_ABI)
        owner = await self._optional_call(lambda: contract.functions.owner().call(), "owner")
        return None if _is_zero(owner) else owner.lower()

    async def get_contract_creator(self, contract_address: str) -> Optional[str]:
        contract = self._contract(contract_address, PROVENANCE_ABI)
        creator = await self._optional_call(lambda: contract.functions.creator().call(), "creator")
        return None if _is_zero(creator) else creator.lower()

    async def get_royalty_receiver(self, contract_address: str, token_id: int = 1) -> Optional[str]:
        contract = self._contract(contract_address, PROVENANCE_ABI)
        result = await self._optional_call(
            lambda: contract.functions.royaltyInfo(int(token_id), ROYALTY_SALE_PRICE).call(),
            "royaltyInfo",
        )
        if not result:
            return None
        receiver = result[0]
        return None if _is_zero(receiver) else receiver.lower()
