"""
NFT Metadata Fetcher
tokenURI / uri on-chain read followed by a JSON fetch of the token metadata

- ipfs:// and ipfs/ URIs are rewritten to an HTTP gateway
- ERC-1155 {id} placeholders are replaced with the 64 hex digit token id
- data:application/json URIs (base64 or plain) are decoded inline
- title falls back to name, artist falls back to creator
Any failure yields None; metadata is an optional enrichment.
"""

import base64
import json
import logging
from typing import Optional
from urllib.parse import unquote

import httpx

from models.marketplace import NFTMetadata, TokenSpec

logger = logging.getLogger("NFTMetadata")


def ipfs_to_gateway(url: str, gateway: str = "https://ipfs.io/ipfs/") -> str:
    """Convert IPFS URL to HTTP gateway URL"""
    gateway = gateway if gateway.endswith("/") else gateway + "/"
    if url.startswith("ipfs://ipfs/"):
        return gateway + url[len("ipfs://ipfs/"):]
    if url.startswith("ipfs://"):
        return gateway + url[len("ipfs://"):]
    if url.startswith("ipfs/"):
        return gateway + url[len("ipfs/"):]
    return url


def expand_erc1155_uri(uri: str, token_id: int) -> str:
    return uri.replace("{id}", format(int(token_id), "064x"))


def decode_data_uri(uri: str) -> Optional[dict]:
    header, _, payload = uri.partition(",")
    if ";base64" in header:
        text = base64.b64decode(payload).decode("utf-8")
    else:
        text = unquote(payload)
    data = json.loads(text)
    return data if isinstance(data, dict) else None


class NFTMetadataFetcher:
    def __init__(
        self,
        onchain,
        gateway: str = "https://ipfs.io/ipfs/",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.onchain = onchain
        self.gateway = gateway
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def fetch(self, contract_address: str, token_id: Optional[str], spec: TokenSpec) -> Optional[NFTMetadata]:
        if not contract_address or token_id is None:
            return None

        try:
            token_uri = await self.onchain.get_token_uri(contract_address, int(token_id), spec)
            if not token_uri:
                return None

            if spec is TokenSpec.ERC1155:
                token_uri = expand_erc1155_uri(token_uri, int(token_id))

            if token_uri.startswith("data:"):
                data = decode_data_uri(token_uri)
            else:
                response = await self.client.get(ipfs_to_gateway(token_uri, self.gateway))
                if response.status_code != 200:
                    logger.debug(f"[Metadata] {token_uri} returned HTTP {response.status_code}")
                    return None
                data = response.json()

            if not isinstance(data, dict):
                return None

            metadata = NFTMetadata.from_json(data, token_uri=token_uri)
            if metadata.image:
                metadata.image = ipfs_to_gateway(metadata.image, self.gateway)
            return metadata

        except Exception as e:
            logger.warning(f"[Metadata] failed for {contract_address}:{token_id}: {e}")
            return None

    async def close(self):
        await self.client.aclose()
