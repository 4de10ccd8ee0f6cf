"""
Block Explorer Client (Etherscan v2 multichain API)
Contract deployer lookup via module=contract&action=getcontractcreation
"""

import logging
from typing import Optional

import httpx

from infrastructure.errors import ExternalAPIError
from infrastructure.retry import RetryPolicy

logger = logging.getLogger("Explorer")


class ExplorerClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.etherscan.io/v2/api",
        chain_id: int = 8453,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.chain_id = chain_id
        self.retry = retry or RetryPolicy()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def get_contract_creator(self, contract_address: str) -> Optional[str]:
        """Deployer address of a contract, or None when the explorer has no record"""
        if not self.enabled:
            return None

        params = {
            "chainid": str(self.chain_id),
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": contract_address,
            "apikey": self.api_key,
        }

        async def _request():
            response = await self.client.get(self.base_url, params=params)
            if response.status_code != 200:
                raise ExternalAPIError("etherscan", upstream_status=response.status_code)
            data = response.json()
            # Etherscan reports throttling as status "0" with a text result
            if str(data.get("status")) != "1":
                message = str(data.get("result") or data.get("message") or "")
                if "rate limit" in message.lower():
                    raise ExternalAPIError("etherscan", message=f"Etherscan: {message}")
                return None
            return data.get("result")

        result = await self.retry.run(_request, label="etherscan")
        if not result or not isinstance(result, list):
            return None

        creator = result[0].get("contractCreator")
        return creator.lower() if creator else None

    async def close(self):
        await self.client.aclose()
