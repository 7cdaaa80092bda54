import asyncio
from typing import Any, Dict, List, Optional

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from chainalert.core.chains import Chain
from chainalert.logger import logger

from .base import ERC20_ABI, ERC20_METADATA_FUNCTIONS
from .multi_provider import AsyncMultiNodeProvider


class ChainClient:
    """
    Read-only RPC access for one chain

    Every call is bounded by ``timeout`` seconds. Results are returned as
    plain dicts.
    """

    def __init__(
        self,
        chain: Chain,
        web3: Optional[AsyncWeb3] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
    ):
        """
        Initialize chain client

        Args:
            chain: Chain to connect to; its RPC endpoints are used unless web3 is given
            web3: Preconfigured AsyncWeb3 instance
            timeout: Per-call timeout in seconds
            max_retries: Attempts per RPC request across the chain's nodes
        """
        if web3 is None:
            if not chain.rpc_endpoints:
                raise ValueError(f"No RPC endpoints configured for {chain.key.value}")
            provider = AsyncMultiNodeProvider(
                endpoint_uri=chain.rpc_endpoints,
                max_retries=max_retries,
                timeout=timeout,
            )
            web3 = AsyncWeb3(provider)

        self.chain = chain
        self.web3 = web3
        self.timeout = timeout

    async def _call(self, awaitable, description: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{description} on {self.chain.key.value} timed out after {self.timeout}s")
            raise

    async def get_block_number(self) -> int:
        return await self._call(self.web3.eth.get_block_number(), "eth_blockNumber")

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Dict[str, Any]:
        block = await self._call(
            self.web3.eth.get_block(block_number, full_transactions=full_transactions),
            f"get_block({block_number})",
        )
        block = dict(block)
        if full_transactions:
            block["transactions"] = [dict(tx) for tx in block.get("transactions", [])]
        return block

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Fetch a transaction, None if the node does not know it"""
        try:
            tx = await self._call(self.web3.eth.get_transaction(tx_hash), f"get_transaction({tx_hash})")
        except TransactionNotFound:
            return None
        return dict(tx) if tx else None

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Fetch a receipt with its logs as dicts, None if not yet mined"""
        try:
            receipt = await self._call(
                self.web3.eth.get_transaction_receipt(tx_hash),
                f"get_transaction_receipt({tx_hash})",
            )
        except TransactionNotFound:
            return None
        if not receipt:
            return None
        receipt = dict(receipt)
        receipt["logs"] = [dict(log) for log in receipt.get("logs", [])]
        return receipt

    async def read_erc20(self, address: str, fn: str) -> Any:
        """
        Call a read-only ERC20 metadata function

        Args:
            address: Token contract address
            fn: One of "symbol", "name", "decimals"
        """
        if fn not in ERC20_METADATA_FUNCTIONS:
            raise ValueError(f"Unsupported ERC20 function: {fn}")
        contract = self.web3.eth.contract(
            address=self.web3.to_checksum_address(address), abi=ERC20_ABI
        )
        return await self._call(
            getattr(contract.functions, fn)().call(), f"{fn}() on {address}"
        )

    async def close(self) -> None:
        provider = self.web3.provider
        if hasattr(provider, "disconnect"):
            await provider.disconnect()


def build_clients(chains: List[Chain], timeout: float = 10.0, max_retries: int = 3) -> Dict[str, ChainClient]:
    """Create a client for every chain that has RPC endpoints, keyed by chain key"""
    clients = {}
    for chain in chains:
        if not chain.rpc_endpoints:
            continue
        clients[chain.key.value] = ChainClient(chain, timeout=timeout, max_retries=max_retries)
        logger.info(f"RPC client ready for {chain.name} ({len(chain.rpc_endpoints)} endpoints)")
    return clients
