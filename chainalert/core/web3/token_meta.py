import asyncio
from typing import Any, Dict, Mapping, Optional, Tuple

from chainalert.core.events import TokenMeta
from chainalert.errors import MetadataResolutionError
from chainalert.logger import logger

UNKNOWN_SYMBOL = "UNKNOWN"
UNKNOWN_NAME = "Unknown Token"
DEFAULT_DECIMALS = 18


def _chain_id(chain: Any) -> str:
    return str(getattr(chain, "value", chain))


class TokenMetadataResolver:
    """
    Resolves and caches ERC20 symbol, name and decimals

    The three reads run concurrently and each falls back to its own default
    value on failure, so partial metadata still produces an alert. Results
    are cached per ``(chain, address)`` for the life of the process.
    """

    def __init__(self, clients: Mapping[str, Any], timeout: float = 10.0):
        """
        Args:
            clients: Chain clients keyed by chain key, each providing ``read_erc20``
            timeout: Per-read timeout in seconds
        """
        self.clients = clients
        self.timeout = timeout
        self._cache: Dict[Tuple[str, str], TokenMeta] = {}

    def has_client(self, chain: str) -> bool:
        return chain in self.clients

    def cached(self, chain: str, address: str) -> Optional[TokenMeta]:
        return self._cache.get((_chain_id(chain), address.lower()))

    async def _read_field(self, client: Any, address: str, fn: str) -> Any:
        try:
            return await asyncio.wait_for(client.read_erc20(address, fn), timeout=self.timeout)
        except Exception as e:
            raise MetadataResolutionError(f"Error getting token {fn} for {address}: {e!r}") from e

    async def _read(self, client: Any, address: str, fn: str, fallback: Any) -> Any:
        try:
            return await self._read_field(client, address, fn)
        except MetadataResolutionError as e:
            logger.warning(f"{e}, using {fallback!r}")
            return fallback

    async def resolve(self, chain: str, address: str) -> Optional[TokenMeta]:
        """
        Resolve token metadata

        Args:
            chain: Chain key
            address: Token contract address

        Returns:
            Optional[TokenMeta]: Metadata, None when the chain has no RPC client
        """
        key = (_chain_id(chain), address.lower())
        if key in self._cache:
            return self._cache[key]

        client = self.clients.get(chain)
        if client is None:
            return None

        symbol, name, decimals = await asyncio.gather(
            self._read(client, address, "symbol", UNKNOWN_SYMBOL),
            self._read(client, address, "name", UNKNOWN_NAME),
            self._read(client, address, "decimals", DEFAULT_DECIMALS),
        )

        try:
            decimals = int(decimals)
        except (TypeError, ValueError):
            decimals = DEFAULT_DECIMALS
        if decimals < 0:
            decimals = DEFAULT_DECIMALS

        meta = TokenMeta(
            symbol=str(symbol) or UNKNOWN_SYMBOL,
            name=str(name) or UNKNOWN_NAME,
            decimals=decimals,
        )
        self._cache[key] = meta
        return meta
