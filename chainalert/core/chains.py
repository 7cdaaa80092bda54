"""
Chain registry and network identifier resolution.
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field


class ChainKey(str, Enum):
    """Internal short identifier of a supported network"""

    ETH = "eth"
    BSC = "bsc"
    BSC_TESTNET = "bsc_testnet"
    BASE = "base"
    ARBITRUM = "arbitrum"
    OPTIMISM = "optimism"


class Chain(BaseModel):
    """A known blockchain network"""

    key: ChainKey
    name: str
    chain_id: int
    explorer_tx_template: str
    rpc_endpoints: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    def explorer_tx_url(self, tx_hash: str) -> str:
        return self.explorer_tx_template.format(tx_hash=tx_hash)


class ChainInfo:
    """
    Static per-chain information.
    """

    CHAIN_IDS = {
        ChainKey.ETH: 1,
        ChainKey.BSC: 56,
        ChainKey.BSC_TESTNET: 97,
        ChainKey.BASE: 8453,
        ChainKey.ARBITRUM: 42161,
        ChainKey.OPTIMISM: 10,
    }

    CHAIN_NAMES = {
        ChainKey.ETH: "Ethereum",
        ChainKey.BSC: "BNB Smart Chain",
        ChainKey.BSC_TESTNET: "BNB Smart Chain Testnet",
        ChainKey.BASE: "Base",
        ChainKey.ARBITRUM: "Arbitrum One",
        ChainKey.OPTIMISM: "Optimism",
    }

    EXPLORER_TX_TEMPLATES = {
        ChainKey.ETH: "https://etherscan.io/tx/{tx_hash}",
        ChainKey.BSC: "https://bscscan.com/tx/{tx_hash}",
        ChainKey.BSC_TESTNET: "https://testnet.bscscan.com/tx/{tx_hash}",
        ChainKey.BASE: "https://basescan.org/tx/{tx_hash}",
        ChainKey.ARBITRUM: "https://arbiscan.io/tx/{tx_hash}",
        ChainKey.OPTIMISM: "https://optimistic.etherscan.io/tx/{tx_hash}",
    }

    KEYS_BY_CHAIN_ID = {chain_id: key for key, chain_id in CHAIN_IDS.items()}

    @classmethod
    def build(cls, key: ChainKey, rpc_endpoints: Optional[List[str]] = None) -> Chain:
        return Chain(
            key=key,
            name=cls.CHAIN_NAMES[key],
            chain_id=cls.CHAIN_IDS[key],
            explorer_tx_template=cls.EXPLORER_TX_TEMPLATES[key],
            rpc_endpoints=rpc_endpoints or [],
        )


# Network names that denote a testnet; only BSC has a supported testnet key
TESTNET_MARKERS = ("test", "sepolia", "goerli", "holesky")


class ChainResolver:
    """
    Maps provider-specific network identifiers to a ChainKey.

    Accepts numeric chain IDs (int, decimal string or 0x-prefixed hex string)
    and free-text network names such as "bsc-testnet", "Base Mainnet" or
    "arbitrum". Chain-ID lookup is tried first, then substring matching.
    Unresolvable input yields None; resolution never raises.
    """

    @staticmethod
    def _parse_chain_id(text: str) -> Optional[int]:
        try:
            if text.startswith("0x"):
                return int(text, 16)
            if text.isdigit():
                return int(text)
        except ValueError:
            return None
        return None

    @classmethod
    def resolve(cls, raw: Union[str, int, None]) -> Optional[ChainKey]:
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return ChainInfo.KEYS_BY_CHAIN_ID.get(raw)

        text = str(raw).strip().lower()
        if not text:
            return None

        chain_id = cls._parse_chain_id(text)
        if chain_id is not None:
            return ChainInfo.KEYS_BY_CHAIN_ID.get(chain_id)

        is_testnet = any(marker in text for marker in TESTNET_MARKERS)

        if "bsc" in text or "bnb" in text:
            return ChainKey.BSC_TESTNET if is_testnet else ChainKey.BSC
        if is_testnet:
            return None
        if "base" in text:
            return ChainKey.BASE
        if "arbitrum" in text:
            return ChainKey.ARBITRUM
        if "optimism" in text:
            return ChainKey.OPTIMISM
        if "ethereum" in text or text in ("eth", "mainnet"):
            return ChainKey.ETH
        return None


class ChainRegistry:
    """The set of chains known to this process and the alert allow-list"""

    def __init__(
        self,
        endpoints: Optional[Dict[str, List[str]]] = None,
        allowed: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            endpoints: RPC endpoints per chain key
            allowed: Chain keys that may produce alerts; None allows every chain
        """
        endpoints = endpoints or {}
        self.chains: Dict[ChainKey, Chain] = {
            key: ChainInfo.build(key, endpoints.get(key.value)) for key in ChainKey
        }
        self.allowed = (
            {ChainKey(k.strip().lower()) for k in allowed if k.strip().lower() in _KEY_VALUES}
            if allowed is not None
            else set(ChainKey)
        )

    def get(self, key: ChainKey) -> Chain:
        return self.chains[key]

    def is_allowed(self, key: ChainKey) -> bool:
        return key in self.allowed

    def explorer_tx_url(self, key: ChainKey, tx_hash: str) -> str:
        return self.chains[key].explorer_tx_url(tx_hash)

    def with_rpc(self) -> List[Chain]:
        """Chains that have at least one RPC endpoint configured"""
        return [chain for chain in self.chains.values() if chain.rpc_endpoints]


_KEY_VALUES = {key.value for key in ChainKey}
