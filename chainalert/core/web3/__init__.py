from .base import (
    ERC20_ABI,
    TRANSFER_EVENT_TOPIC,
    format_units,
    normalize_address,
    normalize_tx_hash,
)
from .client import ChainClient, build_clients
from .multi_provider import AsyncMultiNodeProvider
from .token_meta import TokenMetadataResolver

__all__ = [
    "AsyncMultiNodeProvider",
    "ChainClient",
    "ERC20_ABI",
    "TRANSFER_EVENT_TOPIC",
    "TokenMetadataResolver",
    "build_clients",
    "format_units",
    "normalize_address",
    "normalize_tx_hash",
]
