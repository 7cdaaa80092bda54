import re
from typing import Any, Optional

from hexbytes import HexBytes
from web3 import Web3

# ERC20 Transfer event signature
TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_EVENT_TOPIC = Web3.to_hex(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE))

# Read-only subset of the ERC20 ABI used for metadata lookups
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    },
]

ERC20_METADATA_FUNCTIONS = ("symbol", "name", "decimals")

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")
TX_HASH_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")
HEX_DATA_PATTERN = re.compile(r"^0x[0-9a-f]+$")


def to_hex(value: Any) -> Optional[str]:
    """
    Normalize a hex-like value to a lowercase 0x-prefixed string

    Accepts str, bytes and HexBytes. Returns None for anything else.
    """
    if isinstance(value, (bytes, bytearray, HexBytes)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        text = value.strip().lower()
        return text if text.startswith("0x") else None
    return None


def normalize_address(value: Any) -> Optional[str]:
    """Lowercase a 20-byte hex address, None if it is not one"""
    text = to_hex(value)
    if text is None or not ADDRESS_PATTERN.match(text):
        return None
    return text


def normalize_tx_hash(value: Any) -> Optional[str]:
    """Lowercase a 32-byte transaction hash, None if it is not one"""
    text = to_hex(value)
    if text is None or not TX_HASH_PATTERN.match(text):
        return None
    return text


def topic_to_address(topic: Any) -> Optional[str]:
    """
    Extract the address held in an indexed event topic

    The topic must be a 32-byte word whose upper 12 bytes are zero.
    """
    text = to_hex(topic)
    if text is None or not TX_HASH_PATTERN.match(text):
        return None
    padding, address = text[2:26], text[26:]
    if padding.strip("0"):
        return None
    return "0x" + address


def format_units(value: int, decimals: int) -> str:
    """
    Format a raw integer token amount using exact integer arithmetic

    Args:
        value: Raw on-chain amount
        decimals: Token decimals

    Returns:
        str: Human readable amount, e.g. 1500000000000000000 with 18 decimals -> "1.5"
    """
    if decimals <= 0:
        return str(value)
    whole, remainder = divmod(value, 10**decimals)
    if remainder == 0:
        return str(whole)
    fraction = str(remainder).zfill(decimals).rstrip("0")
    return f"{whole}.{fraction}"
