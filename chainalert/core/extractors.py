"""
Canonicalization of heterogeneous payloads into TransferEvent records.

Three strategies share one return type:

- StructuredTransferExtractor: provider payloads carrying pre-decoded
  ``erc20Transfers`` entries
- RawLogTransferExtractor: provider payloads carrying raw event logs, either
  at the top level or grouped under ``txs[*].logs``
- ReceiptTransferExtractor: logs of a transaction receipt fetched over RPC

Records that fail a structural check are dropped individually; a bad entry
never fails the batch.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..logger import logger
from .events import TransferEvent
from .web3.base import (
    HEX_DATA_PATTERN,
    TRANSFER_EVENT_TOPIC,
    normalize_address,
    normalize_tx_hash,
    to_hex,
    topic_to_address,
)

# Ordered field aliases, first present value wins
TX_HASH_FIELDS = ("transactionHash", "transaction_hash", "txHash", "hash")
TOKEN_FIELDS = ("address", "tokenAddress", "contract")
FROM_FIELDS = ("from", "fromAddress")
TO_FIELDS = ("to", "toAddress")
LOG_INDEX_FIELDS = ("logIndex", "log_index")
VALUE_FIELDS = ("value", "amount")
SYMBOL_FIELDS = ("tokenSymbol", "symbol")
DECIMALS_FIELDS = ("tokenDecimals", "tokenDecimal", "decimals")
# Moralis streams flatten topics into topic0..topic3
FLAT_TOPIC_FIELDS = ("topic0", "topic1", "topic2", "topic3")


def first_field(data: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the first alias present with a non-empty value"""
    for alias in aliases:
        value = data.get(alias)
        if value is not None and value != "":
            return value
    return None


def parse_uint(value: Any) -> Optional[int]:
    """
    Parse a non-negative integer from a JSON value without floating point

    Accepts ints, decimal strings and 0x-prefixed hex strings. Floats and
    booleans are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str):
        text = value.strip().lower()
        try:
            if text.startswith("0x"):
                return int(text, 16) if len(text) > 2 else None
            if text.isdigit():
                return int(text)
        except ValueError:
            return None
    return None


def _build_transfer(**fields: Any) -> Optional[TransferEvent]:
    if any(fields[k] is None for k in ("tx_hash", "log_index", "token_address", "from_address", "to_address", "value")):
        return None
    try:
        return TransferEvent(**fields)
    except ValidationError as e:
        logger.debug(f"Dropping invalid transfer record: {e}")
        return None


class TransferExtractor(ABC):
    """Turns one input shape into canonical transfer records"""

    @abstractmethod
    def extract(self, source: Any) -> List[TransferEvent]:
        pass


class StructuredTransferExtractor(TransferExtractor):
    """Field mapping over pre-decoded ``erc20Transfers`` entries"""

    def extract(self, source: Mapping[str, Any]) -> List[TransferEvent]:
        entries = source.get("erc20Transfers") if isinstance(source, Mapping) else None
        if not isinstance(entries, list):
            return []

        transfers = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            transfer = self._parse_entry(entry)
            if transfer is not None:
                transfers.append(transfer)
        return transfers

    @staticmethod
    def _parse_entry(entry: Mapping[str, Any]) -> Optional[TransferEvent]:
        symbol = first_field(entry, SYMBOL_FIELDS)
        decimals = first_field(entry, DECIMALS_FIELDS)
        return _build_transfer(
            tx_hash=normalize_tx_hash(first_field(entry, TX_HASH_FIELDS)),
            log_index=parse_uint(first_field(entry, LOG_INDEX_FIELDS)),
            token_address=normalize_address(first_field(entry, TOKEN_FIELDS)),
            from_address=normalize_address(first_field(entry, FROM_FIELDS)),
            to_address=normalize_address(first_field(entry, TO_FIELDS)),
            value=parse_uint(first_field(entry, VALUE_FIELDS)),
            symbol=str(symbol) if symbol is not None else None,
            decimals=parse_uint(decimals) if decimals is not None else None,
        )


def _log_topics(log: Mapping[str, Any]) -> List[Any]:
    topics = log.get("topics")
    if isinstance(topics, (list, tuple)):
        return list(topics)
    return [log[k] for k in FLAT_TOPIC_FIELDS if log.get(k) is not None]


def decode_transfer_log(
    log: Mapping[str, Any],
    tx_hash: Optional[str] = None,
    log_index: Optional[int] = None,
) -> Optional[TransferEvent]:
    """
    Decode one raw log into a TransferEvent

    Args:
        log: Log with ``address``, ``topics`` (or topic0..topic3) and ``data``
        tx_hash: Hash to use when the log carries none
        log_index: Index to use when the log carries none

    Returns:
        Optional[TransferEvent]: None when the log is not a well-formed ERC20 Transfer
    """
    topics = _log_topics(log)
    if len(topics) != 3 or to_hex(topics[0]) != TRANSFER_EVENT_TOPIC:
        return None

    data = to_hex(log.get("data"))
    if data is None or not HEX_DATA_PATTERN.match(data):
        return None

    own_index = parse_uint(first_field(log, LOG_INDEX_FIELDS))
    return _build_transfer(
        tx_hash=normalize_tx_hash(first_field(log, TX_HASH_FIELDS)) or tx_hash,
        log_index=own_index if own_index is not None else log_index,
        token_address=normalize_address(log.get("address")),
        from_address=topic_to_address(topics[1]),
        to_address=topic_to_address(topics[2]),
        value=int(data, 16),
    )


class RawLogTransferExtractor(TransferExtractor):
    """Decodes Transfer logs from ``logs`` and ``txs[*].logs``"""

    def extract(self, source: Mapping[str, Any]) -> List[TransferEvent]:
        if not isinstance(source, Mapping):
            return []

        transfers = []
        for log, parent_hash in self._iter_logs(source):
            transfer = decode_transfer_log(log, tx_hash=parent_hash)
            if transfer is not None:
                transfers.append(transfer)
        return transfers

    @staticmethod
    def _iter_logs(source: Mapping[str, Any]) -> Iterable[Tuple[Mapping[str, Any], Optional[str]]]:
        logs = source.get("logs")
        if isinstance(logs, list):
            for log in logs:
                if isinstance(log, Mapping):
                    yield log, None

        txs = source.get("txs")
        if isinstance(txs, list):
            for tx in txs:
                if not isinstance(tx, Mapping) or not isinstance(tx.get("logs"), list):
                    continue
                # Nested logs often omit their transaction hash
                parent_hash = normalize_tx_hash(first_field(tx, TX_HASH_FIELDS))
                for log in tx["logs"]:
                    if isinstance(log, Mapping):
                        yield log, parent_hash


class ReceiptTransferExtractor(TransferExtractor):
    """
    Decodes Transfer logs from a transaction receipt

    Logs without a log index get their position in the receipt. Results are
    sorted ascending by log index.
    """

    def extract(self, source: Mapping[str, Any]) -> List[TransferEvent]:
        if not source:
            return []
        receipt: Dict[str, Any] = dict(source)
        tx_hash = normalize_tx_hash(first_field(receipt, TX_HASH_FIELDS))

        transfers = []
        for position, log in enumerate(receipt.get("logs") or []):
            log = dict(log)
            # web3 returns logIndex as int; JSON receipts use hex strings
            transfer = decode_transfer_log(log, tx_hash=tx_hash, log_index=position)
            if transfer is not None:
                transfers.append(transfer)
        return sorted(transfers, key=lambda t: t.log_index)


_PAYLOAD_EXTRACTORS: Tuple[TransferExtractor, ...] = (
    StructuredTransferExtractor(),
    RawLogTransferExtractor(),
)


def extract_transfers(payload: Mapping[str, Any]) -> List[TransferEvent]:
    """
    Extract transfers from a webhook payload

    Tries the structured strategy first, then raw logs; the first non-empty
    result wins.
    """
    for extractor in _PAYLOAD_EXTRACTORS:
        transfers = extractor.extract(payload)
        if transfers:
            return transfers
    return []
