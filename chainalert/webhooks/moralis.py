from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.chains import ChainKey, ChainRegistry, ChainResolver
from ..core.events import WebhookResult
from ..core.extractors import extract_transfers, first_field
from ..core.processor import TransferProcessor
from ..core.web3.base import normalize_address, normalize_tx_hash
from ..errors import ConfigurationError, IgnoredEventError, MalformedPayloadError, NotOurInteraction
from ..logger import logger
from .common import first_path, lower_headers, parse_json_object, parse_timestamp, require_allowed_chain
from .signature import SignatureMode, SignatureVerifier

DEFAULT_SIGNATURE_HEADERS = ("x-signature", "x-moralis-signature", "x-webhook-signature")

CHAIN_ID_PATHS = (("chainId",), ("chain", "id"), ("chain_id",))
CHAIN_NAME_PATHS = (("chain",), ("chainName",), ("chain_name",))
TIMESTAMP_PATHS = (("block", "timestamp"), ("block_timestamp",), ("confirmedAt",), ("confirmed_at",))

TX_TO_FIELDS = ("to", "toAddress", "to_address")
TX_HASH_ALIASES = ("hash", "transactionHash", "transaction_hash")
SINGLE_TX_HASH_ALIASES = ("hash", "txHash")


def resolve_payload_chain(payload: Mapping[str, Any]) -> Optional[ChainKey]:
    """Chain from the payload's chain id fields, then its chain name fields"""
    chain_id = first_path(payload, CHAIN_ID_PATHS)
    if chain_id is not None and not isinstance(chain_id, Mapping):
        key = ChainResolver.resolve(chain_id)
        if key is not None:
            return key
    name = first_path(payload, CHAIN_NAME_PATHS)
    if isinstance(name, (str, int)):
        return ChainResolver.resolve(name)
    return None


def find_interaction_tx_hashes(payload: Mapping[str, Any], interaction_contract: str) -> List[str]:
    """
    Hashes of the payload's transactions sent to the interaction contract

    Looks at ``txs[*]`` and at a single ``tx`` object or top-level tx fields.
    Order is preserved, duplicates removed.
    """
    candidates = []
    txs = payload.get("txs")
    if isinstance(txs, list):
        for tx in txs:
            if not isinstance(tx, Mapping):
                continue
            to = normalize_address(first_field(tx, TX_TO_FIELDS))
            tx_hash = normalize_tx_hash(first_field(tx, TX_HASH_ALIASES))
            if to and tx_hash and to == interaction_contract:
                candidates.append(tx_hash)

    single = payload.get("tx") if isinstance(payload.get("tx"), Mapping) else {}
    to = normalize_address(single.get("to") or payload.get("to"))
    tx_hash = normalize_tx_hash(
        first_field(single, SINGLE_TX_HASH_ALIASES) or first_field(payload, SINGLE_TX_HASH_ALIASES)
    )
    if to and tx_hash and to == interaction_contract:
        candidates.append(tx_hash)

    return list(dict.fromkeys(candidates))


class MoralisWebhookPipeline:
    """
    Handles Moralis Streams webhooks end to end

    The body is authenticated with HMAC-SHA256 over the raw bytes. Transfers
    come from ``erc20Transfers`` or, failing that, from raw logs, and only
    those belonging to a transaction sent to the interaction contract are
    processed.
    """

    def __init__(
        self,
        secret: str,
        interaction_contract: str,
        registry: ChainRegistry,
        processor: TransferProcessor,
        signature_header: str = "",
    ):
        """
        Args:
            secret: Shared webhook secret
            interaction_contract: Watched contract address
            registry: Known chains and allow-list
            processor: Transfer processor
            signature_header: Header carrying the signature, overrides the defaults
        """
        self.secret = secret
        self.interaction_contract = normalize_address(interaction_contract)
        self.registry = registry
        self.processor = processor
        self.verifier = SignatureVerifier(secret, SignatureMode.BODY)
        self.signature_headers: Sequence[str] = (
            (signature_header.lower(),) + DEFAULT_SIGNATURE_HEADERS
            if signature_header
            else DEFAULT_SIGNATURE_HEADERS
        )

    def _signature(self, headers: Dict[str, str]) -> Optional[str]:
        for name in self.signature_headers:
            if headers.get(name):
                return headers[name]
        return None

    async def handle(self, body: bytes, headers: Mapping[str, Any]) -> WebhookResult:
        """
        Process one webhook request

        Args:
            body: Raw request body
            headers: Request headers

        Returns:
            WebhookResult: Outcome for the response body

        Raises:
            ConfigurationError: Secret or interaction contract not configured
            AuthenticationError: Missing or invalid signature
        """
        if not self.secret:
            raise ConfigurationError("Missing Moralis webhook secret")

        self.verifier.verify(body, self._signature(lower_headers(headers)))

        if not self.interaction_contract:
            raise ConfigurationError("Missing interaction contract")

        try:
            payload = parse_json_object(body)
        except MalformedPayloadError as e:
            logger.warning(f"Ignoring Moralis webhook: {e}")
            return WebhookResult.ignore("malformed_payload")

        try:
            chain = require_allowed_chain(
                self.registry, resolve_payload_chain(payload), first_path(payload, CHAIN_ID_PATHS + CHAIN_NAME_PATHS)
            )
            candidates = find_interaction_tx_hashes(payload, self.interaction_contract)
            if not candidates:
                raise NotOurInteraction(
                    f"No transaction to {self.interaction_contract}", reason="no_interaction_tx"
                )
        except IgnoredEventError as e:
            logger.info(f"Ignoring Moralis webhook: {e}")
            return WebhookResult.ignore(e.reason)

        transfers = extract_transfers(payload)
        if not transfers:
            return WebhookResult.ignore("no_transfers")

        timestamp = parse_timestamp(first_path(payload, TIMESTAMP_PATHS)) or datetime.now(timezone.utc)

        sent = 0
        for tx_hash in candidates:
            tx_transfers = [t for t in transfers if t.tx_hash == tx_hash]
            logger.info(
                f"Moralis {chain.value} interaction {tx_hash}: {len(tx_transfers)} transfer(s)"
            )
            sent += await self.processor.process(
                chain, tx_hash, tx_transfers, self.interaction_contract, timestamp
            )

        return WebhookResult(alerts_sent=sent)
