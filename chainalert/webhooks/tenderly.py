from datetime import datetime, timezone
from typing import Any, Mapping

from ..core.chains import ChainKey, ChainRegistry, ChainResolver
from ..core.events import WebhookResult
from ..core.extractors import ReceiptTransferExtractor
from ..core.processor import TransferProcessor
from ..core.web3.base import normalize_address, normalize_tx_hash
from ..errors import ConfigurationError, MalformedPayloadError, NotOurInteraction, UnsupportedChainError
from ..logger import logger
from .common import first_path, lower_headers, parse_json_object, require_allowed_chain
from .signature import SignatureMode, SignatureVerifier

SIGNATURE_HEADER = "x-tenderly-signature"
DATE_HEADER = "date"

NETWORK_PATHS = (("alert", "network"), ("network",), ("data", "network"), ("transaction", "network"))
TX_HASH_PATHS = (("alert", "tx_hash"), ("tx_hash",), ("transaction", "hash"), ("data", "tx_hash"))


class TenderlyWebhookPipeline:
    """
    Handles Tenderly alert webhooks end to end

    The signature covers the raw body followed by the Date header. Alerts only
    name a transaction, so the transaction and its receipt are fetched over
    RPC and transfers are decoded from the receipt logs.
    """

    def __init__(
        self,
        signing_key: str,
        interaction_contract: str,
        registry: ChainRegistry,
        processor: TransferProcessor,
        clients: Mapping[str, Any],
    ):
        """
        Args:
            signing_key: Tenderly webhook signing key
            interaction_contract: Watched contract address
            registry: Known chains and allow-list
            processor: Transfer processor
            clients: Chain clients keyed by chain key
        """
        self.signing_key = signing_key
        self.interaction_contract = normalize_address(interaction_contract)
        self.registry = registry
        self.processor = processor
        self.clients = clients
        self.verifier = SignatureVerifier(signing_key, SignatureMode.BODY_AND_DATE)
        self.extractor = ReceiptTransferExtractor()

    async def _block_time(self, client: Any, receipt: Mapping[str, Any]) -> datetime:
        block_number = receipt.get("blockNumber")
        if block_number is not None:
            try:
                block = await client.get_block(block_number, full_transactions=False)
                return datetime.fromtimestamp(int(block["timestamp"]), tz=timezone.utc)
            except Exception as e:
                logger.warning(f"Could not fetch timestamp of block {block_number}: {e}")
        return datetime.now(timezone.utc)

    async def handle(self, body: bytes, headers: Mapping[str, Any]) -> WebhookResult:
        """
        Process one webhook request

        Args:
            body: Raw request body
            headers: Request headers

        Returns:
            WebhookResult: Outcome for the response body

        Raises:
            ConfigurationError: Signing key, interaction contract or RPC endpoint missing
            AuthenticationError: Missing or invalid signature or date
        """
        if not self.signing_key:
            raise ConfigurationError("Missing Tenderly signing key")

        headers = lower_headers(headers)
        self.verifier.verify(body, headers.get(SIGNATURE_HEADER), headers.get(DATE_HEADER))

        try:
            payload = parse_json_object(body)
        except MalformedPayloadError as e:
            logger.warning(f"Ignoring Tenderly webhook: {e}")
            return WebhookResult.ignore("malformed_payload")

        event_type = payload.get("event_type")
        if event_type == "TEST":
            logger.info("Tenderly TEST event acknowledged")
            return WebhookResult(reason="test_event")
        if event_type != "ALERT":
            logger.info(f"Non-ALERT Tenderly event {event_type!r} ignored")
            return WebhookResult.ignore("unsupported_event_type")

        network = first_path(payload, NETWORK_PATHS)
        tx_hash = normalize_tx_hash(first_path(payload, TX_HASH_PATHS))
        if network is None or tx_hash is None:
            logger.warning(f"Missing network or tx hash in Tenderly payload ({network!r}, {tx_hash!r})")
            return WebhookResult.ignore("missing_fields")

        try:
            chain = require_allowed_chain(
                self.registry,
                ChainResolver.resolve(network if isinstance(network, (str, int)) else None),
                network,
            )
        except UnsupportedChainError as e:
            logger.warning(f"Ignoring Tenderly webhook: {e}")
            return WebhookResult.ignore(e.reason)

        if not self.interaction_contract:
            raise ConfigurationError("Missing interaction contract")
        client = self.clients.get(chain)
        if client is None:
            raise ConfigurationError(f"No RPC endpoint configured for {chain.value}")

        try:
            return await self._process_transaction(chain, tx_hash, client)
        except NotOurInteraction as e:
            logger.info(f"Ignoring Tenderly webhook: {e}")
            return WebhookResult.ignore(e.reason)

    async def _process_transaction(self, chain: ChainKey, tx_hash: str, client: Any) -> WebhookResult:
        tx = await client.get_transaction(tx_hash)
        if not tx:
            logger.warning(f"Transaction {tx_hash} not found on {chain.value}")
            return WebhookResult.ignore("tx_not_found")

        if normalize_address(tx.get("to")) != self.interaction_contract:
            raise NotOurInteraction(f"{tx_hash} is not an interaction with {self.interaction_contract}")

        receipt = await client.get_transaction_receipt(tx_hash)
        if not receipt:
            logger.warning(f"Receipt for {tx_hash} not available on {chain.value}")
            return WebhookResult.ignore("receipt_not_found")

        transfers = self.extractor.extract(receipt)
        logger.info(f"Tenderly {chain.value} interaction {tx_hash}: {len(transfers)} transfer(s)")
        if not transfers:
            return WebhookResult.ignore("no_transfers")

        timestamp = await self._block_time(client, receipt)
        sent = await self.processor.process(
            chain, tx_hash, transfers, self.interaction_contract, timestamp
        )
        return WebhookResult(alerts_sent=sent)
