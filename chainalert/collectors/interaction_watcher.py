import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

from chainalert.core.base import Collector
from chainalert.core.chains import ChainInfo, ChainKey
from chainalert.core.events import InteractionCandidate
from chainalert.core.extractors import ReceiptTransferExtractor
from chainalert.core.rate_limit import SlidingWindowRateLimiter
from chainalert.core.storage import BlockchainStateStore
from chainalert.core.web3.base import normalize_address, normalize_tx_hash
from chainalert.core.web3.client import ChainClient
from chainalert.logger import logger


def block_time(block: Dict[str, Any]) -> datetime:
    """Block timestamp as an aware UTC datetime, now if the block has none"""
    timestamp = block.get("timestamp")
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Missing timestamp for block {block.get('number')}, using current time")
        return datetime.now(timezone.utc)


class InteractionWatcher(Collector):
    """
    Interaction Watcher

    Polls one chain for new blocks and yields an InteractionCandidate for every
    transaction sent to the interaction contract, together with the ERC20
    transfers decoded from its receipt. The last processed block is persisted
    only once every candidate of a scanned chunk has been consumed.
    """

    __component_name__ = "interaction_watcher"

    def __init__(
        self,
        chain: str,
        interaction_contract: str,
        client: Optional[ChainClient] = None,
        rpc_endpoints: Optional[List[str]] = None,
        polling_interval: float = 15,  # Polling interval in seconds
        max_blocks_per_scan: int = 2000,  # Maximum blocks to scan per iteration
        start_block: Optional[int] = None,  # Starting block number
        receipt_concurrency: int = 4,
        rate_limit_per_min: int = 20,
        seen_tx_limit: int = 10_000,
        rpc_timeout: float = 10.0,
        db_path: str = "./data/blockchain_state",
        state_store: Optional[BlockchainStateStore] = None,
    ):
        """
        Initialize Interaction Watcher for a single blockchain

        Args:
            chain: Chain key, e.g. "bsc"
            interaction_contract: Address of the watched contract
            client: RPC client; built from rpc_endpoints when omitted
            rpc_endpoints: RPC endpoints used when no client is given
            polling_interval: Polling interval in seconds
            max_blocks_per_scan: Maximum blocks to scan per polling cycle
            start_block: Block to start from when no state is stored
            receipt_concurrency: Maximum receipts fetched at once
            rate_limit_per_min: Maximum alerts per minute from this watcher
            seen_tx_limit: Number of handled transaction hashes remembered
            rpc_timeout: Per-call RPC timeout in seconds
            db_path: Path for storing blockchain state
            state_store: Preconfigured state store, replaces db_path
        """
        super().__init__()

        self.chain = ChainKey(chain)
        self.interaction_contract = normalize_address(interaction_contract)
        if not self.interaction_contract:
            raise ValueError(f"Invalid interaction contract address: {interaction_contract!r}")

        if client is None:
            if not rpc_endpoints:
                raise ValueError("At least one RPC endpoint must be provided")
            client = ChainClient(ChainInfo.build(self.chain, rpc_endpoints), timeout=rpc_timeout)
        self.client = client

        self.polling_interval = polling_interval
        self.max_blocks_per_scan = max_blocks_per_scan
        self.start_block = start_block or 0
        self.receipt_concurrency = max(1, receipt_concurrency)
        self.seen_tx_limit = seen_tx_limit

        self.state_store = state_store or BlockchainStateStore(db_path)
        self.rate_limiter = SlidingWindowRateLimiter(rate_limit_per_min, window=60)
        self.extractor = ReceiptTransferExtractor()

        self.last_checked_block = 0
        self._seen_txs: "OrderedDict[str, None]" = OrderedDict()

    @property
    def block_key(self) -> str:
        return f"{self.__component_name__}:{self.chain.value}"

    async def _initialize_last_block(self):
        """Resume from storage, the configured start block, or the chain head"""
        last_block = self.state_store.get_last_processed_block(self.block_key)
        if last_block is not None:
            logger.info(f"Resuming from last processed block {last_block} for {self.block_key}")
            self.last_checked_block = last_block
        elif self.start_block > 0:
            logger.info(f"Starting from configured block {self.start_block} for {self.block_key}")
            # The configured block itself is scanned
            self.last_checked_block = self.start_block - 1
        else:
            self.last_checked_block = await self.client.get_block_number()
            logger.info(f"Starting from current block {self.last_checked_block} for {self.block_key}")

    async def _start(self):
        await self._initialize_last_block()

    async def _stop(self):
        self.state_store.close()

    def is_seen(self, tx_hash: str) -> bool:
        return tx_hash in self._seen_txs

    def mark_seen(self, tx_hash: str) -> None:
        self._seen_txs[tx_hash] = None
        self._seen_txs.move_to_end(tx_hash)
        while len(self._seen_txs) > self.seen_tx_limit:
            self._seen_txs.popitem(last=False)

    def _matching_transactions(self, block: Dict[str, Any]) -> List[Dict[str, Any]]:
        matches = []
        for tx in block.get("transactions", []):
            if not isinstance(tx, dict):
                continue
            if normalize_address(tx.get("to")) != self.interaction_contract:
                continue
            tx_hash = normalize_tx_hash(tx.get("hash"))
            if tx_hash and not self.is_seen(tx_hash):
                matches.append(tx)
        return matches

    async def _fetch_receipts(self, txs: List[Dict[str, Any]]) -> List[Optional[Dict[str, Any]]]:
        semaphore = asyncio.Semaphore(self.receipt_concurrency)

        async def fetch(tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            async with semaphore:
                return await self.client.get_transaction_receipt(normalize_tx_hash(tx["hash"]))

        return await asyncio.gather(*(fetch(tx) for tx in txs))

    async def _scan_range(
        self, from_block: int, to_block: int
    ) -> AsyncGenerator[InteractionCandidate, None]:
        """
        Scan a block range for transactions to the interaction contract

        Args:
            from_block: Starting block
            to_block: Ending block (inclusive)

        Yields:
            InteractionCandidate: In block and transaction order
        """
        for block_number in range(from_block, to_block + 1):
            block = await self.client.get_block(block_number, full_transactions=True)
            txs = self._matching_transactions(block)
            if not txs:
                continue

            timestamp = block_time(block)
            receipts = await self._fetch_receipts(txs)
            for tx, receipt in zip(txs, receipts):
                tx_hash = normalize_tx_hash(tx["hash"])
                if receipt is None:
                    logger.warning(f"No receipt for {tx_hash} on {self.chain.value}, skipping")
                    continue

                yield InteractionCandidate(
                    chain=self.chain,
                    tx_hash=tx_hash,
                    sender=normalize_address(tx.get("from")) or "",
                    interaction_contract=self.interaction_contract,
                    block_number=block_number,
                    block_timestamp=timestamp,
                    transfers=self.extractor.extract(receipt),
                )
                # Handled, alerted or dropped by the rate limiter alike
                self.mark_seen(tx_hash)

    async def events(self) -> AsyncGenerator[InteractionCandidate, None]:
        """
        Generate event stream

        Yields:
            InteractionCandidate: Matching transaction with its transfers
        """
        if not self._running:
            await self.start()

        while self._running:
            head = self.last_checked_block
            try:
                head = await self.client.get_block_number()
                if head > self.last_checked_block:
                    from_block = self.last_checked_block + 1
                    to_block = min(head, from_block + self.max_blocks_per_scan - 1)

                    logger.info(f"Scanning {self.chain.value} blocks {from_block}-{to_block}")
                    async for candidate in self._scan_range(from_block, to_block):
                        yield candidate
                        if not self._running:
                            return

                    self.last_checked_block = to_block
                    self.state_store.set_last_processed_block(self.block_key, to_block)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error scanning {self.chain.value} for interactions: {e}")
                head = self.last_checked_block

            # Keep scanning without waiting while behind the head
            if self.last_checked_block < head:
                await asyncio.sleep(0)
                continue
            await asyncio.sleep(self.polling_interval)
