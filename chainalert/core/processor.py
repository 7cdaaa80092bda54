import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import DeliveryError
from ..logger import logger
from .chains import ChainKey, ChainRegistry
from .dedupe import DEFAULT_DEDUPE_TTL, DedupeStore, dedupe_key
from .dispatcher import AlertDispatcher, format_alert
from .events import AlertMessage, TransferEvent
from .rate_limit import SlidingWindowRateLimiter
from .threshold import ThresholdEvaluator
from .web3.base import format_units, normalize_address
from .web3.token_meta import UNKNOWN_SYMBOL, TokenMetadataResolver


class TransferProcessor:
    """
    Runs the transfers of one matching transaction through the alert stages

    For each transfer: recipient watch list, metadata, threshold, rate limit,
    dedupe claim, dispatch. A claim is released when delivery fails so the
    event is not recorded as alerted. One failed alert never stops the batch.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        metadata: TokenMetadataResolver,
        thresholds: ThresholdEvaluator,
        dedupe: DedupeStore,
        dispatcher: AlertDispatcher,
        dedupe_ttl: int = DEFAULT_DEDUPE_TTL,
        token_labels: Optional[Dict[str, str]] = None,
        watch_addresses: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            registry: Known chains and explorer templates
            metadata: Token metadata resolver
            thresholds: Threshold evaluator
            dedupe: Dedupe store
            dispatcher: Alert dispatcher
            dedupe_ttl: Seconds a sent alert stays deduplicated
            token_labels: Display label overrides keyed by token address
            watch_addresses: Only alert on transfers to these recipients, if given
        """
        self.registry = registry
        self.metadata = metadata
        self.thresholds = thresholds
        self.dedupe = dedupe
        self.dispatcher = dispatcher
        self.dedupe_ttl = dedupe_ttl
        self.token_labels = {k.lower(): str(v) for k, v in (token_labels or {}).items()}
        self.watch_addresses = {
            addr for addr in (normalize_address(a) for a in (watch_addresses or [])) if addr
        }

    async def _token_display(
        self, chain: ChainKey, transfer: TransferEvent
    ) -> Optional[Tuple[str, int]]:
        """Symbol and decimals, payload values first, resolver for the gaps"""
        symbol, decimals = transfer.symbol, transfer.decimals
        if symbol and decimals is not None:
            return symbol, decimals

        meta = await self.metadata.resolve(chain, transfer.token_address)
        if meta is None:
            if decimals is None:
                return None
            return symbol or UNKNOWN_SYMBOL, decimals
        return symbol or meta.symbol, decimals if decimals is not None else meta.decimals

    async def process(
        self,
        chain: ChainKey,
        tx_hash: str,
        transfers: List[TransferEvent],
        interaction_contract: str,
        timestamp: datetime,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> int:
        """
        Alert on the qualifying transfers of one transaction

        Args:
            chain: Chain key
            tx_hash: Transaction hash
            transfers: Transfers extracted from the transaction
            interaction_contract: Watched contract the transaction called
            timestamp: Block or confirmation time
            rate_limiter: Per-watcher limiter; at the cap remaining transfers are dropped

        Returns:
            int: Number of alerts delivered
        """
        chain_info = self.registry.get(chain)
        sent = 0

        for transfer in transfers:
            if self.watch_addresses and transfer.to_address not in self.watch_addresses:
                logger.debug(f"Skip {transfer}: recipient not watched")
                continue

            display = await self._token_display(chain, transfer)
            if display is None:
                logger.warning(
                    f"Skip {transfer}: no RPC client for {chain.value} and no decimals in payload"
                )
                continue
            symbol, decimals = display
            amount = format_units(transfer.value, decimals)

            if not self.thresholds.passes(transfer.token_address, symbol, amount):
                logger.info(f"Below threshold: {amount} {symbol} ({transfer.token_address}) in {tx_hash}")
                continue

            if rate_limiter is not None and not rate_limiter.allow():
                logger.warning(
                    f"Rate limit reached on {chain.value} ({rate_limiter.max_per_window}/"
                    f"{rate_limiter.window:.0f}s), dropping alert for {tx_hash}#{transfer.log_index}"
                )
                continue

            key = dedupe_key(
                chain.value, transfer.tx_hash, transfer.log_index,
                transfer.token_address, transfer.to_address,
            )
            if not await self.dedupe.try_claim(key, self.dedupe_ttl):
                logger.info(f"Duplicate alert suppressed: {key}")
                continue

            label = self.token_labels.get(transfer.token_address, symbol)
            message = AlertMessage(
                text=format_alert(
                    chain_info, transfer, label, amount, symbol, timestamp, interaction_contract
                ),
                chain=chain,
                tx_hash=transfer.tx_hash,
                log_index=transfer.log_index,
            )

            try:
                await self.dispatcher.dispatch(message)
            except DeliveryError as e:
                logger.error(f"Giving up on alert {key}: {e}")
                await self.dedupe.release(key)
                continue
            except asyncio.CancelledError:
                logger.warning(f"Alert {key} cancelled before delivery, releasing claim")
                await asyncio.shield(self.dedupe.release(key))
                raise
            except Exception as e:
                logger.error(f"Unexpected error dispatching alert {key}: {e}")
                await self.dedupe.release(key)
                continue

            if rate_limiter is not None:
                rate_limiter.record()
            sent += 1

        return sent
