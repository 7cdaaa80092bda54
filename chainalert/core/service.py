import asyncio
from typing import Any, List, Optional

from ..logger import logger
from .base import Collector, Notifier
from .chains import ChainRegistry
from .dedupe import DedupeStore
from .events import Event, InteractionCandidate
from .processor import TransferProcessor


class AlertService:
    """
    Runtime that owns the alert pipeline components

    Handles:
    - Component lifecycle management
    - Driving each collector's event stream through the transfer processor
    - Exposing the webhook pipelines to the HTTP layer
    - Releasing shared resources on shutdown

    Each collector is consumed in its own task. A collector's generator is
    only resumed after the previous event has been fully processed, so its
    block bookkeeping never runs ahead of alert delivery.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        processor: TransferProcessor,
        dedupe: DedupeStore,
        notifier: Notifier,
        moralis: Optional[Any] = None,
        tenderly: Optional[Any] = None,
        clients: Optional[dict] = None,
        restart_delay: float = 5.0,
    ):
        """
        Initialize AlertService

        Args:
            registry: Known chains and allow-list
            processor: Transfer processor shared by every entry point
            dedupe: Dedupe store, closed on shutdown
            notifier: Notifier, closed on shutdown
            moralis: Moralis webhook pipeline, None when disabled
            tenderly: Tenderly webhook pipeline, None when disabled
            clients: Chain clients, closed on shutdown
            restart_delay: Seconds to wait before restarting a failed collector
        """
        self.registry = registry
        self.processor = processor
        self.dedupe = dedupe
        self.notifier = notifier
        self.moralis = moralis
        self.tenderly = tenderly
        self.clients = clients or {}
        self.restart_delay = restart_delay

        self.collectors: List[Collector] = []
        self.running: bool = False
        self._tasks: Optional[List[asyncio.Task]] = None

    def add_collector(self, collector: Collector):
        """
        Add event collector to the pipeline

        Args:
            collector: Collector instance
        """
        self.collectors.append(collector)
        logger.info(f"Added collector: {collector.__class__.__name__}")

    async def start(self):
        """
        Start all collectors and begin processing

        Raises:
            Exception: If any collector fails to start
        """
        self.running = True

        try:
            await asyncio.gather(*(collector.start() for collector in self.collectors))

            self._tasks = [
                asyncio.create_task(self._run_collector(collector), name=f"collector_{i}")
                for i, collector in enumerate(self.collectors)
            ]
            logger.info(
                f"Started {len(self.collectors)} collectors "
                f"(moralis={'on' if self.moralis else 'off'}, tenderly={'on' if self.tenderly else 'off'})"
            )
        except Exception as e:
            logger.error(f"Error starting components: {e}")
            await self.stop()
            raise

    async def stop(self, force_timeout: float = 10.0):
        """
        Stop collectors and release resources

        Args:
            force_timeout: Maximum time to wait for collectors before cancelling them
        """
        if not self.running:
            logger.info("Stop called on already stopped AlertService")
            return

        self.running = False
        logger.info("Stopping AlertService...")

        if self.collectors:
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        *(collector.stop() for collector in self.collectors),
                        return_exceptions=True,
                    ),
                    timeout=force_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Collectors did not stop within {force_timeout}s")

        if self._tasks:
            for task in self._tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = None

        await self._close_resources()
        logger.info("AlertService shutdown complete")

    async def _close_resources(self):
        for name, close in (
            ("dedupe store", self.dedupe.close),
            ("notifier", self.notifier.close),
        ):
            try:
                await close()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}")

        for key, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing RPC client for {key}: {e}")

    async def join(self):
        """Wait until every collector task has finished"""
        if not self._tasks:
            return
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Join operation cancelled")

    async def handle_event(self, event: Event, collector: Optional[Collector] = None) -> int:
        """
        Process one collected event

        Returns:
            int: Number of alerts delivered
        """
        if not isinstance(event, InteractionCandidate):
            logger.debug(f"Ignoring unsupported event type: {event.type}")
            return 0
        if not self.registry.is_allowed(event.chain):
            return 0

        return await self.processor.process(
            event.chain,
            event.tx_hash,
            event.transfers,
            event.interaction_contract,
            event.block_timestamp,
            rate_limiter=getattr(collector, "rate_limiter", None),
        )

    async def _run_collector(self, collector: Collector):
        """Consume one collector, restarting its stream after failures"""
        collector_name = collector.__class__.__name__

        while self.running:
            try:
                async for event in collector.events():
                    if not self.running:
                        break
                    try:
                        sent = await self.handle_event(event, collector)
                        if sent:
                            logger.info(f"{collector_name}: {sent} alert(s) for {event.tx_hash}")
                    except Exception as e:
                        logger.error(f"Error processing event from {collector_name}: {e}")

                if self.running:
                    logger.warning(f"Collector {collector_name} events stream ended, restarting...")
            except asyncio.CancelledError:
                logger.info(f"Collector task {collector_name} cancelled")
                return
            except Exception as e:
                logger.error(f"Error in collector {collector_name}: {e}")

            if self.running:
                await asyncio.sleep(self.restart_delay)
