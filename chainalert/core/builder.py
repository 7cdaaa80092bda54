from typing import Dict, List, Optional

from ..config import Config, Settings
from ..logger import logger
from ..webhooks import MoralisWebhookPipeline, TenderlyWebhookPipeline
from .base import Collector, Notifier
from .chains import ChainKey, ChainRegistry
from .dedupe import DedupeStore
from .dispatcher import AlertDispatcher
from .processor import TransferProcessor
from .service import AlertService
from .threshold import ThresholdEvaluator
from .web3.client import ChainClient, build_clients
from .web3.token_meta import TokenMetadataResolver


class AlertServiceBuilder:
    """Wires the alert pipeline from configuration"""

    def __init__(self, config: Config, settings: Optional[Settings] = None):
        self.config = config
        self.settings = settings or Settings.from_config(config)

        alerts = self.settings.alerts
        self.registry = ChainRegistry(self.settings.rpc.endpoints, alerts.chains)
        self.clients: Dict[str, ChainClient] = {}
        self.notifier: Optional[Notifier] = None
        self.dedupe: Optional[DedupeStore] = None
        self.processor: Optional[TransferProcessor] = None
        self.moralis = None
        self.tenderly = None
        self.collectors: List[Collector] = []

    def build_clients(self) -> "AlertServiceBuilder":
        """Create RPC clients for every chain with configured endpoints"""
        self.clients = build_clients(
            self.registry.with_rpc(),
            timeout=self.settings.rpc.timeout,
            max_retries=self.settings.rpc.max_retries,
        )
        return self

    def build_notifier(self) -> "AlertServiceBuilder":
        notifier = self.settings.notifier
        self.notifier = Notifier.create(notifier.type, **notifier.options)
        logger.info(f"Using notifier: {notifier.type}")
        return self

    def build_processor(self) -> "AlertServiceBuilder":
        """Build the shared transfer processor and its stores"""
        if self.notifier is None:
            self.build_notifier()

        alerts = self.settings.alerts
        self.dedupe = DedupeStore.from_url(alerts.redis_url, max_entries=alerts.dedupe_max_entries)
        self.processor = TransferProcessor(
            registry=self.registry,
            metadata=TokenMetadataResolver(self.clients, timeout=self.settings.rpc.timeout),
            thresholds=ThresholdEvaluator(
                alerts.thresholds, alerts.default_threshold, alerts.strict
            ),
            dedupe=self.dedupe,
            dispatcher=AlertDispatcher(self.notifier, self.settings.retry),
            dedupe_ttl=alerts.dedupe_ttl,
            token_labels=alerts.token_labels,
            watch_addresses=alerts.watch_addresses,
        )
        if not alerts.interaction_contract:
            logger.warning("No interaction contract configured, webhooks will return errors")
        return self

    def build_webhooks(self) -> "AlertServiceBuilder":
        """Build the enabled webhook pipelines"""
        if self.processor is None:
            self.build_processor()

        contract = self.settings.alerts.interaction_contract
        if self.settings.moralis.enabled:
            self.moralis = MoralisWebhookPipeline(
                secret=self.settings.moralis.secret,
                interaction_contract=contract,
                registry=self.registry,
                processor=self.processor,
                signature_header=self.settings.moralis.signature_header,
            )
            if not self.settings.moralis.secret:
                logger.warning("Moralis webhook secret is missing, signature checks will fail")
        if self.settings.tenderly.enabled:
            self.tenderly = TenderlyWebhookPipeline(
                signing_key=self.settings.tenderly.signing_key,
                interaction_contract=contract,
                registry=self.registry,
                processor=self.processor,
                clients=self.clients,
            )
            if not self.settings.tenderly.signing_key:
                logger.warning("Tenderly signing key is missing, signature checks will fail")
        return self

    def build_collectors(self) -> "AlertServiceBuilder":
        """Build all enabled collectors"""
        collectors = self.config.collectors
        if not isinstance(collectors, list):
            raise ValueError("collectors.enabled must be a list")

        for name in collectors:
            options = self.config.get_collector_config(name)
            # Scalar options apply to every chain, tables override per chain
            shared = {k: v for k, v in options.items() if not isinstance(v, dict) and k != "chains"}
            shared.setdefault("interaction_contract", self.settings.alerts.interaction_contract)
            shared.setdefault("rpc_timeout", self.settings.rpc.timeout)

            for chain in options.get("chains", []):
                key = ChainKey(chain)
                client = self.clients.get(key)
                if client is None:
                    logger.warning(f"Skipping {name} for {chain}: no RPC endpoints configured")
                    continue
                overrides = options.get(chain, {})
                chain_options = {**shared, **overrides}
                if "db_path" not in overrides:
                    # One state file per chain
                    chain_options["db_path"] = f"{shared.get('db_path', f'./data/{name}')}_{key.value}"
                collector = Collector.create(name, chain=key.value, client=client, **chain_options)
                self.collectors.append(collector)
                logger.info(f"Added collector: {name} for {key.value}")
        return self

    def build(self) -> AlertService:
        """Build the final AlertService instance"""
        if self.processor is None:
            self.build_processor()

        service = AlertService(
            registry=self.registry,
            processor=self.processor,
            dedupe=self.dedupe,
            notifier=self.notifier,
            moralis=self.moralis,
            tenderly=self.tenderly,
            clients=self.clients,
        )
        for collector in self.collectors:
            service.add_collector(collector)
        return service
