import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli
from pydantic import BaseModel, Field

from chainalert.core.chains import ChainKey
from chainalert.core.retry import RetryPolicy
from chainalert.logger import logger

# Environment variables that override values from the TOML file.
# Secrets are usually injected this way rather than written to disk.
ENV_OVERRIDES: Dict[str, str] = {
    "INTERACTION_CONTRACT": "alerts.interaction_contract",
    "REDIS_URL": "alerts.redis_url",
    "DEDUPE_TTL_SECONDS": "alerts.dedupe_ttl",
    "DEFAULT_THRESHOLD": "alerts.default_threshold",
    "MORALIS_WEBHOOK_SECRET": "webhooks.moralis.secret",
    "MORALIS_SIGNATURE_HEADER": "webhooks.moralis.signature_header",
    "TENDERLY_SIGNING_KEY": "webhooks.tenderly.signing_key",
    "TELEGRAM_BOT_TOKEN": "notifier.telegram.bot_token",
    "TELEGRAM_CHAT_ID": "notifier.telegram.chat_id",
    "PORT": "server.port",
}

# JSON-encoded environment variables
ENV_JSON_OVERRIDES: Dict[str, str] = {
    "THRESHOLDS_JSON": "alerts.thresholds",
    "TOKEN_LABELS_JSON": "alerts.token_labels",
}


class Config:
    """
    Configuration manager for chainalert

    Handles loading and accessing configuration from TOML files, with
    environment variable overrides for secrets and deployment settings.
    """

    def __init__(
        self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None
    ):
        """
        Initialize configuration manager

        Args:
            config_path: Path to the TOML configuration file.
                        If not provided, defaults to "config.toml"
            environ: Environment mapping used for overrides, defaults to os.environ
        """
        self.config_path = config_path or "config.toml"
        self.environ = os.environ if environ is None else environ
        self.config: Dict[str, Any] = self._load_config()
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from TOML file

        Returns:
            Dict[str, Any]: Configuration dictionary, empty if file not found or invalid
        """
        config_path = Path(self.config_path)
        if not config_path.exists():
            logger.warning(
                f"Config file not found: {self.config_path}, using empty configuration"
            )
            return {}

        try:
            with open(config_path, "rb") as f:
                return tomli.load(f)
        except Exception as e:
            logger.error(f"Error loading config file: {e}")
            return {}

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = self.environ.get(env_name, "").strip()
            if value:
                self.set(key, value)

        for env_name, key in ENV_JSON_OVERRIDES.items():
            raw = self.environ.get(env_name, "").strip()
            if not raw:
                continue
            try:
                self.set(key, json.loads(raw))
            except json.JSONDecodeError as e:
                logger.error(f"Ignoring {env_name}: invalid JSON ({e})")

        if chains := self.environ.get("CHAINS", "").strip():
            self.set("alerts.chains", [c.strip() for c in chains.split(",") if c.strip()])

        for chain_key in ChainKey:
            endpoints = self.environ.get(f"RPC_{chain_key.value.upper()}", "").strip()
            if endpoints:
                self.set(
                    f"rpc.endpoints.{chain_key.value}",
                    [e.strip() for e in endpoints.split(",") if e.strip()],
                )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-separated key

        Args:
            key: Dot-separated configuration key (e.g., "alerts.redis_url")
            default: Default value if key not found

        Returns:
            Any: Configuration value or default if not found
        """
        value = self.config
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k, default)
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dot-separated key, creating sections as needed"""
        section = self.config
        *parents, leaf = key.split(".")
        for k in parents:
            section = section.setdefault(k, {})
        section[leaf] = value

    @property
    def collectors(self) -> list:
        """Get list of enabled collectors"""
        return self.config.get("collectors", {}).get("enabled", [])

    def get_collector_config(self, collector_name: str) -> dict:
        """
        Get configuration for specific collector

        Args:
            collector_name: Name of the collector

        Returns:
            dict: Collector configuration or empty dict if not found
        """
        return self.config.get("collectors", {}).get(collector_name, {})

    def get_notifier_config(self, notifier_name: str) -> dict:
        """Get configuration for specific notifier, empty dict if not found"""
        return self.config.get("notifier", {}).get(notifier_name, {})


class AlertSettings(BaseModel):
    interaction_contract: str = ""
    chains: List[str] = Field(default_factory=lambda: [key.value for key in ChainKey])
    thresholds: Dict[str, Any] = Field(default_factory=dict)
    default_threshold: Optional[Any] = None
    strict: Optional[bool] = None
    token_labels: Dict[str, str] = Field(default_factory=dict)
    watch_addresses: List[str] = Field(default_factory=list)
    dedupe_ttl: int = Field(7 * 24 * 3600, gt=0)
    dedupe_max_entries: int = Field(10_000, gt=0)
    redis_url: str = ""


class MoralisSettings(BaseModel):
    enabled: bool = True
    secret: str = ""
    signature_header: str = ""


class TenderlySettings(BaseModel):
    enabled: bool = True
    signing_key: str = ""


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class RpcSettings(BaseModel):
    timeout: float = Field(10.0, gt=0)
    max_retries: int = Field(3, ge=1)
    endpoints: Dict[str, List[str]] = Field(default_factory=dict)


class NotifierSettings(BaseModel):
    type: str = "telegram"
    options: Dict[str, Any] = Field(default_factory=dict)


class Settings(BaseModel):
    """Validated view over the raw configuration"""

    alerts: AlertSettings = Field(default_factory=AlertSettings)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    moralis: MoralisSettings = Field(default_factory=MoralisSettings)
    tenderly: TenderlySettings = Field(default_factory=TenderlySettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    rpc: RpcSettings = Field(default_factory=RpcSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config) -> "Settings":
        notifier_type = config.get("notifier.type", "telegram")
        return cls(
            alerts=AlertSettings(**config.get("alerts", {})),
            retry=RetryPolicy(**config.get("retry", {})),
            moralis=MoralisSettings(**config.get("webhooks.moralis", {})),
            tenderly=TenderlySettings(**config.get("webhooks.tenderly", {})),
            server=ServerSettings(**config.get("server", {})),
            rpc=RpcSettings(**config.get("rpc", {})),
            notifier=NotifierSettings(
                type=notifier_type,
                options=config.get_notifier_config(notifier_type),
            ),
            logging=config.get("logging", {}),
        )
