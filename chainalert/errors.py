"""
Exception taxonomy for the alert pipeline.

Only AuthenticationError and ConfigurationError ever surface to the HTTP layer
as error responses. The remaining types describe conditions that the pipelines
acknowledge and ignore (inbound noise) or degrade around (RPC and store failures).
"""
from typing import Optional


class ChainAlertError(Exception):
    """Base class for all chainalert errors"""


class AuthenticationError(ChainAlertError):
    """Missing or invalid webhook signature"""

    status_code = 401


class ConfigurationError(ChainAlertError):
    """A required setting (secret, contract address, RPC endpoint) is missing"""

    status_code = 500


class MalformedPayloadError(ChainAlertError):
    """Webhook body is not valid JSON or lacks required fields"""


class IgnoredEventError(ChainAlertError):
    """An inbound event the pipelines acknowledge without alerting"""

    default_reason = "ignored"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or self.default_reason


class UnsupportedChainError(IgnoredEventError):
    """Network could not be resolved or is not in the allow-list"""

    default_reason = "unsupported_chain"


class NotOurInteraction(IgnoredEventError):
    """Transaction does not target the watched interaction contract"""

    default_reason = "not_our_interaction"


class MetadataResolutionError(ChainAlertError):
    """A token metadata read failed"""


class DeliveryError(ChainAlertError):
    """Alert could not be delivered after all retry attempts"""


class SharedStoreError(ChainAlertError):
    """The shared dedupe store is unreachable"""
