from .moralis import MoralisWebhookPipeline
from .signature import SignatureMode, SignatureVerifier, compute_signature
from .tenderly import TenderlyWebhookPipeline

__all__ = [
    "MoralisWebhookPipeline",
    "SignatureMode",
    "SignatureVerifier",
    "TenderlyWebhookPipeline",
    "compute_signature",
]
