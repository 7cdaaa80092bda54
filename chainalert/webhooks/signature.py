"""
HMAC-SHA256 webhook signature verification.
"""
import hashlib
import hmac
from enum import Enum
from typing import Optional

from ..errors import AuthenticationError

SIGNATURE_PREFIX = "sha256="


class SignatureMode(str, Enum):
    BODY = "body"  # HMAC over the raw body
    BODY_AND_DATE = "body_and_date"  # HMAC over the raw body followed by the Date header


def compute_signature(
    secret: str, body: bytes, date: Optional[str] = None, mode: SignatureMode = SignatureMode.BODY
) -> str:
    """Hex digest a sender would put in the signature header"""
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
    if mode == SignatureMode.BODY_AND_DATE:
        mac.update((date or "").encode("utf-8"))
    return mac.hexdigest()


class SignatureVerifier:
    """
    Authenticates webhook bodies against a shared secret

    Accepts bare hex digests and ``sha256=<hex>``. Every failure raises
    AuthenticationError; there is no fallback between modes.
    """

    def __init__(self, secret: str, mode: SignatureMode = SignatureMode.BODY):
        self.secret = secret
        self.mode = mode

    def verify(
        self, body: bytes, signature: Optional[str], date: Optional[str] = None
    ) -> None:
        """
        Verify a signature

        Args:
            body: Raw request body, exactly as received
            signature: Claimed signature header value
            date: Date header value, required in BODY_AND_DATE mode

        Raises:
            AuthenticationError: Missing or invalid signature
        """
        if not self.secret:
            raise AuthenticationError("No webhook secret configured")
        if not signature:
            raise AuthenticationError("Missing webhook signature")
        if self.mode == SignatureMode.BODY_AND_DATE and not date:
            raise AuthenticationError("Missing date header")

        claimed = signature.strip()
        if claimed.lower().startswith(SIGNATURE_PREFIX):
            claimed = claimed[len(SIGNATURE_PREFIX):]

        try:
            claimed_bytes = claimed.lower().encode("ascii")
        except UnicodeEncodeError:
            raise AuthenticationError("Invalid webhook signature") from None

        expected = compute_signature(self.secret, body, date, self.mode).encode("ascii")
        if len(claimed_bytes) != len(expected) or not hmac.compare_digest(claimed_bytes, expected):
            raise AuthenticationError("Invalid webhook signature")
