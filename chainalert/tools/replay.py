"""
Replay a saved webhook payload against a running chainalert instance.

The payload file is sent byte for byte and signed the way the provider
would sign it, so the receiving pipeline runs its full verification.

Usage:
    chainalert-replay moralis payload.json --secret S
    chainalert-replay tenderly alert.json --secret K --url http://localhost:8080/webhooks/tenderly
"""
import argparse
import os
import sys
from email.utils import formatdate
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from chainalert.logger import logger
from chainalert.webhooks.moralis import DEFAULT_SIGNATURE_HEADERS
from chainalert.webhooks.signature import SignatureMode, compute_signature
from chainalert.webhooks.tenderly import SIGNATURE_HEADER as TENDERLY_SIGNATURE_HEADER

DEFAULT_URLS = {
    "moralis": "http://localhost:8080/webhooks/moralis",
    "tenderly": "http://localhost:8080/webhooks/tenderly",
}

SECRET_ENV = {
    "moralis": "MORALIS_WEBHOOK_SECRET",
    "tenderly": "TENDERLY_SIGNING_KEY",
}


def signed_headers(
    provider: str, body: bytes, secret: str, signature_header: str = "", date: Optional[str] = None
) -> Dict[str, str]:
    """
    Build request headers carrying a valid signature for ``body``

    Args:
        provider: "moralis" or "tenderly"
        body: Exact bytes that will be posted
        secret: Webhook secret or signing key
        signature_header: Header name override for moralis
        date: Date header value for tenderly, defaults to now
    """
    headers = {"content-type": "application/json"}
    if provider == "tenderly":
        date = date or formatdate(usegmt=True)
        headers["date"] = date
        headers[TENDERLY_SIGNATURE_HEADER] = compute_signature(
            secret, body, date, SignatureMode.BODY_AND_DATE
        )
    else:
        headers[signature_header or DEFAULT_SIGNATURE_HEADERS[0]] = compute_signature(secret, body)
    return headers


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sign and post a webhook payload file")
    parser.add_argument("provider", choices=sorted(DEFAULT_URLS))
    parser.add_argument("payload", type=Path, help="JSON payload file")
    parser.add_argument("--url", help="Webhook endpoint, defaults to localhost")
    parser.add_argument("--secret", help="Signing secret, defaults to the provider's environment variable")
    parser.add_argument("--signature-header", default="", help="Signature header name (moralis)")
    parser.add_argument("--timeout", type=float, default=30.0)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if not args.payload.exists():
        logger.error(f"Payload file not found: {args.payload}")
        return 1
    secret = args.secret or os.environ.get(SECRET_ENV[args.provider], "")
    if not secret:
        logger.error(f"No secret given and {SECRET_ENV[args.provider]} is not set")
        return 1

    body = args.payload.read_bytes()
    url = args.url or DEFAULT_URLS[args.provider]
    headers = signed_headers(args.provider, body, secret, args.signature_header)

    try:
        response = httpx.post(url, content=body, headers=headers, timeout=args.timeout)
    except httpx.HTTPError as e:
        logger.error(f"Request to {url} failed: {e}")
        return 1

    print(f"Status: {response.status_code}")
    print(f"Body: {response.text}")
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
