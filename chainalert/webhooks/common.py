"""
Helpers shared by the webhook pipelines.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..core.chains import ChainKey, ChainRegistry
from ..errors import MalformedPayloadError, UnsupportedChainError

Path = Tuple[str, ...]


def lower_headers(headers: Mapping[str, Any]) -> Dict[str, str]:
    """Case-insensitive header view; list values keep their first element"""
    result = {}
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if isinstance(value, str):
            result[name.lower()] = value
    return result


def parse_json_object(body: bytes) -> Dict[str, Any]:
    """
    Parse a request body that must hold a JSON object

    Raises:
        MalformedPayloadError: Body is not a JSON object
    """
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayloadError(f"Invalid JSON body: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError("JSON body is not an object")
    return payload


def require_allowed_chain(registry: ChainRegistry, chain: Optional[ChainKey], network: Any) -> ChainKey:
    """
    Check a resolved chain against the registry allow-list

    Raises:
        UnsupportedChainError: Network did not resolve, or the chain is not allowed
    """
    if chain is None:
        raise UnsupportedChainError(f"Unsupported network {network!r}")
    if not registry.is_allowed(chain):
        raise UnsupportedChainError(f"Chain {chain.value} not allowed", reason="chain_not_allowed")
    return chain


def dig(data: Any, path: Path) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def first_path(data: Mapping[str, Any], paths: Sequence[Path]) -> Any:
    """Value at the first path that holds a non-empty value"""
    for path in paths:
        value = dig(data, path)
        if value is not None and value != "":
            return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse unix seconds (int or numeric string) or an ISO-8601 string as UTC"""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
