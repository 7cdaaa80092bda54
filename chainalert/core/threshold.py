"""
Threshold filter for transfer alerts.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..logger import logger

_ADDRESS_KEY = re.compile(r"^0x[0-9a-fA-F]{40}$")


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a finite Decimal from a number or decimal string, None otherwise"""
    if isinstance(value, bool) or value is None:
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


class ThresholdEvaluator:
    """
    Decides whether a transfer's human amount is large enough to alert on.

    Thresholds are keyed by token address (lowercased) or symbol (uppercased).
    Lookup order is address, then symbol, then the default threshold. When
    nothing matches, strict mode rejects and lenient mode passes. Strict mode
    is on whenever the table is non-empty unless ``strict`` says otherwise.
    """

    def __init__(
        self,
        thresholds: Optional[Dict[str, Any]] = None,
        default_threshold: Any = None,
        strict: Optional[bool] = None,
    ):
        """
        Initialize the threshold evaluator.

        Args:
            thresholds: Mapping of token address or symbol to minimum human amount
            default_threshold: Minimum amount for tokens absent from the table
            strict: Force strict (True) or lenient (False) mode
        """
        self.thresholds: Dict[str, Decimal] = {}
        for key, raw in (thresholds or {}).items():
            value = parse_decimal(raw)
            if value is None or value < 0:
                logger.warning(f"Ignoring invalid threshold for {key}: {raw!r}")
                continue
            self.thresholds[self._normalize_key(str(key))] = value

        default = parse_decimal(default_threshold) if default_threshold not in (None, "") else None
        if default is not None and default <= 0:
            default = None
        self.default_threshold = default
        self.strict = bool(self.thresholds) if strict is None else strict

    @staticmethod
    def _normalize_key(key: str) -> str:
        key = key.strip()
        return key.lower() if _ADDRESS_KEY.match(key) else key.upper()

    def threshold_for(self, token_address: str, symbol: Optional[str]) -> Optional[Decimal]:
        """Find the applicable threshold, None when no rule matches"""
        if token_address and token_address.lower() in self.thresholds:
            return self.thresholds[token_address.lower()]
        if symbol and symbol.strip().upper() in self.thresholds:
            return self.thresholds[symbol.strip().upper()]
        return self.default_threshold

    def passes(self, token_address: str, symbol: Optional[str], human_amount: Any) -> bool:
        """
        Check whether a transfer qualifies for an alert.

        Args:
            token_address: Token contract address
            symbol: Token symbol, if known
            human_amount: Decimal string of the formatted amount

        Returns:
            bool: True if an alert should be sent
        """
        threshold = self.threshold_for(token_address, symbol)
        if threshold is None:
            return not self.strict

        amount = parse_decimal(human_amount)
        if amount is None:
            logger.debug(f"Unparsable amount {human_amount!r} for {token_address}")
            return False
        return amount >= threshold
