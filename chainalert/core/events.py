from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .chains import ChainKey


class Event(BaseModel):
    """Base class for all events"""

    type: str = Field(...)  # Required field

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class TransferEvent(BaseModel):
    """
    One decoded ERC-20 Transfer occurrence

    Addresses and hashes are stored lowercase. ``(tx_hash, log_index)``
    identifies the transfer within a chain. ``symbol`` and ``decimals`` are
    only set when an indexing payload supplied them.
    """

    tx_hash: str
    log_index: int = Field(..., ge=0)
    token_address: str
    from_address: str
    to_address: str
    value: int = Field(..., ge=0)  # Raw amount, arbitrary precision
    symbol: Optional[str] = None
    decimals: Optional[int] = Field(None, ge=0)

    model_config = {"frozen": True}

    @field_validator("tx_hash", "token_address", "from_address", "to_address")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.lower()

    def __str__(self) -> str:
        return (
            f"Transfer {self.tx_hash}#{self.log_index}: "
            f"{self.value} of {self.token_address} "
            f"{self.from_address} -> {self.to_address}"
        )


class TokenMeta(BaseModel):
    """Display metadata for a token contract"""

    symbol: str
    name: str
    decimals: int = Field(..., ge=0)

    model_config = {"frozen": True}


class InteractionCandidate(Event):
    """
    A transaction that called the interaction contract, with its transfers

    Produced by the interaction watcher for each matching transaction in a
    scanned block range.
    """

    type: str = "interaction"
    chain: ChainKey
    tx_hash: str
    sender: str
    interaction_contract: str
    block_number: int
    block_timestamp: datetime
    transfers: List[TransferEvent] = Field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Interaction Candidate:\n"
            f"  Chain: {self.chain.value}\n"
            f"  TX Hash: {self.tx_hash}\n"
            f"  Sender: {self.sender}\n"
            f"  Block: {self.block_number}\n"
            f"  Transfers: {len(self.transfers)}"
        )


class AlertStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AlertMessage(BaseModel):
    """Formatted alert text plus its delivery state"""

    text: str
    chain: ChainKey
    tx_hash: str
    log_index: int
    status: AlertStatus = AlertStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None


class WebhookResult(BaseModel):
    """Outcome of handling one webhook request, returned as the response body"""

    ok: bool = True
    ignored: bool = False
    reason: Optional[str] = None
    alerts_sent: int = 0

    @classmethod
    def ignore(cls, reason: str) -> "WebhookResult":
        return cls(ignored=True, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert result to the response body, omitting unset fields

        Returns:
            Dict[str, Any]: Response payload
        """
        data = self.model_dump(exclude_none=True)
        if not self.ignored:
            data.pop("ignored")
        return data
