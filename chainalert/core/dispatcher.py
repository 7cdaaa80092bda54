import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ..errors import DeliveryError
from ..logger import logger
from .base import Notifier
from .chains import Chain
from .events import AlertMessage, AlertStatus, TransferEvent
from .retry import RetryPolicy, retry_async

ALERT_TITLE = "\U0001F514 Interaction + ERC20 Transfer"


def format_alert(
    chain: Chain,
    transfer: TransferEvent,
    token_label: str,
    amount: str,
    symbol: str,
    timestamp: datetime,
    interaction_contract: str,
) -> str:
    """
    Build the alert text for one transfer

    Args:
        chain: Chain the transfer happened on
        transfer: The transfer
        token_label: Display label for the token (override or symbol)
        amount: Human readable amount
        symbol: Token symbol
        timestamp: Block or confirmation time
        interaction_contract: The watched contract the transaction called

    Returns:
        str: Multi-line message text
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    when = timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    return "\n".join(
        [
            ALERT_TITLE,
            f"Chain: {chain.name} ({chain.key.value})",
            f"Token: {token_label} ({transfer.token_address})",
            f"Amount: {amount} {symbol}".rstrip(),
            f"From: {transfer.from_address}",
            f"To: {transfer.to_address}",
            f"Tx: {transfer.tx_hash}",
            f"Explorer: {chain.explorer_tx_url(transfer.tx_hash)}",
            f"Timestamp: {when}",
            f"Interaction: {interaction_contract}",
        ]
    )


class AlertDispatcher:
    """
    Delivers alert messages through a notifier with exponential backoff
    """

    def __init__(
        self,
        notifier: Notifier,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def dispatch(self, message: AlertMessage) -> AlertMessage:
        """
        Send one alert, retrying on failure

        Args:
            message: Alert to send; its status, attempts and last_error are updated

        Returns:
            AlertMessage: The same message marked as sent

        Raises:
            DeliveryError: All attempts failed
        """

        def on_failure(attempt: int, error: Exception) -> None:
            message.attempts = attempt
            message.last_error = str(error)

        async def send() -> None:
            await self.notifier.send(message.text)

        try:
            await retry_async(
                send,
                self.retry_policy,
                description=f"Alert delivery for {message.tx_hash}#{message.log_index}",
                on_attempt=on_failure,
                sleep=self._sleep,
            )
        except DeliveryError:
            message.status = AlertStatus.FAILED
            raise

        message.attempts += 1
        message.status = AlertStatus.SENT
        logger.info(
            f"Alert sent for {message.chain.value} {message.tx_hash}#{message.log_index} "
            f"after {message.attempts} attempt(s)"
        )
        return message
