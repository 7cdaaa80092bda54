import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..errors import DeliveryError
from ..logger import logger

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff parameters"""

    max_attempts: int = Field(5, ge=1)
    base_delay: float = Field(0.5, ge=0)  # seconds
    max_delay: float = Field(8.0, ge=0)
    multiplier: float = Field(2.0, ge=1)

    model_config = {"frozen": True}

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)"""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
    on_attempt: Optional[Callable[[int, Exception], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation with exponential backoff

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry policy
        description: Name used in log lines
        on_attempt: Called with (attempt, error) after each failure
        sleep: Sleep function, replaceable in tests

    Returns:
        The operation's result

    Raises:
        DeliveryError: All attempts failed; the last error is chained
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if on_attempt:
                on_attempt(attempt, e)
            if attempt == policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)

    logger.error(f"{description} failed after {policy.max_attempts} attempts: {last_error}")
    raise DeliveryError(str(last_error)) from last_error
