from ..core.base import Notifier
from ..logger import logger


class LoggerNotifier(Notifier):
    """Writes alerts to the log instead of sending them, for dry runs"""

    __component_name__ = "logger"

    def __init__(self, **kwargs):
        super().__init__()

    async def send(self, text: str) -> None:
        logger.info(f"Alert:\n{text}")
