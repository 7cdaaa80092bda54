from telegram import Bot, LinkPreviewOptions
from telegram.error import TelegramError

from ..core.base import Notifier
from ..errors import ConfigurationError
from ..logger import logger


class TelegramNotifier(Notifier):
    __component_name__ = "telegram"

    def __init__(self, bot_token: str = "", chat_id: str = ""):
        """
        Initialize Telegram notifier

        Args:
            bot_token: Telegram Bot Token
            chat_id: Target chat ID
        """
        super().__init__()
        if not bot_token or not chat_id:
            raise ConfigurationError("Telegram notifier needs bot_token and chat_id")
        self.bot = Bot(token=bot_token)
        self.chat_id = chat_id

    async def send(self, text: str) -> None:
        """
        Send a plain-text message

        Raises:
            TelegramError: Delivery failed; the dispatcher retries
        """
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
        except TelegramError as e:
            logger.warning(f"Failed to send message to Telegram: {e}")
            raise
        logger.debug(f"Sent message to Telegram: {text[:100]}...")

    async def close(self) -> None:
        await self.bot.shutdown()
