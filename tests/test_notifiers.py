from unittest.mock import AsyncMock

import pytest
from telegram.error import NetworkError

from chainalert.core.base import Notifier
from chainalert.notifiers import LoggerNotifier, TelegramNotifier


def test_notifiers_are_registered():
    assert Notifier._registry["telegram"] is TelegramNotifier
    assert Notifier._registry["logger"] is LoggerNotifier


@pytest.mark.asyncio
async def test_telegram_sends_without_link_preview():
    notifier = TelegramNotifier(bot_token="123:abc", chat_id="-100")
    notifier.bot = AsyncMock()

    await notifier.send("hello")

    kwargs = notifier.bot.send_message.await_args.kwargs
    assert kwargs["chat_id"] == "-100"
    assert kwargs["text"] == "hello"
    assert kwargs["link_preview_options"].is_disabled


@pytest.mark.asyncio
async def test_telegram_errors_propagate():
    notifier = TelegramNotifier(bot_token="123:abc", chat_id="-100")
    notifier.bot = AsyncMock()
    notifier.bot.send_message.side_effect = NetworkError("timed out")

    with pytest.raises(NetworkError):
        await notifier.send("hello")


@pytest.mark.asyncio
async def test_logger_notifier_accepts_any_options():
    await LoggerNotifier(chat_id="ignored").send("hello")
