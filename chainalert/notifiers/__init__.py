from .logger import LoggerNotifier
from .telegram import TelegramNotifier

__all__ = ["LoggerNotifier", "TelegramNotifier"]
