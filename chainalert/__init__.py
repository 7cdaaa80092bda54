"""
chainalert - interaction-scoped ERC20 transfer alerts

Importing the package registers the built-in collectors and notifiers.
"""
from . import collectors, notifiers  # noqa: F401
from .config import Config
from .core.builder import AlertServiceBuilder
from .core.service import AlertService

__all__ = ["AlertService", "AlertServiceBuilder", "Config"]
