from abc import ABC, abstractmethod
from typing import AsyncIterable, ClassVar, Dict, Type, TypeVar

from ..logger import logger
from .events import Event

T = TypeVar("T", bound="Component")


class Component(ABC):
    """All components base class"""

    _registry: ClassVar[Dict[str, Type[T]]] = {}
    _component_name: str = None

    def __init_subclass__(cls, **kwargs):
        """
        This method is called automatically when a subclass is created
        Only classes with explicitly set __component_name__ will be registered
        """
        super().__init_subclass__(**kwargs)

        component_name = getattr(cls, "__component_name__", None)
        if component_name:
            # Find the nearest base class with its own registry
            for base in cls.__mro__[1:]:
                if "_registry" in base.__dict__:
                    base._registry[component_name] = cls
                    cls._component_name = component_name
                    break

    @classmethod
    def create(cls: Type[T], name: str, **kwargs) -> T:
        """
        Create component instance

        Args:
            name: Component name
            **kwargs: Component initialization parameters

        Returns:
            Component: Component instance

        Raises:
            ValueError: Component not registered
        """
        if name not in cls._registry:
            raise ValueError(f"No {cls.__name__} registered with name: {name}")

        try:
            component_class = cls._registry[name]
            return component_class(**kwargs)
        except Exception as e:
            logger.error(f"Error creating component {name}: {e}")
            raise

    @classmethod
    @abstractmethod
    def config_prefix(cls) -> str:
        """Configuration prefix"""
        pass

    @property
    def name(self) -> str:
        """Component name"""
        return self._component_name


class Collector(Component):
    """Collector base class"""

    _registry: ClassVar[Dict[str, Type["Collector"]]] = {}

    def __init__(self):
        self._running = False
        self._started = False

    @classmethod
    def config_prefix(cls) -> str:
        return "collectors"

    async def start(self):
        """Start collector"""
        if self._started:
            return
        try:
            self._started = True
            self._running = True
            await self._start()
            logger.info(f"Collector {self.name} started")
        except Exception as e:
            self._started = False
            self._running = False
            logger.error(f"Error starting collector {self.name}: {e}")
            raise

    async def stop(self):
        """Stop collector"""
        if not self._started:
            return
        try:
            self._running = False
            await self._stop()
            self._started = False
            logger.info(f"Collector {self.name} stopped")
        except Exception as e:
            logger.error(f"Error stopping collector {self.name}: {e}")
            raise

    async def _start(self):
        """Subclasses can override this method to implement custom startup logic"""
        pass

    async def _stop(self):
        """Subclasses can override this method to implement custom shutdown logic"""
        pass

    @property
    def is_running(self) -> bool:
        """Whether the collector is running"""
        return self._running

    @abstractmethod
    async def events(self) -> AsyncIterable[Event]:
        """Generate event stream"""
        pass


class Notifier(Component):
    """
    Outbound messaging channel

    ``send`` delivers one plain-text message and raises on failure so that
    the dispatcher's retry policy can act on it.
    """

    _registry: ClassVar[Dict[str, Type["Notifier"]]] = {}

    @classmethod
    def config_prefix(cls) -> str:
        return "notifier"

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send a message"""
        pass

    async def close(self) -> None:
        """Release any client resources"""
        pass
