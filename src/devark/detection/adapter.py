"""Abstract base class for prompt capture adapters."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..core import PromptDetectedEvent

logger = logging.getLogger(__name__)

PromptCallback = Callable[[PromptDetectedEvent], None]


class PromptAdapter(ABC):
    """One AI tool's capture mechanism.

    Adapters share no state. Each one emits events in detection order to
    the callbacks registered with :meth:`on_prompt`.
    """

    source: str

    def __init__(self) -> None:
        self._callbacks: list[PromptCallback] = []
        self._available = False
        self._running = False

    @abstractmethod
    async def initialize(self) -> bool:
        """Prepare the capture mechanism. Return False if the tool is unusable."""
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    def is_available(self) -> bool:
        return self._available

    @property
    def is_running(self) -> bool:
        return self._running

    def on_prompt(self, callback: PromptCallback) -> None:
        self._callbacks.append(callback)

    async def dispose(self) -> None:
        await self.stop()
        self._callbacks.clear()

    def _emit(self, event: PromptDetectedEvent) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Prompt callback failed for %s", self.source)
