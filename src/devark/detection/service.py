"""Unified prompt detection across all registered adapters."""

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core import PromptDetectedEvent
from ..prompt_utils import (
    detect_slash_command,
    generate_prompt_id,
    is_actual_user_prompt,
    normalize_prompt_text,
)
from .adapter import PromptAdapter

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_WINDOW = 2.0

PromptHandler = Callable[[PromptDetectedEvent], object]


@dataclass
class DetectionConfig:
    enabled: bool = True
    auto_analyze: bool = True


class PromptDetectionService:
    """Fan prompts from every adapter out to subscribers, exactly once.

    A prompt with the same source, session and normalized text as one seen
    within ``duplicate_window`` seconds is dropped. Empty prompts, bare
    slash commands and tool-result markers are delivered with
    ``skip_scoring`` set.
    """

    def __init__(self, duplicate_window: float = DEFAULT_DUPLICATE_WINDOW):
        self.duplicate_window = duplicate_window
        self.config = DetectionConfig()
        self._adapters: dict[str, PromptAdapter] = {}
        self._handlers: list[PromptHandler] = []
        self._recent: dict[tuple[str, str, str], float] = {}
        self._tasks: set[asyncio.Task] = set()
        self._initialized = False
        self._running = False

    @property
    def adapters(self) -> list[PromptAdapter]:
        return list(self._adapters.values())

    @property
    def is_running(self) -> bool:
        return self._running

    def register_adapter(self, adapter: PromptAdapter) -> None:
        if adapter.source in self._adapters:
            logger.debug("Adapter %s already registered", adapter.source)
            return
        self._adapters[adapter.source] = adapter
        adapter.on_prompt(self._handle_event)

    async def initialize(self) -> None:
        """Initialize every adapter; one failing leaves the others usable."""
        adapters = self.adapters
        results = await asyncio.gather(
            *(adapter.initialize() for adapter in adapters), return_exceptions=True
        )
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logger.error("Adapter %s failed to initialize: %s", adapter.source, result)
                adapter._available = False
            elif not result:
                logger.info("Adapter %s unavailable", adapter.source)
        self._initialized = True

    async def start(self) -> None:
        if not self._initialized:
            await self.initialize()
        if self._running or not self.config.enabled:
            return
        for adapter in self.adapters:
            if not adapter.is_available():
                continue
            try:
                await adapter.start()
            except Exception:
                logger.exception("Adapter %s failed to start", adapter.source)
        self._running = True

    async def stop(self) -> None:
        for adapter in self.adapters:
            try:
                await adapter.stop()
            except Exception:
                logger.exception("Adapter %s failed to stop", adapter.source)
        self._running = False

    async def update_config(self, enabled: bool | None = None, auto_analyze: bool | None = None) -> None:
        if auto_analyze is not None:
            self.config.auto_analyze = auto_analyze
        if enabled is None or enabled == self.config.enabled:
            return
        self.config.enabled = enabled
        if enabled:
            await self.start()
        else:
            await self.stop()

    def on_prompt_detected(self, handler: PromptHandler) -> Callable[[], None]:
        """Subscribe to prompts. Returns a callable that unsubscribes."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def get_status(self) -> dict:
        return {
            "enabled": self.config.enabled,
            "autoAnalyze": self.config.auto_analyze,
            "running": self._running,
            "adapters": {
                a.source: {"available": a.is_available(), "running": a.is_running}
                for a in self.adapters
            },
        }

    async def dispose(self) -> None:
        await self.stop()
        for adapter in self.adapters:
            await adapter.dispose()
        for task in list(self._tasks):
            task.cancel()
        self._handlers.clear()

    # ── Private helpers ──────────────────────────────────────────────

    def _handle_event(self, event: PromptDetectedEvent) -> None:
        if self._is_duplicate(event):
            logger.debug("Suppressed duplicate prompt from %s/%s", event.source, event.session_id)
            return

        if not event.id:
            event.id = generate_prompt_id(event.source)
        reason = _skip_reason(event.text)
        if reason:
            event.skip_scoring = True
            event.skip_reason = reason

        for handler in list(self._handlers):
            try:
                result = handler(event)
            except Exception:
                logger.exception("Prompt handler failed")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Prompt handler failed: %s", task.exception())

    def _is_duplicate(self, event: PromptDetectedEvent) -> bool:
        now = time.monotonic()
        cutoff = now - self.duplicate_window
        self._recent = {k: t for k, t in self._recent.items() if t >= cutoff}

        key = (event.source, event.session_id, normalize_prompt_text(event.text))
        seen_at = self._recent.get(key)
        self._recent[key] = now
        return seen_at is not None and now - seen_at <= self.duplicate_window


def _skip_reason(text: str) -> str | None:
    if not text or not text.strip():
        return "empty"
    command = detect_slash_command(text)
    if command is not None and command.arguments is None:
        return "slash_command"
    if not is_actual_user_prompt(text):
        return "tool_result"
    return None
