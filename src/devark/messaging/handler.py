"""Routes UI messages to feature handlers and pushes core events back.

Handler-dependent messages that arrive before ``initialize()`` are queued
and replayed in arrival order once the handlers exist. Anything else with
an unrecognized tag gets a warning and an ``error`` reply.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from ..core import PromptDetectedEvent
from ..errors import DevarkError, InvalidInputError, error_payload
from .handlers import BaseHandler, build_handlers
from .protocol import HANDLER_DEPENDENT_TYPES, Message, MessageType, parse_message

if TYPE_CHECKING:
    from ..services import Services

logger = logging.getLogger(__name__)

T = MessageType

DESTRUCTIVE_TYPES = {
    T.CLEAR_PROMPT_HISTORY: "Delete all analyzed prompts and today's stats?",
    T.CLEAR_LOCAL_DATA: "Delete all local devark data (history, saved prompts, goals)?",
    T.LOGOUT: "Sign out of devark? Cloud sync stops until you sign in again.",
}
EDITOR_NAME = "devark"


class MessageHandler:
    def __init__(self, services: "Services", sender: Callable[[str, Any], None]):
        self.services = services
        self._sender = sender
        self._handlers: list[BaseHandler] = []
        self._queue: list[Message] = []
        self._initialized = False
        self._disposed = False
        self._unsubscribers: list[Callable[[], None]] = []
        self.current_tab: str | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def send(self, message_type: str, data: Any = None) -> None:
        if self._disposed:
            return
        try:
            self._sender(message_type, data)
        except Exception:
            logger.exception("Failed to deliver %s", message_type)

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._handlers = build_handlers(self.services, self.send)
        self._subscribe()
        self._initialized = True
        logger.info("Message handler ready with %d handlers", len(self._handlers))

        queued, self._queue = self._queue, []
        for message in queued:
            await self._dispatch(message)

    async def handle_message(self, raw: Any) -> None:
        if self._disposed:
            return
        try:
            message = parse_message(raw)
        except InvalidInputError as e:
            logger.warning("Rejected message: %s", e)
            self.send(T.ERROR.value, e.to_dict())
            return

        if not self._initialized and message.type in HANDLER_DEPENDENT_TYPES:
            logger.debug("Queued %s until handlers are ready", message.type.value)
            self._queue.append(message)
            return
        await self._dispatch(message)

    def dispose(self) -> None:
        self._disposed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._queue.clear()

    # ── Private helpers ──────────────────────────────────────────────

    async def _dispatch(self, message: Message) -> None:
        data = message.data if isinstance(message.data, dict) else {}
        try:
            if await self._handle_top_level(message.type, data):
                return
            if message.type in DESTRUCTIVE_TYPES and data.get("confirmed") is not True:
                self.send(T.CONFIRMATION_REQUIRED.value, {
                    "action": message.type.value,
                    "message": DESTRUCTIVE_TYPES[message.type],
                })
                return
            for handler in self._handlers:
                if await handler.handle(message.type, data):
                    return
        except DevarkError as e:
            logger.warning("%s failed: %s", message.type.value, e)
            self.send(T.ERROR.value, {**error_payload(e), "type": message.type.value})
            return
        except Exception as e:
            logger.exception("%s failed", message.type.value)
            self.send(T.ERROR.value, {**error_payload(e), "type": message.type.value})
            return

        logger.warning("Unknown message type: %s", message.type.value)
        self.send(T.ERROR.value, {
            "name": InvalidInputError.name,
            "message": f"Unknown message type: {message.type.value}",
            "type": message.type.value,
        })

    async def _handle_top_level(self, message_type: MessageType, data: dict) -> bool:
        if message_type == T.CANCEL_LOADING:
            cancelled = self.services.scoring.cancel_loading()
            self.send(T.LOADING_CANCELLED.value, {"cancelled": cancelled})
        elif message_type == T.TAB_CHANGED:
            self.current_tab = data.get("tab")
        elif message_type == T.GET_EDITOR_INFO:
            self.send(T.EDITOR_INFO.value, {"name": EDITOR_NAME, "tab": self.current_tab})
        elif message_type == T.OPEN_EXTERNAL:
            url = data.get("url", "")
            if urlparse(url).scheme not in ("http", "https"):
                raise InvalidInputError(f"Refusing to open {url!r}")
            self.send(T.OPEN_EXTERNAL.value, {"url": url})
        elif message_type == T.TEST:
            self.send(T.TEST_RESPONSE.value, {"received": data})
        else:
            return False
        return True

    def _subscribe(self) -> None:
        services = self.services

        def on_prompt(event: PromptDetectedEvent) -> None:
            self.send(T.NEW_PROMPTS_DETECTED.value, {"prompts": [event.to_dict()]})

        def on_scoring(event_type: str, data: dict) -> None:
            self.send(event_type, data)

        def on_history() -> None:
            self.send(T.PROMPT_HISTORY_LOADED.value, {
                "prompts": [p.to_dict() for p in services.history.get_all()],
                "dailyStats": services.history.get_daily_stats().to_dict(),
            })

        self._unsubscribers = [
            services.detection.on_prompt_detected(on_prompt),
            services.scoring.on_event(on_scoring),
            services.history.on_change(on_history),
        ]
