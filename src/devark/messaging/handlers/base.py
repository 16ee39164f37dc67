"""Abstract base class for message handlers."""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ...errors import InvalidInputError
from ..protocol import MessageType

if TYPE_CHECKING:
    from ...services import Services

logger = logging.getLogger(__name__)

Sender = Callable[[str, Any], None]
Route = Callable[[dict], Awaitable[None] | None]


class BaseHandler(ABC):
    """Owns a group of message types and answers them through ``send``.

    Subclasses map each owned type to a method in ``routes()``.
    """

    def __init__(self, services: "Services", send: Sender):
        self.services = services
        self._send = send
        self._routes = self.routes()

    @abstractmethod
    def routes(self) -> dict[MessageType, Route]:
        ...

    @property
    def handled_types(self) -> frozenset[MessageType]:
        return frozenset(self._routes)

    async def handle(self, message_type: MessageType, data: Any) -> bool:
        route = self._routes.get(message_type)
        if route is None:
            return False
        result = route(data if isinstance(data, dict) else {})
        if inspect.isawaitable(result):
            await result
        return True

    def send(self, message_type: MessageType | str, data: Any = None) -> None:
        tag = message_type.value if isinstance(message_type, MessageType) else message_type
        self._send(tag, data)


def require(data: dict, key: str) -> Any:
    """Fetch a required, non-empty field from a message payload."""
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidInputError(f"Missing '{key}'")
    return value
