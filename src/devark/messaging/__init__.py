"""The tagged message bus between the UI and the core."""

from .handler import MessageHandler
from .protocol import HANDLER_DEPENDENT_TYPES, Message, MessageType, parse_message

__all__ = ["HANDLER_DEPENDENT_TYPES", "Message", "MessageHandler", "MessageType", "parse_message"]
