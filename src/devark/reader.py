"""Abstract base class for session readers."""

from abc import ABC, abstractmethod
from pathlib import Path

from .core import Message, Session


class SessionReader(ABC):
    """Base class for AI tool session backends.

    Each backend (Cursor, Claude Code) implements this interface to give the
    aggregator read-only access to that tool's on-disk sessions.
    """

    name: str  # "cursor", "claude"

    @abstractmethod
    def get_base_path(self) -> Path:
        """Return the file or directory where this tool stores session data."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this tool's data exists on this machine."""
        ...

    @abstractmethod
    def list_sessions(self) -> list[Session]:
        """Return recent sessions for this source."""
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> Session | None:
        """Return a single session by id, regardless of age."""
        ...

    @abstractmethod
    def get_messages(self, session_id: str) -> list[Message]:
        """Return all messages for a given session ID."""
        ...
