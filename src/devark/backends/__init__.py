"""Auto-detect installed AI tools and provide their session readers."""

import logging

from ..reader import SessionReader
from .claude_code import ClaudeCodeReader
from .cursor import CursorReader

logger = logging.getLogger(__name__)


def get_available_readers() -> list[SessionReader]:
    """Auto-detect which tools are installed and return their readers."""
    readers = []
    for ReaderClass in [CursorReader, ClaudeCodeReader]:
        try:
            reader = ReaderClass()
            if reader.is_available():
                readers.append(reader)
        except OSError as e:
            logger.debug("Skipping %s: %s", ReaderClass.__name__, e)
            continue
    return readers
