"""Prompt capture for Cursor and Claude Code."""

from .adapter import PromptAdapter
from .claude_code import ClaudeCodeAdapter
from .cursor import CursorAdapter
from .service import PromptDetectionService

__all__ = ["ClaudeCodeAdapter", "CursorAdapter", "PromptAdapter", "PromptDetectionService"]
