"""Helpers for classifying and fingerprinting prompt text."""

import hashlib
import re
import secrets
import time
from dataclasses import dataclass

_SLASH_COMMAND_RE = re.compile(r"^/([a-zA-Z][a-zA-Z0-9_:-]*)(?:\s+(.*))?$")
_LEADING_TOOL_BRACKET_RE = re.compile(r"^\[Tool[^\]]*\]")
_WHITESPACE_RE = re.compile(r"\s+")
_TOOL_PREFIXES = ("[Tool result]", "[Tool:")


@dataclass
class SlashCommand:
    name: str
    arguments: str | None = None


def is_actual_user_prompt(text: str | None) -> bool:
    """Return False for empty text and tool-generated markers.

    A single leading ``[Tool ...]`` bracket is removed first; if nothing is
    left the message was produced by a tool, not typed by the user.
    """
    if not text:
        return False
    trimmed = text.strip()
    if not trimmed:
        return False
    if trimmed.startswith(_TOOL_PREFIXES):
        return False
    remainder = _LEADING_TOOL_BRACKET_RE.sub("", trimmed, count=1).strip()
    return bool(remainder)


def detect_slash_command(text: str | None) -> SlashCommand | None:
    """Parse ``/name args`` commands; namespaced names like ``/a:b`` are allowed."""
    if not text:
        return None
    match = _SLASH_COMMAND_RE.match(text.strip())
    if not match:
        return None
    arguments = match.group(2)
    arguments = arguments.strip() if arguments else None
    return SlashCommand(name=match.group(1), arguments=arguments or None)


def is_slash_command_only(text: str | None) -> bool:
    command = detect_slash_command(text)
    return command is not None and command.arguments is None


def normalize_prompt_text(text: str) -> str:
    """Trim and collapse runs of internal whitespace."""
    return _WHITESPACE_RE.sub(" ", text.strip())


def prompt_fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_prompt_text(text).encode("utf-8")).hexdigest()


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def generate_prompt_id(source: str) -> str:
    return f"{source}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def count_actual_user_prompts(messages) -> int:
    """Count user messages that carry real prompt text."""
    return sum(1 for m in messages if m.role == "user" and is_actual_user_prompt(m.content))
