"""Claude Code session backend.

Reads transcripts from ~/.claude/projects/<project>/<session>.jsonl. Each
file is one session; the session id is the file stem.

JSONL entry types:
- "user" or "human": user messages. Content is a string or an array of
  blocks; arrays holding only tool_result blocks are tool output, not prompts.
- "assistant": AI responses, text blocks joined (tool_use / thinking skipped).
- "file-history-snapshot", "progress", "system", "summary": skipped.

Older transcripts put ``role`` / ``content`` at the top level instead of
under ``message``; both shapes are accepted.
"""

import json
import logging
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..config import get_claude_projects_path
from ..core import SOURCE_CLAUDE, Message, Session, parse_iso, utcnow
from ..prompt_utils import detect_slash_command, is_actual_user_prompt, truncate
from ..reader import SessionReader

logger = logging.getLogger(__name__)

LISTING_WINDOW = timedelta(days=30)
SKIPPED_ENTRY_TYPES = ("file-history-snapshot", "progress", "system", "summary", "queue-operation")
HIGHLIGHT_MAX_LENGTH = 200


class ClaudeCodeReader(SessionReader):
    """Reader for Claude Code JSONL transcripts."""

    name = SOURCE_CLAUDE

    def __init__(self, base_path: Path | None = None):
        self._base_path = base_path

    def get_base_path(self) -> Path:
        return self._base_path or get_claude_projects_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def list_sessions(self, now: datetime | None = None) -> list[Session]:
        """Return sessions whose transcript was modified in the last 30 days."""
        cutoff = (now or utcnow()) - LISTING_WINDOW
        sessions = []
        for jsonl_path in self._iter_transcripts():
            try:
                mtime = datetime.fromtimestamp(jsonl_path.stat().st_mtime, tz=timezone.utc)
            except OSError as e:
                logger.debug("Cannot stat %s: %s", jsonl_path, e)
                continue
            if mtime < cutoff:
                continue
            session = self._read_session(jsonl_path, mtime)
            if session:
                sessions.append(session)
        return sessions

    def get_session(self, session_id: str) -> Session | None:
        path = self._find_transcript(session_id)
        if path is None:
            return None
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            mtime = utcnow()
        return self._read_session(path, mtime)

    def get_messages(self, session_id: str) -> list[Message]:
        path = self._find_transcript(session_id)
        if path is None:
            return []
        messages, _ = self._parse_jsonl(path)
        return messages

    # ── Private helpers ──────────────────────────────────────────────

    def _iter_transcripts(self) -> Iterator[Path]:
        base = self.get_base_path()
        if not base.is_dir():
            return
        for project_dir in base.iterdir():
            if not project_dir.is_dir():
                continue
            yield from project_dir.glob("*.jsonl")

    def _find_transcript(self, session_id: str) -> Path | None:
        if not session_id or "/" in session_id or "\\" in session_id:
            return None
        for path in self._iter_transcripts():
            if path.stem == session_id:
                return path
        return None

    def _read_session(self, path: Path, mtime: datetime) -> Session | None:
        messages, cwd = self._parse_jsonl(path)
        timestamps = [m.timestamp for m in messages if m.timestamp]
        start_time = min(timestamps) if timestamps else mtime
        last_activity = max(timestamps) if timestamps else mtime

        workspace_path = cwd or _project_dir_to_path(path.parent.name)
        prompts = [
            m for m in messages
            if m.role == "user"
            and is_actual_user_prompt(m.content)
            and detect_slash_command(m.content) is None
        ]

        highlights = []
        if prompts:
            highlights.append(truncate(prompts[0].content, HIGHLIGHT_MAX_LENGTH))
        last_reply = next((m for m in reversed(messages) if m.role == "assistant"), None)
        if last_reply:
            highlights.append(truncate(last_reply.content, HIGHLIGHT_MAX_LENGTH))

        return Session(
            session_id=path.stem,
            source=SOURCE_CLAUDE,
            workspace_name=Path(workspace_path).name or workspace_path,
            workspace_path=workspace_path,
            start_time=start_time,
            last_activity=last_activity,
            prompt_count=len(prompts),
            highlights=highlights,
        )

    def _parse_jsonl(self, path: Path) -> tuple[list[Message], str | None]:
        """Parse a transcript into messages, returning the first ``cwd`` seen too.

        The file is streamed line by line; malformed lines are skipped.
        """
        messages: list[Message] = []
        cwd = None

        try:
            with path.open(encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.debug("Bad JSON at %s:%d: %s", path, line_num, e)
                        continue
                    if not isinstance(entry, dict):
                        continue

                    if cwd is None and isinstance(entry.get("cwd"), str):
                        cwd = entry["cwd"]

                    msg = self._entry_to_message(entry, f"{path.stem}-{line_num}")
                    if msg:
                        messages.append(msg)
        except OSError as e:
            logger.warning("Failed to read JSONL %s: %s", path, e)

        return messages, cwd

    def _entry_to_message(self, entry: dict, fallback_id: str) -> Message | None:
        """Convert a JSONL entry to a Message, or None for skipped entries."""
        entry_type = entry.get("type", "")
        if entry_type in SKIPPED_ENTRY_TYPES:
            return None

        msg_data = entry.get("message")
        if not isinstance(msg_data, dict):
            msg_data = entry

        role = msg_data.get("role") or entry_type
        if role == "human":
            role = "user"
        if role not in ("user", "assistant"):
            return None

        text = _extract_text(msg_data.get("content"))
        if not text:
            return None

        return Message(
            id=str(entry.get("uuid") or fallback_id),
            role=role,
            content=text,
            timestamp=parse_iso(entry.get("timestamp")),
        )


def _extract_text(content) -> str:
    """Join text blocks; tool_result, tool_use and thinking blocks are dropped."""
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "\n".join(p for p in parts if p.strip()).strip()


def _project_dir_to_path(name: str) -> str:
    """Derive a path from a project folder name: -Users-me-dev-foo -> /Users/me/dev/foo."""
    if name.startswith("-"):
        return name.replace("-", "/")
    return name
