"""Cursor session backend.

Reads composer sessions from the ``cursorDiskKV`` table of Cursor's global
``state.vscdb``. Three schema generations are handled:

- Legacy (no ``_v``): messages inline under ``messages``,
  ``conversationHistory`` or ``conversation`` with ``role|type`` and
  ``content|text|message``.
- v9+: ``fullConversationHeadersOnly`` lists ``{bubbleId, type}`` headers
  (type 1 = user, 2 = assistant); the text lives in sibling
  ``bubbleId:{composerId}:{bubbleId}`` rows.
- Mixed: an inline array that exists wins over the headers, even when empty.

All database access is read-only.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path, PurePath
from typing import Any

from ..config import get_cursor_global_db_path
from ..core import SOURCE_CURSOR, Message, Session, ms_to_datetime, parse_iso, utcnow
from ..errors import DevarkError
from ..prompt_utils import truncate
from ..reader import SessionReader
from .cursor_db import CursorDatabase, open_cursor_database

logger = logging.getLogger(__name__)

COMPOSER_PREFIX = "composerData:"
BUBBLE_PREFIX = "bubbleId:"
LEGACY_ARRAY_KEYS = ("messages", "conversationHistory", "conversation")
USER_BUBBLE_TYPE = 1
ASSISTANT_BUBBLE_TYPE = 2
RECENT_WINDOW = timedelta(hours=24)
HIGHLIGHT_MAX_LENGTH = 200
UNKNOWN_WORKSPACE = "Unknown Workspace"


class CursorReader(SessionReader):
    """Reader for Cursor composer sessions."""

    name = SOURCE_CURSOR

    def __init__(self, db_path: Path | None = None, database: CursorDatabase | None = None):
        self._db_path = db_path
        self._database = database

    def get_base_path(self) -> Path:
        return self._db_path or get_cursor_global_db_path()

    def is_available(self) -> bool:
        return self._database is not None or self.get_base_path().is_file()

    def list_sessions(self) -> list[Session]:
        return self.get_active_sessions()

    def get_active_sessions(self, now: datetime | None = None) -> list[Session]:
        """Return composers with activity in the last 24 hours, newest first."""
        now = now or utcnow()
        sessions = [
            s for s in self.get_all_sessions()
            if now - s.last_activity <= RECENT_WINDOW
        ]
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    def get_all_sessions(self) -> list[Session]:
        sessions = []
        for composer_id, data in self.read_composers().items():
            sessions.append(composer_to_session(composer_id, data))
        return sessions

    def get_session(self, session_id: str) -> Session | None:
        with self._open() as db:
            if db is None:
                return None
            data = _load_composer(db, session_id)
        if data is None:
            return None
        return composer_to_session(session_id, data)

    def get_messages(self, session_id: str) -> list[Message]:
        """Return normalized messages, inline first, then v9+ bubbles."""
        with self._open() as db:
            if db is None:
                return []
            data = _load_composer(db, session_id)
            if data is None:
                return []

            messages = extract_inline_messages(session_id, data)
            if messages:
                return messages
            return read_bubble_messages(db, session_id, data)

    def read_composers(self) -> dict[str, dict]:
        """Return every parseable ``composerData:*`` blob keyed by composer id."""
        composers = {}
        with self._open() as db:
            if db is None:
                return {}
            for key, value in db.scan(COMPOSER_PREFIX):
                composer_id = key[len(COMPOSER_PREFIX):]
                data = _parse_json(value, key)
                if isinstance(data, dict):
                    composers[composer_id] = data
        return composers

    # ── Private helpers ──────────────────────────────────────────────

    @contextmanager
    def _open(self) -> Iterator[CursorDatabase | None]:
        """Yield the injected handle, or open and close the file around one read."""
        if self._database is not None:
            yield self._database
            return
        db = open_cursor_database(self.get_base_path())
        try:
            yield db
        finally:
            if db is not None:
                db.close()


def extract_prompt_count(data: dict) -> int:
    """Count user prompts in a composer blob.

    Precedence: ``messages`` -> ``conversationHistory`` -> ``conversation``
    (array length) -> ``fullConversationHeadersOnly`` filtered to type 1 ->
    legacy ``promptCount``.
    """
    for key in LEGACY_ARRAY_KEYS:
        value = data.get(key)
        if isinstance(value, list):
            return len(value)

    headers = data.get("fullConversationHeadersOnly")
    if isinstance(headers, list):
        return sum(
            1 for h in headers
            if isinstance(h, dict) and h.get("type") == USER_BUBBLE_TYPE
        )

    count = data.get("promptCount")
    if isinstance(count, int) and not isinstance(count, bool):
        return max(count, 0)
    return 0


def user_bubble_ids(data: dict) -> list[str]:
    """Return the v9+ bubble ids of user messages, in conversation order."""
    headers = data.get("fullConversationHeadersOnly")
    if not isinstance(headers, list):
        return []
    return [
        str(h["bubbleId"]) for h in headers
        if isinstance(h, dict) and h.get("type") == USER_BUBBLE_TYPE and h.get("bubbleId")
    ]


def composer_last_activity(data: dict) -> datetime | None:
    for field_name in ("lastUpdatedAt", "updatedAt", "createdAt"):
        value = _to_datetime(data.get(field_name))
        if value is not None:
            return value
    return None


def composer_to_session(composer_id: str, data: dict) -> Session:
    last_activity = composer_last_activity(data) or utcnow()
    start_time = _to_datetime(data.get("createdAt")) or last_activity
    if start_time > last_activity:
        start_time = last_activity

    return Session(
        session_id=composer_id,
        source=SOURCE_CURSOR,
        workspace_name=_workspace_name(data),
        workspace_path=_workspace_path(data),
        start_time=start_time,
        last_activity=last_activity,
        prompt_count=extract_prompt_count(data),
        highlights=_highlights(composer_id, data),
    )


def extract_inline_messages(composer_id: str, data: dict) -> list[Message]:
    """Normalize legacy inline messages. Ids are ``{composerId}-{index}``."""
    for key in LEGACY_ARRAY_KEYS:
        raw_messages = data.get(key)
        if not isinstance(raw_messages, list):
            continue
        fallback = composer_last_activity(data)
        messages = []
        for index, raw in enumerate(raw_messages):
            msg = _normalize_raw_message(raw, f"{composer_id}-{index}", fallback, index)
            if msg:
                messages.append(msg)
        return messages
    return []


def read_bubble_messages(db: CursorDatabase, composer_id: str, data: dict) -> list[Message]:
    """Fetch v9+ bubble rows for a composer, in header order when headers exist."""
    fallback = composer_last_activity(data) or utcnow()
    headers = data.get("fullConversationHeadersOnly")

    rows: list[tuple[str, Any]] = []
    if isinstance(headers, list) and headers:
        for header in headers:
            if not isinstance(header, dict) or not header.get("bubbleId"):
                continue
            bubble_id = str(header["bubbleId"])
            raw = db.get(f"{BUBBLE_PREFIX}{composer_id}:{bubble_id}")
            bubble = _parse_json(raw, bubble_id) if raw else None
            if not isinstance(bubble, dict):
                continue
            bubble.setdefault("type", header.get("type"))
            rows.append((bubble_id, bubble))
    else:
        prefix = f"{BUBBLE_PREFIX}{composer_id}:"
        for key, raw in db.scan(prefix):
            bubble = _parse_json(raw, key)
            if isinstance(bubble, dict):
                rows.append((key[len(prefix):], bubble))

    messages = []
    for index, (bubble_id, bubble) in enumerate(rows):
        content = _content_of(bubble)
        if not content:
            continue
        role = "assistant" if _is_assistant(bubble) else "user"
        timestamp = _to_datetime(bubble.get("createdAt")) or _to_datetime(bubble.get("timestamp"))
        if timestamp is None:
            timestamp = fallback + timedelta(milliseconds=index)
        messages.append(Message(
            id=bubble_id,
            role=role,
            content=content,
            timestamp=timestamp,
            bubble_id=bubble_id,
        ))
    return messages


def read_bubble_text(db: CursorDatabase, composer_id: str, bubble_id: str) -> str | None:
    raw = db.get(f"{BUBBLE_PREFIX}{composer_id}:{bubble_id}")
    bubble = _parse_json(raw, bubble_id) if raw else None
    if not isinstance(bubble, dict):
        return None
    return _content_of(bubble) or None


# ── Module helpers ───────────────────────────────────────────────


def _load_composer(db: CursorDatabase, composer_id: str) -> dict | None:
    try:
        raw = db.get(f"{COMPOSER_PREFIX}{composer_id}")
    except DevarkError as e:
        logger.warning("Failed to read composer %s: %s", composer_id, e)
        return None
    if not raw:
        return None
    data = _parse_json(raw, composer_id)
    return data if isinstance(data, dict) else None


def _parse_json(raw: str | None, label: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("Malformed JSON for %s: %s", label, e)
        return None


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return ms_to_datetime(value)
    return parse_iso(value)


def _content_of(raw: dict) -> str:
    for field_name in ("content", "text", "message"):
        value = raw.get(field_name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _is_assistant(raw: dict) -> bool:
    return (
        raw.get("role") == "assistant"
        or raw.get("type") == ASSISTANT_BUBBLE_TYPE
        or raw.get("type") == "assistant"
    )


def _normalize_raw_message(
    raw: Any, fallback_id: str, fallback_time: datetime | None, index: int
) -> Message | None:
    if not isinstance(raw, dict) or raw.get("role") == "system":
        return None

    content = _content_of(raw)
    if not content:
        return None

    timestamp = _to_datetime(raw.get("timestamp"))
    if timestamp is None and fallback_time is not None:
        timestamp = fallback_time + timedelta(milliseconds=index)

    bubble_id = raw.get("bubbleId")
    return Message(
        id=str(bubble_id or raw.get("id") or fallback_id),
        role="assistant" if _is_assistant(raw) else "user",
        content=content,
        timestamp=timestamp,
        bubble_id=str(bubble_id) if bubble_id else None,
    )


def _workspace_name(data: dict) -> str:
    if data.get("workspaceName"):
        return str(data["workspaceName"])
    if data.get("workspace"):
        return str(data["workspace"])
    if data.get("workspacePath"):
        return PurePath(str(data["workspacePath"])).name
    return UNKNOWN_WORKSPACE


def _workspace_path(data: dict) -> str | None:
    if data.get("workspacePath"):
        return str(data["workspacePath"])
    if isinstance(data.get("workspace"), str):
        return data["workspace"]
    return None


def _highlights(composer_id: str, data: dict) -> list[str]:
    """First user prompt and last assistant reply, from inline messages only."""
    messages = [m for m in extract_inline_messages(composer_id, data) if len(m.content) >= 10]
    highlights = []
    first_user = next((m for m in messages if m.role == "user"), None)
    last_assistant = next((m for m in reversed(messages) if m.role == "assistant"), None)
    for msg in (first_user, last_assistant):
        if msg:
            highlights.append(truncate(msg.content, HIGHLIGHT_MAX_LENGTH))
    return highlights
