"""Unified, read-through view over every session reader."""

import logging
import time
from datetime import datetime

from .core import DurationResult, Message, Session, utcnow
from .duration import calculate_duration
from .errors import DevarkError
from .prompt_utils import count_actual_user_prompts
from .reader import SessionReader

logger = logging.getLogger(__name__)

MEMO_TTL_SECONDS = 1.0


class SessionAggregator:
    """Merge sessions from all readers into one list ordered by last activity.

    The only caching is a memo of the merged list that lives at most
    ``memo_ttl`` seconds, so one UI render pass sees a consistent snapshot.
    """

    def __init__(self, readers: list[SessionReader], memo_ttl: float = MEMO_TTL_SECONDS):
        self.readers = list(readers)
        self.memo_ttl = memo_ttl
        self._memo: list[Session] | None = None
        self._memo_at = 0.0

    @property
    def sources(self) -> list[str]:
        return [r.name for r in self.readers]

    def invalidate(self) -> None:
        self._memo = None

    def list_sessions(
        self,
        source: str | None = None,
        since: datetime | None = None,
        project_path: str | None = None,
    ) -> list[Session]:
        sessions = self._all_sessions()
        if source:
            sessions = [s for s in sessions if s.source == source]
        if since:
            sessions = [s for s in sessions if s.last_activity >= since]
        if project_path:
            sessions = [s for s in sessions if s.workspace_path == project_path]
        return sessions

    def get_session(self, source: str, session_id: str) -> Session | None:
        reader = self._reader_for(source)
        if reader is None:
            return None
        try:
            return reader.get_session(session_id)
        except (DevarkError, OSError) as e:
            logger.error("Failed to read session %s/%s: %s", source, session_id, e)
            return None

    def get_messages(self, source: str, session_id: str) -> list[Message]:
        reader = self._reader_for(source)
        if reader is None:
            return []
        try:
            return reader.get_messages(session_id)
        except (DevarkError, OSError) as e:
            logger.error("Failed to read messages for %s/%s: %s", source, session_id, e)
            return []

    def get_active_session(self, now: datetime | None = None) -> Session | None:
        """Return the most recent session active within the last 5 minutes."""
        now = now or utcnow()
        for session in self._all_sessions():
            if session.is_active(now):
                return session
        return None

    def compute_duration(self, messages: list[Message]) -> DurationResult:
        ordered = sorted(
            (m for m in messages if m.timestamp is not None),
            key=lambda m: m.timestamp,
        )
        return calculate_duration(m.timestamp for m in ordered)

    def get_session_stats(self, source: str, session_id: str) -> dict:
        messages = self.get_messages(source, session_id)
        duration = self.compute_duration(messages)
        return {
            "source": source,
            "sessionId": session_id,
            "messageCount": len(messages),
            "promptCount": count_actual_user_prompts(messages),
            **duration.to_dict(),
        }

    # ── Private helpers ──────────────────────────────────────────────

    def _reader_for(self, source: str) -> SessionReader | None:
        for reader in self.readers:
            if reader.name == source:
                return reader
        return None

    def _all_sessions(self) -> list[Session]:
        now = time.monotonic()
        if self._memo is not None and now - self._memo_at <= self.memo_ttl:
            return list(self._memo)

        merged: dict[tuple[str, str], Session] = {}
        for reader in self.readers:
            try:
                sessions = reader.list_sessions()
            except (DevarkError, OSError) as e:
                logger.error("Failed to list sessions for %s: %s", reader.name, e)
                continue
            for session in sessions:
                existing = merged.get(session.key)
                if existing is None or session.last_activity > existing.last_activity:
                    merged[session.key] = session

        result = sorted(merged.values(), key=lambda s: s.last_activity, reverse=True)
        self._memo = result
        self._memo_at = now
        return list(result)
