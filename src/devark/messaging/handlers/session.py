"""Session list, active session, per-session prompts and context."""

from ...core import Session
from ...errors import InvalidInputError
from ...prompt_utils import is_actual_user_prompt, truncate
from ..protocol import MessageType as T
from .base import BaseHandler, require

SESSION_META_KEY = "devark.sessionMeta"
DEFAULT_PAGE_SIZE = 20
CONTEXT_PROMPT_COUNT = 3


class SessionHandler(BaseHandler):
    """Reads through the aggregator; local renames and hides live in ``devark.sessionMeta``."""

    def __init__(self, services, send):
        super().__init__(services, send)
        self._selected: tuple[str, str] | None = None

    def routes(self):
        return {
            T.V2_GET_ACTIVE_SESSION: self.get_active_session,
            T.SWITCH_SESSION: self.switch_session,
            T.MARK_SESSION_AS_READ: self.mark_as_read,
            T.V2_GET_SESSION_LIST: self.get_session_list,
            T.V2_GET_PROMPTS: self.get_prompts,
            T.LOAD_MORE_PROMPTS: self.get_prompts,
            T.V2_GET_DAILY_STATS: self.get_daily_stats,
            T.RENAME_SESSION: self.rename_session,
            T.DELETE_SESSION: self.delete_session,
            T.V2_GET_SESSION_CONTEXT: self.get_session_context,
            T.V2_GET_CONTEXT_SUMMARY: self.get_context_summary,
            T.GET_SESSION_MESSAGES: self.get_session_messages,
        }

    def get_active_session(self, data: dict) -> None:
        session = self._current_session()
        self.send(T.V2_ACTIVE_SESSION, {
            "session": self._session_dict(session) if session else None,
            "selected": self._selected is not None,
        })

    def switch_session(self, data: dict) -> None:
        source, session_id = require(data, "source"), require(data, "sessionId")
        if self.services.aggregator.get_session(source, session_id) is None:
            raise InvalidInputError(f"Unknown session: {source}/{session_id}")
        self._selected = (source, session_id)
        self.get_active_session(data)

    def mark_as_read(self, data: dict) -> None:
        self._update_meta(require(data, "source"), require(data, "sessionId"), read=True)
        self.get_session_list(data)

    def get_session_list(self, data: dict) -> None:
        meta = self._meta()
        sessions = [
            s for s in self.services.aggregator.list_sessions(source=data.get("source"))
            if not meta.get(_meta_key(s.source, s.session_id), {}).get("hidden")
        ]
        limit = data.get("limit")
        if isinstance(limit, int) and limit > 0:
            sessions = sessions[:limit]
        self.send(T.V2_SESSION_LIST, {"sessions": [self._session_dict(s, meta) for s in sessions]})

    def get_prompts(self, data: dict) -> None:
        history = self.services.history
        session_id = data.get("sessionId")
        prompts = history.get_for_session(session_id) if session_id else history.get_all()
        offset = max(0, int(data.get("offset", 0)))
        limit = max(1, int(data.get("limit", DEFAULT_PAGE_SIZE)))
        page = prompts[offset:offset + limit]
        self.send(T.V2_PROMPTS, {
            "prompts": [p.to_dict() for p in page],
            "total": len(prompts),
            "offset": offset,
            "hasMore": offset + limit < len(prompts),
        })

    def get_daily_stats(self, data: dict) -> None:
        self.send(T.V2_DAILY_STATS, self.services.history.get_daily_stats().to_dict())

    def rename_session(self, data: dict) -> None:
        source, session_id = require(data, "source"), require(data, "sessionId")
        name = require(data, "name").strip()
        self._update_meta(source, session_id, name=name)
        self.send(T.SESSION_RENAMED, {"source": source, "sessionId": session_id, "name": name})

    def delete_session(self, data: dict) -> None:
        """Hide a session locally; transcripts on disk belong to the AI tool."""
        source, session_id = require(data, "source"), require(data, "sessionId")
        self._update_meta(source, session_id, hidden=True)
        if self._selected == (source, session_id):
            self._selected = None
        self.send(T.SESSION_DELETED, {"source": source, "sessionId": session_id})

    def get_session_context(self, data: dict) -> None:
        session = self._session_from(data)
        if session is None:
            self.send(T.V2_SESSION_CONTEXT, {"session": None})
            return
        aggregator = self.services.aggregator
        messages = aggregator.get_messages(session.source, session.session_id)
        user_prompts = [m for m in messages if m.role == "user" and is_actual_user_prompt(m.content)]
        self.send(T.V2_SESSION_CONTEXT, {
            "session": self._session_dict(session),
            "stats": aggregator.get_session_stats(session.source, session.session_id),
            "firstPrompts": [truncate(m.content, 200) for m in user_prompts[:CONTEXT_PROMPT_COUNT]],
            "lastPrompts": [truncate(m.content, 200) for m in user_prompts[-CONTEXT_PROMPT_COUNT:]],
        })

    def get_context_summary(self, data: dict) -> None:
        session = self._session_from(data)
        summary = {"session": None, "goal": self.services.goals.get_status()}
        if session is not None:
            stats = self.services.aggregator.get_session_stats(session.source, session.session_id)
            scored = self.services.history.get_for_session(session.session_id)
            summary.update({
                "session": self._session_dict(session),
                "promptCount": stats["promptCount"],
                "durationMinutes": stats["durationSeconds"] // 60,
                "averageScore": round(sum(p.score for p in scored) / len(scored), 1) if scored else None,
            })
        self.send(T.V2_CONTEXT_SUMMARY, summary)

    def get_session_messages(self, data: dict) -> None:
        source, session_id = require(data, "source"), require(data, "sessionId")
        messages = self.services.aggregator.get_messages(source, session_id)
        self.send(T.SESSION_MESSAGES, {
            "source": source,
            "sessionId": session_id,
            "messages": [m.to_dict() for m in messages],
            "duration": self.services.aggregator.compute_duration(messages).to_dict(),
        })

    # ── Private helpers ──────────────────────────────────────────────

    def _current_session(self) -> Session | None:
        if self._selected is not None:
            session = self.services.aggregator.get_session(*self._selected)
            if session is not None:
                return session
            self._selected = None
        return self.services.aggregator.get_active_session()

    def _session_from(self, data: dict) -> Session | None:
        if data.get("source") and data.get("sessionId"):
            return self.services.aggregator.get_session(data["source"], data["sessionId"])
        return self._current_session()

    def _meta(self) -> dict:
        meta = self.services.kv.get(SESSION_META_KEY, {}) or {}
        return meta if isinstance(meta, dict) else {}

    def _update_meta(self, source: str, session_id: str, **changes) -> None:
        meta = self._meta()
        meta.setdefault(_meta_key(source, session_id), {}).update(changes)
        self.services.kv.update(SESSION_META_KEY, meta)

    def _session_dict(self, session: Session, meta: dict | None = None) -> dict:
        entry = (meta if meta is not None else self._meta()).get(_meta_key(session.source, session.session_id), {})
        body = session.to_dict()
        body["displayName"] = entry.get("name") or session.workspace_name
        body["read"] = bool(entry.get("read"))
        return body


def _meta_key(source: str, session_id: str) -> str:
    return f"{source}:{session_id}"
