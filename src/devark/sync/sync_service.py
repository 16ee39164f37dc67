"""Idempotent upload of local sessions to the devark cloud."""

import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..aggregator import SessionAggregator
from ..core import Message, Session, to_iso, utcnow
from ..errors import DevarkError, InvalidInputError
from ..storage.kv import KeyValueStore
from ..storage.tokens import TokenStore
from .api_client import ApiClient
from .payload import build_session_payload, project_name, session_fingerprint

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = "devark.syncState"
STATUS_CACHE_SECONDS = 10.0

NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
TOKEN_INVALID = "TOKEN_INVALID"
UPLOAD_FAILED = "UPLOAD_FAILED"
CANCELLED = "CANCELLED"
SYNC_FAILED = "SYNC_FAILED"

STATE_IDLE = "idle"
STATE_SYNCING = "syncing"
STATE_SUCCESS = "success"
STATE_PARTIAL = "partial"
STATE_FAILED = "failed"
TERMINAL_STATES = (STATE_SUCCESS, STATE_PARTIAL, STATE_FAILED)

ProgressCallback = Callable[[int, int, dict], Any]


@dataclass
class SyncResult:
    success: bool
    sessions_uploaded: int = 0
    sessions_failed: int = 0
    sessions_skipped: int = 0
    projects_synced: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sessionsUploaded": self.sessions_uploaded,
            "sessionsFailed": self.sessions_failed,
            "sessionsSkipped": self.sessions_skipped,
            "projectsSynced": list(self.projects_synced),
            "errors": list(self.errors),
        }


@dataclass
class _Candidate:
    session: Session
    messages: list[Message]

    @property
    def project(self) -> str:
        if self.session.workspace_path:
            return project_name(self.session.workspace_path)
        return self.session.workspace_name


class SyncService:
    """Uploads sessions the backend has not yet acknowledged.

    Status moves ``idle -> syncing -> success|partial|failed -> idle``. A
    terminal state is reported by the next status read and then returns
    to idle. Status reads are cached for 10 seconds so UI refreshes do not
    hit the backend.
    """

    def __init__(
        self,
        aggregator: SessionAggregator,
        api: ApiClient,
        tokens: TokenStore,
        kv: KeyValueStore,
        status_ttl: float = STATUS_CACHE_SECONDS,
    ):
        self.aggregator = aggregator
        self.api = api
        self.tokens = tokens
        self.kv = kv
        self.status_ttl = status_ttl
        self.state = STATE_IDLE
        self._cancel_requested = False
        self._status_cache: tuple[float, dict] | None = None

    def preview(
        self,
        projects: list[str] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[dict]:
        """The sessions a sync with these filters would consider, without uploading."""
        return [
            {
                "source": c.session.source,
                "sessionId": c.session.session_id,
                "projectName": c.project,
                "lastActivity": to_iso(c.session.last_activity),
                "messageCount": len(c.messages),
                "promptCount": c.session.prompt_count,
            }
            for c in self._candidates(projects, since, until)
        ]

    def cancel(self) -> None:
        if self.state == STATE_SYNCING:
            self._cancel_requested = True

    async def sync(
        self,
        projects: list[str] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
        sessions: list[tuple[str, str]] | None = None,
    ) -> SyncResult:
        """Upload candidate sessions, optionally limited to ``(source, session_id)`` pairs."""
        if self.state == STATE_SYNCING:
            raise InvalidInputError("A sync is already running")
        self._cancel_requested = False
        self._set_state(STATE_SYNCING)
        try:
            result = await self._run(projects, since, until, force, on_progress, sessions)
        except Exception:
            self._set_state(STATE_FAILED)
            raise
        self._record(result)
        return result

    async def get_sync_status(self) -> dict:
        now = time.monotonic()
        if self._status_cache is not None and now - self._status_cache[0] <= self.status_ttl:
            return self._status_cache[1]

        stored = self.kv.get(SYNC_STATE_KEY, {}) or {}
        authenticated = self.tokens.has_token()
        last_session_date = None
        if authenticated:
            try:
                last_session_date = await self.api.get_last_session_date()
            except DevarkError as e:
                logger.debug("Could not fetch last session date: %s", e)

        status = {
            "status": self.state,
            "isAuthenticated": authenticated,
            "lastSyncTime": stored.get("lastSyncTime"),
            "totalUploaded": stored.get("totalUploaded", 0),
            "lastResult": stored.get("lastResult"),
            "lastSessionDate": last_session_date,
        }
        if self.state in TERMINAL_STATES:
            self.state = STATE_IDLE
        self._status_cache = (now, status)
        return status

    # ── Private helpers ──────────────────────────────────────────────

    async def _run(self, projects, since, until, force, on_progress, only=None) -> SyncResult:
        if not self.tokens.has_token():
            return _failure(NOT_AUTHENTICATED, "Sign in to devark before syncing")
        try:
            verification = await self.api.verify_token()
        except DevarkError as e:
            logger.error("Token verification failed: %s", e)
            return _failure(SYNC_FAILED, str(e))
        if not verification.get("valid"):
            return _failure(TOKEN_INVALID, "The stored devark token was rejected")

        candidates = self._candidates(projects, since, until)
        if only is not None:
            wanted = set(only)
            candidates = [c for c in candidates if c.session.key in wanted]
        fingerprints = [session_fingerprint(c.session, c.messages) for c in candidates]
        if force:
            known: set[tuple[str, str, str]] = set()
        else:
            try:
                known = await self.api.get_known_sessions(fingerprints)
            except DevarkError as e:
                logger.error("Known-session query failed: %s", e)
                return _failure(SYNC_FAILED, str(e))

        pending = [
            c for c, fp in zip(candidates, fingerprints)
            if (fp["source"], fp["sessionId"], fp["lastMessageHash"]) not in known
        ]
        result = SyncResult(success=True, sessions_skipped=len(candidates) - len(pending))
        logger.info("Sync: %d candidates, %d to upload", len(candidates), len(pending))

        for index, candidate in enumerate(pending, start=1):
            if self._cancel_requested:
                result.errors.append({"code": CANCELLED, "message": "Sync cancelled"})
                result.success = False
                break
            session = candidate.session
            try:
                duration = self.aggregator.compute_duration(candidate.messages)
                await self.api.upload_session(build_session_payload(session, candidate.messages, duration))
            except DevarkError as e:
                logger.warning("Upload failed for %s/%s: %s", session.source, session.session_id, e)
                result.sessions_failed += 1
                result.success = False
                result.errors.append({
                    "code": UPLOAD_FAILED,
                    "message": str(e),
                    "sessionId": session.session_id,
                })
            else:
                result.sessions_uploaded += 1
                if candidate.project not in result.projects_synced:
                    result.projects_synced.append(candidate.project)
            if on_progress is not None:
                outcome = on_progress(index, len(pending), {"sessionId": session.session_id})
                if inspect.isawaitable(outcome):
                    await outcome
        return result

    def _candidates(self, projects, since, until) -> list[_Candidate]:
        wanted = set(projects) if projects else None
        candidates = []
        for session in self.aggregator.list_sessions(since=since):
            if until is not None and session.start_time > until:
                continue
            candidate = _Candidate(session, [])
            if wanted is not None and not (
                candidate.project in wanted or session.workspace_path in wanted
            ):
                continue
            candidate.messages = self.aggregator.get_messages(session.source, session.session_id)
            if candidate.messages:
                candidates.append(candidate)
        return candidates

    def _set_state(self, state: str) -> None:
        self.state = state
        self._status_cache = None

    def _record(self, result: SyncResult) -> None:
        if result.success:
            final = STATE_SUCCESS
        elif result.sessions_uploaded:
            final = STATE_PARTIAL
        else:
            final = STATE_FAILED
        stored = self.kv.get(SYNC_STATE_KEY, {}) or {}
        self.kv.update(SYNC_STATE_KEY, {
            "lastSyncTime": to_iso(utcnow()),
            "totalUploaded": stored.get("totalUploaded", 0) + result.sessions_uploaded,
            "lastResult": result.to_dict(),
        })
        self._set_state(final)


def _failure(code: str, message: str) -> SyncResult:
    return SyncResult(success=False, errors=[{"code": code, "message": message}])
