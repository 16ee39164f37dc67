"""Cursor prompt capture by polling ``state.vscdb``.

Every poll reads all ``composerData:*`` rows and compares each composer
with the snapshot taken on the previous poll:

- known composer, user-prompt count went up: the new v9+ bubble ids name
  the new prompts (text fetched from the bubble rows); legacy composers
  yield their trailing inline user messages;
- unknown composer updated in the last 10 seconds: one new prompt, the
  most recent user bubble.

The first poll only seeds the snapshot. Snapshots not updated for 24 hours
are dropped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from ..backends.cursor import (
    COMPOSER_PREFIX,
    composer_last_activity,
    extract_inline_messages,
    extract_prompt_count,
    read_bubble_text,
    user_bubble_ids,
)
from ..backends.cursor_db import CursorDatabase, SQLiteCursorDatabase
from ..config import get_cursor_global_db_path
from ..core import SOURCE_CURSOR, PromptDetectedEvent, utcnow
from ..errors import DevarkError, PermanentIOError
from ..prompt_utils import generate_prompt_id
from .adapter import PromptAdapter
from .ignore_paths import should_ignore_path

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0
NEW_COMPOSER_WINDOW = timedelta(seconds=10)
SNAPSHOT_MAX_AGE = timedelta(hours=24)
MAX_CONSECUTIVE_FAILURES = 3


@dataclass
class ComposerSnapshot:
    prompt_count: int
    bubble_ids: list[str] = field(default_factory=list)
    updated_at: datetime | None = None
    inline_user_count: int = 0


class CursorAdapter(PromptAdapter):
    """Polls Cursor's global database for new user prompts."""

    source = SOURCE_CURSOR

    def __init__(
        self,
        db_path: Path | None = None,
        database: CursorDatabase | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        super().__init__()
        self.db_path = db_path or get_cursor_global_db_path()
        self.poll_interval = poll_interval
        self._database = database
        self._snapshots: dict[str, ComposerSnapshot] = {}
        self._seeded = False
        self._failures = 0
        self._logged_unavailable = False
        self._task: asyncio.Task | None = None

    async def initialize(self) -> bool:
        if self._database is not None:
            self._available = True
            return True
        try:
            db = SQLiteCursorDatabase(self.db_path) if self.db_path.is_file() else None
        except PermanentIOError as e:
            self._mark_unavailable(str(e))
            return False
        if db is None:
            self._mark_unavailable(f"Cursor database not found at {self.db_path}")
            return False
        db.close()
        self._available = True
        return True

    async def start(self) -> None:
        if self._running or not self._available:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Cursor adapter polling every %.1fs", self.poll_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def poll_once(self, now: datetime | None = None) -> list[PromptDetectedEvent]:
        """Run one poll and emit (and return) the prompts it found."""
        try:
            events = self._scan(now or utcnow())
        except DevarkError as e:
            self._record_failure(e)
            return []
        self._dispatch(events)
        return events

    # ── Private helpers ──────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                events = await asyncio.to_thread(self._scan, utcnow())
            except DevarkError as e:
                self._record_failure(e)
            except Exception as e:
                logger.exception("Cursor poll failed unexpectedly")
                self._record_failure(e)
            else:
                self._dispatch(events)
            await asyncio.sleep(self.poll_interval)

    def _scan(self, now: datetime) -> list[PromptDetectedEvent]:
        """Diff every composer against the snapshots.

        Snapshots are committed only after the whole scan succeeds; a failed
        scan leaves them untouched.
        """
        events: list[PromptDetectedEvent] = []
        pending: dict[str, ComposerSnapshot] = {}
        db = self._database or self._open()
        try:
            for composer_id, data in self._read_composers(db).items():
                events.extend(self._diff_composer(db, composer_id, data, now, pending))
        finally:
            if db is not self._database:
                db.close()

        self._snapshots.update(pending)
        self._seeded = True
        self._evict(now)
        return events

    def _dispatch(self, events: list[PromptDetectedEvent]) -> None:
        self._failures = 0
        for event in events:
            self._emit(event)

    def _open(self) -> CursorDatabase:
        return SQLiteCursorDatabase(self.db_path)

    def _read_composers(self, db: CursorDatabase) -> dict[str, dict]:
        composers = {}
        for key, value in db.scan(COMPOSER_PREFIX):
            try:
                data = json.loads(value)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed composer row %s", key)
                continue
            if isinstance(data, dict):
                composers[key[len(COMPOSER_PREFIX):]] = data
        return composers

    def _diff_composer(
        self, db: CursorDatabase, composer_id: str, data: dict, now: datetime,
        pending: dict[str, ComposerSnapshot],
    ) -> list[PromptDetectedEvent]:
        count = extract_prompt_count(data)
        bubble_ids = user_bubble_ids(data)
        updated_at = composer_last_activity(data)
        inline_users = [m for m in extract_inline_messages(composer_id, data) if m.role == "user"]
        previous = self._snapshots.get(composer_id)
        pending[composer_id] = ComposerSnapshot(
            count, bubble_ids, updated_at, len(inline_users)
        )

        if not self._seeded:
            return []
        if should_ignore_path(data.get("workspacePath")):
            return []

        texts: list[tuple[str, str | None]] = []
        if previous is not None:
            if count <= previous.prompt_count:
                return []
            if bubble_ids:
                known = set(previous.bubble_ids)
                for bubble_id in bubble_ids:
                    if bubble_id in known:
                        continue
                    text = read_bubble_text(db, composer_id, bubble_id)
                    if text:
                        texts.append((text, bubble_id))
            else:
                for msg in inline_users[previous.inline_user_count:]:
                    texts.append((msg.content, msg.bubble_id))
        elif updated_at is not None and now - updated_at <= NEW_COMPOSER_WINDOW:
            latest = self._latest_user_prompt(db, composer_id, inline_users, bubble_ids)
            if latest:
                texts.append(latest)

        return [
            PromptDetectedEvent(
                id=generate_prompt_id(self.source),
                source=self.source,
                session_id=composer_id,
                text=text,
                timestamp=now,
                context={
                    "workspaceName": data.get("workspaceName"),
                    "workspacePath": data.get("workspacePath"),
                    "bubbleId": bubble_id,
                },
            )
            for text, bubble_id in texts
        ]

    def _latest_user_prompt(
        self, db: CursorDatabase, composer_id: str, inline_users: list, bubble_ids: list[str]
    ) -> tuple[str, str | None] | None:
        for bubble_id in reversed(bubble_ids):
            text = read_bubble_text(db, composer_id, bubble_id)
            if text:
                return text, bubble_id
        if inline_users:
            return inline_users[-1].content, inline_users[-1].bubble_id
        return None

    def _evict(self, now: datetime) -> None:
        stale = [
            cid for cid, snap in self._snapshots.items()
            if snap.updated_at is not None and now - snap.updated_at > SNAPSHOT_MAX_AGE
        ]
        for cid in stale:
            del self._snapshots[cid]

    def _record_failure(self, error: Exception) -> None:
        self._failures += 1
        if getattr(error, "retryable", True) and self._failures < MAX_CONSECUTIVE_FAILURES:
            logger.debug("Cursor poll failed (%d): %s", self._failures, error)
            return
        self._running = False
        self._mark_unavailable(str(error))

    def _mark_unavailable(self, reason: str) -> None:
        self._available = False
        if not self._logged_unavailable:
            logger.warning("Cursor adapter unavailable: %s", reason)
            self._logged_unavailable = True
