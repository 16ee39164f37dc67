"""Bounded history of analyzed prompts and the derived daily stats."""

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from ..core import AnalyzedPrompt, DailyStats, utcnow
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "devark.promptHistory"
DAILY_STATS_KEY = "devark.dailyStats"
MAX_HISTORY = 100
MAX_AGE = timedelta(days=30)


class PromptHistoryStore:
    """Newest-first prompt history, capped at 100 entries.

    The snapshot is loaded once into memory and written back after every
    mutation. ``add_prompt`` writes under an asyncio lock so concurrent
    calls are linearized.
    """

    def __init__(self, kv: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self._kv = kv
        self._clock = clock
        self._history: list[AnalyzedPrompt] = []
        self._stats = DailyStats()
        self._listeners: list[Callable[[], None]] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    def initialize(self) -> None:
        """Load the snapshot, purge entries older than 30 days, reset stale stats."""
        raw = self._kv.get(HISTORY_KEY, []) or []
        history = []
        for item in raw:
            try:
                history.append(AnalyzedPrompt.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Dropping malformed history entry: %s", e)

        cutoff = self._clock() - MAX_AGE
        kept = [p for p in history if p.timestamp >= cutoff][:MAX_HISTORY]
        self._history = kept
        self._stats = DailyStats.from_dict(self._kv.get(DAILY_STATS_KEY, {}) or {})
        self._loaded = True

        if len(kept) != len(history):
            logger.info("Purged %d old prompts from history", len(history) - len(kept))
            self._persist_history()
        if not self._is_today(self._stats.last_reset_date):
            self._recompute_stats()
            self._persist_stats()

    async def add_prompt(self, prompt: AnalyzedPrompt) -> None:
        async with self._lock:
            self._ensure_loaded()
            self._history = [p for p in self._history if p.id != prompt.id]
            self._history.insert(0, prompt)
            del self._history[MAX_HISTORY:]
            self._recompute_stats()
            self._persist_history()
            self._persist_stats()
        self._notify()

    def get_all(self) -> list[AnalyzedPrompt]:
        self._ensure_loaded()
        return list(self._history)

    def get_recent(self, limit: int = 10) -> list[AnalyzedPrompt]:
        return self.get_all()[:limit]

    def get_by_id(self, prompt_id: str) -> AnalyzedPrompt | None:
        return next((p for p in self.get_all() if p.id == prompt_id), None)

    def get_for_session(self, session_id: str) -> list[AnalyzedPrompt]:
        return [p for p in self.get_all() if p.session_id == session_id]

    def get_daily_stats(self) -> DailyStats:
        self._ensure_loaded()
        if not self._is_today(self._stats.last_reset_date):
            self._recompute_stats()
            self._persist_stats()
        return self._stats

    def clear(self) -> None:
        self._history = []
        self._stats = DailyStats(last_reset_date=self._clock())
        self._loaded = True
        self._persist_history()
        self._persist_stats()
        self._notify()

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    # ── Private helpers ──────────────────────────────────────────────

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.initialize()

    def _today(self) -> date:
        return self._clock().astimezone().date()

    def _is_today(self, value: datetime | None) -> bool:
        return value is not None and value.astimezone().date() == self._today()

    def _recompute_stats(self) -> None:
        today = [p for p in self._history if self._is_today(p.timestamp)]
        avg = round(sum(p.score for p in today) / len(today), 1) if today else 0.0
        self._stats = DailyStats(
            analyzed_today=len(today),
            avg_score=avg,
            last_reset_date=self._clock(),
        )

    def _persist_history(self) -> None:
        self._kv.update(HISTORY_KEY, [p.to_dict() for p in self._history])

    def _persist_stats(self) -> None:
        self._kv.update(DAILY_STATS_KEY, self._stats.to_dict())

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("History listener failed")
