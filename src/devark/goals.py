"""The user's current session goal."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from .core import parse_iso, to_iso, utcnow
from .errors import InvalidInputError
from .storage.history import PromptHistoryStore
from .storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

GOAL_KEY = "devark.goal"
MAX_GOAL_LENGTH = 500
SNOOZE = timedelta(hours=1)


class GoalService:
    def __init__(
        self,
        kv: KeyValueStore,
        history: PromptHistoryStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._kv = kv
        self._history = history
        self._clock = clock

    def set_goal(self, text: str) -> dict:
        text = (text or "").strip()
        if not text:
            raise InvalidInputError("Goal text cannot be empty")
        state = self._load()
        state.update({
            "goal": text[:MAX_GOAL_LENGTH],
            "setAt": to_iso(self._clock()),
            "completed": False,
            "completedAt": None,
        })
        self._save(state)
        logger.info("Goal set")
        return self.get_status()

    def complete_goal(self) -> dict:
        state = self._load()
        if not state.get("goal"):
            raise InvalidInputError("No goal to complete")
        state["completed"] = True
        state["completedAt"] = to_iso(self._clock())
        self._save(state)
        return self.get_status()

    def clear_goal(self) -> dict:
        state = self._load()
        for key in ("goal", "setAt", "completed", "completedAt"):
            state.pop(key, None)
        self._save(state)
        return self.get_status()

    def snooze(self) -> None:
        """Stop suggesting a goal for a while."""
        state = self._load()
        state["snoozedUntil"] = to_iso(self._clock() + SNOOZE)
        self._save(state)

    def dont_ask(self) -> None:
        state = self._load()
        state["dontAsk"] = True
        self._save(state)

    def should_suggest(self) -> bool:
        state = self._load()
        if state.get("goal") and not state.get("completed"):
            return False
        if state.get("dontAsk"):
            return False
        snoozed = parse_iso(state.get("snoozedUntil"))
        return snoozed is None or snoozed <= self._clock()

    def get_status(self) -> dict:
        state = self._load()
        set_at = parse_iso(state.get("setAt"))
        prompts_since = 0
        if set_at is not None:
            prompts_since = sum(1 for p in self._history.get_all() if p.timestamp >= set_at)
        return {
            "goal": state.get("goal"),
            "setAt": state.get("setAt"),
            "completed": bool(state.get("completed")),
            "completedAt": state.get("completedAt"),
            "promptsSinceSet": prompts_since,
            "shouldSuggest": self.should_suggest(),
        }

    def _load(self) -> dict:
        state = self._kv.get(GOAL_KEY, {}) or {}
        return state if isinstance(state, dict) else {}

    def _save(self, state: dict) -> None:
        self._kv.update(GOAL_KEY, state)
