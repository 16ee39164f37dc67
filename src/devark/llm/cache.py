"""LRU cache of scoring results keyed by normalized prompt text."""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

from ..prompt_utils import normalize_prompt_text, prompt_fingerprint

T = TypeVar("T")

MAX_ENTRIES = 1000
TTL_SECONDS = 7 * 24 * 60 * 60


class ScoreCache(Generic[T]):
    def __init__(
        self,
        max_entries: int = MAX_ENTRIES,
        ttl: float = TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, T]] = OrderedDict()

    @staticmethod
    def key_for(text: str) -> str:
        return prompt_fingerprint(normalize_prompt_text(text))

    def get(self, text: str) -> T | None:
        key = self.key_for(text)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def put(self, text: str, value: T) -> None:
        key = self.key_for(text)
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
