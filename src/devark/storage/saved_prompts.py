"""The user's library of saved prompts."""

import logging
import secrets
import time
from collections.abc import Callable
from datetime import datetime

from ..core import SavedPrompt, utcnow
from ..errors import InvalidInputError, QuotaError
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

SAVED_PROMPTS_KEY = "devark.savedPrompts"
MAX_SAVED_PROMPTS = 500
WARN_SAVED_PROMPTS = 400


def generate_saved_prompt_id() -> str:
    return f"sp_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class SavedPromptsStore:
    """Saved prompts, capped at 500. ``near_limit`` turns on at 400."""

    def __init__(self, kv: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self._kv = kv
        self._clock = clock
        self._prompts: list[SavedPrompt] | None = None

    @property
    def count(self) -> int:
        return len(self._load())

    @property
    def near_limit(self) -> bool:
        return self.count >= WARN_SAVED_PROMPTS

    def save(
        self,
        text: str,
        name: str | None = None,
        tags: list[str] | None = None,
        folder: str | None = None,
        project_id: str | None = None,
    ) -> SavedPrompt:
        if not text or not text.strip():
            raise InvalidInputError("Cannot save an empty prompt")
        prompts = self._load()
        if len(prompts) >= MAX_SAVED_PROMPTS:
            raise QuotaError(f"Saved prompt limit reached ({MAX_SAVED_PROMPTS})")

        now = self._clock()
        prompt = SavedPrompt(
            id=generate_saved_prompt_id(),
            text=text,
            name=name,
            tags=_clean_tags(tags),
            folder=folder,
            project_id=project_id,
            created_at=now,
            last_modified_at=now,
        )
        prompts.insert(0, prompt)
        self._persist()
        if len(prompts) >= WARN_SAVED_PROMPTS:
            logger.warning("Saved prompts at %d of %d", len(prompts), MAX_SAVED_PROMPTS)
        return prompt

    def update(self, prompt_id: str, **changes) -> SavedPrompt:
        prompt = self._require(prompt_id)
        for field_name in ("text", "name", "folder", "project_id"):
            if field_name in changes:
                setattr(prompt, field_name, changes[field_name])
        if "tags" in changes:
            prompt.tags = _clean_tags(changes["tags"])
        prompt.last_modified_at = self._clock()
        self._persist()
        return prompt

    def rename(self, prompt_id: str, name: str) -> SavedPrompt:
        return self.update(prompt_id, name=name)

    def delete(self, prompt_id: str) -> bool:
        prompts = self._load()
        remaining = [p for p in prompts if p.id != prompt_id]
        if len(remaining) == len(prompts):
            return False
        self._prompts = remaining
        self._persist()
        return True

    def clear(self) -> None:
        self._prompts = []
        self._persist()

    def get(self, prompt_id: str) -> SavedPrompt | None:
        return next((p for p in self._load() if p.id == prompt_id), None)

    def get_all(self, project_id: str | None = None) -> list[SavedPrompt]:
        """All prompts, or the project's prompts plus global ones."""
        prompts = self._load()
        if project_id is None:
            return list(prompts)
        return [p for p in prompts if p.project_id in (None, project_id)]

    def get_by_tag(self, tag: str) -> list[SavedPrompt]:
        tag = tag.lower()
        return [p for p in self._load() if tag in (t.lower() for t in p.tags)]

    def get_by_folder(self, folder: str | None) -> list[SavedPrompt]:
        return [p for p in self._load() if p.folder == folder]

    def get_tags(self) -> list[str]:
        return sorted({t for p in self._load() for t in p.tags})

    def get_folders(self) -> list[str]:
        return sorted({p.folder for p in self._load() if p.folder})

    def search(self, query: str) -> list[SavedPrompt]:
        """Case-insensitive substring match across text, name and tags."""
        needle = query.strip().lower()
        if not needle:
            return self.get_all()
        return [
            p for p in self._load()
            if needle in p.text.lower()
            or (p.name and needle in p.name.lower())
            or any(needle in t.lower() for t in p.tags)
        ]

    # ── Private helpers ──────────────────────────────────────────────

    def _load(self) -> list[SavedPrompt]:
        if self._prompts is None:
            prompts = []
            for item in self._kv.get(SAVED_PROMPTS_KEY, []) or []:
                try:
                    prompts.append(SavedPrompt.from_dict(item))
                except (KeyError, TypeError) as e:
                    logger.debug("Dropping malformed saved prompt: %s", e)
            self._prompts = prompts
        return self._prompts

    def _require(self, prompt_id: str) -> SavedPrompt:
        prompt = self.get(prompt_id)
        if prompt is None:
            raise InvalidInputError(f"Unknown saved prompt: {prompt_id}")
        return prompt

    def _persist(self) -> None:
        self._kv.update(SAVED_PROMPTS_KEY, [p.to_dict() for p in self._load()])


def _clean_tags(tags: list[str] | None) -> list[str]:
    seen = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen
