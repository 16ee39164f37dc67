"""Coaching tips drawn from the suggestions on recently scored prompts."""

from ...core import AnalyzedPrompt
from ...errors import InvalidInputError
from ..protocol import MessageType as T
from .base import BaseHandler, require


class CoachingHandler(BaseHandler):
    def __init__(self, services, send):
        super().__init__(services, send)
        self._dismissed: set[str] = set()

    def routes(self):
        return {
            T.GET_COACHING_STATUS: self.get_status,
            T.GET_COACHING_FOR_PROMPT: self.get_for_prompt,
            T.USE_COACHING_SUGGESTION: self.use_suggestion,
            T.DISMISS_COACHING_SUGGESTION: self.dismiss,
        }

    def get_status(self, data: dict) -> None:
        latest = next(
            (p for p in self.services.history.get_recent(1) if p.id not in self._dismissed),
            None,
        )
        self.send(T.COACHING_STATUS, self._coaching(latest))

    def get_for_prompt(self, data: dict) -> None:
        self.send(T.COACHING_UPDATED, self._coaching(self._prompt(require(data, "promptId"))))

    def use_suggestion(self, data: dict) -> None:
        prompt = self._prompt(require(data, "promptId"))
        index = int(data.get("index", 0))
        if not 0 <= index < len(prompt.suggestions):
            raise InvalidInputError(f"No suggestion at index {index}")
        self.send(T.COACHING_UPDATED, {
            **self._coaching(prompt),
            "used": prompt.suggestions[index],
        })

    def dismiss(self, data: dict) -> None:
        prompt_id = require(data, "promptId")
        self._dismissed.add(prompt_id)
        self.send(T.COACHING_UPDATED, {"promptId": prompt_id, "available": False, "dismissed": True})

    def _prompt(self, prompt_id: str) -> AnalyzedPrompt:
        prompt = self.services.history.get_by_id(prompt_id)
        if prompt is None:
            raise InvalidInputError(f"Unknown prompt: {prompt_id}")
        return prompt

    def _coaching(self, prompt: AnalyzedPrompt | None) -> dict:
        if prompt is None:
            return {"available": False, "promptId": None, "suggestions": []}
        return {
            "available": bool(prompt.suggestions) and prompt.id not in self._dismissed,
            "promptId": prompt.id,
            "score": prompt.score,
            "suggestions": list(prompt.suggestions),
            "improvedVersion": prompt.improved_version,
        }
