"""Prompt lab: scoring drafts and the saved prompt library."""

from ...errors import InvalidInputError
from ..protocol import MessageType as T
from .base import BaseHandler, require


class PromptLabHandler(BaseHandler):
    def routes(self):
        return {
            T.ANALYZE_PROMPT_LAB_PROMPT: self.analyze,
            T.SAVE_PROMPT_TO_LIBRARY: self.save,
            T.GET_SAVED_PROMPTS: self.get_saved,
            T.DELETE_SAVED_PROMPT: self.delete,
            T.RENAME_PROMPT: self.rename,
            T.UPDATE_SAVED_PROMPT: self.update,
            T.SEARCH_SAVED_PROMPTS: self.search,
        }

    async def analyze(self, data: dict) -> None:
        """Score a draft without recording it in prompt history."""
        text = require(data, "prompt")
        scoring = self.services.scoring
        result = await scoring.run_tracked(scoring.score_text(text))
        if result is None:
            return
        self.send(T.PROMPT_LAB_SCORE_RECEIVED, {
            "prompt": text,
            "score": result.score,
            "breakdown": result.breakdown.to_dict(),
            "categoryScores": result.category_scores,
            "suggestions": list(result.suggestions),
            "improvedVersion": result.improved_version,
        })

    def save(self, data: dict) -> None:
        self.services.saved_prompts.save(
            require(data, "text"),
            name=data.get("name"),
            tags=data.get("tags"),
            folder=data.get("folder"),
            project_id=data.get("projectId"),
        )
        self.get_saved(data)

    def get_saved(self, data: dict) -> None:
        store = self.services.saved_prompts
        prompts = store.get_all(project_id=data.get("projectId"))
        self._send_prompts(prompts)

    def delete(self, data: dict) -> None:
        if not self.services.saved_prompts.delete(require(data, "id")):
            raise InvalidInputError(f"Unknown saved prompt: {data['id']}")
        self.get_saved(data)

    def rename(self, data: dict) -> None:
        self.services.saved_prompts.rename(require(data, "id"), require(data, "name"))
        self.get_saved(data)

    def update(self, data: dict) -> None:
        changes = {}
        for key, field_name in (("text", "text"), ("name", "name"), ("tags", "tags"),
                                ("folder", "folder"), ("projectId", "project_id")):
            if key in data:
                changes[field_name] = data[key]
        self.services.saved_prompts.update(require(data, "id"), **changes)
        self.get_saved(data)

    def search(self, data: dict) -> None:
        self._send_prompts(self.services.saved_prompts.search(data.get("query", "")))

    def _send_prompts(self, prompts) -> None:
        store = self.services.saved_prompts
        self.send(T.SAVED_PROMPTS_LOADED, {
            "prompts": [p.to_dict() for p in prompts],
            "tags": store.get_tags(),
            "folders": store.get_folders(),
            "nearLimit": store.near_limit,
        })
