"""On-demand analysis and the auto-analyze switch."""

from ...errors import InvalidInputError
from ...services import AUTO_ANALYZE_KEY
from ..protocol import MessageType as T
from .base import BaseHandler

RESPONSE_ANALYSIS_KEY = "responseAnalysis"


class PromptAnalysisHandler(BaseHandler):
    def routes(self):
        return {
            T.ANALYZE_PROMPT: self.analyze_prompt,
            T.USE_IMPROVED_PROMPT: self.use_improved_prompt,
            T.TOGGLE_AUTO_ANALYZE: self.toggle_auto_analyze,
            T.GET_AUTO_ANALYZE_STATUS: self.get_auto_analyze_status,
            T.TOGGLE_RESPONSE_ANALYSIS: self.toggle_response_analysis,
            T.GET_RESPONSE_ANALYSIS_STATUS: self.get_response_analysis_status,
        }

    async def analyze_prompt(self, data: dict) -> None:
        # Progress and results reach the UI through the scoring events.
        text = data.get("prompt") or data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Missing 'prompt'")
        scoring = self.services.scoring
        await scoring.run_tracked(scoring.analyze(text, source="manual"))

    def use_improved_prompt(self, data: dict) -> None:
        text = data.get("text")
        if not text and data.get("promptId"):
            prompt = self.services.history.get_by_id(data["promptId"])
            text = prompt.improved_version if prompt else None
        if not text:
            raise InvalidInputError("No improved prompt available")
        self.send(T.IMPROVED_PROMPT_READY, {"text": text})

    async def toggle_auto_analyze(self, data: dict) -> None:
        enabled = bool(data.get("enabled", not self.services.detection.config.auto_analyze))
        self.services.config.set(AUTO_ANALYZE_KEY, enabled)
        await self.services.detection.update_config(auto_analyze=enabled)
        self.get_auto_analyze_status(data)

    def get_auto_analyze_status(self, data: dict) -> None:
        self.send(T.AUTO_ANALYZE_STATUS, {"enabled": self.services.detection.config.auto_analyze})

    def toggle_response_analysis(self, data: dict) -> None:
        current = bool(self.services.config.get(RESPONSE_ANALYSIS_KEY, False))
        self.services.config.set(RESPONSE_ANALYSIS_KEY, bool(data.get("enabled", not current)))
        self.get_response_analysis_status(data)

    def get_response_analysis_status(self, data: dict) -> None:
        self.send(T.RESPONSE_ANALYSIS_STATUS, {
            "enabled": bool(self.services.config.get(RESPONSE_ANALYSIS_KEY, False)),
        })
