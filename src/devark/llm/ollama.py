"""Local Ollama server."""

import logging

from ..errors import DevarkError, PermanentIOError
from .base import DetectionResult, GenerateRequest, GenerateResult, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"
DETECT_TIMEOUT = 3.0


class OllamaProvider(LLMProvider):
    id = "ollama"
    name = "Ollama"
    kind = "local"

    def __init__(self, endpoint: str = DEFAULT_OLLAMA_ENDPOINT, model: str | None = None, **kwargs):
        super().__init__(endpoint, model, **kwargs)

    async def detect(self) -> DetectionResult:
        try:
            await self._request("GET", f"{self.endpoint}/api/version", timeout=DETECT_TIMEOUT)
            models = await self.list_models()
        except DevarkError as e:
            logger.debug("Ollama not detected: %s", e)
            return DetectionResult(False, f"Ollama is not running at {self.endpoint}")
        if not models:
            return DetectionResult(False, "Ollama is running but has no models pulled")
        return DetectionResult(True, models=models)

    async def list_models(self) -> list[str]:
        data = await self._request("GET", f"{self.endpoint}/api/tags", timeout=DETECT_TIMEOUT)
        return [m["name"] for m in data.get("models", []) if isinstance(m, dict) and m.get("name")]

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        model = self.model or await self._default_model()
        body = {
            "model": model,
            "system": request.system,
            "prompt": request.user,
            "stream": False,
            "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
        }
        data = await self._request("POST", f"{self.endpoint}/api/generate", json=body)
        text = data.get("response")
        if not isinstance(text, str):
            raise PermanentIOError("Ollama reply has no 'response' field")
        tokens = data.get("eval_count")
        return GenerateResult(text=text, tokens_used=tokens if isinstance(tokens, int) else None)

    async def _default_model(self) -> str:
        models = await self.list_models()
        if not models:
            raise PermanentIOError("No Ollama model configured or installed")
        return models[0]

