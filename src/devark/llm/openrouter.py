"""OpenRouter key-router (bring your own key)."""

import logging

from ..errors import AuthError, DevarkError, PermanentIOError
from .base import DetectionResult, GenerateRequest, GenerateResult, LLMProvider

logger = logging.getLogger(__name__)

OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_MODEL = "anthropic/claude-3.5-haiku"
SITE_URL = "https://github.com/devark/devark"
SITE_NAME = "devark"


class OpenRouterProvider(LLMProvider):
    id = "openrouter"
    name = "OpenRouter"
    kind = "cloud"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = DEFAULT_OPENROUTER_MODEL,
        endpoint: str = OPENROUTER_ENDPOINT,
        **kwargs,
    ):
        super().__init__(endpoint, model, **kwargs)
        self.api_key = api_key

    def configure(self, endpoint: str | None = None, model: str | None = None, api_key: str | None = None) -> None:
        super().configure(endpoint, model)
        if api_key:
            self.api_key = api_key

    async def detect(self) -> DetectionResult:
        if not self.api_key:
            return DetectionResult(False, "No OpenRouter API key configured")
        try:
            models = await self.list_models()
        except AuthError:
            return DetectionResult(False, "OpenRouter rejected the API key")
        except DevarkError as e:
            logger.debug("OpenRouter not reachable: %s", e)
            return DetectionResult(False, "OpenRouter is not reachable")
        return DetectionResult(True, models=models)

    async def list_models(self) -> list[str]:
        data = await self._request("GET", f"{self.endpoint}/models")
        return [m["id"] for m in data.get("data", []) if isinstance(m, dict) and m.get("id")]

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        if not self.api_key:
            raise AuthError("No OpenRouter API key configured")
        body = {
            "model": self.model or DEFAULT_OPENROUTER_MODEL,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.user},
            ],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        data = await self._request("POST", f"{self.endpoint}/chat/completions", json=body)
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise PermanentIOError("OpenRouter reply has no completion") from e
        usage = data.get("usage") or {}
        return GenerateResult(text=text or "", tokens_used=usage.get("total_tokens"))

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers["HTTP-Referer"] = SITE_URL
        headers["X-Title"] = SITE_NAME
        return headers
