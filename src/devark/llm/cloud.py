"""Scoring through the devark cloud, for signed-in users without a local model."""

from collections.abc import Callable

from ..config import get_api_url
from ..errors import AuthError, PermanentIOError
from .base import DetectionResult, GenerateRequest, GenerateResult, LLMProvider


class CloudProvider(LLMProvider):
    id = "devark-cloud"
    name = "devark Cloud"
    kind = "cloud"

    def __init__(self, token_provider: Callable[[], str | None], endpoint: str | None = None, **kwargs):
        super().__init__(endpoint or get_api_url(), None, **kwargs)
        self._token_provider = token_provider

    async def detect(self) -> DetectionResult:
        if not self._token_provider():
            return DetectionResult(False, "Sign in to devark to use cloud scoring")
        return DetectionResult(True, models=["default"])

    async def list_models(self) -> list[str]:
        return ["default"]

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        if not self._token_provider():
            raise AuthError("Not signed in to devark")
        body = {
            "system": request.system,
            "prompt": request.user,
            "temperature": request.temperature,
            "maxTokens": request.max_tokens,
        }
        data = await self._request("POST", f"{self.endpoint}/api/llm/generate", json=body)
        text = data.get("text", data.get("content"))
        if not isinstance(text, str):
            raise PermanentIOError("Cloud reply has no text")
        return GenerateResult(text=text, tokens_used=data.get("tokensUsed"))

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers
