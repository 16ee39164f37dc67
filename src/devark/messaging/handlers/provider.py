"""LLM provider selection and detection."""

import logging

from ...errors import InvalidInputError
from ...llm.base import DetectionResult
from ..protocol import MessageType as T
from .base import BaseHandler, require

logger = logging.getLogger(__name__)


class ProviderHandler(BaseHandler):
    def __init__(self, services, send):
        super().__init__(services, send)
        self._detected: dict[str, DetectionResult] = {}

    def routes(self):
        return {
            T.GET_PROVIDERS: self.get_providers,
            T.DETECT_PROVIDERS: self.detect_providers,
            T.DETECT_PROVIDER: self.detect_provider,
            T.SWITCH_PROVIDER: self.switch_provider,
            T.VERIFY_API_KEY: self.verify_api_key,
            T.SET_OLLAMA_MODEL: self.set_ollama_model,
            T.SET_OPENROUTER_MODEL: self.set_openrouter_model,
            T.TEST_PROVIDERS: self.test_providers,
            T.TRACK_LLM_SELECTOR_OPENED_FOOTER: self.track,
            T.TRACK_LLM_SELECTOR_OPENED_SETTINGS: self.track,
        }

    def get_providers(self, data: dict) -> None:
        registry = self.services.registry
        providers = []
        for provider in registry.list_providers():
            entry = provider.to_dict()
            entry["active"] = provider.id == registry.active_provider_id
            detected = self._detected.get(provider.id)
            entry["status"] = detected.to_dict() if detected else None
            providers.append(entry)
        self.send(T.PROVIDERS_UPDATE, {"providers": providers, "activeProvider": registry.active_provider_id})

    async def detect_providers(self, data: dict) -> None:
        self._detected = await self.services.registry.detect_all()
        self.get_providers(data)

    async def detect_provider(self, data: dict) -> None:
        provider = self._provider(require(data, "providerId"))
        self._detected[provider.id] = await provider.detect()
        self.get_providers(data)

    def switch_provider(self, data: dict) -> None:
        self.services.registry.set_active_provider(require(data, "providerId"))
        self.get_providers(data)

    async def verify_api_key(self, data: dict) -> None:
        provider_id = require(data, "providerId")
        self.services.registry.configure_provider(provider_id, api_key=require(data, "apiKey"))
        result = await self._provider(provider_id).detect()
        self._detected[provider_id] = result
        self.send(T.VERIFY_API_KEY_RESULT, {"providerId": provider_id, "valid": result.available, "reason": result.reason})

    def set_ollama_model(self, data: dict) -> None:
        self.services.registry.configure_provider("ollama", model=require(data, "model"))
        self.get_providers(data)

    def set_openrouter_model(self, data: dict) -> None:
        self.services.registry.configure_provider("openrouter", model=require(data, "model"))
        self.get_providers(data)

    async def test_providers(self, data: dict) -> None:
        self._detected = await self.services.registry.detect_all()
        self.send(T.TEST_PROVIDERS_RESULT, {
            "results": {pid: result.to_dict() for pid, result in self._detected.items()},
        })

    def track(self, data: dict) -> None:
        logger.debug("Provider selector opened")

    def _provider(self, provider_id: str):
        provider = self.services.registry.get_provider(provider_id)
        if provider is None:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        return provider
