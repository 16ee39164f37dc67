"""Provider registry with persisted selection and per-provider settings."""

import asyncio
import logging

from ..errors import InvalidInputError
from ..storage.config_store import ConfigStore
from ..storage.tokens import TokenStore
from .base import DetectionResult, LLMProvider

logger = logging.getLogger(__name__)

ACTIVE_PROVIDER_KEY = "activeProvider"
PROVIDERS_KEY = "providers"


class ProviderRegistry:
    """Known providers, the active selection, and their stored settings.

    Settings live in the config store as ``providers.<id>.{endpoint, model,
    apiKeyRef}``. API keys themselves are encrypted in the token store and
    referenced by ``apiKeyRef``; they are injected into the provider on
    lookup and never written to config in clear.
    """

    def __init__(self, config: ConfigStore, tokens: TokenStore):
        self._config = config
        self._tokens = tokens
        self._providers: dict[str, LLMProvider] = {}

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.id] = provider

    def get_provider(self, provider_id: str) -> LLMProvider | None:
        provider = self._providers.get(provider_id)
        if provider is None:
            return None
        settings = self._config.get(f"{PROVIDERS_KEY}.{provider_id}", {}) or {}
        api_key = None
        if settings.get("apiKeyRef"):
            api_key = self._tokens.get_secret(settings["apiKeyRef"])
        provider.configure(settings.get("endpoint"), settings.get("model"), api_key)
        return provider

    def list_providers(self) -> list[LLMProvider]:
        return [self.get_provider(pid) for pid in self._providers]

    @property
    def active_provider_id(self) -> str | None:
        active = self._config.get(ACTIVE_PROVIDER_KEY)
        return active if active in self._providers else None

    @property
    def active_provider(self) -> LLMProvider | None:
        active = self.active_provider_id
        return self.get_provider(active) if active else None

    def set_active_provider(self, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        self._config.set(ACTIVE_PROVIDER_KEY, provider_id)
        logger.info("Active provider set to %s", provider_id)

    def configure_provider(
        self,
        provider_id: str,
        endpoint: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
    ) -> None:
        if provider_id not in self._providers:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        updates = {}
        if endpoint is not None:
            updates[f"{PROVIDERS_KEY}.{provider_id}.endpoint"] = endpoint
        if model is not None:
            updates[f"{PROVIDERS_KEY}.{provider_id}.model"] = model
        if api_key:
            ref = f"provider.{provider_id}"
            self._tokens.store_secret(ref, api_key)
            updates[f"{PROVIDERS_KEY}.{provider_id}.apiKeyRef"] = ref
        if updates:
            self._config.update(updates)

    async def detect_all(self) -> dict[str, DetectionResult]:
        providers = self.list_providers()
        results = await asyncio.gather(*(p.detect() for p in providers), return_exceptions=True)
        detected = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning("Detection failed for %s: %s", provider.id, result)
                result = DetectionResult(False, str(result))
            detected[provider.id] = result
        return detected

    async def auto_select(self) -> str | None:
        """Keep the current selection if set, else pick the first available provider."""
        if self.active_provider_id:
            return self.active_provider_id
        detected = await self.detect_all()
        for provider_id, result in detected.items():
            if result.available:
                self.set_active_provider(provider_id)
                return provider_id
        return None
