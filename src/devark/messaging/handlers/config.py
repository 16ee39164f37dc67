"""Settings, onboarding, per-feature model overrides and local data."""

import logging

from ...errors import InvalidInputError
from ...goals import GOAL_KEY
from ...sync.sync_service import SYNC_STATE_KEY
from ..protocol import MessageType as T
from .base import BaseHandler, require
from .session import SESSION_META_KEY

logger = logging.getLogger(__name__)

ONBOARDING_KEY = "onboardingComplete"
FEATURE_MODELS_KEY = "featureModels"
PROTECTED_KEYS = ("token", "secrets")
FEATURES = ("scoring", "promptLab", "coaching", "summaries")


class ConfigHandler(BaseHandler):
    def routes(self):
        return {
            T.GET_CONFIG: self.get_config,
            T.UPDATE_CONFIG: self.update_config,
            T.COMPLETE_ONBOARDING: self.complete_onboarding,
            T.GET_FEATURE_MODELS: self.get_feature_models,
            T.SET_FEATURE_MODEL: self.set_feature_model,
            T.SET_FEATURE_MODELS_ENABLED: self.set_feature_models_enabled,
            T.RESET_FEATURE_MODELS: self.reset_feature_models,
            T.GET_AVAILABLE_MODELS_FOR_FEATURE: self.get_available_models,
            T.CLEAR_LOCAL_DATA: self.clear_local_data,
            T.CLEAR_PROMPT_HISTORY: self.clear_prompt_history,
            T.GET_PROMPT_HISTORY: self.get_prompt_history,
        }

    def get_config(self, data: dict) -> None:
        config = {k: v for k, v in self.services.config.load().items() if k not in PROTECTED_KEYS}
        self.send(T.CONFIG_LOADED, {"config": config, "onboardingComplete": bool(config.get(ONBOARDING_KEY))})

    def update_config(self, data: dict) -> None:
        values = data.get("values")
        if values is None:
            values = {require(data, "key"): data.get("value")}
        if not isinstance(values, dict):
            raise InvalidInputError("'values' must be an object")
        for key in values:
            if key.split(".")[0] in PROTECTED_KEYS:
                raise InvalidInputError(f"'{key}' cannot be set through config")
        self.services.config.update(values)
        self.get_config(data)

    def complete_onboarding(self, data: dict) -> None:
        self.services.config.set(ONBOARDING_KEY, True)
        self.send(T.ONBOARDING_COMPLETE, {})

    def get_feature_models(self, data: dict) -> None:
        settings = self.services.config.get(FEATURE_MODELS_KEY, {}) or {}
        self.send(T.FEATURE_MODELS_UPDATE, {
            "enabled": bool(settings.get("enabled", False)),
            "models": settings.get("models", {}),
            "features": list(FEATURES),
        })

    def set_feature_model(self, data: dict) -> None:
        feature = require(data, "feature")
        if feature not in FEATURES:
            raise InvalidInputError(f"Unknown feature: {feature}")
        self.services.config.set(f"{FEATURE_MODELS_KEY}.models.{feature}", require(data, "model"))
        self.get_feature_models(data)

    def set_feature_models_enabled(self, data: dict) -> None:
        self.services.config.set(f"{FEATURE_MODELS_KEY}.enabled", bool(data.get("enabled")))
        self.get_feature_models(data)

    def reset_feature_models(self, data: dict) -> None:
        self.services.config.delete(FEATURE_MODELS_KEY)
        self.get_feature_models(data)

    async def get_available_models(self, data: dict) -> None:
        provider = self.services.registry.active_provider
        models = await provider.list_models() if provider else []
        self.send(T.AVAILABLE_MODELS_FOR_FEATURE, {
            "feature": data.get("feature"),
            "providerId": provider.id if provider else None,
            "models": models,
        })

    def clear_local_data(self, data: dict) -> None:
        services = self.services
        services.history.clear()
        services.saved_prompts.clear()
        services.scoring.cache.clear()
        for key in (GOAL_KEY, SYNC_STATE_KEY, SESSION_META_KEY):
            services.kv.update(key, None)
        logger.info("Local data cleared")
        self.send(T.LOCAL_DATA_CLEARED, {})

    def clear_prompt_history(self, data: dict) -> None:
        # history.clear() notifies listeners, which push promptHistoryLoaded.
        self.services.history.clear()

    def get_prompt_history(self, data: dict) -> None:
        history = self.services.history
        self.send(T.PROMPT_HISTORY_LOADED, {
            "prompts": [p.to_dict() for p in history.get_all()],
            "dailyStats": history.get_daily_stats().to_dict(),
        })
