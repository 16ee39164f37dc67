"""Construction and lifecycle of the long-lived devark services."""

import logging
from dataclasses import dataclass
from pathlib import Path

from .aggregator import SessionAggregator
from .backends import get_available_readers
from .config import get_config_path, get_hook_queue_path, get_key_path, get_store_path
from .core import PromptDetectedEvent
from .detection import ClaudeCodeAdapter, CursorAdapter, PromptDetectionService
from .goals import GoalService
from .llm import CloudProvider, OllamaProvider, OpenRouterProvider, ProviderRegistry, ScoringPipeline
from .reader import SessionReader
from .storage import ConfigStore, JsonFileKeyValueStore, KeyValueStore, PromptHistoryStore, SavedPromptsStore, TokenStore
from .sync import ApiClient, SyncService

logger = logging.getLogger(__name__)

AUTO_ANALYZE_KEY = "autoAnalyze"
DETECTION_ENABLED_KEY = "detectionEnabled"
PROJECT_ROOT_KEY = "projectRoot"


@dataclass
class Services:
    config: ConfigStore
    tokens: TokenStore
    kv: KeyValueStore
    history: PromptHistoryStore
    saved_prompts: SavedPromptsStore
    aggregator: SessionAggregator
    registry: ProviderRegistry
    scoring: ScoringPipeline
    detection: PromptDetectionService
    sync: SyncService
    goals: GoalService

    @classmethod
    def create(
        cls,
        data_dir: Path | None = None,
        readers: list[SessionReader] | None = None,
        kv: KeyValueStore | None = None,
        api_url: str | None = None,
        with_adapters: bool = True,
    ) -> "Services":
        """Wire every service together.

        ``data_dir`` relocates config, key file, store and hook queue; by
        default they live under ``get_data_dir()``.
        """
        if data_dir is not None:
            config_path = data_dir / "config.json"
            key_path = data_dir / ".key"
            store_path = data_dir / "store.json"
            queue_path = data_dir / "hooks" / "prompt-queue.jsonl"
        else:
            config_path = get_config_path()
            key_path = get_key_path()
            store_path = get_store_path()
            queue_path = get_hook_queue_path()

        config = ConfigStore(config_path)
        tokens = TokenStore(config_path, key_path)
        kv = kv if kv is not None else JsonFileKeyValueStore(store_path)
        history = PromptHistoryStore(kv)
        history.initialize()

        registry = ProviderRegistry(config, tokens)
        registry.register(OllamaProvider())
        registry.register(OpenRouterProvider())
        registry.register(CloudProvider(tokens.get_token, endpoint=api_url))

        aggregator = SessionAggregator(readers if readers is not None else get_available_readers())
        scoring = ScoringPipeline(registry, history)

        detection = PromptDetectionService()
        if with_adapters:
            detection.register_adapter(CursorAdapter())
            project_root = config.get(PROJECT_ROOT_KEY)
            detection.register_adapter(ClaudeCodeAdapter(
                queue_path=queue_path,
                project_root=Path(project_root) if project_root else None,
            ))
        detection.config.enabled = bool(config.get(DETECTION_ENABLED_KEY, True))
        detection.config.auto_analyze = bool(config.get(AUTO_ANALYZE_KEY, True))

        def auto_score(event: PromptDetectedEvent) -> None:
            if detection.config.auto_analyze:
                scoring.score_event(event)

        detection.on_prompt_detected(auto_score)

        api = ApiClient(tokens.get_token, base_url=api_url)
        services = cls(
            config=config,
            tokens=tokens,
            kv=kv,
            history=history,
            saved_prompts=SavedPromptsStore(kv),
            aggregator=aggregator,
            registry=registry,
            scoring=scoring,
            detection=detection,
            sync=SyncService(aggregator, api, tokens, kv),
            goals=GoalService(kv, history),
        )
        config.on_change(services._apply_config)
        return services

    async def start(self) -> None:
        await self.detection.initialize()
        if self.detection.config.enabled:
            await self.detection.start()
        self.config.watch()
        logger.info("devark services started (sources: %s)", ", ".join(self.aggregator.sources) or "none")

    async def stop(self) -> None:
        self.config.unwatch()
        self.scoring.cancel_loading()
        await self.detection.dispose()

    def _apply_config(self, data: dict) -> None:
        # Called on the watcher thread; only the flag that needs no loop is applied here.
        auto = data.get(AUTO_ANALYZE_KEY)
        if auto is not None:
            self.detection.config.auto_analyze = bool(auto)
