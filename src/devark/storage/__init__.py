"""Local persistence: encrypted token, key-value snapshots, config."""

from .config_store import ConfigStore
from .history import PromptHistoryStore
from .kv import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .saved_prompts import SavedPromptsStore
from .tokens import TokenStore

__all__ = [
    "ConfigStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PromptHistoryStore",
    "SavedPromptsStore",
    "TokenStore",
]
