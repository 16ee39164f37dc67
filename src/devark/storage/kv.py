"""Process-wide key-value persistence for store snapshots."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def update(self, key: str, value: Any) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryKeyValueStore:
    """Keeps values in a dict. Values are JSON round-tripped like the file store."""

    def __init__(self, initial: dict | None = None):
        self._data: dict[str, Any] = json.loads(json.dumps(initial or {}))

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return json.loads(json.dumps(self._data[key]))

    def update(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = json.loads(json.dumps(value))

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore:
    """All keys in one JSON document, rewritten atomically on every update."""

    def __init__(self, path: Path):
        self.path = path
        self._data = self._load()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def update(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        atomic_write_json(self.path, self._data)

    def keys(self) -> list[str]:
        return list(self._data)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read store %s, starting empty: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to a temp file in the same directory, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
