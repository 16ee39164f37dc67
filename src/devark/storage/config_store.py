"""JSON config file with dotted-key access and change notification."""

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..config import get_config_path
from .kv import atomic_write_json

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.05

_MISSING = object()


class ConfigStore:
    """Reads and writes ``config.json``.

    Reads never fail: a missing file, unparsable JSON or a missing key all
    yield the caller's default. Writes go through a temp file and
    ``os.replace``. ``watch()`` reports external edits to listeners,
    debounced so that one save produces one notification.
    """

    def __init__(self, path: Path | None = None, debounce: float = DEBOUNCE_SECONDS):
        self.path = path or get_config_path()
        self.debounce = debounce
        self._listeners: list[Callable[[dict], None]] = []
        self._observer: Any = None
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()

    def load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Cannot read config %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self.load()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        """Set several dotted keys in one write."""
        data = self.load()
        for key, value in values.items():
            parts = key.split(".")
            node = data
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = node[part] = {}
                node = child
            node[parts[-1]] = value
        self._write(data)

    def delete(self, key: str) -> bool:
        data = self.load()
        parts = key.split(".")
        node = data
        for part in parts[:-1]:
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING:
                return False
        if not isinstance(node, dict) or parts[-1] not in node:
            return False
        del node[parts[-1]]
        self._write(data)
        return True

    def on_change(self, listener: Callable[[dict], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def watch(self) -> None:
        if self._observer is not None:
            return
        store = self

        class ConfigFileHandler(FileSystemEventHandler):
            def on_any_event(self, event: Any) -> None:
                if event.is_directory:
                    return
                paths = [getattr(event, "src_path", ""), getattr(event, "dest_path", "")]
                if any(p and Path(p).name == store.path.name for p in paths):
                    store._schedule_notify()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._observer = Observer()
            self._observer.schedule(ConfigFileHandler(), str(self.path.parent), recursive=False)
            self._observer.start()
        except OSError as e:
            logger.warning("Config watcher failed to start: %s", e)
            self._observer = None
            return
        logger.debug("Watching %s", self.path)

    def unwatch(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

    # ── Private helpers ──────────────────────────────────────────────

    def _write(self, data: dict) -> None:
        atomic_write_json(self.path, data)

    def _schedule_notify(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._notify)
            self._timer.daemon = True
            self._timer.start()

    def _notify(self) -> None:
        with self._timer_lock:
            self._timer = None
        data = self.load()
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception:
                logger.exception("Config listener failed")
