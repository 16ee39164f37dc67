"""Claude Code prompt capture through installed hooks.

Claude runs ``devark hook --hook-trigger=UserPromptSubmit`` (and ``Stop``)
for every prompt; that command appends a JSON line to the hook queue. This
adapter tails the queue with a watchdog observer, plus a polling fallback
for filesystems where change notifications are unreliable.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..config import get_hook_queue_path
from ..core import SOURCE_CLAUDE, PromptDetectedEvent, parse_iso, utcnow
from ..prompt_utils import generate_prompt_id
from .adapter import PromptAdapter
from .hooks import DEFAULT_HOOK_COMMAND, ClaudeHookInstaller
from .ignore_paths import should_ignore_path

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
PROMPT_TRIGGER = "UserPromptSubmit"
STOP_TRIGGER = "Stop"


class ClaudeCodeAdapter(PromptAdapter):
    """Tails the hook queue written by the ``devark hook`` command."""

    source = SOURCE_CLAUDE

    def __init__(
        self,
        queue_path: Path | None = None,
        project_root: Path | None = None,
        auto_install_hooks: bool = True,
        hook_command: str = DEFAULT_HOOK_COMMAND,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        use_watcher: bool = True,
    ):
        super().__init__()
        self.queue_path = queue_path or get_hook_queue_path()
        self.project_root = project_root
        self.auto_install_hooks = auto_install_hooks
        self.hook_command = hook_command
        self.poll_interval = poll_interval
        self.use_watcher = use_watcher
        self._offset = 0
        self._stop_callbacks: list[Callable[[dict], None]] = []
        self._task: asyncio.Task | None = None
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def initialize(self) -> bool:
        try:
            self.queue_path.parent.mkdir(parents=True, exist_ok=True)
            self.queue_path.touch(exist_ok=True)
            self._offset = self.queue_path.stat().st_size
        except OSError as e:
            logger.warning("Cannot prepare hook queue %s: %s", self.queue_path, e)
            self._available = False
            return False

        if self.auto_install_hooks and self.project_root is not None:
            installer = ClaudeHookInstaller(self.project_root, self.hook_command)
            if not installer.status()["installed"]:
                result = installer.install()
                if not result.success:
                    logger.warning("Claude hook installation failed: %s", result.message)

        self._available = True
        return True

    def on_stop(self, callback: Callable[[dict], None]) -> None:
        """Register for response-complete notifications (``Stop`` hook)."""
        self._stop_callbacks.append(callback)

    async def start(self) -> None:
        if self._running or not self._available:
            return
        self._running = True
        self._loop = asyncio.get_running_loop()
        if self.use_watcher:
            self._start_observer()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Claude adapter watching %s", self.queue_path)

    async def stop(self) -> None:
        self._running = False
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def check_queue(self) -> list[PromptDetectedEvent]:
        """Read lines appended since the last check and emit prompt events."""
        try:
            size = self.queue_path.stat().st_size
        except OSError:
            return []
        if size < self._offset:
            logger.debug("Hook queue truncated, rewinding")
            self._offset = 0
        if size == self._offset:
            return []

        try:
            with self.queue_path.open("rb") as f:
                f.seek(self._offset)
                chunk = f.read(size - self._offset)
        except OSError as e:
            logger.warning("Failed to read hook queue: %s", e)
            return []

        # Only consume complete lines; a partial trailing line is read next time.
        end = chunk.rfind(b"\n")
        if end < 0:
            return []
        self._offset += end + 1

        events = []
        for raw_line in chunk[: end + 1].splitlines():
            entry = _parse_line(raw_line)
            if entry is None:
                continue
            if entry.get("trigger") == STOP_TRIGGER:
                self._notify_stop(entry)
                continue
            event = self._entry_to_event(entry)
            if event is not None:
                events.append(event)

        for event in events:
            self._emit(event)
        return events

    # ── Private helpers ──────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self._running:
            self.check_queue()
            await asyncio.sleep(self.poll_interval)

    def _start_observer(self) -> None:
        adapter = self

        class QueueHandler(FileSystemEventHandler):
            def on_modified(self, event: Any) -> None:
                if not event.is_directory and Path(event.src_path).name == adapter.queue_path.name:
                    adapter._schedule_check()

            on_created = on_modified

        try:
            self._observer = Observer()
            self._observer.schedule(QueueHandler(), str(self.queue_path.parent), recursive=False)
            self._observer.start()
        except OSError as e:
            logger.warning("Hook queue watcher failed, using polling only: %s", e)
            self._observer = None

    def _schedule_check(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.check_queue)

    def _entry_to_event(self, entry: dict) -> PromptDetectedEvent | None:
        if entry.get("trigger", PROMPT_TRIGGER) != PROMPT_TRIGGER:
            return None
        cwd = entry.get("cwd")
        if should_ignore_path(cwd):
            logger.debug("Ignoring prompt from %s", cwd)
            return None
        return PromptDetectedEvent(
            id=generate_prompt_id(self.source),
            source=entry.get("source") or self.source,
            session_id=str(entry.get("sessionId") or ""),
            text=str(entry.get("prompt") or ""),
            timestamp=parse_iso(entry.get("timestamp")) or utcnow(),
            context={
                "cwd": cwd,
                "transcriptPath": entry.get("transcriptPath"),
                "hookEventName": entry.get("hookEventName"),
            },
        )

    def _notify_stop(self, entry: dict) -> None:
        for callback in list(self._stop_callbacks):
            try:
                callback(entry)
            except Exception:
                logger.exception("Stop callback failed")


def _parse_line(raw_line: bytes) -> dict | None:
    line = raw_line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        logger.debug("Bad hook queue line: %s", e)
        return None
    return entry if isinstance(entry, dict) else None
