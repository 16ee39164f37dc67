"""Tests for prompt capture adapters and the detection service."""

import asyncio
import json
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
import pytest_asyncio

from devark.backends.cursor_db import MemoryCursorDatabase
from devark.core import PromptDetectedEvent, utcnow
from devark.detection import ClaudeCodeAdapter, CursorAdapter, PromptAdapter, PromptDetectionService
from devark.detection.hooks import append_hook_payload
from devark.detection.ignore_paths import should_ignore_path
from devark.errors import TransientIOError

from conftest import write_cursor_rows


def _ms(dt) -> int:
    return int(dt.timestamp() * 1000)


def _composer(updated, bubble_ids, **extra) -> str:
    return json.dumps({
        "_v": 9,
        "lastUpdatedAt": _ms(updated),
        "fullConversationHeadersOnly": [{"bubbleId": b, "type": 1} for b in bubble_ids],
        **extra,
    })


class FakeAdapter(PromptAdapter):
    source = "claude"

    async def initialize(self) -> bool:
        self._available = True
        return True

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    def push(self, text: str, session_id: str = "s1") -> None:
        self._emit(PromptDetectedEvent(source=self.source, session_id=session_id, text=text, timestamp=utcnow()))


class TestCursorAdapter:
    def test_v9_delta_detection(self, now):
        db = MemoryCursorDatabase({
            "composerData:C1": _composer(now, ["b1"]),
            "bubbleId:C1:b1": json.dumps({"type": 1, "text": "Set up the project"}),
        })
        adapter = CursorAdapter(database=db)
        received = []
        adapter.on_prompt(received.append)

        assert adapter.poll_once(now) == []

        db.rows["composerData:C1"] = _composer(now, ["b1", "b2"])
        db.rows["bubbleId:C1:b2"] = json.dumps({"type": 1, "text": "Fix login null-ptr"})
        events = adapter.poll_once(now)

        assert len(events) == 1
        assert (events[0].source, events[0].session_id, events[0].text) == ("cursor", "C1", "Fix login null-ptr")
        assert events[0].context["bubbleId"] == "b2"
        assert received == events

    def test_unchanged_composer_emits_nothing(self, now):
        db = MemoryCursorDatabase({"composerData:C1": _composer(now, ["b1"])})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)
        assert adapter.poll_once(now) == []

    def test_legacy_composer_trailing_messages(self, now):
        def legacy(messages):
            return json.dumps({"lastUpdatedAt": _ms(now), "messages": messages})

        first = [{"role": "user", "text": "one"}, {"role": "assistant", "text": "reply"}]
        db = MemoryCursorDatabase({"composerData:L1": legacy(first)})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)

        db.rows["composerData:L1"] = legacy(first + [{"role": "user", "text": "two"}])
        assert [e.text for e in adapter.poll_once(now)] == ["two"]

    def test_new_composer_within_window(self, now):
        db = MemoryCursorDatabase({})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)

        db.rows["composerData:fresh"] = _composer(now - timedelta(seconds=3), ["b1"])
        db.rows["bubbleId:fresh:b1"] = json.dumps({"type": 1, "text": "Brand new chat"})
        db.rows["composerData:old"] = _composer(now - timedelta(minutes=5), ["b9"])
        db.rows["bubbleId:old:b9"] = json.dumps({"type": 1, "text": "Opened an old chat"})

        assert [(e.session_id, e.text) for e in adapter.poll_once(now)] == [("fresh", "Brand new chat")]

    def test_ignored_workspace(self, now):
        db = MemoryCursorDatabase({"composerData:C1": _composer(now, ["b1"], workspacePath="/home/u/.cursor")})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)
        db.rows["composerData:C1"] = _composer(now, ["b1", "b2"], workspacePath="/home/u/.cursor")
        db.rows["bubbleId:C1:b2"] = json.dumps({"type": 1, "text": "ignored"})
        assert adapter.poll_once(now) == []

    def test_stale_snapshots_evicted(self, now):
        db = MemoryCursorDatabase({"composerData:C1": _composer(now - timedelta(hours=25), ["b1"])})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)
        assert "C1" not in adapter._snapshots

    def test_repeated_failures_mark_unavailable(self, now):
        class BusyDatabase(MemoryCursorDatabase):
            def scan(self, prefix):
                raise TransientIOError("database is locked")

        adapter = CursorAdapter(database=BusyDatabase())
        adapter._available = True
        for _ in range(2):
            assert adapter.poll_once(now) == []
            assert adapter.is_available() is True
        adapter.poll_once(now)
        assert adapter.is_available() is False

    def test_locked_bubble_is_retried_next_poll(self, now):
        class LockedOnceDatabase(MemoryCursorDatabase):
            locked = True

            def get(self, key):
                if key == "bubbleId:C1:b2" and self.locked:
                    self.locked = False
                    raise TransientIOError("database is locked")
                return super().get(key)

        db = LockedOnceDatabase({"composerData:C1": _composer(now, ["b1"])})
        adapter = CursorAdapter(database=db)
        adapter.poll_once(now)

        db.rows["composerData:C1"] = _composer(now, ["b1", "b2"])
        db.rows["bubbleId:C1:b2"] = json.dumps({"type": 1, "text": "Fix login"})

        assert adapter.poll_once(now) == []
        assert adapter._snapshots["C1"].bubble_ids == ["b1"]
        assert [e.text for e in adapter.poll_once(now)] == ["Fix login"]
        assert adapter.is_available() is True

    @pytest.mark.asyncio
    async def test_running_adapter_emits_on_loop_thread(self, now):
        db = MemoryCursorDatabase({"composerData:C1": _composer(now, ["b1"])})
        adapter = CursorAdapter(database=db, poll_interval=0.01)
        await adapter.initialize()
        received = asyncio.Queue()
        adapter.on_prompt(lambda e: received.put_nowait((threading.get_ident(), e)))
        await adapter.start()
        try:
            while not adapter._seeded:
                await asyncio.sleep(0.01)
            db.rows = {
                "composerData:C1": _composer(now, ["b1", "b2"]),
                "bubbleId:C1:b2": json.dumps({"type": 1, "text": "Add a retry"}),
            }
            thread_id, event = await asyncio.wait_for(received.get(), timeout=5)
        finally:
            await adapter.stop()
        assert thread_id == threading.get_ident()
        assert event.text == "Add a retry"

    @pytest.mark.asyncio
    async def test_unexpected_poll_error_is_logged_and_counted(self, caplog):
        class BrokenDatabase(MemoryCursorDatabase):
            def scan(self, prefix):
                raise RuntimeError("bad row layout")

        adapter = CursorAdapter(database=BrokenDatabase(), poll_interval=0.01)
        await adapter.initialize()
        await adapter.start()
        try:
            for _ in range(500):
                if not adapter.is_available():
                    break
                await asyncio.sleep(0.01)
        finally:
            await adapter.stop()
        assert adapter.is_available() is False
        assert "Cursor poll failed unexpectedly" in caplog.text

    def test_polls_sqlite_file(self, tmp_path, now):
        db_path = tmp_path / "state.vscdb"
        write_cursor_rows(db_path, {
            "composerData:C1": _composer(now, ["b1"]),
            "bubbleId:C1:b1": {"type": 1, "text": "first"},
        })
        adapter = CursorAdapter(db_path=db_path)
        adapter.poll_once(now)
        write_cursor_rows(db_path, {
            "composerData:C1": _composer(now, ["b1", "b2"]),
            "bubbleId:C1:b2": {"type": 1, "text": "second"},
        })
        assert [e.text for e in adapter.poll_once(now)] == ["second"]

    @pytest.mark.asyncio
    async def test_missing_database_is_unavailable(self, tmp_path):
        adapter = CursorAdapter(db_path=tmp_path / "missing.vscdb")
        assert await adapter.initialize() is False
        assert adapter.is_available() is False


class TestClaudeCodeAdapter:
    @pytest.fixture
    def queue_path(self, tmp_path):
        return tmp_path / "hooks" / "prompt-queue.jsonl"

    @pytest_asyncio.fixture
    async def adapter(self, queue_path):
        adapter = ClaudeCodeAdapter(queue_path=queue_path, auto_install_hooks=False, use_watcher=False)
        assert await adapter.initialize() is True
        return adapter

    @pytest.mark.asyncio
    async def test_existing_lines_are_skipped(self, queue_path):
        append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "old", "prompt": "before start"})
        adapter = ClaudeCodeAdapter(queue_path=queue_path, auto_install_hooks=False, use_watcher=False)
        await adapter.initialize()
        assert adapter.check_queue() == []

    @pytest.mark.asyncio
    async def test_prompt_event(self, adapter, queue_path):
        received = []
        adapter.on_prompt(received.append)
        append_hook_payload(queue_path, "UserPromptSubmit", {
            "session_id": "s1", "prompt": "Explain this stack trace", "cwd": "/work/api",
        })
        [event] = adapter.check_queue()
        assert (event.source, event.session_id, event.text) == ("claude", "s1", "Explain this stack trace")
        assert event.context["cwd"] == "/work/api"
        assert received == [event]
        assert adapter.check_queue() == []

    @pytest.mark.asyncio
    async def test_stop_trigger_notifies(self, adapter, queue_path):
        stops = []
        adapter.on_stop(stops.append)
        append_hook_payload(queue_path, "Stop", {"session_id": "s1"})
        assert adapter.check_queue() == []
        assert stops[0]["sessionId"] == "s1"

    @pytest.mark.asyncio
    async def test_partial_line_waits(self, adapter, queue_path):
        line = json.dumps({"trigger": "UserPromptSubmit", "sessionId": "s1", "prompt": "half"})
        with queue_path.open("a", encoding="utf-8") as f:
            f.write(line)
        assert adapter.check_queue() == []
        with queue_path.open("a", encoding="utf-8") as f:
            f.write("\n")
        assert [e.text for e in adapter.check_queue()] == ["half"]

    @pytest.mark.asyncio
    async def test_malformed_and_ignored_lines(self, adapter, queue_path):
        with queue_path.open("a", encoding="utf-8") as f:
            f.write("{not json\n")
        append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "s1", "prompt": "x", "cwd": "/tmp/devark-temp"})
        append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "s1", "prompt": "kept"})
        assert [e.text for e in adapter.check_queue()] == ["kept"]

    @pytest.mark.asyncio
    async def test_truncated_queue_rewinds(self, adapter, queue_path):
        append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "s1", "prompt": "a long first prompt"})
        adapter.check_queue()
        queue_path.write_text("", encoding="utf-8")
        append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "s1", "prompt": "b"})
        assert [e.text for e in adapter.check_queue()] == ["b"]

    @pytest.mark.asyncio
    async def test_initialize_installs_hooks(self, tmp_path, queue_path):
        adapter = ClaudeCodeAdapter(queue_path=queue_path, project_root=tmp_path, use_watcher=False)
        await adapter.initialize()
        settings = json.loads((tmp_path / ".claude" / "settings.json").read_text(encoding="utf-8"))
        assert set(settings["hooks"]) == {"UserPromptSubmit", "Stop"}

    @pytest.mark.asyncio
    async def test_running_adapter_delivers_on_loop(self, queue_path):
        adapter = ClaudeCodeAdapter(queue_path=queue_path, auto_install_hooks=False, poll_interval=0.1)
        await adapter.initialize()
        received = asyncio.Queue()
        adapter.on_prompt(received.put_nowait)
        await adapter.start()
        try:
            append_hook_payload(queue_path, "UserPromptSubmit", {"session_id": "s1", "prompt": "watched"})
            event = await asyncio.wait_for(received.get(), timeout=5)
        finally:
            await adapter.stop()
        assert event.text == "watched"


class TestIgnorePaths:
    @pytest.mark.parametrize("path", [
        "/home/u/.cursor",
        "C:\\Users\\u\\AppData\\Local\\Programs\\cursor\\resources",
        "/Users/u/project/.devark/temp-prompt-analysis",
        "/tmp/DEVARK-TEMP/",
    ])
    def test_ignored(self, path):
        assert should_ignore_path(path) is True

    @pytest.mark.parametrize("path", ["/home/u/.cursorrules", "/home/u/my-cursor-app", "", None])
    def test_not_ignored(self, path):
        assert should_ignore_path(path) is False


class TestPromptDetectionService:
    @pytest_asyncio.fixture
    async def service(self):
        service = PromptDetectionService()
        service.register_adapter(FakeAdapter())
        await service.start()
        return service

    def _adapter(self, service) -> FakeAdapter:
        return service.adapters[0]

    @pytest.mark.asyncio
    async def test_start_runs_adapters(self, service):
        status = service.get_status()
        assert status["running"] is True
        assert status["adapters"]["claude"] == {"available": True, "running": True}

    @pytest.mark.asyncio
    async def test_duplicates_within_window_dropped(self, service):
        received = []
        service.on_prompt_detected(received.append)
        adapter = self._adapter(service)
        adapter.push("Fix the bug")
        adapter.push("  Fix   the bug ")
        adapter.push("Fix the bug", session_id="s2")
        assert [(e.session_id, e.text) for e in received] == [("s1", "Fix the bug"), ("s2", "Fix the bug")]
        assert all(e.id for e in received)

    @pytest.mark.asyncio
    async def test_duplicates_after_window_delivered(self):
        service = PromptDetectionService(duplicate_window=2.0)
        adapter = FakeAdapter()
        service.register_adapter(adapter)
        received = []
        service.on_prompt_detected(received.append)
        with patch("devark.detection.service.time.monotonic", side_effect=[100.0, 103.0]):
            adapter.push("again")
            adapter.push("again")
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_skip_scoring_flags(self, service):
        received = []
        service.on_prompt_detected(received.append)
        adapter = self._adapter(service)
        adapter.push("/clear")
        adapter.push("[Tool result] ok")
        adapter.push("/review the auth module")
        assert [(e.skip_scoring, e.skip_reason) for e in received] == [
            (True, "slash_command"),
            (True, "tool_result"),
            (False, None),
        ]

    @pytest.mark.asyncio
    async def test_unsubscribe_and_failing_handler(self, service):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        service.on_prompt_detected(broken)
        unsubscribe = service.on_prompt_detected(received.append)
        self._adapter(service).push("first")
        unsubscribe()
        self._adapter(service).push("second")
        assert [e.text for e in received] == ["first"]

    @pytest.mark.asyncio
    async def test_async_handler_scheduled(self, service):
        done = asyncio.Event()

        async def handler(event):
            done.set()

        service.on_prompt_detected(handler)
        self._adapter(service).push("async please")
        await asyncio.wait_for(done.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_update_config_toggles_adapters(self, service):
        await service.update_config(enabled=False, auto_analyze=False)
        assert self._adapter(service).is_running is False
        assert service.config.auto_analyze is False
        await service.update_config(enabled=True)
        assert self._adapter(service).is_running is True

    @pytest.mark.asyncio
    async def test_failing_adapter_does_not_block_others(self):
        class Broken(FakeAdapter):
            source = "cursor"

            async def initialize(self) -> bool:
                raise OSError("no database")

        service = PromptDetectionService()
        service.register_adapter(Broken())
        service.register_adapter(FakeAdapter())
        await service.start()
        status = service.get_status()["adapters"]
        assert status["cursor"]["available"] is False
        assert status["claude"]["running"] is True
        await service.dispose()
