"""Tests for token, history, saved-prompt and config persistence."""

import asyncio
import json
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from devark.core import AnalyzedPrompt
from devark.errors import InvalidInputError, QuotaError
from devark.storage import (
    ConfigStore,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    PromptHistoryStore,
    SavedPromptsStore,
    TokenStore,
)
from devark.storage.history import DAILY_STATS_KEY, HISTORY_KEY, MAX_HISTORY
from devark.storage.saved_prompts import MAX_SAVED_PROMPTS, SAVED_PROMPTS_KEY

TOKEN = "super-secret-api-key-12345"


def make_prompt(prompt_id: str, score: float = 7.0, timestamp: datetime | None = None, **extra) -> AnalyzedPrompt:
    text = extra.pop("text", f"prompt {prompt_id}")
    return AnalyzedPrompt(
        id=prompt_id,
        text=text,
        truncated_text=text,
        score=score,
        timestamp=timestamp or datetime.now(timezone.utc),
        **extra,
    )


class TestTokenStore:
    @pytest.fixture
    def store(self, tmp_path):
        return TokenStore(tmp_path / "config.json", tmp_path / ".key")

    def test_round_trip_across_instances(self, store, tmp_path):
        store.store_token(TOKEN)
        fresh = TokenStore(tmp_path / "config.json", tmp_path / ".key")
        assert fresh.get_token() == TOKEN
        assert fresh.has_token() is True

    def test_stored_format(self, store, tmp_path):
        store.store_token(TOKEN)
        stored = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))["token"]
        iv, tag, ciphertext = stored.split(":")
        assert len(bytes.fromhex(iv)) == 16
        assert len(bytes.fromhex(tag)) == 16
        assert TOKEN not in stored
        assert len((tmp_path / ".key").read_text(encoding="utf-8")) == 64

    def test_short_token_rejected_without_write(self, store, tmp_path):
        with pytest.raises(InvalidInputError):
            store.store_token("short")
        assert not (tmp_path / "config.json").exists()

    def test_missing_key_reads_as_no_token(self, store, tmp_path):
        store.store_token(TOKEN)
        key = tmp_path / ".key"
        key.chmod(0o600)
        key.unlink()
        assert store.get_token() is None

    def test_tampered_ciphertext(self, store, tmp_path):
        store.store_token(TOKEN)
        config_path = tmp_path / "config.json"
        config = json.loads(config_path.read_text(encoding="utf-8"))
        iv, tag, ciphertext = config["token"].split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0xFF, "02x") + ciphertext[2:]
        config["token"] = f"{iv}:{tag}:{flipped}"
        config_path.write_text(json.dumps(config), encoding="utf-8")
        assert store.get_token() is None

    def test_clear_keeps_other_fields(self, store, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"autoAnalyze": False}), encoding="utf-8")
        store.store_token(TOKEN)
        store.clear_token()
        assert json.loads(config_path.read_text(encoding="utf-8")) == {"autoAnalyze": False}
        assert store.get_token() is None

    def test_secrets(self, store):
        store.store_secret("provider.openrouter", "sk-or-abcdefghijkl")
        assert store.get_secret("provider.openrouter") == "sk-or-abcdefghijkl"
        store.delete_secret("provider.openrouter")
        assert store.get_secret("provider.openrouter") is None

    def test_garbage_value(self, store, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"token": "not:valid"}), encoding="utf-8")
        assert store.get_token() is None


class TestKeyValueStores:
    def test_memory_store_copies_values(self):
        kv = MemoryKeyValueStore()
        value = {"a": [1]}
        kv.update("k", value)
        value["a"].append(2)
        assert kv.get("k") == {"a": [1]}
        kv.update("k", None)
        assert kv.keys() == []

    def test_file_store_persists(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileKeyValueStore(path).update("k", {"x": 1})
        assert JsonFileKeyValueStore(path).get("k") == {"x": 1}

    def test_file_store_survives_corruption(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{oops", encoding="utf-8")
        assert JsonFileKeyValueStore(path).get("k", "default") == "default"


class TestPromptHistoryStore:
    @pytest.mark.asyncio
    async def test_add_newest_first_and_stats(self, kv):
        history = PromptHistoryStore(kv)
        history.initialize()
        await history.add_prompt(make_prompt("a", score=6.0))
        await history.add_prompt(make_prompt("b", score=8.0))

        assert [p.id for p in history.get_all()] == ["b", "a"]
        stats = history.get_daily_stats()
        assert stats.analyzed_today == 2
        assert stats.avg_score == 7.0
        assert kv.get(DAILY_STATS_KEY)["analyzedToday"] == 2

    @pytest.mark.asyncio
    async def test_capped_at_one_hundred(self, kv):
        history = PromptHistoryStore(kv)
        for i in range(MAX_HISTORY + 5):
            await history.add_prompt(make_prompt(f"p{i}"))
        prompts = history.get_all()
        assert len(prompts) == MAX_HISTORY
        assert prompts[0].id == f"p{MAX_HISTORY + 4}"
        assert len(kv.get(HISTORY_KEY)) == MAX_HISTORY

    @pytest.mark.asyncio
    async def test_same_id_replaces(self, kv):
        history = PromptHistoryStore(kv)
        await history.add_prompt(make_prompt("a", score=3.0))
        await history.add_prompt(make_prompt("a", score=9.0))
        assert [(p.id, p.score) for p in history.get_all()] == [("a", 9.0)]

    @pytest.mark.asyncio
    async def test_concurrent_adds_are_all_kept(self, kv):
        history = PromptHistoryStore(kv)
        await asyncio.gather(*(history.add_prompt(make_prompt(f"c{i}")) for i in range(20)))
        assert len(history.get_all()) == 20
        assert len(kv.get(HISTORY_KEY)) == 20

    def test_initialize_purges_old_entries(self):
        now = datetime.now(timezone.utc)
        kv = MemoryKeyValueStore({HISTORY_KEY: [
            make_prompt("new", timestamp=now).to_dict(),
            make_prompt("old", timestamp=now - timedelta(days=31)).to_dict(),
            {"bogus": True},
        ]})
        history = PromptHistoryStore(kv)
        history.initialize()
        assert [p.id for p in history.get_all()] == ["new"]
        assert [p["id"] for p in kv.get(HISTORY_KEY)] == ["new"]

    def test_stale_daily_stats_reset(self):
        yesterday = datetime.now(timezone.utc) - timedelta(days=2)
        kv = MemoryKeyValueStore({
            HISTORY_KEY: [make_prompt("old", timestamp=yesterday).to_dict()],
            DAILY_STATS_KEY: {"analyzedToday": 9, "avgScore": 5.5, "lastResetDate": yesterday.isoformat()},
        })
        history = PromptHistoryStore(kv)
        history.initialize()
        assert history.get_daily_stats().analyzed_today == 0
        assert len(history.get_all()) == 1

    @pytest.mark.asyncio
    async def test_queries_and_clear(self, kv):
        history = PromptHistoryStore(kv)
        await history.add_prompt(make_prompt("a", session_id="s1"))
        await history.add_prompt(make_prompt("b", session_id="s2"))
        assert history.get_by_id("a").session_id == "s1"
        assert [p.id for p in history.get_for_session("s2")] == ["b"]
        assert [p.id for p in history.get_recent(1)] == ["b"]

        changes = []
        history.on_change(lambda: changes.append(True))
        history.clear()
        assert history.get_all() == []
        assert history.get_daily_stats().analyzed_today == 0
        assert changes == [True]

    @pytest.mark.asyncio
    async def test_listener_failure_is_isolated(self, kv):
        history = PromptHistoryStore(kv)
        history.on_change(lambda: 1 / 0)
        await history.add_prompt(make_prompt("a"))
        assert len(history.get_all()) == 1


class TestSavedPromptsStore:
    def test_save_and_query(self, kv):
        store = SavedPromptsStore(kv)
        first = store.save("Write unit tests for {file}", name="Tests", tags=["testing", "testing", " qa "])
        store.save("Explain this error", folder="debug", project_id="proj-1")

        assert first.id.startswith("sp_")
        assert first.tags == ["testing", "qa"]
        assert store.count == 2
        assert [p.text for p in store.get_by_tag("QA")] == ["Write unit tests for {file}"]
        assert store.get_folders() == ["debug"]
        assert store.get_tags() == ["qa", "testing"]
        assert [p.name for p in store.search("tests")] == ["Tests"]
        assert len(store.get_all(project_id="proj-1")) == 2
        assert len(store.get_all(project_id="proj-2")) == 1
        assert len(kv.get(SAVED_PROMPTS_KEY)) == 2

    def test_update_rename_delete(self, kv):
        store = SavedPromptsStore(kv)
        prompt = store.save("Draft")
        store.update(prompt.id, text="Final", tags=["x"])
        store.rename(prompt.id, "Named")
        reloaded = SavedPromptsStore(kv).get(prompt.id)
        assert (reloaded.text, reloaded.name, reloaded.tags) == ("Final", "Named", ["x"])
        assert store.delete(prompt.id) is True
        assert store.delete(prompt.id) is False
        with pytest.raises(InvalidInputError):
            store.rename("missing", "x")

    def test_empty_text_rejected(self, kv):
        with pytest.raises(InvalidInputError):
            SavedPromptsStore(kv).save("   ")

    def test_limit(self):
        existing = [
            {"id": f"sp_{i}", "text": f"t{i}", "createdAt": "2025-01-01T00:00:00+00:00"}
            for i in range(MAX_SAVED_PROMPTS)
        ]
        store = SavedPromptsStore(MemoryKeyValueStore({SAVED_PROMPTS_KEY: existing}))
        assert store.near_limit is True
        with pytest.raises(QuotaError):
            store.save("one too many")


class TestConfigStore:
    def test_missing_and_corrupt_files_read_as_empty(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        assert store.load() == {}
        assert store.get("a.b", 3) == 3
        (tmp_path / "config.json").write_text("[1, 2", encoding="utf-8")
        assert store.load() == {}

    def test_dotted_keys(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        store.set("providers.ollama.model", "llama3")
        store.update({"providers.ollama.endpoint": "http://x", "autoAnalyze": False})
        assert store.get("providers.ollama") == {"model": "llama3", "endpoint": "http://x"}
        assert store.get("autoAnalyze") is False
        assert store.delete("providers.ollama.model") is True
        assert store.delete("providers.nothing.here") is False
        assert store.get("providers.ollama.model") is None

    def test_watch_notifies_once_per_burst(self, tmp_path):
        path = tmp_path / "config.json"
        store = ConfigStore(path, debounce=0.2)
        seen = []
        notified = threading.Event()

        def listener(data):
            seen.append(data)
            notified.set()

        store.on_change(listener)
        store.watch()
        try:
            for i in range(3):
                path.write_text(json.dumps({"count": i}), encoding="utf-8")
            assert notified.wait(timeout=5)
            time.sleep(0.5)
        finally:
            store.unwatch()
        assert len(seen) == 1
        assert seen[0] == {"count": 2}
