"""Tests for LLM providers, the provider registry and the scoring pipeline."""

import asyncio
import json

import httpx
import pytest

from conftest import GOOD_REPLY, FakeProvider
from devark.core import PromptDetectedEvent, utcnow
from devark.errors import AuthError, InvalidInputError, ParseError, PermanentIOError, TransientIOError
from devark.llm import (
    CloudProvider,
    GenerateRequest,
    OllamaProvider,
    OpenRouterProvider,
    ProviderRegistry,
    ScoringPipeline,
)
from devark.llm.cache import ScoreCache
from devark.llm.scoring import EVENT_ANALYZING, EVENT_FAILED, EVENT_SCORED, STRICT_REMINDER, parse_score_response
from devark.storage import ConfigStore, MemoryKeyValueStore, PromptHistoryStore, TokenStore


@pytest.fixture
def config(tmp_path):
    return ConfigStore(tmp_path / "config.json")


@pytest.fixture
def tokens(tmp_path):
    return TokenStore(tmp_path / "config.json", tmp_path / ".key")


@pytest.fixture
def registry(config, tokens):
    return ProviderRegistry(config, tokens)


def pipeline_with(registry, replies) -> tuple[ScoringPipeline, FakeProvider, list]:
    provider = FakeProvider(replies)
    registry.register(provider)
    registry.set_active_provider("fake")
    pipeline = ScoringPipeline(registry, PromptHistoryStore(MemoryKeyValueStore()))
    events = []
    pipeline.on_event(lambda kind, data: events.append((kind, data)))
    return pipeline, provider, events


class TestParseScoreResponse:
    def test_weighted_score(self):
        result = parse_score_response(GOOD_REPLY)
        # 6*.20 + 4*.25 + 8*.25 + 7*.15 + 5*.15
        assert result.score == 6.0
        assert result.suggestions == ["Name the file", "Describe the expected behavior"]
        assert result.category_scores == {"clarity": 8.0, "specificity": 6.0, "context": 4.0, "actionability": 7.0}

    def test_json_inside_prose_and_fences(self):
        result = parse_score_response(f"Here you go:\n```json\n{GOOD_REPLY}\n```")
        assert result.breakdown.intent.score == 8.0

    def test_nested_score_objects(self):
        reply = json.dumps({name: {"score": 5, "reason": "ok"} for name in
                            ("specificity", "context", "intent", "actionability", "constraints")})
        assert parse_score_response(reply).score == 5.0

    def test_clamped(self):
        reply = json.dumps({"specificity": 14, "context": -3, "intent": 10, "actionability": 10, "constraints": 10})
        result = parse_score_response(reply)
        assert result.breakdown.specificity.score == 10.0
        assert result.breakdown.context.score == 0.0

    @pytest.mark.parametrize("reply", [
        "no json at all",
        "{not: valid}",
        json.dumps({"specificity": 5}),
        json.dumps({"specificity": "high", "context": 1, "intent": 1, "actionability": 1, "constraints": 1}),
        json.dumps({"specificity": True, "context": 1, "intent": 1, "actionability": 1, "constraints": 1}),
    ])
    def test_unusable_replies(self, reply):
        with pytest.raises(ParseError):
            parse_score_response(reply)

    def test_suggestions_capped(self):
        data = json.loads(GOOD_REPLY)
        data["suggestions"] = ["x" * 500] + [f"s{i}" for i in range(6)] + [3, ""]
        result = parse_score_response(json.dumps(data))
        assert len(result.suggestions) == 4
        assert len(result.suggestions[0]) == 300


class TestScoreCache:
    def test_normalized_keys(self):
        cache = ScoreCache()
        cache.put("Fix bug", 1)
        assert cache.get(" Fix  bug ") == 1

    def test_lru_eviction(self):
        cache = ScoreCache(max_entries=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert len(cache) == 2

    def test_ttl(self):
        now = [1000.0]
        cache = ScoreCache(ttl=10, clock=lambda: now[0])
        cache.put("a", 1)
        now[0] += 11
        assert cache.get("a") is None


class TestScoringPipeline:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, registry):
        pipeline, provider, _ = pipeline_with(registry, [GOOD_REPLY])
        first = await pipeline.score_text("Fix bug")
        second = await pipeline.score_text(" Fix  bug ")
        assert len(provider.requests) == 1
        assert second.score == first.score

    @pytest.mark.asyncio
    async def test_retry_with_strict_reminder(self, registry):
        pipeline, provider, _ = pipeline_with(registry, ["Sure! Scores: great", GOOD_REPLY])
        result = await pipeline.score_text("Fix bug")
        assert result.score == 6.0
        assert len(provider.requests) == 2
        assert STRICT_REMINDER in provider.requests[1].system

    @pytest.mark.asyncio
    async def test_analyze_success_records_history(self, registry):
        pipeline, _, events = pipeline_with(registry, [GOOD_REPLY])
        analyzed = await pipeline.analyze("Fix the login bug", source="claude", session_id="s1", prompt_id="p1")

        assert analyzed.id == "p1"
        assert pipeline.history.get_by_id("p1").score == 6.0
        assert [kind for kind, _ in events] == [EVENT_ANALYZING, EVENT_SCORED]
        scored = events[1][1]
        assert scored["prompt"]["sessionId"] == "s1"
        assert scored["dailyStats"]["analyzedToday"] == 1

    @pytest.mark.asyncio
    async def test_analyze_failure_emits_and_stores_nothing(self, registry):
        pipeline, _, events = pipeline_with(registry, ["garbage", "still garbage"])
        assert await pipeline.analyze("Fix bug", prompt_id="p1") is None
        assert pipeline.history.get_all() == []
        kind, data = events[-1]
        assert kind == EVENT_FAILED
        assert data["id"] == "p1"
        assert data["error"]["name"] == "ParseError"

    @pytest.mark.asyncio
    async def test_provider_error_surfaces_as_failure(self, registry):
        pipeline, _, events = pipeline_with(registry, [TransientIOError("timeout")])
        assert await pipeline.analyze("Fix bug") is None
        assert events[-1][1]["error"]["name"] == "TransientIO"

    @pytest.mark.asyncio
    async def test_no_active_provider(self, registry):
        pipeline = ScoringPipeline(registry, PromptHistoryStore(MemoryKeyValueStore()))
        with pytest.raises(PermanentIOError):
            await pipeline.score_text("anything")

    @pytest.mark.asyncio
    async def test_score_event_respects_skip(self, registry):
        pipeline, provider, _ = pipeline_with(registry, [GOOD_REPLY])
        skipped = PromptDetectedEvent(source="claude", session_id="s", text="/clear", timestamp=utcnow(),
                                      id="e0", skip_scoring=True, skip_reason="slash_command")
        assert pipeline.score_event(skipped) is None

        event = PromptDetectedEvent(source="claude", session_id="s", text="Explain", timestamp=utcnow(), id="e1")
        analyzed = await pipeline.score_event(event)
        assert analyzed.id == "e1"
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_cancel_loading(self, registry):
        started = asyncio.Event()

        class SlowProvider(FakeProvider):
            async def generate(self, request):
                started.set()
                await asyncio.sleep(10)

        provider = SlowProvider([])
        registry.register(provider)
        registry.set_active_provider("fake")
        pipeline = ScoringPipeline(registry, PromptHistoryStore(MemoryKeyValueStore()))
        task = pipeline.score_event(PromptDetectedEvent(source="claude", session_id="s", text="x", timestamp=utcnow()))
        await started.wait()
        assert pipeline.is_loading is True
        assert pipeline.cancel_loading() == 1
        with pytest.raises(asyncio.CancelledError):
            await task
        assert pipeline.is_loading is False

    @pytest.mark.asyncio
    async def test_cancel_loading_reaches_awaited_analysis(self, registry):
        started = asyncio.Event()

        class SlowProvider(FakeProvider):
            async def generate(self, request):
                started.set()
                await asyncio.sleep(30)

        registry.register(SlowProvider([]))
        registry.set_active_provider("fake")
        history = PromptHistoryStore(MemoryKeyValueStore())
        pipeline = ScoringPipeline(registry, history)
        events = []
        pipeline.on_event(lambda t, d: events.append((t, d)))

        running = asyncio.create_task(pipeline.run_tracked(pipeline.analyze("Explain", prompt_id="p9")))
        await started.wait()
        assert pipeline.is_loading is True
        assert pipeline.cancel_loading() == 1

        assert await running is None
        assert pipeline.is_loading is False
        assert events[-1] == (EVENT_FAILED, {
            "id": "p9",
            "error": {"name": "Cancelled", "message": "Analysis cancelled"},
            "cancelled": True,
        })
        assert history.get_all() == []

    @pytest.mark.asyncio
    async def test_run_tracked_propagates_errors(self, registry):
        pipeline = ScoringPipeline(registry, PromptHistoryStore(MemoryKeyValueStore()))
        with pytest.raises(PermanentIOError):
            await pipeline.run_tracked(pipeline.score_text("Explain"))
        assert pipeline.is_loading is False


def ollama_transport(models=("llama3.2:latest",), reply=GOOD_REPLY, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/api/version":
            return httpx.Response(200, json={"version": "0.5.0"})
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        if request.url.path == "/api/generate":
            return httpx.Response(200, json={"response": reply, "eval_count": 42})
        return httpx.Response(404)
    return httpx.MockTransport(handler)


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_detect(self):
        result = await OllamaProvider(transport=ollama_transport()).detect()
        assert result.available is True
        assert result.models == ["llama3.2:latest"]

    @pytest.mark.asyncio
    async def test_detect_without_models(self):
        result = await OllamaProvider(transport=ollama_transport(models=())).detect()
        assert result.available is False

    @pytest.mark.asyncio
    async def test_detect_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        result = await OllamaProvider(transport=httpx.MockTransport(refuse)).detect()
        assert result.available is False

    @pytest.mark.asyncio
    async def test_generate_uses_first_model(self):
        seen = []
        provider = OllamaProvider(transport=ollama_transport(seen=seen))
        result = await provider.generate(GenerateRequest(system="sys", user="Fix bug"))
        assert result.tokens_used == 42
        body = json.loads(seen[-1].content)
        assert body["model"] == "llama3.2:latest"
        assert body["stream"] is False
        assert body["system"] == "sys"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        provider = OllamaProvider(model="m", transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        with pytest.raises(TransientIOError):
            await provider.generate(GenerateRequest(system="s", user="u"))


class TestOpenRouterProvider:
    @pytest.mark.asyncio
    async def test_generate(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": GOOD_REPLY}}],
                "usage": {"total_tokens": 99},
            })

        provider = OpenRouterProvider(api_key="sk-or-test-key", transport=httpx.MockTransport(handler))
        result = await provider.generate(GenerateRequest(system="s", user="u"))
        assert result.text == GOOD_REPLY
        assert result.tokens_used == 99
        assert seen[0].headers["Authorization"] == "Bearer sk-or-test-key"
        assert seen[0].headers["X-Title"] == "devark"

    @pytest.mark.asyncio
    async def test_detect_without_key(self):
        assert (await OpenRouterProvider().detect()).available is False

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        provider = OpenRouterProvider(api_key="bad-key-123", transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        assert (await provider.detect()).reason == "OpenRouter rejected the API key"
        with pytest.raises(AuthError):
            await provider.generate(GenerateRequest(system="s", user="u"))


class TestCloudProvider:
    @pytest.mark.asyncio
    async def test_generate_with_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"text": GOOD_REPLY})

        provider = CloudProvider(lambda: "tok-1234567890", endpoint="http://cloud.test",
                                 transport=httpx.MockTransport(handler))
        result = await provider.generate(GenerateRequest(system="s", user="u"))
        assert result.text == GOOD_REPLY
        assert seen[0].url.path == "/api/llm/generate"
        assert seen[0].headers["Authorization"] == "Bearer tok-1234567890"

    @pytest.mark.asyncio
    async def test_signed_out(self):
        provider = CloudProvider(lambda: None, endpoint="http://cloud.test")
        assert (await provider.detect()).available is False
        with pytest.raises(AuthError):
            await provider.generate(GenerateRequest(system="s", user="u"))


class TestProviderRegistry:
    def test_active_provider_persisted(self, registry, config, tokens):
        registry.register(OllamaProvider())
        registry.set_active_provider("ollama")
        assert config.get("activeProvider") == "ollama"

        again = ProviderRegistry(config, tokens)
        again.register(OllamaProvider())
        assert again.active_provider.id == "ollama"

    def test_unknown_provider(self, registry):
        with pytest.raises(InvalidInputError):
            registry.set_active_provider("nope")

    def test_configure_stores_key_encrypted(self, registry, config):
        registry.register(OpenRouterProvider())
        registry.configure_provider("openrouter", model="openai/gpt-4o-mini", api_key="sk-or-secret-value")

        settings = config.get("providers.openrouter")
        assert settings == {"model": "openai/gpt-4o-mini", "apiKeyRef": "provider.openrouter"}
        assert "sk-or-secret-value" not in config.path.read_text(encoding="utf-8")

        provider = registry.get_provider("openrouter")
        assert provider.api_key == "sk-or-secret-value"
        assert provider.model == "openai/gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_auto_select_first_available(self, registry):
        registry.register(OpenRouterProvider())
        registry.register(OllamaProvider(transport=ollama_transport()))
        assert await registry.auto_select() == "ollama"
        assert registry.active_provider_id == "ollama"

    @pytest.mark.asyncio
    async def test_detect_all_isolates_failures(self, registry):
        class Exploding(FakeProvider):
            id = "boom"

            async def detect(self):
                raise RuntimeError("kaboom")

        registry.register(Exploding([]))
        registry.register(FakeProvider([]))
        detected = await registry.detect_all()
        assert detected["boom"].available is False
        assert detected["fake"].available is True
