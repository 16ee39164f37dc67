"""Prompt scoring: rubric prompt, lenient parsing, caching and history writes.

The provider is asked for a strict JSON object scoring five dimensions on
0-10. Scores outside the range are clamped, the weighted sum rounded to one
decimal becomes the prompt's score. A reply that cannot be parsed gets one
retry with a stricter reminder; a second failure surfaces as
``analysisFailed`` and nothing is stored.
"""

import asyncio
import json
import logging
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..core import AnalyzedPrompt, DimensionScore, PromptDetectedEvent, ScoreBreakdown, utcnow
from ..errors import DevarkError, ParseError, PermanentIOError, error_payload
from ..prompt_utils import generate_prompt_id, truncate
from ..storage.history import PromptHistoryStore
from .base import GenerateRequest
from .cache import ScoreCache
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIMENSION_WEIGHTS = {
    "specificity": 0.20,
    "context": 0.25,
    "intent": 0.25,
    "actionability": 0.15,
    "constraints": 0.15,
}
MAX_SUGGESTIONS = 4
MAX_SUGGESTION_LENGTH = 300
MAX_IMPROVED_LENGTH = 4000
TRUNCATED_TEXT_LENGTH = 100

EVENT_ANALYZING = "promptAnalyzing"
EVENT_SCORED = "scoreReceived"
EVENT_FAILED = "analysisFailed"
CANCELLED_ERROR = {"name": "Cancelled", "message": "Analysis cancelled"}

SYSTEM_PROMPT = """You are a prompt quality analyzer for AI coding assistants.

Score the user's prompt on five dimensions, each 0-10:
1. specificity: are requirements concrete and well defined?
2. context: is relevant background (files, stack, current state) provided?
3. intent: is the goal clear and unambiguous?
4. actionability: can the assistant act on it directly? Is the expected output clear?
5. constraints: are limits, requirements or boundaries stated?

0-3 poor, 4-6 adequate, 7-8 good, 9-10 excellent.

Respond with ONLY a JSON object in exactly this shape:
{
  "specificity": <number>,
  "context": <number>,
  "intent": <number>,
  "actionability": <number>,
  "constraints": <number>,
  "suggestions": ["<short actionable suggestion>", ...],
  "improvedVersion": "<a rewritten, stronger version of the prompt>"
}
Give 2-4 suggestions."""

STRICT_REMINDER = (
    "Your previous reply was not valid JSON. Reply with the JSON object only: "
    "no markdown fences, no commentary, all five numeric fields present."
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

EventListener = Callable[[str, dict], Any]


@dataclass
class ScoreResult:
    score: float
    breakdown: ScoreBreakdown
    suggestions: list[str] = field(default_factory=list)
    improved_version: str | None = None

    @property
    def category_scores(self) -> dict:
        """Legacy four-category view shown by older panels."""
        b = self.breakdown
        return {
            "clarity": b.intent.score,
            "specificity": b.specificity.score,
            "context": b.context.score,
            "actionability": b.actionability.score,
        }


def parse_score_response(text: str) -> ScoreResult:
    """Parse a provider reply into a ScoreResult, raising ParseError when unusable."""
    match = _JSON_OBJECT_RE.search(text or "")
    if match is None:
        raise ParseError("No JSON object in scoring reply")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in scoring reply: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("Scoring reply is not an object")

    dimensions = {}
    for name, weight in DIMENSION_WEIGHTS.items():
        raw = data.get(name)
        if isinstance(raw, dict):
            raw = raw.get("score")
        if isinstance(raw, bool):
            raw = None
        try:
            value = float(raw)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Missing or non-numeric {name} score") from e
        if math.isnan(value):
            raise ParseError(f"Missing or non-numeric {name} score")
        dimensions[name] = DimensionScore(score=min(10.0, max(0.0, value)), weight=weight)

    breakdown = ScoreBreakdown(**dimensions)
    return ScoreResult(
        score=breakdown.weighted_total(),
        breakdown=breakdown,
        suggestions=_clean_suggestions(data.get("suggestions")),
        improved_version=_clean_improved(data.get("improvedVersion")),
    )


class ScoringPipeline:
    """Scores prompts with the active provider and records them in history."""

    def __init__(
        self,
        registry: ProviderRegistry,
        history: PromptHistoryStore,
        cache: ScoreCache | None = None,
    ):
        self.registry = registry
        self.history = history
        self.cache: ScoreCache[ScoreResult] = cache if cache is not None else ScoreCache()
        self._listeners: list[EventListener] = []
        self._tasks: set[asyncio.Task] = set()

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    async def score_text(self, text: str) -> ScoreResult:
        """Score ``text``, using the cache when possible. Raises DevarkError."""
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Score cache hit")
            return cached

        provider = self.registry.active_provider
        if provider is None:
            raise PermanentIOError("No LLM provider selected")

        request = GenerateRequest(system=SYSTEM_PROMPT, user=f"Prompt to analyze:\n\n{text}")
        reply = await provider.generate(request)
        try:
            result = parse_score_response(reply.text)
        except ParseError as e:
            logger.info("Unparsable score from %s, retrying: %s", provider.id, e)
            request.system = f"{SYSTEM_PROMPT}\n\n{STRICT_REMINDER}"
            reply = await provider.generate(request)
            result = parse_score_response(reply.text)

        self.cache.put(text, result)
        return result

    async def analyze(
        self,
        text: str,
        source: str | None = None,
        session_id: str | None = None,
        prompt_id: str | None = None,
    ) -> AnalyzedPrompt | None:
        """Score a prompt and persist it; returns None when analysis failed."""
        prompt_id = prompt_id or generate_prompt_id(source or "manual")
        self._emit(EVENT_ANALYZING, {"id": prompt_id, "text": text, "source": source})
        try:
            result = await self.score_text(text)
        except DevarkError as e:
            logger.warning("Prompt analysis failed: %s", e)
            self._emit(EVENT_FAILED, {"id": prompt_id, "error": error_payload(e)})
            return None
        except asyncio.CancelledError:
            logger.info("Prompt analysis %s cancelled", prompt_id)
            self._emit(EVENT_FAILED, {"id": prompt_id, "error": dict(CANCELLED_ERROR), "cancelled": True})
            raise

        analyzed = AnalyzedPrompt(
            id=prompt_id,
            text=text,
            truncated_text=truncate(text, TRUNCATED_TEXT_LENGTH),
            score=result.score,
            timestamp=utcnow(),
            category_scores=result.category_scores,
            breakdown=result.breakdown,
            suggestions=list(result.suggestions),
            improved_version=result.improved_version,
            source=source,
            session_id=session_id,
        )
        await self.history.add_prompt(analyzed)
        self._emit(EVENT_SCORED, {
            "prompt": analyzed.to_dict(),
            "dailyStats": self.history.get_daily_stats().to_dict(),
        })
        return analyzed

    def score_event(self, event: PromptDetectedEvent) -> asyncio.Task | None:
        """Schedule analysis of a detected prompt unless it is marked skip."""
        if event.skip_scoring:
            logger.debug("Not scoring %s: %s", event.id, event.skip_reason)
            return None
        return self._track(
            self.analyze(event.text, source=event.source, session_id=event.session_id, prompt_id=event.id)
        )

    async def run_tracked(self, coro: Awaitable[T]) -> T | None:
        """Await ``coro`` as a task that :meth:`cancel_loading` can cancel.

        Returns None if the task was cancelled; errors propagate.
        """
        task = self._track(coro)
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    def cancel_loading(self) -> int:
        """Cancel every in-flight analysis. Returns how many were cancelled."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    @property
    def is_loading(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # ── Private helpers ──────────────────────────────────────────────

    def _track(self, coro: Awaitable[T]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _emit(self, event_type: str, data: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type, data)
            except Exception:
                logger.exception("Scoring listener failed for %s", event_type)


def _clean_suggestions(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    cleaned = []
    for item in raw:
        if isinstance(item, str) and item.strip():
            cleaned.append(item.strip()[:MAX_SUGGESTION_LENGTH])
        if len(cleaned) == MAX_SUGGESTIONS:
            break
    return cleaned


def _clean_improved(raw: Any) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    return raw.strip()[:MAX_IMPROVED_LENGTH]
