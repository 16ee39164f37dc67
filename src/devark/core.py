"""Core data models for devark."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

ACTIVE_WINDOW = timedelta(minutes=5)

SOURCE_CURSOR = "cursor"
SOURCE_CLAUDE = "claude"
KNOWN_SOURCES = (SOURCE_CURSOR, SOURCE_CLAUDE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO 8601 datetime string. Naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def ms_to_datetime(ms: Any) -> datetime | None:
    """Convert a millisecond timestamp to datetime, or None."""
    if ms is None or isinstance(ms, bool):
        return None
    try:
        return datetime.fromtimestamp(float(ms) / 1000, tz=timezone.utc)
    except (ValueError, OSError, OverflowError, TypeError):
        return None


@dataclass
class Message:
    """A single message within a session."""

    id: str
    role: str  # "user" | "assistant"
    content: str
    timestamp: Optional[datetime] = None
    bubble_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": to_iso(self.timestamp),
            "bubbleId": self.bubble_id,
        }


@dataclass
class Session:
    """A conversation with an AI tool, identified by (source, session_id)."""

    session_id: str
    source: str  # "cursor" | "claude"
    workspace_name: str
    start_time: datetime
    last_activity: datetime
    prompt_count: int = 0
    workspace_path: Optional[str] = None
    highlights: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.session_id)

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return now - self.last_activity <= ACTIVE_WINDOW

    @property
    def status(self) -> str:
        return "active" if self.is_active() else "historical"

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "source": self.source,
            "workspaceName": self.workspace_name,
            "workspacePath": self.workspace_path,
            "startTime": to_iso(self.start_time),
            "lastActivity": to_iso(self.last_activity),
            "promptCount": self.prompt_count,
            "status": self.status,
            "highlights": list(self.highlights),
        }


@dataclass
class PromptDetectedEvent:
    """A user prompt observed in one of the AI tools."""

    source: str
    session_id: str
    text: str
    timestamp: datetime
    context: dict = field(default_factory=dict)
    id: str = ""
    skip_scoring: bool = False
    skip_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "sessionId": self.session_id,
            "text": self.text,
            "timestamp": to_iso(self.timestamp),
            "context": self.context,
            "skipScoring": self.skip_scoring,
            "skipReason": self.skip_reason,
        }


@dataclass
class DimensionScore:
    score: float
    weight: float


@dataclass
class ScoreBreakdown:
    """The five weighted scoring dimensions."""

    specificity: DimensionScore
    context: DimensionScore
    intent: DimensionScore
    actionability: DimensionScore
    constraints: DimensionScore

    def dimensions(self) -> dict[str, DimensionScore]:
        return {
            "specificity": self.specificity,
            "context": self.context,
            "intent": self.intent,
            "actionability": self.actionability,
            "constraints": self.constraints,
        }

    def weighted_total(self) -> float:
        total = sum(d.score * d.weight for d in self.dimensions().values())
        return round(total, 1)

    def to_dict(self) -> dict:
        return {name: asdict(d) for name, d in self.dimensions().items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreBreakdown":
        return cls(**{
            name: DimensionScore(float(data[name]["score"]), float(data[name]["weight"]))
            for name in ("specificity", "context", "intent", "actionability", "constraints")
        })


@dataclass
class AnalyzedPrompt:
    """A prompt together with its score, as kept in prompt history."""

    id: str
    text: str
    truncated_text: str
    score: float
    timestamp: datetime
    category_scores: Optional[dict] = None
    breakdown: Optional[ScoreBreakdown] = None
    suggestions: list[str] = field(default_factory=list)
    improved_version: Optional[str] = None
    improved_score: Optional[float] = None
    source: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "truncatedText": self.truncated_text,
            "score": self.score,
            "timestamp": to_iso(self.timestamp),
            "categoryScores": self.category_scores,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "suggestions": list(self.suggestions),
            "improvedVersion": self.improved_version,
            "improvedScore": self.improved_score,
            "source": self.source,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalyzedPrompt":
        breakdown = data.get("breakdown")
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            truncated_text=data.get("truncatedText", ""),
            score=float(data.get("score", 0)),
            timestamp=parse_iso(data.get("timestamp")) or utcnow(),
            category_scores=data.get("categoryScores"),
            breakdown=ScoreBreakdown.from_dict(breakdown) if breakdown else None,
            suggestions=list(data.get("suggestions") or []),
            improved_version=data.get("improvedVersion"),
            improved_score=data.get("improvedScore"),
            source=data.get("source"),
            session_id=data.get("sessionId"),
        )


@dataclass
class SavedPrompt:
    """A prompt the user kept in their library."""

    id: str
    text: str
    created_at: datetime
    last_modified_at: datetime
    name: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    folder: Optional[str] = None
    project_id: Optional[str] = None  # None means global

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "name": self.name,
            "tags": list(self.tags),
            "folder": self.folder,
            "projectId": self.project_id,
            "createdAt": to_iso(self.created_at),
            "lastModifiedAt": to_iso(self.last_modified_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SavedPrompt":
        created = parse_iso(data.get("createdAt")) or utcnow()
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            name=data.get("name"),
            tags=list(data.get("tags") or []),
            folder=data.get("folder"),
            project_id=data.get("projectId"),
            created_at=created,
            last_modified_at=parse_iso(data.get("lastModifiedAt")) or created,
        )


@dataclass
class DailyStats:
    analyzed_today: int = 0
    avg_score: float = 0.0
    last_reset_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "analyzedToday": self.analyzed_today,
            "avgScore": self.avg_score,
            "lastResetDate": to_iso(self.last_reset_date),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DailyStats":
        return cls(
            analyzed_today=int(data.get("analyzedToday", 0)),
            avg_score=float(data.get("avgScore", 0.0)),
            last_reset_date=parse_iso(data.get("lastResetDate")),
        )


@dataclass
class DurationResult:
    duration_seconds: int = 0
    active_gaps: int = 0
    idle_gaps: int = 0

    def to_dict(self) -> dict:
        return {
            "durationSeconds": self.duration_seconds,
            "activeGaps": self.active_gaps,
            "idleGaps": self.idle_gaps,
        }
