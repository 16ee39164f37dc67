"""Shared test fixtures for devark."""

import json
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from devark.backends.claude_code import ClaudeCodeReader
from devark.backends.cursor import CursorReader
from devark.llm import GenerateRequest, GenerateResult, LLMProvider
from devark.llm.base import DetectionResult
from devark.services import Services
from devark.storage import MemoryKeyValueStore


GOOD_REPLY = json.dumps({
    "specificity": 6,
    "context": 4,
    "intent": 8,
    "actionability": 7,
    "constraints": 5,
    "suggestions": ["Name the file", "Describe the expected behavior"],
    "improvedVersion": "Fix the null check in auth.ts so login succeeds for new users.",
})


class FakeProvider(LLMProvider):
    """Replays canned replies and records every request."""

    id = "fake"
    name = "Fake"

    def __init__(self, replies: list[str]):
        super().__init__("http://fake")
        self.replies = list(replies)
        self.requests: list[GenerateRequest] = []

    async def detect(self) -> DetectionResult:
        return DetectionResult(True, models=["fake-1"])

    async def list_models(self) -> list[str]:
        return ["fake-1"]

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        self.requests.append(GenerateRequest(request.system, request.user))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return GenerateResult(text=reply)


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def write_cursor_rows(db_path, rows: dict) -> None:
    """Insert or replace ``cursorDiskKV`` rows; dict/list values are JSON-encoded."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE IF NOT EXISTS ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in rows.items():
        if not isinstance(value, str):
            value = json.dumps(value)
        conn.execute("INSERT INTO cursorDiskKV VALUES (?, ?)", (key, value))
    conn.commit()
    conn.close()


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def cursor_rows(now):
    """Composer rows covering legacy, v9+ bubble, mixed and stale sessions."""
    started = now - timedelta(hours=1)
    return {
        "composerData:comp-legacy": {
            "composerId": "comp-legacy",
            "createdAt": _ms(started),
            "lastUpdatedAt": _ms(now - timedelta(minutes=5)),
            "workspaceName": "my-project",
            "workspacePath": "/Users/testuser/dev/my-project",
            "conversation": [
                {"role": "user", "content": "Fix the login authentication bug in auth.ts",
                 "timestamp": _ms(started)},
                {"role": "assistant", "content": "Fixed authentication by updating token validation",
                 "timestamp": _ms(started + timedelta(seconds=30))},
                {"role": "user", "content": "Now add error handling for expired tokens",
                 "timestamp": _ms(started + timedelta(minutes=2))},
                {"role": "assistant", "content": "Added a try/except around token refresh",
                 "timestamp": _ms(started + timedelta(minutes=3))},
            ],
        },
        "composerData:comp-v9": {
            "_v": 9,
            "composerId": "comp-v9",
            "createdAt": _ms(now - timedelta(minutes=30)),
            "lastUpdatedAt": _ms(now - timedelta(minutes=1)),
            "workspacePath": "/Users/testuser/dev/dark-mode",
            "fullConversationHeadersOnly": [
                {"bubbleId": "b1", "type": 1},
                {"bubbleId": "b2", "type": 2},
            ],
        },
        "bubbleId:comp-v9:b1": {"type": 1, "text": "Add dark mode support to the settings page",
                                "createdAt": _ms(now - timedelta(minutes=30))},
        "bubbleId:comp-v9:b2": {"type": 2, "text": "Implemented a dark mode toggle with CSS variables",
                                "createdAt": _ms(now - timedelta(minutes=29))},
        "composerData:comp-mixed": {
            "composerId": "comp-mixed",
            "lastUpdatedAt": _ms(now - timedelta(minutes=10)),
            "messages": [],
            "fullConversationHeadersOnly": [{"bubbleId": "x1", "type": 1}],
        },
        "composerData:comp-stale": {
            "composerId": "comp-stale",
            "createdAt": _ms(now - timedelta(days=3)),
            "lastUpdatedAt": _ms(now - timedelta(days=3)),
            "workspace": "old-project",
            "promptCount": 4,
        },
        "composerData:comp-broken": "{not json",
    }


@pytest.fixture
def cursor_db(tmp_path, cursor_rows):
    """A Cursor global ``state.vscdb`` with a populated ``cursorDiskKV`` table."""
    db_path = tmp_path / "globalStorage" / "state.vscdb"
    db_path.parent.mkdir(parents=True)
    write_cursor_rows(db_path, cursor_rows)
    return db_path


@pytest.fixture
def claude_projects(tmp_path, now):
    """A Claude Code projects directory with one realistic transcript.

    Includes user prompts, a slash command, tool_use / tool_result blocks,
    thinking blocks, skipped entry types and a malformed line.
    """
    projects = tmp_path / "projects"
    project_dir = projects / "-Users-testuser-dev-myapp"
    project_dir.mkdir(parents=True)

    def ts(minutes: int) -> str:
        return (now - timedelta(minutes=60 - minutes)).isoformat().replace("+00:00", "Z")

    lines = [
        json.dumps({
            "type": "user",
            "cwd": "/Users/testuser/dev/myapp",
            "message": {"role": "user", "content": [{"type": "text", "text": "Help me refactor the auth module"}]},
            "timestamp": ts(0),
            "uuid": "uuid-001",
        }),
        json.dumps({
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "text", "text": "I'll start by reading the current code."},
                {"type": "tool_use", "id": "toolu_001", "name": "Read", "input": {"file_path": "/src/auth.ts"}},
            ]},
            "timestamp": ts(1),
            "uuid": "uuid-002",
        }),
        json.dumps({
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_001", "content": "export function authenticate() {}"},
            ]},
            "timestamp": ts(1),
            "uuid": "uuid-003",
        }),
        json.dumps({
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "thinking", "thinking": "Split validation from refresh."},
                {"type": "text", "text": "Let me refactor it into separate concerns."},
            ]},
            "timestamp": ts(3),
            "uuid": "uuid-004",
        }),
        json.dumps({"type": "file-history-snapshot", "files": [{"path": "/src/auth.ts"}]}),
        json.dumps({
            "type": "user",
            "message": {"role": "user", "content": "/clear"},
            "timestamp": ts(10),
            "uuid": "uuid-005",
        }),
        "{malformed",
        json.dumps({
            "type": "human",
            "message": {"role": "user", "content": [{"type": "text", "text": "Looks good, now split it into separate files"}]},
            "timestamp": ts(12),
            "uuid": "uuid-006",
        }),
        json.dumps({"type": "summary", "summary": "Refactored auth module"}),
        json.dumps({
            "type": "assistant",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Done, the module is split into three files."}]},
            "timestamp": ts(13),
            "uuid": "uuid-007",
        }),
    ]
    (project_dir / "session-001.jsonl").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return projects


@pytest.fixture
def readers(cursor_db, claude_projects):
    return [CursorReader(db_path=cursor_db), ClaudeCodeReader(base_path=claude_projects)]


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def services(tmp_path, readers, kv):
    """Fully wired services over the fixture data, without live adapters."""
    return Services.create(
        data_dir=tmp_path / "devark",
        readers=readers,
        kv=kv,
        api_url="http://devark.test",
        with_adapters=False,
    )
