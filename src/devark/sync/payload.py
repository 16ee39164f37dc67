"""Upload payloads: sanitized session transcripts and their fingerprints."""

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import PureWindowsPath, PurePosixPath

from ..core import DurationResult, Message, Session, to_iso
from ..prompt_utils import count_actual_user_prompts

# Value-only patterns: the whole match is replaced.
_DATABASE_URL_PATTERNS = [
    re.compile(r"(?:postgres|postgresql|mysql|mongodb|redis)://[^\s\"'`<>]+"),
]
_CREDENTIAL_PATTERNS = [
    re.compile(r"\bsk-ant-[a-zA-Z0-9-]{6,}"),
    re.compile(r"\bsk[-_](?:test|live)[-_][a-zA-Z0-9_-]{10,}"),
    re.compile(r"\bpk[-_](?:test|live)[-_][a-zA-Z0-9_-]{10,}"),
    re.compile(r"\brk_(?:live|test)_[a-zA-Z0-9_-]{10,}"),
    re.compile(r"\bsk-[a-zA-Z0-9]{6,}"),
    re.compile(r"\bAKIA[A-Z0-9]{16}\b"),
    re.compile(r"\bgh[psohr]_[a-zA-Z0-9]{36,}"),
    re.compile(r"\bxox[bp]-[0-9]+-[0-9]+-[a-zA-Z0-9]+"),
    re.compile(r"\bnpm_[a-zA-Z0-9]{36,}"),
    re.compile(r"\bSG\.[a-zA-Z0-9_-]{20,}\.[a-zA-Z0-9_-]{20,}"),
    re.compile(r"\beyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
]
# Prefixed patterns: group 1 is kept, group 2 is replaced.
_PREFIXED_CREDENTIAL_PATTERNS = [
    re.compile(r"(AWS_SECRET_ACCESS_KEY=|aws_secret_access_key=)([A-Za-z0-9+/=]{40})"),
    re.compile(r"(api_key=|apikey=)([a-zA-Z0-9_-]{16,})", re.IGNORECASE),
    re.compile(r"(Bearer\s)([a-zA-Z0-9._-]{20,})"),
    re.compile(r"((?:secret|token|password|key)=)([a-f0-9]{32,})", re.IGNORECASE),
    re.compile(r"(://[^:/\s]+:)([^@\s]+)(?=@)"),
    re.compile(r"""((['"])password\2\s*:\s*)(['"][^'"]+['"])""", re.IGNORECASE),
]
_PATH_PATTERNS = [
    re.compile(r"/(?:Users|home)/[a-zA-Z0-9_.-]+(?:/[^\s\"'`]+)?"),
    re.compile(r"[A-Z]:\\Users\\[a-zA-Z0-9_.-]+(?:\\[^\s\"'`]+)?", re.IGNORECASE),
]
_EMAIL_PATTERN = re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")
_IP_PATTERN = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
_ENV_VAR_PATTERNS = [
    re.compile(r"\$\{[A-Z_][A-Z0-9_]*\}"),
    re.compile(r"\$[A-Z_][A-Z0-9_]+\b"),
]


@dataclass
class Sanitizer:
    """Redacts secrets and personal data, numbering placeholders across calls."""

    counts: dict[str, int] = field(default_factory=lambda: {
        "credentials": 0,
        "paths": 0,
        "emails": 0,
        "ips": 0,
        "envVars": 0,
        "databaseUrls": 0,
    })

    def sanitize(self, text: str) -> str:
        result = text
        for pattern in _DATABASE_URL_PATTERNS:
            result = pattern.sub(lambda m: self._count("databaseUrls", "[DATABASE_URL]"), result)
        for pattern in _CREDENTIAL_PATTERNS:
            result = pattern.sub(lambda m: self._numbered("credentials", "CREDENTIAL"), result)
        for pattern in _PREFIXED_CREDENTIAL_PATTERNS:
            result = pattern.sub(
                lambda m: m.group(1) + self._numbered("credentials", "CREDENTIAL"), result
            )
        for pattern in _PATH_PATTERNS:
            result = pattern.sub(lambda m: self._numbered("paths", "PATH"), result)
        result = _EMAIL_PATTERN.sub(lambda m: self._numbered("emails", "EMAIL"), result)
        result = _IP_PATTERN.sub(lambda m: self._count("ips", "[IP_ADDRESS]"), result)
        for pattern in _ENV_VAR_PATTERNS:
            result = pattern.sub(lambda m: self._numbered("envVars", "ENV_VAR"), result)
        return result

    def _numbered(self, kind: str, label: str) -> str:
        self.counts[kind] += 1
        return f"[{label}_{self.counts[kind]}]"

    def _count(self, kind: str, placeholder: str) -> str:
        self.counts[kind] += 1
        return placeholder


def sanitize(text: str) -> str:
    """Sanitize one string with fresh placeholder numbering."""
    return Sanitizer().sanitize(text)


def project_name(path: str | None) -> str:
    if not path:
        return "unknown"
    if "\\" in path:
        name = PureWindowsPath(path).name
    else:
        name = PurePosixPath(path.rstrip("/")).name
    return name or "unknown"


def last_message_hash(messages: list[Message]) -> str:
    """sha256 of the last message's content and timestamp; changes when a session grows."""
    if not messages:
        return hashlib.sha256(b"").hexdigest()
    last = messages[-1]
    material = f"{last.content}\n{to_iso(last.timestamp) or ''}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def session_fingerprint(session: Session, messages: list[Message]) -> dict:
    return {
        "source": session.source,
        "sessionId": session.session_id,
        "lastMessageHash": last_message_hash(messages),
    }


def build_session_payload(session: Session, messages: list[Message], duration: DurationResult) -> dict:
    sanitizer = Sanitizer()
    return {
        "source": session.source,
        "sessionId": session.session_id,
        "projectName": project_name(session.workspace_path) if session.workspace_path else session.workspace_name,
        "startTime": to_iso(session.start_time),
        "lastActivity": to_iso(session.last_activity),
        "duration": duration.duration_seconds,
        "messageCount": len(messages),
        "promptCount": count_actual_user_prompts(messages),
        "messages": [
            {
                "role": m.role,
                "content": sanitizer.sanitize(m.content),
                "timestamp": to_iso(m.timestamp),
            }
            for m in messages
        ],
        "lastMessageHash": last_message_hash(messages),
        "sanitization": dict(sanitizer.counts),
    }
