"""Workspace paths whose prompts are never captured.

Patterns match whole path segments, case-insensitively: ``.cursor`` matches
``/home/u/.cursor`` but not ``/home/u/.cursorrules``.
"""

import re

IGNORED_PATHS = [
    # devark's own scratch directories
    ".devark/temp-prompt-analysis",
    ".devark/temp-standup",
    ".devark/temp-productivity-report",
    "devark-temp",
    "devark-hooks",
    "devark-analysis",
    # Cursor installation directories
    "programs/cursor",
    "appdata/local/programs/cursor",
    ".cursor",
]

_COMPILED = [
    re.compile(r"(^|/)" + re.escape(pattern.lstrip("/")) + r"(/|$)", re.IGNORECASE)
    for pattern in IGNORED_PATHS
]


def should_ignore_path(project_path: str | None) -> bool:
    if not project_path or not project_path.strip():
        return False
    normalized = project_path.replace("\\", "/").rstrip("/")
    return any(regex.search(normalized) for regex in _COMPILED)
