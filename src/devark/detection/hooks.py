"""Hook installation for Claude Code and Cursor, plus the hook queue format.

Installed hooks run ``devark hook --hook-trigger=<Event>``. That command
reads the tool's JSON payload from stdin and appends one line to the hook
queue, which the Claude adapter tails.

Installers merge into the tool's JSON settings, replacing only entries
they own (recognized by command markers) and preserving everything else.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core import SOURCE_CLAUDE, to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_HOOK_COMMAND = "devark hook"
HOOK_TRIGGER_FLAG = "--hook-trigger"
DEVARK_COMMAND_MARKERS = ("devark hook", "devark-sync", f"{HOOK_TRIGGER_FLAG}=")

CLAUDE_HOOK_EVENTS = ("UserPromptSubmit", "Stop")
CURSOR_HOOK_EVENTS = ("stop", "beforeSubmitPrompt", "afterFileEdit")
CURSOR_HOOKS_VERSION = 1


@dataclass
class HooksInstallResult:
    """Result of a hooks install/remove operation."""

    success: bool
    message: str
    hooks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message, "hooks": list(self.hooks)}


def is_devark_command(command: Any) -> bool:
    return isinstance(command, str) and any(marker in command for marker in DEVARK_COMMAND_MARKERS)


class ClaudeHookInstaller:
    """Merge devark's hooks into ``<project>/.claude/settings.json``."""

    def __init__(self, project_root: Path, command: str = DEFAULT_HOOK_COMMAND):
        self.project_root = project_root
        self.command = command

    @property
    def settings_path(self) -> Path:
        return self.project_root / ".claude" / "settings.json"

    def hook_command(self, event: str) -> str:
        return f"{self.command} {HOOK_TRIGGER_FLAG}={event}"

    def install(self) -> HooksInstallResult:
        try:
            settings = _read_json(self.settings_path)
            hooks = settings.setdefault("hooks", {})
            if not isinstance(hooks, dict):
                return HooksInstallResult(False, f"Unexpected 'hooks' value in {self.settings_path}")

            for event in CLAUDE_HOOK_EVENTS:
                entries = [e for e in hooks.get(event, []) if not self._is_owned(e)]
                entries.append({
                    "hooks": [{"type": "command", "command": self.hook_command(event)}],
                })
                hooks[event] = entries

            _write_json(self.settings_path, settings)
        except (OSError, json.JSONDecodeError) as e:
            return HooksInstallResult(False, f"Failed to install hooks: {e}")

        logger.info("Installed Claude hooks in %s", self.settings_path)
        return HooksInstallResult(True, f"Hooks installed at {self.settings_path}", list(CLAUDE_HOOK_EVENTS))

    def uninstall(self) -> HooksInstallResult:
        if not self.settings_path.exists():
            return HooksInstallResult(True, "No settings file, nothing to remove")
        try:
            settings = _read_json(self.settings_path)
            hooks = settings.get("hooks")
            removed = []
            if isinstance(hooks, dict):
                for event in list(hooks):
                    entries = hooks[event]
                    if not isinstance(entries, list):
                        continue
                    kept = [e for e in entries if not self._is_owned(e)]
                    if len(kept) != len(entries):
                        removed.append(event)
                    if kept:
                        hooks[event] = kept
                    else:
                        del hooks[event]
                if not hooks:
                    del settings["hooks"]
            _write_json(self.settings_path, settings)
        except (OSError, json.JSONDecodeError) as e:
            return HooksInstallResult(False, f"Failed to remove hooks: {e}")

        return HooksInstallResult(True, f"Hooks removed from {self.settings_path}", removed)

    def status(self) -> dict:
        installed = []
        try:
            hooks = _read_json(self.settings_path).get("hooks", {})
        except (OSError, json.JSONDecodeError) as e:
            logger.debug("Cannot read %s: %s", self.settings_path, e)
            hooks = {}
        if isinstance(hooks, dict):
            for event in CLAUDE_HOOK_EVENTS:
                if any(self._is_owned(e) for e in hooks.get(event, [])):
                    installed.append(event)
        return {
            "installed": len(installed) == len(CLAUDE_HOOK_EVENTS),
            "hooks": installed,
            "settingsPath": str(self.settings_path),
        }

    @staticmethod
    def _is_owned(entry: Any) -> bool:
        if not isinstance(entry, dict):
            return False
        inner = entry.get("hooks")
        if isinstance(inner, list):
            return any(isinstance(h, dict) and is_devark_command(h.get("command")) for h in inner)
        return is_devark_command(entry.get("command"))


class CursorHookInstaller:
    """Merge devark's hooks into ``<project>/.cursor/hooks.json``.

    Optional: the polling adapter is the primary Cursor capture path.
    """

    def __init__(self, project_root: Path, command: str = DEFAULT_HOOK_COMMAND):
        self.project_root = project_root
        self.command = command

    @property
    def hooks_path(self) -> Path:
        return self.project_root / ".cursor" / "hooks.json"

    def install(self) -> HooksInstallResult:
        try:
            config = _read_json(self.hooks_path)
            config.setdefault("version", CURSOR_HOOKS_VERSION)
            hooks = config.setdefault("hooks", {})
            for event in CURSOR_HOOK_EVENTS:
                entries = [
                    e for e in hooks.get(event, [])
                    if not (isinstance(e, dict) and is_devark_command(e.get("command")))
                ]
                entries.append({"command": f"{self.command} --source=cursor {HOOK_TRIGGER_FLAG}={event}"})
                hooks[event] = entries
            _write_json(self.hooks_path, config)
        except (OSError, json.JSONDecodeError) as e:
            return HooksInstallResult(False, f"Failed to install Cursor hooks: {e}")
        return HooksInstallResult(True, f"Hooks installed at {self.hooks_path}", list(CURSOR_HOOK_EVENTS))

    def uninstall(self) -> HooksInstallResult:
        if not self.hooks_path.exists():
            return HooksInstallResult(True, "No hooks file, nothing to remove")
        try:
            config = _read_json(self.hooks_path)
            hooks = config.get("hooks", {})
            for event in list(hooks):
                kept = [
                    e for e in hooks[event]
                    if not (isinstance(e, dict) and is_devark_command(e.get("command")))
                ]
                if kept:
                    hooks[event] = kept
                else:
                    del hooks[event]
            _write_json(self.hooks_path, config)
        except (OSError, json.JSONDecodeError) as e:
            return HooksInstallResult(False, f"Failed to remove Cursor hooks: {e}")
        return HooksInstallResult(True, f"Hooks removed from {self.hooks_path}")


def build_queue_entry(trigger: str, payload: dict, source: str = SOURCE_CLAUDE) -> dict:
    """Normalize a hook stdin payload into one queue record."""
    return {
        "trigger": trigger,
        "source": source,
        "sessionId": payload.get("session_id") or payload.get("conversation_id") or "",
        "prompt": payload.get("prompt") or "",
        "cwd": payload.get("cwd") or next(iter(payload.get("workspace_roots") or []), None),
        "transcriptPath": payload.get("transcript_path"),
        "hookEventName": payload.get("hook_event_name") or trigger,
        "timestamp": to_iso(utcnow()),
    }


def append_hook_payload(queue_path: Path, trigger: str, payload: dict, source: str = SOURCE_CLAUDE) -> dict:
    """Append one JSON line to the hook queue and return the record written."""
    entry = build_queue_entry(trigger, payload, source)
    queue_path.parent.mkdir(parents=True, exist_ok=True)
    with queue_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return entry


# ── Private helpers ──────────────────────────────────────────────


def _read_json(path: Path) -> dict:
    if not path.exists():
        return {}
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", text, 0)
    return data


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
