"""Platform-aware path resolution for devark and the AI tools it observes."""

import os
import sys
from pathlib import Path

DEFAULT_API_URL = "https://app.devark.ai"


def get_data_dir() -> Path:
    """Return devark's own data directory (config, key file, stores)."""
    env = os.environ.get("DEVARK_HOME")
    if env:
        return Path(env)

    return Path.home() / ".devark"


def get_config_path() -> Path:
    """Return the path to devark's config.json."""
    return get_data_dir() / "config.json"


def get_key_path() -> Path:
    """Return the path to the AES key file that sits beside config.json."""
    return get_data_dir() / ".key"


def get_store_path() -> Path:
    """Return the path to the persisted key-value store."""
    return get_data_dir() / "store.json"


def get_hook_queue_path() -> Path:
    """Return the line-delimited queue the hook command appends to."""
    return get_data_dir() / "hooks" / "prompt-queue.jsonl"


def get_cursor_global_db_path() -> Path:
    """Return the path to Cursor's globalStorage state.vscdb."""
    env = os.environ.get("DEVARK_CURSOR_DB")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User" / "globalStorage" / "state.vscdb"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "Cursor" / "User" / "globalStorage" / "state.vscdb"
    else:  # Linux
        return Path.home() / ".config" / "Cursor" / "User" / "globalStorage" / "state.vscdb"


def get_claude_projects_path() -> Path:
    """Return the path to Claude Code's projects directory."""
    env = os.environ.get("DEVARK_CLAUDE_PATH")
    if env:
        return Path(env)

    return Path.home() / ".claude" / "projects"


def get_api_url(configured: str | None = None) -> str:
    """Return the cloud API base URL.

    The environment wins over the value stored in config.json.
    """
    env = os.environ.get("DEVARK_API_URL")
    if env:
        return env.rstrip("/")
    if configured:
        return configured.rstrip("/")
    return DEFAULT_API_URL
