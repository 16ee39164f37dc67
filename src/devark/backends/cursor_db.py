"""Read-only access to Cursor's ``cursorDiskKV`` table.

The reader and the detection adapter talk to a :class:`CursorDatabase`
rather than to sqlite3 directly, so tests can substitute an in-memory
mapping and the handle can be reopened between polls.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from ..errors import PermanentIOError, TransientIOError

logger = logging.getLogger(__name__)

READ_TIMEOUT_SECONDS = 2.0


class CursorDatabase(Protocol):
    def get(self, key: str) -> str | None: ...

    def scan(self, prefix: str) -> list[tuple[str, str]]: ...

    def close(self) -> None: ...


class SQLiteCursorDatabase:
    """A ``state.vscdb`` opened with ``mode=ro``. No statement here writes."""

    def __init__(self, db_path: Path, timeout: float = READ_TIMEOUT_SECONDS):
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(
                f"file:{db_path}?mode=ro", uri=True, timeout=timeout
            )
        except sqlite3.Error as e:
            raise PermanentIOError(f"Cannot open {db_path}: {e}") from e

    def get(self, key: str) -> str | None:
        rows = self._execute("SELECT value FROM cursorDiskKV WHERE key = ?", (key,))
        if not rows:
            return None
        return _decode(rows[0][0])

    def scan(self, prefix: str) -> list[tuple[str, str]]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._execute(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (escaped + "%",),
        )
        return [(key, _decode(value)) for key, value in rows if value is not None]

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug("Error closing %s: %s", self.db_path, e)

    def _execute(self, sql: str, params: tuple) -> list[tuple]:
        try:
            cur = self._conn.cursor()
            cur.execute(sql, params)
            return cur.fetchall()
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise TransientIOError(f"Cursor database busy: {e}") from e
            raise PermanentIOError(f"Cursor database query failed: {e}") from e
        except sqlite3.Error as e:
            raise PermanentIOError(f"Cursor database query failed: {e}") from e


class MemoryCursorDatabase:
    """A dict-backed database, used by tests and for snapshots."""

    def __init__(self, rows: dict[str, str] | None = None):
        self.rows = dict(rows or {})

    def get(self, key: str) -> str | None:
        return self.rows.get(key)

    def scan(self, prefix: str) -> list[tuple[str, str]]:
        return sorted((k, v) for k, v in self.rows.items() if k.startswith(prefix))

    def close(self) -> None:
        pass


def open_cursor_database(db_path: Path) -> SQLiteCursorDatabase | None:
    """Open the database read-only, or return None if it is missing or unreadable."""
    if not db_path.exists():
        logger.debug("Cursor database not found at %s", db_path)
        return None
    try:
        return SQLiteCursorDatabase(db_path)
    except PermanentIOError as e:
        logger.warning("%s", e)
        return None


def _decode(value) -> str:
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")
