"""SQLite state store for sync cursors and the last-run timestamp.

Schema
- sync_tokens: calendar_id -> opaque Google nextSyncToken (+ updated_at)
- meta:        key -> value ("last_sync" in UTC ISO 8601)

Design notes
- Tokens are never interpreted, only stored and replayed.
- Each calendar's token is committed on its own as soon as that calendar
  finishes, so a later failure cannot discard earlier progress.
- A state location that cannot be created or opened is a LocalStoreAccessError.

Example
  from gcalsync.state import State
  with State("/tmp/state.sqlite") as st:
      st.save_token("primary", "tok_123")
      print(st.get_token("primary"))
"""

from __future__ import annotations

import logging
import os
import sqlite3
import stat
from datetime import UTC, datetime
from pathlib import Path

from .errors import LocalStoreAccessError

__all__ = ["State"]

log = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
LAST_SYNC_KEY = "last_sync"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).strftime(ISO_FORMAT)


class State:
    """SQLite-backed state store. Single process, not thread-safe."""

    def __init__(self, db_path: str) -> None:
        self.db_path = str(Path(db_path).expanduser())
        try:
            self._conn: sqlite3.Connection | None = self._connect(self.db_path)
            self._init_schema()
        except (OSError, sqlite3.Error) as exc:
            raise LocalStoreAccessError(
                f"Cannot open sync state at {self.db_path}: {exc}"
            ) from exc

    def __enter__(self) -> State:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: object | None,
    ) -> None:
        self.close()

    # -------------
    # Connection
    # -------------

    def _connect(self, db_path: str) -> sqlite3.Connection:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path), timeout=30.0)
        conn.row_factory = sqlite3.Row

        # owner read/write only; tokens grant read access to the remote calendars
        try:
            if os.access(path, os.W_OK):
                path.chmod(stat.S_IRUSR | stat.S_IWUSR)
            else:
                log.warning("State file %s is not writable by the current user.", path)
        except OSError as e:
            log.warning("Could not restrict permissions on state file %s: %s", path, e)

        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise LocalStoreAccessError("State store is closed.")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------
    # Schema
    # -------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_tokens (
              calendar_id TEXT PRIMARY KEY,
              token TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    # -------------
    # Tokens
    # -------------

    def get_token(self, calendar_id: str) -> str | None:
        cur = self.conn.execute(
            "SELECT token FROM sync_tokens WHERE calendar_id = ?;", (calendar_id,)
        )
        row = cur.fetchone()
        return row["token"] if row else None

    def save_token(self, calendar_id: str, token: str) -> None:
        self.conn.execute(
            """
            INSERT INTO sync_tokens(calendar_id, token, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(calendar_id) DO UPDATE SET
                token = excluded.token,
                updated_at = excluded.updated_at
            WHERE sync_tokens.token <> excluded.token;
            """,
            (calendar_id, token, _utc_now_iso()),
        )
        self.conn.commit()

    def reset_token(self, calendar_id: str) -> None:
        self.conn.execute("DELETE FROM sync_tokens WHERE calendar_id = ?;", (calendar_id,))
        self.conn.commit()

    def tokens(self) -> dict[str, str]:
        cur = self.conn.execute("SELECT calendar_id, token FROM sync_tokens ORDER BY calendar_id;")
        return {row["calendar_id"]: row["token"] for row in cur.fetchall()}

    # -------------
    # Run metadata
    # -------------

    def get_last_sync(self) -> datetime | None:
        cur = self.conn.execute("SELECT value FROM meta WHERE key = ?;", (LAST_SYNC_KEY,))
        row = cur.fetchone()
        if not row:
            return None
        return datetime.strptime(row["value"], ISO_FORMAT).replace(tzinfo=UTC)

    def set_last_sync(self, when: datetime | None = None) -> None:
        value = (when or datetime.now(tz=UTC)).astimezone(UTC).strftime(ISO_FORMAT)
        self.conn.execute(
            """
            INSERT INTO meta(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value;
            """,
            (LAST_SYNC_KEY, value),
        )
        self.conn.commit()

    def reset_all(self) -> None:
        """Forget every cursor and the last-run time (next run is a full sync)."""
        self.conn.execute("DELETE FROM sync_tokens;")
        self.conn.execute("DELETE FROM meta WHERE key = ?;", (LAST_SYNC_KEY,))
        self.conn.commit()
