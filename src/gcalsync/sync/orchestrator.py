"""Top-level sync orchestrator.

Responsibilities
- Construct dependencies from config (or take injected ones in tests)
- Enforce single-run lock using a filesystem lock file
- Apply the calendar selection policy and map each remote calendar to its
  local calendar ("GCal: <summary>")
- Drive one CalendarSync per participating calendar, isolating failures
- Provide an overall summary and exit code

Exit codes
- 0: success
- 2: partial (some calendar or event errors)
- 3: fatal (could not start/run)

Run-scoped errors (CredentialError, LocalStoreAccessError) are not caught
here; the CLI turns them into a message with a remediation hint.
"""

from __future__ import annotations

import errno
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from types import TracebackType
from typing import Any

from ..config import AppConfig
from ..errors import CredentialError, GCalSyncError, LocalStoreAccessError
from ..google.auth import GoogleCredentialProvider
from ..google.calendar import CalendarClient
from ..google.models import RemoteCalendar
from ..state import State
from ..store.base import CalendarHandle, CalendarStore
from ..store.caldav import CalDAVStore
from ..utils.http import RetryConfig
from .calendar_sync import CalendarSync, CalendarSyncResult

__all__ = [
    "FileLock",
    "LockHeldError",
    "Orchestrator",
    "RunSummary",
    "StatusReport",
    "local_calendar_name",
    "parse_hex_color",
]

log = logging.getLogger(__name__)

UNTITLED_CALENDAR = "Untitled Calendar"
_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


@dataclass(frozen=True)
class RunSummary:
    calendars: dict[str, CalendarSyncResult] = field(default_factory=dict)
    skipped_calendars: tuple[str, ...] = ()

    def aggregate(self) -> dict[str, int]:
        total = {"fetched": 0, "created": 0, "updated": 0, "deleted": 0, "skipped": 0, "errors": 0}
        for res in self.calendars.values():
            for k in total:
                total[k] += getattr(res, k)
        return total


@dataclass(frozen=True)
class StatusReport:
    last_sync: datetime | None
    tokens: dict[str, str]

    @property
    def tracked_calendars(self) -> list[str]:
        return sorted(self.tokens)


def local_calendar_name(calendar: RemoteCalendar, prefix: str) -> str:
    return f"{prefix}{calendar.summary or UNTITLED_CALENDAR}"


def parse_hex_color(value: str | None) -> str | None:
    """'#RRGGBB' (normalized to upper case) or None."""
    if value and _HEX_COLOR_RE.match(value):
        return value.upper()
    return None


class LockHeldError(GCalSyncError):
    pass


class FileLock:
    """Simple non-blocking PID file lock using O_CREAT|O_EXCL.

    A lock left behind by a dead process is removed and taken over.
    """

    def __init__(self, path: str) -> None:
        self.path = os.path.expanduser(path)
        self._fd: int | None = None

    def _create(self) -> None:
        self._fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        os.write(self._fd, str(os.getpid()).encode("utf-8"))
        os.fsync(self._fd)

    def acquire(self) -> None:
        try:
            self._create()
        except OSError as e:
            if e.errno != errno.EEXIST:
                raise LockHeldError(f"Cannot create lock file {self.path}: {e}") from e
            if not self._is_stale_lock():
                raise LockHeldError(
                    f"Another instance is running (lock exists at {self.path})"
                ) from e
            log.warning("Removing stale lock file at %s", self.path)
            try:
                os.unlink(self.path)
                self._create()
            except OSError as retry_err:
                # another process won the race for the lock
                raise LockHeldError(
                    f"Another instance is running (lock exists at {self.path})"
                ) from retry_err

    def _is_stale_lock(self) -> bool:
        """True if the lock file holds no live PID."""
        try:
            with open(self.path, encoding="utf-8") as f:
                pid_str = f.read().strip()
        except (FileNotFoundError, PermissionError):
            return True
        if not pid_str.isdigit():
            return True
        try:
            os.kill(int(pid_str), 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            # process exists but belongs to another user
            return False
        return False

    def release(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                log.debug("lock-already-removed %s", self.path)

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class Orchestrator:
    def __init__(
        self,
        cfg: AppConfig,
        *,
        state: State | None = None,
        remote: CalendarClient | None = None,
        store: CalendarStore | None = None,
    ) -> None:
        """Dependencies not injected are built from `cfg` on first use."""
        self.cfg = cfg
        self._state = state
        self._remote = remote
        self._store = store
        self._owned: list[Any] = []

    # -----------------
    # Dependencies
    # -----------------

    @property
    def state(self) -> State:
        if self._state is None:
            self._state = State(self.cfg.state.db_path)
            self._owned.append(self._state)
        return self._state

    @property
    def remote(self) -> CalendarClient:
        if self._remote is None:
            creds = GoogleCredentialProvider(self.cfg.google).credentials()
            self._remote = CalendarClient(creds)
        return self._remote

    @property
    def store(self) -> CalendarStore:
        if self._store is None:
            self._store = self._build_caldav_store()
        return self._store

    def _build_caldav_store(self) -> CalDAVStore:
        dav = self.cfg.caldav
        if dav is None:
            raise LocalStoreAccessError(
                "No local calendar store configured (caldav.base_url, caldav.username, "
                "caldav.calendar_home)."
            )
        app_password = os.getenv("GCALSYNC_CALDAV_PASSWORD") or dav.app_password
        if not app_password:
            raise LocalStoreAccessError(
                "CalDAV password is required (env GCALSYNC_CALDAV_PASSWORD or caldav.app_password)."
            )
        store = CalDAVStore(
            base_url=dav.base_url,
            username=dav.username,
            app_password=app_password,
            calendar_home=dav.calendar_home,
            verify=dav.verify_tls,
            retry=RetryConfig(
                max_retries=self.cfg.sync.max_retries,
                backoff_initial_sec=self.cfg.sync.backoff_initial_sec,
            ),
        )
        self._owned.append(store)
        return store

    def close(self) -> None:
        while self._owned:
            self._owned.pop().close()

    # -----------------
    # Commands
    # -----------------

    def run(self) -> tuple[int, RunSummary]:
        """Sync every participating calendar; returns exit code and summary."""
        lock_path = self.cfg.runtime.lock_path
        log.info("acquiring-lock %s", lock_path)
        try:
            lock = FileLock(lock_path)
            lock.acquire()
        except LockHeldError as e:
            log.error("lock-failed %s", e)
            return 3, RunSummary()

        try:
            summary = self._sync_all()
        finally:
            lock.release()

        exit_code = 0 if summary.aggregate()["errors"] == 0 else 2
        return exit_code, summary

    def _sync_all(self) -> RunSummary:
        dry_run = self.cfg.sync.dry_run
        results: dict[str, CalendarSyncResult] = {}
        skipped: list[str] = []

        for cal in self.remote.list_calendars():
            if not cal.participates:
                log.info("calendar-skipped calendar_id=%s reason=not-selected-or-hidden", cal.id)
                skipped.append(cal.id)
                continue
            try:
                handle = self._local_calendar(cal, dry_run=dry_run)
                res = CalendarSync(
                    self.cfg, self.state, self.remote, self.store, cal.id, handle
                ).run(dry_run=dry_run)
            except (CredentialError, LocalStoreAccessError):
                raise
            except Exception:
                log.exception("calendar-sync-failed", extra={"calendar_id": cal.id})
                res = CalendarSyncResult(calendar_id=cal.id, errors=1)
            results[cal.id] = res
            log.info(
                "calendar-sync-done calendar_id=%s fetched=%d created=%d updated=%d "
                "deleted=%d skipped=%d errors=%d",
                cal.id,
                res.fetched,
                res.created,
                res.updated,
                res.deleted,
                res.skipped,
                res.errors,
            )

        if not dry_run:
            self.state.set_last_sync()
        return RunSummary(calendars=results, skipped_calendars=tuple(skipped))

    def _local_calendar(self, cal: RemoteCalendar, *, dry_run: bool) -> CalendarHandle | None:
        name = local_calendar_name(cal, self.cfg.sync.calendar_prefix)
        if dry_run:
            return self.store.find_calendar(name)
        return self.store.find_or_create_calendar(name, parse_hex_color(cal.background_color))

    def status(self) -> StatusReport:
        return StatusReport(last_sync=self.state.get_last_sync(), tokens=self.state.tokens())

    def reset(self, *, purge: bool = False) -> int:
        """Forget all cursors; with `purge`, also empty every mirrored local calendar.

        Returns the number of local events deleted.
        """
        deleted = 0
        with FileLock(self.cfg.runtime.lock_path):
            if purge:
                for cal in self.remote.list_calendars():
                    if not cal.participates:
                        continue
                    name = local_calendar_name(cal, self.cfg.sync.calendar_prefix)
                    handle = self.store.find_calendar(name)
                    if handle is None:
                        continue
                    count = self.store.delete_all_events(handle)
                    log.info("calendar-purged name=%s deleted=%d", name, count)
                    deleted += count
            self.state.reset_all()
        return deleted
