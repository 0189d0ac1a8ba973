"""Calendar sync engine (one Google calendar → one local calendar).

Per calendar, strictly in sequence:
  load cursor → fetch page → reconcile its changes → next page … → commit cursor

- Incremental processing via the Calendar API nextSyncToken stored per calendar.
- Pagination is a plain loop over continuation tokens; each page is reconciled
  before the next one is requested, so memory stays bounded by one page.
- A cursor the server no longer accepts (410) is cleared and the calendar is
  fetched again once over the full window. A second failure propagates.
- Local counterparts are found through the `[gcal_id:…]` sentinel
  (CorrelationIndex). Unchanged events (same content hash) are skipped, which
  makes a replay of the same changes a no-op.
- The new cursor is committed only when every change was applied; otherwise
  the next run replays from the old cursor.
- Dry-run: fetch, translate and count; no local writes, no cursor changes.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass

from ..config import AppConfig
from ..errors import CredentialError, CursorInvalidError, LocalStoreAccessError
from ..google.calendar import CalendarClient, EventPage
from ..google.models import RemoteEvent
from ..mapping.events import translate_event
from ..state import State
from ..store.base import CalendarHandle, CalendarStore
from ..utils.hashing import hash_event
from .correlation import CorrelationIndex

log = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
SKIPPED = "skipped"


@dataclass(frozen=True)
class CalendarSyncResult:
    calendar_id: str
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0


class CalendarSync:
    def __init__(
        self,
        cfg: AppConfig,
        state: State,
        gcal: CalendarClient,
        store: CalendarStore,
        calendar_id: str,
        calendar: CalendarHandle | None,
    ) -> None:
        """`calendar` may be None only in dry-run, when the local calendar does not exist yet."""
        self.cfg = cfg
        self.state = state
        self.gcal = gcal
        self.store = store
        self.calendar_id = calendar_id
        self.calendar = calendar
        self.index = CorrelationIndex(store, window_days=cfg.sync.correlation_window_days)

    def run(self, *, dry_run: bool = False) -> CalendarSyncResult:
        """Run a single incremental sync pass for this calendar."""
        if self.calendar is None and not dry_run:
            raise ValueError("A local calendar handle is required outside dry-run")

        tally: Counter[str] = Counter()
        cursor = self.state.get_token(self.calendar_id)

        try:
            next_cursor = self._sync_pages(cursor, tally, dry_run=dry_run)
        except CursorInvalidError:
            if cursor is None:
                raise
            log.warning("cursor-invalid calendar_id=%s; retrying with full fetch", self.calendar_id)
            if not dry_run:
                self.state.reset_token(self.calendar_id)
            next_cursor = self._sync_pages(None, tally, dry_run=dry_run)

        if dry_run:
            log.info("cursor-not-committed calendar_id=%s reason=dry-run", self.calendar_id)
        elif tally["errors"]:
            log.warning(
                "cursor-not-committed calendar_id=%s reason=event-errors errors=%d",
                self.calendar_id,
                tally["errors"],
            )
        elif next_cursor:
            self.state.save_token(self.calendar_id, next_cursor)

        return CalendarSyncResult(
            calendar_id=self.calendar_id,
            fetched=tally["fetched"],
            created=tally[CREATED],
            updated=tally[UPDATED],
            deleted=tally[DELETED],
            skipped=tally[SKIPPED],
            errors=tally["errors"],
        )

    # -----------------
    # Fetching
    # -----------------

    def _pages(self, cursor: str | None) -> Iterator[EventPage]:
        page_token: str | None = None
        while True:
            page = self.gcal.list_events(
                self.calendar_id,
                cursor=cursor,
                page_token=page_token,
                page_size=self.cfg.sync.page_size,
                time_window_days=self.cfg.sync.time_window_days,
            )
            yield page
            page_token = page.next_page_token
            if not page_token:
                return

    def _sync_pages(self, cursor: str | None, tally: Counter[str], *, dry_run: bool) -> str | None:
        """Reconcile every page; return the cursor carried by the last one."""
        next_cursor: str | None = None
        for page in self._pages(cursor):
            for event in page.items:
                tally["fetched"] += 1
                try:
                    tally[self._reconcile(event, dry_run=dry_run)] += 1
                except (CredentialError, LocalStoreAccessError):
                    raise
                except Exception:
                    tally["errors"] += 1
                    log.exception(
                        "calendar-sync-error",
                        extra={"calendar_id": self.calendar_id, "event_id": event.id},
                    )
            next_cursor = page.next_sync_token or next_cursor
        return next_cursor

    # -----------------
    # Reconciliation
    # -----------------

    def _reconcile(self, event: RemoteEvent, *, dry_run: bool) -> str:
        found = self.index.find(event.id, self.calendar) if self.calendar is not None else None

        if event.cancelled:
            if found is None:
                return SKIPPED
            if not dry_run:
                self.store.delete_event(found)
            log.debug("event-deleted event_id=%s", event.id)
            return DELETED

        data = translate_event(
            event,
            default_tz=self.cfg.sync.default_tz,
            default_reminder_minutes=self.cfg.sync.default_reminder_minutes,
        )

        if found is not None:
            if found.content_hash == hash_event(data):
                return SKIPPED
            if not dry_run:
                self.store.update_event(found, data)
            log.debug("event-updated event_id=%s", event.id)
            return UPDATED

        if not data.has_timing:
            log.info("event-skipped-no-timing event_id=%s", event.id)
            return SKIPPED
        if not dry_run:
            assert self.calendar is not None
            self.store.create_event(data, self.calendar)
        log.debug("event-created event_id=%s", event.id)
        return CREATED
