"""Remote-id correlation through a sentinel embedded in local notes.

Every local event written by the sync carries `[gcal_id:<remote id>]` at the
end of its notes. Later runs find the local counterpart of a remote event by
scanning the local calendar for that sentinel.

Known limitation
- The scan is bounded to a window around "now" (default one year back and
  one year ahead). An event lying entirely outside the window is invisible
  to lookup, so a far-past or far-future occurrence that changes remotely
  can be created a second time locally. The window is configurable via
  `sync.correlation_window_days`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from ..store.base import CalendarHandle, CalendarStore, EventHandle, TimeWindow

__all__ = ["CorrelationIndex", "contains", "embed", "sentinel_for"]

log = logging.getLogger(__name__)

SENTINEL_PREFIX = "[gcal_id:"
SENTINEL_SUFFIX = "]"


def sentinel_for(remote_id: str) -> str:
    return f"{SENTINEL_PREFIX}{remote_id}{SENTINEL_SUFFIX}"


def embed(remote_id: str, notes: str | None) -> str:
    """Append the sentinel to notes (always; notes are rebuilt from source each run)."""
    return f"{notes or ''}\n\n{sentinel_for(remote_id)}"


def contains(notes: str | None, remote_id: str) -> bool:
    return notes is not None and sentinel_for(remote_id) in notes


class CorrelationIndex:
    def __init__(
        self,
        store: CalendarStore,
        *,
        window_days: int = 365,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.window_days = window_days
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def window(self) -> TimeWindow:
        return TimeWindow.around(self.window_days, now=self._clock())

    def find(self, remote_id: str, calendar: CalendarHandle) -> EventHandle | None:
        """First local event in `calendar` whose notes carry the sentinel for remote_id."""
        found = self.store.find_event_by_correlation(remote_id, calendar, self.window())
        if found is not None and not contains(found.notes, remote_id):
            # store matched loosely (e.g. server-side substring search); trust only exact sentinel
            log.debug("correlation-mismatch remote_id=%s ref=%s", remote_id, found.ref)
            return None
        return found
