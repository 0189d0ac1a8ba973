"""Error taxonomy for gcalsync.

Scopes
- Run-scoped (abort the whole run): CredentialError, LocalStoreAccessError.
- Calendar-scoped (logged, other calendars continue): RemoteProtocolError,
  CursorInvalidError after its single retry, CalDAVError.

Unparseable recurrence lines and unresolvable dates are not errors; the
translators degrade to "no recurrence" / "no timing".
"""

from __future__ import annotations

__all__ = [
    "CursorInvalidError",
    "CredentialError",
    "GCalSyncError",
    "LocalStoreAccessError",
    "RemoteProtocolError",
]


class GCalSyncError(RuntimeError):
    """Base class for all gcalsync errors."""


class CredentialError(GCalSyncError):
    """Google credentials are missing, invalid, or could not be refreshed."""


class RemoteProtocolError(GCalSyncError):
    """Unexpected status code or malformed payload from the Calendar API."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CursorInvalidError(GCalSyncError):
    """The remote rejected a sync cursor (HTTP 410 Gone)."""

    def __init__(self, calendar_id: str) -> None:
        self.calendar_id = calendar_id
        super().__init__(f"Sync token for calendar '{calendar_id}' is no longer valid")


class LocalStoreAccessError(GCalSyncError):
    """The local calendar store or the state location cannot be used."""
