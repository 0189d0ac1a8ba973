"""Google OAuth credential provider.

Responsibilities
- Load OAuth client credentials from env or file (GOOGLE_CREDENTIALS_JSON /
  GOOGLE_CREDENTIALS_FILE / google.credentials_file).
- Read/write the authorized-user token at google.token_store.
- Refresh access tokens once when expired; a failed refresh is a CredentialError.
- `gcalsync setup` runs the interactive consent once; sync runs are headless.

Security
- Never log raw tokens; the logging module redacts token-like strings.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from google.oauth2.credentials import Credentials  # type: ignore[import-not-found]

from ..config import GoogleConfig
from ..errors import CredentialError

__all__ = [
    "SCOPES_CALENDAR",
    "GoogleCredentialProvider",
    "run_setup",
]

log = logging.getLogger(__name__)

SCOPES_CALENDAR: list[str] = [
    "https://www.googleapis.com/auth/calendar.readonly",
]


def _read_client_config(google_cfg: GoogleConfig) -> dict[str, Any]:
    """Load OAuth client credentials JSON.

    Priority:
    - GOOGLE_CREDENTIALS_JSON (inline JSON)
    - GOOGLE_CREDENTIALS_FILE (path)
    - google_cfg.credentials_file
    """
    env_inline = os.getenv("GOOGLE_CREDENTIALS_JSON")
    if env_inline:
        try:
            return json.loads(env_inline)
        except json.JSONDecodeError as exc:
            raise CredentialError("Invalid JSON in GOOGLE_CREDENTIALS_JSON") from exc

    file_path = os.getenv("GOOGLE_CREDENTIALS_FILE") or google_cfg.credentials_file
    if not file_path:
        raise CredentialError(
            "Google API client credentials not provided. Set GOOGLE_CREDENTIALS_JSON, "
            "GOOGLE_CREDENTIALS_FILE or google.credentials_file"
        )
    p = Path(file_path).expanduser()
    if not p.exists():
        raise CredentialError(f"Google credentials file not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        try:
            return json.load(fh)
        except json.JSONDecodeError as exc:
            raise CredentialError(f"Invalid JSON in Google credentials file {p}") from exc


def _load_saved_credentials(token_store: str, scopes: Sequence[str]) -> Credentials | None:
    """Return Credentials from the token store, or None if absent/unreadable."""
    from google.oauth2.credentials import Credentials  # type: ignore[import-not-found]

    p = Path(token_store).expanduser()
    if not p.exists():
        return None
    try:
        return Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
            str(p), scopes=list(scopes)
        )
    except (ValueError, json.JSONDecodeError) as exc:
        log.warning("token-store-unreadable path=%s err=%s", p, exc)
        return None


def _save_credentials(token_store: str, creds: Credentials) -> None:
    p = Path(token_store).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(creds.to_json(), encoding="utf-8")  # type: ignore[no-untyped-call]
    try:
        p.chmod(0o600)
    except OSError:
        log.warning("Could not restrict permissions on token store %s", p)


def _interactive_flow(client_config: dict[str, Any], scopes: Sequence[str]) -> Credentials:
    """Run installed-app flow with a localhost redirect for user consent."""
    from google_auth_oauthlib.flow import InstalledAppFlow  # type: ignore[import-not-found]

    flow = InstalledAppFlow.from_client_config(client_config, scopes=list(scopes))  # type: ignore[no-untyped-call]
    return flow.run_local_server(  # type: ignore[no-untyped-call]
        open_browser=True, host="localhost", port=0, access_type="offline", prompt="consent"
    )


def _refresh_if_needed(creds: Credentials) -> bool:
    """Refresh once if expired (or never issued) and a refresh token exists."""
    from google.auth.exceptions import RefreshError, TransportError  # type: ignore[import-not-found]
    from google.auth.transport.requests import Request  # type: ignore[import-not-found]

    stale = getattr(creds, "expired", False) or not getattr(creds, "token", None)
    if stale and getattr(creds, "refresh_token", None):
        try:
            creds.refresh(Request())  # type: ignore[no-untyped-call]
        except (RefreshError, TransportError) as exc:
            raise CredentialError(f"Failed to refresh Google access token: {exc}") from exc
        return True
    return False


class GoogleCredentialProvider:
    """Headless credential source for the sync engine.

    The provider owns the token-store lifecycle; the engine only asks for
    credentials (or a bearer token) and never tries to fix missing ones.
    """

    def __init__(self, google_cfg: GoogleConfig, scopes: Sequence[str] = SCOPES_CALENDAR) -> None:
        self.google_cfg = google_cfg
        self.scopes = list(scopes)
        self._creds: Credentials | None = None

    def credentials(self) -> Credentials:
        if self._creds is None:
            creds = _load_saved_credentials(self.google_cfg.token_store, self.scopes)
            if creds is None:
                raise CredentialError(
                    f"No Google token found at {self.google_cfg.token_store}."
                )
            self._creds = creds
        if _refresh_if_needed(self._creds):
            _save_credentials(self.google_cfg.token_store, self._creds)
        if not getattr(self._creds, "valid", False):
            raise CredentialError("Stored Google credentials are not valid.")
        return self._creds

    def get_access_token(self) -> str:
        token = getattr(self.credentials(), "token", None)
        if not token:
            raise CredentialError("Google credentials carry no access token.")
        return str(token)


def run_setup(google_cfg: GoogleConfig, scopes: Sequence[str] = SCOPES_CALENDAR) -> Path:
    """Interactive consent; writes the token store and returns its path."""
    client_config = _read_client_config(google_cfg)
    creds = _interactive_flow(client_config, scopes)
    _save_credentials(google_cfg.token_store, creds)
    return Path(google_cfg.token_store).expanduser()
