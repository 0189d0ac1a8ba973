"""Structured logging with optional JSON output and secret/PII redaction.

Exports:
- setup_logging(level: str = "INFO", json: bool = False) -> None
- mask_pii(text: str) -> str

Redaction:
- Email addresses (Google calendar ids are often emails): a***z@example.com
- Token-like values after access/refresh/id/sync/page "token" keys: abcd********wxyz
- Basic-auth style "password=..." pairs are fully masked

Event names are kebab-case first words ("calendar-sync-done id=... created=3"),
which keeps plain-text logs greppable and JSON logs filterable on `msg`.

GCALSYNC_FORCE_JSON_LOGS=1 forces JSON output regardless of config.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, ClassVar

__all__ = ["JsonFormatter", "RedactingFilter", "mask_pii", "setup_logging"]


_EMAIL_RE = re.compile(r"(?P<user>[A-Za-z0-9._%+-]{1,64})@(?P<host>[A-Za-z0-9.-]+\.[A-Za-z]{2,})")
_TOKEN_RE = re.compile(
    r"(?i)(?P<key>(?:access|refresh|id|auth|sync|page)?[_\- ]?token)"
    r"(?P<sep>\s*[:=]\s*|\s+)(?P<val>[A-Za-z0-9\-_\.~+/]{10,}=*)"
)
_PASSWORD_RE = re.compile(r"(?i)(?P<key>password|app_password)(?P<sep>\s*[:=]\s*)(?P<val>\S+)")

_DEFAULT_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "_pii_redacted",
}


def _mask_email(match: re.Match[str]) -> str:
    user = match.group("user")
    masked_user = "*" if len(user) <= 2 else f"{user[0]}***{user[-1]}"
    return f"{masked_user}@{match.group('host')}"


def _mask_value(val: str) -> str:
    if len(val) <= 8:
        return "********"
    return f"{val[:4]}********{val[-4:]}"


def _mask_token(match: re.Match[str]) -> str:
    return f"{match.group('key')}: {_mask_value(match.group('val'))}"


def mask_pii(text: str) -> str:
    """Mask emails, token values and passwords in freeform text."""
    if not text:
        return text
    t = _EMAIL_RE.sub(_mask_email, text)
    t = _TOKEN_RE.sub(_mask_token, t)
    t = _PASSWORD_RE.sub(lambda m: f"{m.group('key')}: ********", t)
    return t


class RedactingFilter(logging.Filter):
    """Redacts the rendered message and selected extras in place."""

    EXTRA_KEYS_TO_MASK: ClassVar[frozenset[str]] = frozenset(
        {"email", "calendar_id", "access_token", "refresh_token", "sync_token"}
    )
    _SECRET_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"access_token", "refresh_token", "sync_token"}
    )

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            # Render first so values passed as %-args are redacted too
            record.msg = mask_pii(record.getMessage())
            record.args = ()
            record._pii_redacted = True

        for k in self.EXTRA_KEYS_TO_MASK:
            val = record.__dict__.get(k)
            if not isinstance(val, str):
                continue
            record.__dict__[k] = _mask_value(val) if k in self._SECRET_KEYS else mask_pii(val)
        return True


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter.

    Fields:
    - ts (ISO8601), level, name, msg, and custom extras if present.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        msg = record.getMessage()
        if not getattr(record, "_pii_redacted", False):
            msg = mask_pii(msg)
        base: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        for attr in ("funcName", "lineno", "module"):
            base[attr] = getattr(record, attr, None)

        for k, v in record.__dict__.items():
            if k in _DEFAULT_RECORD_ATTRS:
                continue
            if isinstance(v, str):
                base[k] = mask_pii(v)
            elif isinstance(v, int | float | bool) or v is None:
                base[k] = v
            elif isinstance(v, Mapping):
                base[k] = {
                    str(kk): (mask_pii(vv) if isinstance(vv, str) else vv)
                    for kk, vv in list(v.items())[:20]
                    if isinstance(vv, str | int | float | bool) or vv is None
                }
            else:
                base[k] = f"[{type(v).__name__}]"

        if record.exc_info:
            base["exc"] = mask_pii(self.formatException(record.exc_info))

        return json.dumps(base, ensure_ascii=False)


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure root logger for CLI execution.

    - Level from config or CLI flag (DEBUG/INFO/WARNING/ERROR)
    - JSON or console formatting
    - Redaction filter applied on the handler
    """
    if os.getenv("GCALSYNC_FORCE_JSON_LOGS", "").lower() in {"1", "true", "yes"}:
        json = True

    # Reset handlers in case of repeated setup in tests
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.addFilter(RedactingFilter())

    if json:
        fmt: logging.Formatter = JsonFormatter()
    else:
        fmt = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    handler.setFormatter(fmt)

    root.addHandler(handler)

    # Reduce noise from third-party libs at default INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
