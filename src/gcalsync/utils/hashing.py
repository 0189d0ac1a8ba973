"""Deterministic content fingerprints for translated events.

Goals
- Same LocalEvent content → same hash across runs and processes.
- Keep the start/end variant (Instant vs AllDayDate) in the fingerprint so an
  event switching between timed and all-day is seen as changed.
- Instants compare by absolute time plus tzid, not by offset spelling.

Public API
- canonical_event(event: LocalEvent) -> str
- hash_event(event: LocalEvent) -> str
- sha256_hex(data: str | bytes) -> str
"""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from datetime import UTC, date, datetime
from enum import Enum
from hashlib import sha256
from typing import Any

from ..models import LocalEvent

__all__ = ["canonical_event", "hash_event", "sha256_hex"]


def _encode(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        out: dict[str, Any] = {"_type": type(obj).__name__}
        for f in fields(obj):
            out[f.name] = _encode(getattr(obj, f.name))
        return out
    if isinstance(obj, datetime):
        return obj.astimezone(UTC).isoformat() if obj.tzinfo else obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, list | tuple):
        return [_encode(v) for v in obj]
    return obj


def canonical_event(event: LocalEvent) -> str:
    """Stable JSON rendering (sorted keys, no whitespace)."""
    return json.dumps(_encode(event), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: str | bytes) -> str:
    """Compute sha256 hex digest."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return sha256(data).hexdigest()


def hash_event(event: LocalEvent) -> str:
    return sha256_hex(canonical_event(event))
