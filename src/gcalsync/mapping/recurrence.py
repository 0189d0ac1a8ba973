"""RRULE text → RecurrenceRule.

Google supplies recurrence as a list of iCalendar lines, e.g.
  ["RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE,FR;COUNT=10", "EXDATE;VALUE=DATE:20240105"]

Only RRULE lines are translated; EXDATE/RDATE lines are ignored. Parsing is
lenient: a line without a recognised FREQ is dropped, and individual BYDAY,
BYMONTHDAY and BYMONTH entries that do not parse are dropped on their own.
COUNT and UNTIL both set the terminator; the one scanned last wins.

Public API
- parse_rrule(text: str) -> RecurrenceRule | None
- parse_recurrence(lines: Iterable[str] | None) -> tuple[RecurrenceRule, ...]
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime

from ..models import Frequency, RecurrenceEnd, RecurrenceRule, Weekday, WeekdayRule

__all__ = ["parse_recurrence", "parse_rrule"]

log = logging.getLogger(__name__)

RRULE_PREFIX = "RRULE:"
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"

_BYDAY_RE = re.compile(r"^(?P<ordinal>[+-]?\d{1,2})?(?P<code>SU|MO|TU|WE|TH|FR|SA)$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def _parse_int(value: str) -> int | None:
    s = value.strip()
    return int(s) if _INT_RE.match(s) else None


def _parse_frequency(value: str) -> Frequency | None:
    try:
        return Frequency(value.strip().upper())
    except ValueError:
        return None


def _parse_interval(value: str) -> int:
    n = _parse_int(value)
    return n if n is not None and n >= 1 else 1


def _parse_byday(value: str) -> tuple[WeekdayRule, ...]:
    days: list[WeekdayRule] = []
    for raw in value.split(","):
        m = _BYDAY_RE.match(raw.strip().upper())
        if not m:
            continue
        ordinal = int(m.group("ordinal")) if m.group("ordinal") else None
        if ordinal == 0:
            continue
        days.append(WeekdayRule(weekday=Weekday(m.group("code")), ordinal=ordinal))
    return tuple(days)


def _parse_int_list(value: str) -> tuple[int, ...]:
    out: list[int] = []
    for raw in value.split(","):
        n = _parse_int(raw)
        if n is not None:
            out.append(n)
    return tuple(out)


def _parse_until(value: str) -> datetime | None:
    try:
        return datetime.strptime(value.strip(), UNTIL_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


def parse_rrule(text: str) -> RecurrenceRule | None:
    """Parse one `KEY=VALUE;...` rule (with or without the `RRULE:` prefix)."""
    body = text.strip()
    if body.upper().startswith(RRULE_PREFIX):
        body = body[len(RRULE_PREFIX) :]

    frequency: Frequency | None = None
    interval = 1
    days_of_week: tuple[WeekdayRule, ...] = ()
    days_of_month: tuple[int, ...] = ()
    months: tuple[int, ...] = ()
    end: RecurrenceEnd | None = None

    for component in body.split(";"):
        key, sep, value = component.partition("=")
        if not sep:
            continue
        key = key.strip().upper()
        if key == "FREQ":
            frequency = _parse_frequency(value)
        elif key == "INTERVAL":
            interval = _parse_interval(value)
        elif key == "BYDAY":
            days_of_week = _parse_byday(value)
        elif key == "BYMONTHDAY":
            days_of_month = _parse_int_list(value)
        elif key == "BYMONTH":
            months = _parse_int_list(value)
        elif key == "COUNT":
            count = _parse_int(value)
            if count is not None:
                end = RecurrenceEnd(count=count)
        elif key == "UNTIL":
            until = _parse_until(value)
            if until is not None:
                end = RecurrenceEnd(until=until)

    if frequency is None:
        return None
    return RecurrenceRule(
        frequency=frequency,
        interval=interval,
        days_of_week=days_of_week,
        days_of_month=days_of_month,
        months=months,
        end=end,
    )


def parse_recurrence(lines: Iterable[str] | None) -> tuple[RecurrenceRule, ...]:
    """Translate every RRULE line; unrepresentable lines are dropped."""
    rules: list[RecurrenceRule] = []
    for line in lines or ():
        if not isinstance(line, str) or not line.upper().startswith(RRULE_PREFIX):
            continue
        rule = parse_rrule(line)
        if rule is None:
            log.debug("rrule-dropped %s", line)
            continue
        rules.append(rule)
    return tuple(rules)
