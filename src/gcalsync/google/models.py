"""Typed views over Google Calendar API v3 payloads.

Only the fields the sync needs are modelled; unknown keys are ignored.
Field names are snake_case with camelCase aliases matching the API JSON.

Refs:
- https://developers.google.com/calendar/api/v3/reference/calendarList
- https://developers.google.com/calendar/api/v3/reference/events
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "Attendee",
    "ConferenceData",
    "EntryPoint",
    "EventDateTime",
    "ReminderOverride",
    "Reminders",
    "RemoteCalendar",
    "RemoteEvent",
]


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class EventDateTime(_ApiModel):
    date: str | None = None  # all-day, YYYY-MM-DD
    date_time: str | None = None  # RFC 3339
    time_zone: str | None = None


class Attendee(_ApiModel):
    email: str | None = None
    display_name: str | None = None
    organizer: bool | None = None
    response_status: str | None = None


class ReminderOverride(_ApiModel):
    method: str | None = None
    minutes: int | None = None


class Reminders(_ApiModel):
    use_default: bool | None = None
    overrides: list[ReminderOverride] | None = None


class EntryPoint(_ApiModel):
    entry_point_type: str | None = None
    uri: str | None = None
    label: str | None = None


class ConferenceData(_ApiModel):
    entry_points: list[EntryPoint] | None = None


class RemoteEvent(_ApiModel):
    id: str = Field(min_length=1)
    status: str | None = None
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: EventDateTime | None = None
    end: EventDateTime | None = None
    recurrence: list[str] | None = None
    attendees: list[Attendee] | None = None
    reminders: Reminders | None = None
    html_link: str | None = None
    conference_data: ConferenceData | None = None

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


class RemoteCalendar(_ApiModel):
    id: str = Field(min_length=1)
    summary: str | None = None
    description: str | None = None
    background_color: str | None = None
    foreground_color: str | None = None
    selected: bool | None = None
    hidden: bool | None = None
    primary: bool | None = None

    @property
    def participates(self) -> bool:
        """Only calendars shown in the user's list are mirrored."""
        return self.selected is True and self.hidden is not True
