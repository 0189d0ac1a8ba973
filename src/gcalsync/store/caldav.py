"""CalDAV calendar store (Nextcloud, Radicale, any RFC 4791 server).

Responsibilities
- List / find / create calendar collections under the user's calendar home
  (PROPFIND, MKCALENDAR with displayname and Apple calendar-color).
- Correlation lookup: calendar-query REPORT restricted to a time range with a
  DESCRIPTION text-match on the sentinel, verified client-side.
- Create / update / delete event resources with ETag preconditions.

Notes
- Raw WebDAV over httpx keeps requests predictable and easy to fake in tests.
- 401/403 and transport failures raise LocalStoreAccessError (fatal for the run);
  other unexpected statuses raise CalDAVError (scoped to the current calendar).

Security
- Do not log full ICS content; event notes may contain private text.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from types import TracebackType
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

import httpx

from ..errors import GCalSyncError, LocalStoreAccessError
from ..mapping.ics import ParsedResource, local_event_to_ics, parse_resource
from ..models import LocalEvent
from ..sync.correlation import contains, sentinel_for
from ..utils.hashing import hash_event
from ..utils.http import (
    RetryConfig,
    create_client,
    delete_with_etag,
    put_with_etag,
    request_with_retries,
)
from .base import CalendarHandle, EventHandle, TimeWindow

__all__ = ["CalDAVError", "CalDAVStore"]

log = logging.getLogger(__name__)

NS = {
    "d": "DAV:",
    "c": "urn:ietf:params:xml:ns:caldav",
    "a": "http://apple.com/ns/ical/",
}
ICS_CONTENT_TYPE = "text/calendar; charset=utf-8"
XML_CONTENT_TYPE = "application/xml; charset=utf-8"


class CalDAVError(GCalSyncError):
    pass


def _utc_stamp(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def _iter_responses(xml_text: str) -> Iterator[tuple[str, ET.Element | None]]:
    """Yield (href, prop) for each 200 propstat of a multistatus body."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise CalDAVError(f"Malformed multistatus response: {exc}") from exc
    for resp_el in root.findall("d:response", NS):
        href_el = resp_el.find("d:href", NS)
        if href_el is None or not href_el.text:
            continue
        prop: ET.Element | None = None
        for propstat in resp_el.findall("d:propstat", NS):
            status = propstat.findtext("d:status", default="", namespaces=NS)
            if status and " 200 " not in status:
                continue
            prop = propstat.find("d:prop", NS)
            break
        yield href_el.text.strip(), prop


class CalDAVStore:
    def __init__(
        self,
        base_url: str,
        username: str,
        app_password: str,
        calendar_home: str,
        *,
        timeout: float = 30.0,
        verify: bool | str = True,
        retry: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            base_url: https://cloud.example.com
            username: account name
            app_password: app password / token
            calendar_home: e.g. /remote.php/dav/calendars/nc_user/
        """
        self.base_url = base_url.rstrip("/")
        self.calendar_home = calendar_home if calendar_home.endswith("/") else calendar_home + "/"
        self.retry = retry or RetryConfig()
        self.client = create_client(
            base_url=self.base_url,
            auth=httpx.BasicAuth(username, app_password),
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> CalDAVStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -----------------
    # Transport
    # -----------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: str | None = None,
        expected: tuple[int, ...],
    ) -> httpx.Response:
        try:
            resp = request_with_retries(
                self.client,
                method,
                url,
                headers=headers,
                data=data,
                retry=self.retry,
                expected=expected,
            )
        except httpx.HTTPError as exc:
            raise LocalStoreAccessError(f"CalDAV server unreachable at {self.base_url}: {exc}") from exc
        return self._check(resp, method, url, expected)

    def _check(
        self, resp: httpx.Response, method: str, url: str, expected: tuple[int, ...]
    ) -> httpx.Response:
        if resp.status_code in (401, 403):
            raise LocalStoreAccessError(
                f"CalDAV access denied ({resp.status_code}) for {method} {url}"
            )
        if resp.status_code not in expected:
            raise CalDAVError(f"{method} failed for {url}: {resp.status_code}")
        return resp

    def _report(self, path: str, body: str) -> httpx.Response:
        return self._request(
            "REPORT",
            path,
            headers={"Content-Type": XML_CONTENT_TYPE, "Depth": "1"},
            data=body,
            expected=(207,),
        )

    # -----------------
    # Calendars
    # -----------------

    def list_calendars(self) -> list[CalendarHandle]:
        body = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" xmlns:a="http://apple.com/ns/ical/">
  <d:prop>
    <d:resourcetype/>
    <d:displayname/>
    <a:calendar-color/>
  </d:prop>
</d:propfind>"""
        resp = self._request(
            "PROPFIND",
            self.calendar_home,
            headers={"Content-Type": XML_CONTENT_TYPE, "Depth": "1"},
            data=body,
            expected=(207,),
        )
        calendars: list[CalendarHandle] = []
        for href, prop in _iter_responses(resp.text):
            if prop is None or prop.find("d:resourcetype/c:calendar", NS) is None:
                continue
            name = prop.findtext("d:displayname", default="", namespaces=NS).strip()
            color = prop.findtext("a:calendar-color", default="", namespaces=NS).strip()
            calendars.append(CalendarHandle(name=name, ref=href, color=color or None))
        return calendars

    def find_calendar(self, name: str) -> CalendarHandle | None:
        for cal in self.list_calendars():
            if cal.name == name:
                return cal
        return None

    def find_or_create_calendar(self, name: str, color: str | None = None) -> CalendarHandle:
        existing = self.find_calendar(name)
        if existing is not None:
            return existing

        path = f"{self.calendar_home}{uuid.uuid4().hex}/"
        color_xml = f"<a:calendar-color>{escape(color)}</a:calendar-color>" if color else ""
        body = f"""<?xml version="1.0" encoding="utf-8"?>
<c:mkcalendar xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" xmlns:a="http://apple.com/ns/ical/">
  <d:set>
    <d:prop>
      <d:displayname>{escape(name)}</d:displayname>
      {color_xml}
      <c:supported-calendar-component-set>
        <c:comp name="VEVENT"/>
      </c:supported-calendar-component-set>
    </d:prop>
  </d:set>
</c:mkcalendar>"""
        self._request(
            "MKCALENDAR",
            path,
            headers={"Content-Type": XML_CONTENT_TYPE},
            data=body,
            expected=(201,),
        )
        log.info("caldav-calendar-created name=%s path=%s", name, path)
        return CalendarHandle(name=name, ref=path, color=color)

    # -----------------
    # Events
    # -----------------

    def find_event_by_correlation(
        self, remote_id: str, calendar: CalendarHandle, window: TimeWindow
    ) -> EventHandle | None:
        body = f"""<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag/>
    <c:calendar-data/>
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="VEVENT">
        <c:time-range start="{_utc_stamp(window.start)}" end="{_utc_stamp(window.end)}"/>
        <c:prop-filter name="DESCRIPTION">
          <c:text-match collation="i;octet">{escape(sentinel_for(remote_id))}</c:text-match>
        </c:prop-filter>
      </c:comp-filter>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""
        resp = self._report(calendar.ref, body)
        for href, prop in _iter_responses(resp.text):
            if prop is None:
                continue
            data = prop.findtext("c:calendar-data", default="", namespaces=NS)
            parsed = parse_resource(data) if data else None
            if parsed is None or not contains(parsed.notes, remote_id):
                continue
            etag = prop.findtext("d:getetag", default="", namespaces=NS).strip() or None
            return EventHandle(
                ref=href,
                uid=parsed.uid,
                notes=parsed.notes,
                content_hash=parsed.content_hash,
                etag=etag,
            )
        return None

    def _get_resource(self, href: str) -> ParsedResource | None:
        resp = self._request("GET", href, expected=(200,))
        return parse_resource(resp.text)

    def create_event(self, data: LocalEvent, calendar: CalendarHandle) -> EventHandle:
        uid = uuid.uuid4().hex
        href = f"{calendar.ref.rstrip('/')}/{uid}.ics"
        content_hash = hash_event(data)
        ics_text = local_event_to_ics(data, uid=uid, content_hash=content_hash)
        resp = self._put(href, ics_text, etag=None, create=True)
        return EventHandle(
            ref=href,
            uid=uid,
            notes=data.notes,
            content_hash=content_hash,
            etag=resp.headers.get("ETag"),
        )

    def update_event(self, handle: EventHandle, data: LocalEvent) -> None:
        keep_from = None if data.has_timing else self._get_resource(handle.ref)
        uid = handle.uid or handle.ref.rsplit("/", 1)[-1].removesuffix(".ics")
        ics_text = local_event_to_ics(
            data, uid=uid, content_hash=hash_event(data), keep_timing_from=keep_from
        )
        self._put(handle.ref, ics_text, etag=handle.etag, create=False)

    def _put(self, href: str, ics_text: str, *, etag: str | None, create: bool) -> httpx.Response:
        try:
            resp = put_with_etag(
                self.client,
                url=href,
                body=ics_text,
                content_type=ICS_CONTENT_TYPE,
                etag=etag,
                create_if_missing=create,
                retry=self.retry,
            )
        except httpx.HTTPError as exc:
            raise LocalStoreAccessError(f"CalDAV server unreachable at {self.base_url}: {exc}") from exc
        return self._check(resp, "PUT", href, (200, 201, 204))

    def delete_event(self, handle: EventHandle) -> None:
        try:
            resp = delete_with_etag(self.client, url=handle.ref, etag=handle.etag, retry=self.retry)
        except httpx.HTTPError as exc:
            raise LocalStoreAccessError(f"CalDAV server unreachable at {self.base_url}: {exc}") from exc
        self._check(resp, "DELETE", handle.ref, (200, 204, 404))

    def delete_all_events(self, calendar: CalendarHandle) -> int:
        body = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag/>
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="VEVENT"/>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""
        resp = self._report(calendar.ref, body)
        deleted = 0
        for href, prop in _iter_responses(resp.text):
            etag = None
            if prop is not None:
                etag = prop.findtext("d:getetag", default="", namespaces=NS).strip() or None
            self.delete_event(EventHandle(ref=href, etag=etag))
            deleted += 1
        return deleted
