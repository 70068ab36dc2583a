"""CalDAV client and event bridge.

``CalDAVClient`` speaks the handful of WebDAV/CalDAV requests needed here
(PROPFIND discovery, calendar-query REPORT, PUT, DELETE) over a requests
session. ``CalDAVEventBridge`` maps calendar objects to CalendarEvent and
back. Neither caches event state; every listing goes to the server.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, quote
from xml.etree.ElementTree import Element, SubElement, tostring, fromstring, ParseError, register_namespace

import requests

from domain import CalDAVCredentials, CalendarInfo, CalendarObject, CalendarEvent
from monitoring.exceptions import (
    CalDAVError, CalDAVConnectionError, InvalidCredentialsError, ValidationError,
    CalendarNotFoundError, EventConflictError, EventNotFoundError, ICalParseError
)
from .ical import parse_calendar_object, build_event_payload, UID_DOMAIN


# CalDAV namespace constants
DAV_NS = 'DAV:'
CALDAV_NS = 'urn:ietf:params:xml:ns:caldav'
ICAL_NS = 'http://apple.com/ns/ical/'
CALSERVER_NS = 'http://calendarserver.org/ns/'

register_namespace('D', DAV_NS)
register_namespace('C', CALDAV_NS)
register_namespace('A', ICAL_NS)
register_namespace('CS', CALSERVER_NS)

MAX_REDIRECTS = 5
REDIRECT_CODES = (301, 302, 303, 307, 308)
UID_ALPHABET = string.digits + string.ascii_lowercase


def _qn(namespace: str, name: str) -> str:
    return f'{{{namespace}}}{name}'


def _xml_body(root: Element) -> bytes:
    return b'<?xml version="1.0" encoding="utf-8"?>\n' + tostring(root, encoding='utf-8', xml_declaration=False)


def _propfind_body(*props: Tuple[str, str]) -> bytes:
    root = Element(_qn(DAV_NS, 'propfind'))
    prop = SubElement(root, _qn(DAV_NS, 'prop'))
    for namespace, name in props:
        SubElement(prop, _qn(namespace, name))
    return _xml_body(root)


def format_caldav_time(value: datetime) -> str:
    """Format a datetime as a CalDAV UTC time-range value."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def _calendar_query_body(start: datetime, end: datetime) -> bytes:
    root = Element(_qn(CALDAV_NS, 'calendar-query'))
    prop = SubElement(root, _qn(DAV_NS, 'prop'))
    SubElement(prop, _qn(DAV_NS, 'getetag'))
    SubElement(prop, _qn(CALDAV_NS, 'calendar-data'))

    filter_elem = SubElement(root, _qn(CALDAV_NS, 'filter'))
    vcalendar = SubElement(filter_elem, _qn(CALDAV_NS, 'comp-filter'))
    vcalendar.set('name', 'VCALENDAR')
    vevent = SubElement(vcalendar, _qn(CALDAV_NS, 'comp-filter'))
    vevent.set('name', 'VEVENT')
    time_range = SubElement(vevent, _qn(CALDAV_NS, 'time-range'))
    time_range.set('start', format_caldav_time(start))
    time_range.set('end', format_caldav_time(end))
    return _xml_body(root)


def parse_multistatus(content: bytes) -> List[Tuple[str, Element]]:
    """Return (href, merged prop element) for each successful response."""
    try:
        root = fromstring(content)
    except ParseError as e:
        raise CalDAVError(f"Malformed multistatus response: {e}", cause=e)

    results = []
    for response in root.findall(_qn(DAV_NS, 'response')):
        href = response.findtext(_qn(DAV_NS, 'href'))
        if not href:
            continue
        merged = Element(_qn(DAV_NS, 'prop'))
        for propstat in response.findall(_qn(DAV_NS, 'propstat')):
            status = propstat.findtext(_qn(DAV_NS, 'status')) or ''
            if ' 200 ' not in f'{status} ':
                continue
            prop = propstat.find(_qn(DAV_NS, 'prop'))
            if prop is not None:
                merged.extend(list(prop))
        results.append((href.strip(), merged))
    return results


def _same_origin(current: str, target: str) -> bool:
    a, b = urlsplit(current), urlsplit(target)
    return (a.scheme.lower(), a.netloc.lower()) == (b.scheme.lower(), b.netloc.lower())


def _strip_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip() if etag else etag


class CalDAVClient:
    """Connection handle for one CalDAV account.

    Created by ``CalDAVEventBridge.connect``; callers hold on to it for the
    duration of a request instead of relying on a process-wide cache.
    """

    def __init__(
        self,
        server_url: str,
        credentials: CalDAVCredentials,
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        self.server_url = server_url.rstrip('/') + '/'
        self.credentials = credentials
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (credentials.email, credentials.app_password)
        self.logger = logging.getLogger(__name__)
        self._calendar_home: Optional[str] = None

    def request(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[dict] = None
    ) -> requests.Response:
        """Send a request, following redirects without changing the method.

        Only same-origin redirects are followed; credentials are never resent
        to a different scheme or host.
        """
        for _ in range(MAX_REDIRECTS + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    data=body,
                    headers=headers or {},
                    timeout=self.timeout,
                    allow_redirects=False
                )
            except requests.RequestException as e:
                raise CalDAVConnectionError(f"{method} {url} failed: {e}", cause=e)

            location = response.headers.get('Location')
            if response.status_code in REDIRECT_CODES and location:
                target = urljoin(url, location)
                if not _same_origin(url, target):
                    raise CalDAVError(f"Refusing redirect from {url} to {target}",
                                      details={'location': location})
                url = target
                continue
            break
        else:
            raise CalDAVError(f"Too many redirects for {method} {url}")

        if response.status_code in (401, 403):
            raise InvalidCredentialsError()
        return response

    def _propfind(self, url: str, body: bytes, depth: str = '0') -> List[Tuple[str, Element]]:
        response = self.request('PROPFIND', url, body, {
            'Depth': depth,
            'Content-Type': 'application/xml; charset=utf-8'
        })
        if response.status_code != 207:
            raise CalDAVError(
                f"PROPFIND {url} returned {response.status_code}",
                details={'status': response.status_code}
            )
        return parse_multistatus(response.content)

    def _first_href(self, url: str, namespace: str, name: str) -> str:
        for _, prop in self._propfind(url, _propfind_body((namespace, name))):
            href = prop.findtext(f'{_qn(namespace, name)}/{_qn(DAV_NS, "href")}')
            if href:
                return urljoin(url, href.strip())
        raise CalDAVError(f"Server did not report {name} for {url}")

    def calendar_home(self) -> str:
        """Discover the calendar home collection via the current user principal."""
        if self._calendar_home is None:
            principal = self._first_href(self.server_url, DAV_NS, 'current-user-principal')
            self._calendar_home = self._first_href(principal, CALDAV_NS, 'calendar-home-set')
            self.logger.debug(f"Calendar home for {self.credentials.email}: {self._calendar_home}")
        return self._calendar_home

    def fetch_calendars(self) -> List[CalendarInfo]:
        """List event calendars in the account's calendar home."""
        home = self.calendar_home()
        body = _propfind_body(
            (DAV_NS, 'resourcetype'),
            (DAV_NS, 'displayname'),
            (ICAL_NS, 'calendar-color'),
            (CALSERVER_NS, 'getctag'),
            (CALDAV_NS, 'supported-calendar-component-set')
        )

        calendars = []
        for href, prop in self._propfind(home, body, depth='1'):
            resourcetype = prop.find(_qn(DAV_NS, 'resourcetype'))
            if resourcetype is None or resourcetype.find(_qn(CALDAV_NS, 'calendar')) is None:
                continue

            components = prop.find(_qn(CALDAV_NS, 'supported-calendar-component-set'))
            if components is not None:
                names = {comp.get('name') for comp in components.findall(_qn(CALDAV_NS, 'comp'))}
                if names and 'VEVENT' not in names:
                    continue

            url = urljoin(home, href)
            calendars.append(CalendarInfo(
                url=url,
                display_name=(prop.findtext(_qn(DAV_NS, 'displayname')) or '').strip() or url,
                color=(prop.findtext(_qn(ICAL_NS, 'calendar-color')) or '').strip() or None,
                ctag=(prop.findtext(_qn(CALSERVER_NS, 'getctag')) or '').strip() or None
            ))
        return calendars

    def fetch_calendar_objects(
        self,
        calendar: CalendarInfo,
        start: datetime,
        end: datetime
    ) -> List[CalendarObject]:
        """Fetch objects with a VEVENT overlapping [start, end)."""
        response = self.request('REPORT', calendar.url, _calendar_query_body(start, end), {
            'Depth': '1',
            'Content-Type': 'application/xml; charset=utf-8'
        })
        if response.status_code != 207:
            raise CalDAVError(
                f"REPORT {calendar.url} returned {response.status_code}",
                details={'status': response.status_code}
            )

        objects = []
        for href, prop in parse_multistatus(response.content):
            data = prop.findtext(_qn(CALDAV_NS, 'calendar-data'))
            if not data:
                continue
            objects.append(CalendarObject(
                url=urljoin(calendar.url, href),
                etag=_strip_etag(prop.findtext(_qn(DAV_NS, 'getetag'))),
                data=data
            ))
        return objects

    def create_calendar_object(self, calendar: CalendarInfo, filename: str, ical: str) -> CalendarObject:
        """Upload a new object; never overwrites an existing one."""
        url = urljoin(calendar.url.rstrip('/') + '/', quote(filename))
        response = self.request('PUT', url, ical.encode('utf-8'), {
            'Content-Type': 'text/calendar; charset=utf-8',
            'If-None-Match': '*'
        })
        if response.status_code == 412:
            raise CalDAVError(f"Calendar object already exists: {url}", details={'status': 412})
        if response.status_code not in (200, 201, 204):
            raise CalDAVError(
                f"PUT {url} returned {response.status_code}",
                details={'status': response.status_code}
            )
        return CalendarObject(url=url, etag=_strip_etag(response.headers.get('ETag')), data=ical)

    def delete_calendar_object(self, url: str, etag: str) -> None:
        """Delete an object if it still has ``etag``."""
        response = self.request('DELETE', url, headers={'If-Match': etag})
        if response.status_code == 412:
            raise EventConflictError(url, etag)
        if response.status_code in (404, 410):
            raise EventNotFoundError(url)
        if response.status_code not in (200, 202, 204):
            raise CalDAVError(
                f"DELETE {url} returned {response.status_code}",
                details={'status': response.status_code}
            )


def generate_uid(now: Optional[float] = None) -> str:
    """Return ``<epoch-ms>-<9 base36 chars>@commandcenter``."""
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = ''.join(secrets.choice(UID_ALPHABET) for _ in range(9))
    return f'{millis}-{suffix}@{UID_DOMAIN}'


def default_time_range(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """First day of this month up to (excluding) the first day of the month after next."""
    now = now or datetime.now(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    month_index = now.month - 1 + 2
    end = datetime(now.year + month_index // 12, month_index % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


class CalDAVEventBridge:
    """Lists, creates and deletes events on a CalDAV server."""

    def __init__(
        self,
        server_url: str = 'https://caldav.icloud.com',
        timeout: float = 30,
        session_factory: Callable[[], requests.Session] = requests.Session
    ):
        self.server_url = server_url
        self.timeout = timeout
        self.session_factory = session_factory
        self.logger = logging.getLogger(__name__)

    def connect(self, credentials: CalDAVCredentials) -> CalDAVClient:
        """Open a client and verify it with a calendar listing.

        Raises ValidationError for missing fields and InvalidCredentialsError
        when the server rejects them.
        """
        if credentials is None or not credentials.email or not credentials.app_password:
            raise ValidationError("Email and app-specific password are required")

        client = self.open(credentials)
        calendars = client.fetch_calendars()
        self.logger.info(f"Connected to {self.server_url} as {credentials.email} ({len(calendars)} calendars)")
        return client

    def open(self, credentials: CalDAVCredentials) -> CalDAVClient:
        """Create a client for already-verified credentials without a round trip."""
        return CalDAVClient(self.server_url, credentials, self.timeout, self.session_factory())

    def list_calendars(self, client: CalDAVClient) -> List[CalendarInfo]:
        return client.fetch_calendars()

    def list_events(
        self,
        client: CalDAVClient,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[CalendarEvent]:
        """Fetch and parse events from every calendar in the window.

        A calendar that fails to load is skipped; so is any object whose
        dates cannot be parsed.
        An empty or inverted window is rejected before any request.
        """
        default_start, default_end = default_time_range()
        start = start or default_start
        end = end or default_end
        if end <= start:
            raise ValidationError("Event window end must be after its start",
                                  details={'start': start.isoformat(), 'end': end.isoformat()})

        events = []
        for calendar in client.fetch_calendars():
            try:
                objects = client.fetch_calendar_objects(calendar, start, end)
            except InvalidCredentialsError:
                raise
            except CalDAVError as e:
                self.logger.error(f"Error fetching from calendar {calendar.display_name}: {e.message}")
                continue

            for obj in objects:
                try:
                    event = parse_calendar_object(obj.data, obj.url, obj.etag, calendar)
                except ICalParseError as e:
                    self.logger.warning(f"Skipping {obj.url}: {e.message}")
                    continue
                if event is not None:
                    events.append(event)

        self.logger.debug(f"Listed {len(events)} events between {start.isoformat()} and {end.isoformat()}")
        return events

    def create_event(
        self,
        client: CalDAVClient,
        title: str,
        start: datetime,
        end: Optional[datetime] = None,
        description: Optional[str] = None,
        calendar_url: Optional[str] = None
    ) -> str:
        """Create an event and return its UID.

        Without ``calendar_url`` the account's first calendar is used.
        """
        if not title or not title.strip():
            raise ValidationError("Event title is required")
        if start is None:
            raise ValidationError("Event start is required")
        end = end or start
        if end < start:
            raise ValidationError("Event end must not be before its start")

        calendars = client.fetch_calendars()
        if calendar_url:
            calendar = next((c for c in calendars if c.url.rstrip('/') == calendar_url.rstrip('/')), None)
        else:
            calendar = calendars[0] if calendars else None
        if calendar is None:
            raise CalendarNotFoundError(calendar_url)

        uid = generate_uid()
        payload = build_event_payload(uid, title.strip(), start, end, description)
        created = client.create_calendar_object(calendar, f'{uid}.ics', payload)
        self.logger.info(f"Created event {uid} in {calendar.display_name} at {created.url}")
        return uid

    def delete_event(self, client: CalDAVClient, url: str, etag: str) -> None:
        """Delete an event previously listed with ``url`` and ``etag``.

        Raises EventConflictError when the etag is stale and
        EventNotFoundError when the object is gone. Retrying after a
        conflict is left to the caller.
        """
        if not url:
            raise ValidationError("Event URL required")
        if not etag:
            raise ValidationError("Event etag required")
        client.delete_calendar_object(url, etag)
        self.logger.info(f"Deleted event {url}")
