"""Minimal iCalendar handling for CalDAV events.

Parsing is line-anchored pattern extraction over the raw object text, not a
full RFC 5545 parser. Only the first occurrence of each property is used.
Known limitations: folded (continued) lines are not unfolded, and objects
holding several VEVENTs (recurrence overrides) yield only the first event's
properties.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar, Event

from domain import CalendarEvent, CalendarInfo
from monitoring.exceptions import ICalParseError


PRODID = '-//Command Center//EN'
UID_DOMAIN = 'commandcenter'

_DATE_VALUE = re.compile(r'^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})(Z)?)?$')
_VEVENT_BLOCK = re.compile(r'^BEGIN:VEVENT\r?$(.*?)^END:VEVENT', re.MULTILINE | re.DOTALL)


def _property_pattern(name: str):
    return re.compile(rf'^{name}(?:;([^:\r\n]*))?:([^\r\n]*)', re.MULTILINE)


_PATTERNS = {
    name: _property_pattern(name)
    for name in ('SUMMARY', 'DTSTART', 'DTEND', 'UID', 'DESCRIPTION')
}


def _extract(data: str, name: str):
    """Return (params, value) of the first ``name`` line, or None."""
    match = _PATTERNS[name].search(data)
    if not match:
        return None
    return _parse_params(match.group(1)), match.group(2).strip()


def _parse_params(raw: Optional[str]) -> Dict[str, str]:
    params = {}
    if not raw:
        return params
    for part in raw.split(';'):
        key, _, value = part.partition('=')
        params[key.strip().upper()] = value.strip().strip('"')
    return params


def _unescape(value: str) -> str:
    return (value.replace('\\n', '\n').replace('\\N', '\n')
                 .replace('\\,', ',').replace('\\;', ';').replace('\\\\', '\\'))


def parse_ical_date(value: str, params: Optional[Dict[str, str]] = None) -> datetime:
    """Convert a DTSTART/DTEND value to an aware datetime.

    ``20240315`` is an all-day date and means local midnight.
    ``20240315T093000Z`` is UTC. Without ``Z`` the time is in the ``TZID``
    parameter's zone when given, local time otherwise.
    """
    params = params or {}
    match = _DATE_VALUE.match(value.strip())
    if not match:
        raise ICalParseError(f"Unrecognized iCalendar date: {value!r}", {'value': value})

    year, month, day, hour, minute, second, utc_marker = match.groups()
    try:
        if hour is None:
            naive = datetime(int(year), int(month), int(day))
        else:
            naive = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second))
    except ValueError as e:
        raise ICalParseError(f"Invalid iCalendar date {value!r}: {e}", {'value': value})

    try:
        if hour is None:
            result = naive.astimezone()
        else:
            result = _localize(naive, params.get('TZID'), bool(utc_marker))
        # Values near datetime.min/max can still fail when moved to UTC.
        result.astimezone(timezone.utc)
    except (OverflowError, ValueError) as e:
        raise ICalParseError(f"iCalendar date out of range {value!r}: {e}", {'value': value})
    return result


def _localize(naive: datetime, tzid: Optional[str], utc: bool) -> datetime:
    if utc:
        return naive.replace(tzinfo=timezone.utc)

    if tzid:
        try:
            return naive.replace(tzinfo=ZoneInfo(tzid))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return naive.astimezone()


def parse_calendar_object(
    data: str,
    url: str,
    etag: Optional[str],
    calendar: CalendarInfo
) -> Optional[CalendarEvent]:
    """Build a CalendarEvent from raw object text.

    Returns None when SUMMARY or DTSTART is missing. Raises ICalParseError
    for malformed dates.
    """
    # VTIMEZONE blocks carry their own DTSTART lines
    block = _VEVENT_BLOCK.search(data)
    if block:
        data = block.group(1)

    summary = _extract(data, 'SUMMARY')
    dtstart = _extract(data, 'DTSTART')
    if not summary or not dtstart:
        return None

    start = parse_ical_date(dtstart[1], dtstart[0])
    dtend = _extract(data, 'DTEND')
    end = parse_ical_date(dtend[1], dtend[0]) if dtend else start

    uid = _extract(data, 'UID')
    description = _extract(data, 'DESCRIPTION')

    return CalendarEvent(
        id=(uid[1] if uid and uid[1] else url),
        title=_unescape(summary[1]),
        start=start,
        end=end,
        description=_unescape(description[1]) if description and description[1] else None,
        calendar=calendar.display_name,
        calendar_url=calendar.url,
        color=calendar.color or 'blue',
        url=url,
        etag=etag
    )


def build_event_payload(
    uid: str,
    title: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    stamp: Optional[datetime] = None
) -> str:
    """Serialize a single-event VCALENDAR document.

    All times are written in UTC. DESCRIPTION is omitted when empty.
    """
    cal = Calendar()
    cal.add('prodid', PRODID)
    cal.add('version', '2.0')

    event = Event()
    event.add('uid', uid)
    event.add('dtstamp', (stamp or datetime.now(timezone.utc)).astimezone(timezone.utc))
    event.add('dtstart', start.astimezone(timezone.utc))
    event.add('dtend', end.astimezone(timezone.utc))
    event.add('summary', title)
    if description:
        event.add('description', description)
    cal.add_component(event)

    return cal.to_ical().decode('utf-8')
