"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse
from xml.sax.saxutils import escape

import pytest

from domain import CommandRunner, CalDAVCredentials
from monitoring import error_handler, GitCommandError


SERVER_URL = 'https://caldav.example.com'
HOME_PATH = '/123/calendars/'
WORK_URL = SERVER_URL + HOME_PATH + 'work/'
PERSONAL_URL = SERVER_URL + HOME_PATH + 'personal/'


class FakeRunner(CommandRunner):
    """CommandRunner answering from a table keyed by the git argument tuple.

    Values are stdout strings, or exceptions to raise. Unknown commands
    fail like git does outside a repository.
    """

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], object]] = None, per_directory=None):
        self.responses = dict(responses or {})
        self.per_directory = per_directory or {}
        self.calls: List[Tuple[str, Tuple[str, ...]]] = []

    async def run(self, cwd, args, timeout=None):
        key = tuple(args)
        self.calls.append((cwd, key))
        await asyncio.sleep(0)
        table = self.per_directory.get(cwd, self.responses)
        if key not in table:
            raise GitCommandError(
                'fatal: not a git repository', command=list(args), returncode=128,
                stderr='fatal: not a git repository'
            )
        result = table[key]
        if isinstance(result, Exception):
            raise result
        return result


def git_responses(
    branch='main',
    status='',
    log='',
    remote='origin\n',
    upstream=None,
    counts='0\t0\n'
) -> Dict[Tuple[str, ...], object]:
    """Response table for a repository with the given state."""
    table = {
        ('rev-parse', '--abbrev-ref', 'HEAD'): branch + '\n',
        ('status', '--porcelain'): status,
        ('log', '-5', '--pretty=format:%h%x1f%s%x1f%cr%x1f%an'): log,
        ('remote',): remote,
    }
    if upstream:
        table[('rev-parse', '--abbrev-ref', '--symbolic-full-name', '@{upstream}')] = upstream + '\n'
        table[('rev-list', '--left-right', '--count', 'HEAD...@{upstream}')] = counts
    return table


@pytest.fixture
def fake_runner():
    return FakeRunner(git_responses())


@pytest.fixture(autouse=True)
def reset_error_stats():
    """Keep the global error handler counters per-test."""
    error_handler.reset_stats()
    yield
    error_handler.reset_stats()


# CalDAV fakes

class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b'', headers: Optional[dict] = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


def multistatus(*responses: str) -> bytes:
    body = ''.join(responses)
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<D:multistatus xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav" '
        'xmlns:A="http://apple.com/ns/ical/" xmlns:CS="http://calendarserver.org/ns/">'
        f'{body}</D:multistatus>'
    ).encode('utf-8')


def dav_response(href: str, props: str, status: str = 'HTTP/1.1 200 OK') -> str:
    return (
        f'<D:response><D:href>{href}</D:href>'
        f'<D:propstat><D:prop>{props}</D:prop><D:status>{status}</D:status></D:propstat>'
        '</D:response>'
    )


def calendar_props(name: str, color: Optional[str] = None, components=('VEVENT',)) -> str:
    comps = ''.join(f'<C:comp name="{c}"/>' for c in components)
    color_prop = f'<A:calendar-color>{color}</A:calendar-color>' if color else ''
    return (
        '<D:resourcetype><D:collection/><C:calendar/></D:resourcetype>'
        f'<D:displayname>{name}</D:displayname>{color_prop}'
        f'<CS:getctag>ctag-{name}</CS:getctag>'
        f'<C:supported-calendar-component-set>{comps}</C:supported-calendar-component-set>'
    )


def vevent(uid: Optional[str], summary: str, dtstart: str, dtend: Optional[str] = None, extra: str = '') -> str:
    lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', 'BEGIN:VEVENT']
    if uid:
        lines.append(f'UID:{uid}')
    lines.append(f'SUMMARY:{summary}')
    lines.append(f'DTSTART{dtstart}')
    if dtend:
        lines.append(f'DTEND{dtend}')
    if extra:
        lines.append(extra)
    lines += ['END:VEVENT', 'END:VCALENDAR', '']
    return '\r\n'.join(lines)


class FakeCalDAVServer:
    """In-memory CalDAV server with a Work and a Personal calendar.

    ``objects`` maps object URL to (etag, calendar data). Calendars listed
    in ``failing`` answer REPORT with a 500.
    """

    def __init__(self, email='user@example.com', password='abcd-efgh-ijkl-mnop'):
        self.valid_auth = (email, password)
        self.objects: Dict[str, Tuple[str, str]] = {}
        self.failing = set()
        self.requests: List[Tuple[str, str, dict]] = []
        self.etag_counter = 0
        self.redirect_root = False

    def add_object(self, calendar_url: str, name: str, data: str, etag: Optional[str] = None) -> str:
        url = calendar_url + name
        self.etag_counter += 1
        self.objects[url] = (etag or f'"etag-{self.etag_counter}"', data)
        return url

    def session(self):
        return FakeSession(self)

    def handle(self, session, method, url, data, headers) -> FakeResponse:
        self.requests.append((method, url, dict(headers)))
        if session.auth != self.valid_auth:
            return FakeResponse(401)

        path = urlparse(url).path
        if method == 'PROPFIND':
            if path in ('', '/'):
                if self.redirect_root and not url.endswith('/redirected/'):
                    return FakeResponse(301, headers={'Location': '/redirected/'})
                return self._principal()
            if path == '/redirected/':
                return self._principal()
            if path == '/123/principal/':
                return FakeResponse(207, multistatus(dav_response(
                    path, f'<C:calendar-home-set><D:href>{HOME_PATH}</D:href></C:calendar-home-set>'
                )))
            if path == HOME_PATH:
                return FakeResponse(207, multistatus(
                    dav_response(HOME_PATH, '<D:resourcetype><D:collection/></D:resourcetype>'),
                    dav_response(HOME_PATH + 'work/', calendar_props('Work', '#FF2968FF')),
                    dav_response(HOME_PATH + 'personal/', calendar_props('Personal')),
                    dav_response(HOME_PATH + 'reminders/', calendar_props('Reminders', components=('VTODO',))),
                    dav_response(HOME_PATH + 'inbox/', '<D:resourcetype><D:collection/></D:resourcetype>'),
                ))
            return FakeResponse(404)

        if method == 'REPORT':
            if url in self.failing:
                return FakeResponse(500)
            responses = [
                dav_response(
                    urlparse(obj_url).path,
                    f'<D:getetag>{escape(etag)}</D:getetag>'
                    f'<C:calendar-data>{escape(ical)}</C:calendar-data>'
                )
                for obj_url, (etag, ical) in self.objects.items()
                if obj_url.startswith(url)
            ]
            return FakeResponse(207, multistatus(*responses))

        if method == 'PUT':
            if headers.get('If-None-Match') == '*' and url in self.objects:
                return FakeResponse(412)
            self.etag_counter += 1
            etag = f'"etag-{self.etag_counter}"'
            self.objects[url] = (etag, data.decode('utf-8'))
            return FakeResponse(201, headers={'ETag': etag})

        if method == 'DELETE':
            if url not in self.objects:
                return FakeResponse(404)
            if headers.get('If-Match') != self.objects[url][0]:
                return FakeResponse(412)
            del self.objects[url]
            return FakeResponse(204)

        return FakeResponse(405)

    def _principal(self) -> FakeResponse:
        return FakeResponse(207, multistatus(dav_response(
            '/', '<D:current-user-principal><D:href>/123/principal/</D:href></D:current-user-principal>'
        )))


class FakeSession:
    """Stands in for requests.Session; routes every call to a FakeCalDAVServer."""

    def __init__(self, server: FakeCalDAVServer):
        self.server = server
        self.auth = None

    def request(self, method, url, data=None, headers=None, timeout=None, allow_redirects=True):
        return self.server.handle(self, method, url, data, headers or {})


@pytest.fixture
def caldav_server():
    return FakeCalDAVServer()


@pytest.fixture
def credentials():
    return CalDAVCredentials(email='user@example.com', app_password='abcd-efgh-ijkl-mnop')
