"""Reversible mapping between project paths and opaque project ids.

Git actions receive only the id, so the mapping must be stable and
lossless: ``decode_project_id(encode_project_id(p)) == p`` for every path.
"""

import base64
import binascii

from monitoring.exceptions import InvalidProjectIdError


def encode_project_id(path: str) -> str:
    """Encode a filesystem path as a URL-safe id."""
    encoded = base64.urlsafe_b64encode(path.encode('utf-8', 'surrogateescape')).decode('ascii')
    return encoded.rstrip('=')


def decode_project_id(project_id: str) -> str:
    """Recover the path an id was derived from.

    Raises InvalidProjectIdError for anything ``encode_project_id`` could
    not have produced.
    """
    if not project_id or not isinstance(project_id, str):
        raise InvalidProjectIdError(str(project_id))

    padded = project_id + '=' * (-len(project_id) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode('ascii'))
        path = raw.decode('utf-8', 'surrogateescape')
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidProjectIdError(project_id)

    if not path or encode_project_id(path) != project_id:
        raise InvalidProjectIdError(project_id)
    return path
