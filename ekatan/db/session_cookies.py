"""Supabase-compatible auth cookie storage.

The browser SDK and the server share one session, stored under
``sb-<project-ref>-auth-token``.  Values are ``base64-`` followed by the
unpadded base64url encoding of the session JSON.  Values longer than
``MAX_CHUNK_SIZE`` are split across ``<key>.0``, ``<key>.1``, ... cookies.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from ekatan.models.auth import AuthSession, CookieOptions, CookieToSet

logger = logging.getLogger(__name__)

BASE64_PREFIX = "base64-"
MAX_CHUNK_SIZE = 3180
# Browsers cap cookie lifetime at 400 days.
DEFAULT_MAX_AGE = 400 * 24 * 60 * 60


def storage_key(supabase_url: str) -> str:
    hostname = urlparse(supabase_url).hostname or ""
    project_ref = hostname.split(".")[0]
    return f"sb-{project_ref}-auth-token"


def default_cookie_options(secure: bool = False) -> CookieOptions:
    return CookieOptions(path="/", max_age=DEFAULT_MAX_AGE, same_site="lax", http_only=False, secure=secure)


def _b64url_encode(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> str:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding).decode("utf-8")


def _chunk_names(cookies: Mapping[str, str], key: str) -> list[str]:
    return [name for name in cookies if name.startswith(f"{key}.") and name[len(key) + 1:].isdigit()]


def combine_chunks(cookies: Mapping[str, str], key: str) -> Optional[str]:
    """Reassemble a (possibly chunked) cookie value.

    Chunks are read in index order starting at ``.0`` and reading stops at
    the first missing index.
    """
    if key in cookies:
        return cookies[key]

    parts: list[str] = []
    index = 0
    while f"{key}.{index}" in cookies:
        parts.append(cookies[f"{key}.{index}"])
        index += 1

    return "".join(parts) if parts else None


def decode_session_value(value: str) -> Optional[AuthSession]:
    try:
        if value.startswith(BASE64_PREFIX):
            value = _b64url_decode(value[len(BASE64_PREFIX):])
        return AuthSession.model_validate(json.loads(value))
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
        logger.warning("Discarding unreadable auth cookie: %s", type(e).__name__)
        return None


def read_session(cookies: Mapping[str, str], key: str) -> Optional[AuthSession]:
    value = combine_chunks(cookies, key)
    if not value:
        return None
    return decode_session_value(value)


def encode_session_value(session: AuthSession) -> str:
    payload = session.model_dump(exclude_none=True)
    return BASE64_PREFIX + _b64url_encode(json.dumps(payload, separators=(",", ":")))


def _deletion(name: str, secure: bool) -> CookieToSet:
    options = default_cookie_options(secure)
    options.max_age = 0
    return CookieToSet(name=name, value="", options=options)


def encode_session(
    session: AuthSession,
    key: str,
    existing: Mapping[str, str],
    *,
    secure: bool = False,
) -> list[CookieToSet]:
    """Cookies that store ``session`` and clear whatever it replaces."""
    value = encode_session_value(session)
    options = default_cookie_options(secure)

    if len(value) <= MAX_CHUNK_SIZE:
        cookies = [CookieToSet(name=key, value=value, options=options)]
        written = {key}
    else:
        cookies = []
        written = set()
        for index, start in enumerate(range(0, len(value), MAX_CHUNK_SIZE)):
            name = f"{key}.{index}"
            cookies.append(CookieToSet(name=name, value=value[start:start + MAX_CHUNK_SIZE], options=options))
            written.add(name)

    stale = [name for name in [key, *_chunk_names(existing, key)] if name in existing and name not in written]
    cookies.extend(_deletion(name, secure) for name in stale)
    return cookies


def clear_session(key: str, existing: Mapping[str, str], *, secure: bool = False) -> list[CookieToSet]:
    names = [name for name in [key, *_chunk_names(existing, key)] if name in existing]
    return [_deletion(name, secure) for name in names]
