"""Server-side Supabase Auth client bound to one request's cookies.

Mirrors the cookie contract of the Supabase SSR helpers: the client reads
the session through ``get_all`` and hands every re-issued cookie to
``set_all``.  Nothing is stored server-side.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import math
import time
from typing import Any, Callable, Mapping, Optional

import httpx
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import Response

from ekatan.config import Settings
from ekatan.db.session_cookies import clear_session, encode_session, read_session, storage_key
from ekatan.models.auth import AuthSession, AuthUser, CookieToSet

logger = logging.getLogger(__name__)

# Refresh when the access token has less than this many seconds left.
EXPIRY_MARGIN_SECONDS = 90

GetAll = Callable[[], Mapping[str, str]]
SetAll = Callable[[list[CookieToSet]], None]


class SupabaseAuthError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def decode_jwt_payload(token: str) -> Optional[dict[str, Any]]:
    """Decode the claims of a JWT without checking its signature.

    Signature checks are GoTrue's job; ``get_user`` asks it directly.
    """
    try:
        payload = token.split(".")[1]
        padding = "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload + padding))
    except (IndexError, binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def as_timestamp(value: Any) -> Optional[int]:
    """Return ``value`` as whole epoch seconds, or None unless it is a finite number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        if not math.isfinite(value):
            return None
        return int(value)
    except OverflowError:
        return None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}"
    return body.get("error_description") or body.get("msg") or body.get("message") or body.get("error") or f"HTTP {resp.status_code}"


class RequestCookieStore:
    """Cookie adapter for one request: reads request cookies, collects writes.

    Writes are also applied to the local view so later reads in the same
    request see the refreshed values.
    """

    def __init__(self, cookies: Mapping[str, str]) -> None:
        self._cookies: dict[str, str] = dict(cookies)
        self._pending: dict[str, CookieToSet] = {}

    def get_all(self) -> dict[str, str]:
        return dict(self._cookies)

    def set_all(self, cookies_to_set: list[CookieToSet]) -> None:
        for cookie in cookies_to_set:
            if cookie.is_deletion:
                self._cookies.pop(cookie.name, None)
            else:
                self._cookies[cookie.name] = cookie.value
            self._pending[cookie.name] = cookie

    @property
    def pending(self) -> list[CookieToSet]:
        return list(self._pending.values())

    def apply(self, response: Response) -> None:
        for cookie in self._pending.values():
            opts = cookie.options
            if cookie.is_deletion:
                response.delete_cookie(
                    cookie.name,
                    path=opts.path,
                    secure=opts.secure,
                    httponly=opts.http_only,
                    samesite=opts.same_site,
                )
            else:
                response.set_cookie(
                    cookie.name,
                    cookie.value,
                    max_age=opts.max_age,
                    path=opts.path,
                    secure=opts.secure,
                    httponly=opts.http_only,
                    samesite=opts.same_site,
                )

    def relay_to_request(self, request: Request) -> None:
        """Rewrite the request ``Cookie`` header for downstream handlers."""
        if not self._pending:
            return
        cookie_header = "; ".join(f"{name}={value}" for name, value in self._cookies.items())
        headers = [(k, v) for k, v in request.scope["headers"] if k != b"cookie"]
        if cookie_header:
            headers.append((b"cookie", cookie_header.encode("latin-1")))
        request.scope["headers"] = headers
        # Starlette caches parsed headers and cookies on the request object.
        request.__dict__.pop("_headers", None)
        request.__dict__.pop("_cookies", None)


class SupabaseServerClient:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        get_all: GetAll,
        set_all: SetAll,
    ) -> None:
        self.settings = settings
        self.http = http
        self._get_all = get_all
        self._set_all = set_all
        self._storage_key = storage_key(settings.SUPABASE_URL)
        self._session: Optional[AuthSession] = None
        self._session_loaded = False

    # ── headers ─────────────────────────────────────────────────────────

    def _anon_headers(self) -> dict[str, str]:
        return {
            "apikey": self.settings.SUPABASE_ANON_KEY,
            "Authorization": f"Bearer {self.settings.SUPABASE_ANON_KEY}",
        }

    def user_headers(self, access_token: str) -> dict[str, str]:
        return {
            "apikey": self.settings.SUPABASE_ANON_KEY,
            "Authorization": f"Bearer {access_token}",
        }

    def _url(self, path: str) -> str:
        return f"{self.settings.supabase_base_url}{path}"

    # ── session storage ─────────────────────────────────────────────────

    def _save_session(self, session: AuthSession) -> None:
        if session.expires_at is None:
            claims = decode_jwt_payload(session.access_token) or {}
            exp = as_timestamp(claims.get("exp"))
            if exp is not None:
                session.expires_at = exp
            elif session.expires_in is not None:
                session.expires_at = int(time.time()) + session.expires_in
        self._session = session
        self._session_loaded = True
        self._set_all(
            encode_session(session, self._storage_key, self._get_all(), secure=self.settings.SECURE_COOKIES)
        )

    def _remove_session(self) -> None:
        self._session = None
        self._session_loaded = True
        cookies = clear_session(self._storage_key, self._get_all(), secure=self.settings.SECURE_COOKIES)
        if cookies:
            self._set_all(cookies)

    @staticmethod
    def _expires_at(session: AuthSession) -> Optional[int]:
        if session.expires_at is not None:
            return as_timestamp(session.expires_at)
        claims = decode_jwt_payload(session.access_token) or {}
        return as_timestamp(claims.get("exp"))

    # ── auth API ────────────────────────────────────────────────────────

    async def _refresh_session(self, session: AuthSession) -> Optional[AuthSession]:
        try:
            resp = await self.http.post(
                self._url("/auth/v1/token"),
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
                headers=self._anon_headers(),
            )
        except httpx.HTTPError as e:
            # Keep the cookies; the refresh token may still be good next time.
            logger.warning("Session refresh failed: %s", e)
            return None

        if resp.status_code >= 400:
            logger.info("Refresh token rejected (%d): %s", resp.status_code, _error_message(resp))
            self._remove_session()
            return None

        try:
            refreshed = AuthSession.model_validate(resp.json())
        except (ValueError, ValidationError):
            logger.warning("Malformed refresh response from auth server")
            return None

        self._save_session(refreshed)
        logger.debug("Session refreshed")
        return refreshed

    async def get_session(self) -> Optional[AuthSession]:
        if self._session_loaded:
            return self._session

        session = read_session(self._get_all(), self._storage_key)
        self._session_loaded = True
        if session is None:
            self._session = None
            return None

        expires_at = self._expires_at(session)
        if expires_at is not None and expires_at - time.time() <= EXPIRY_MARGIN_SECONDS:
            self._session = await self._refresh_session(session)
            return self._session

        self._session = session
        return session

    async def get_claims(self) -> Optional[dict[str, Any]]:
        """Load the session, refreshing it if close to expiry, and return its claims.

        Call this first after creating the client: it is what rotates the
        session cookies.
        """
        session = await self.get_session()
        if session is None:
            return None
        return decode_jwt_payload(session.access_token)

    async def get_user(self) -> Optional[AuthUser]:
        session = await self.get_session()
        if session is None:
            return None

        try:
            resp = await self.http.get(
                self._url("/auth/v1/user"),
                headers=self.user_headers(session.access_token),
            )
        except httpx.HTTPError as e:
            logger.warning("User lookup failed: %s", e)
            return None

        if resp.status_code >= 400:
            logger.info("User lookup rejected (%d): %s", resp.status_code, _error_message(resp))
            return None

        try:
            return AuthUser.model_validate(resp.json())
        except (ValueError, ValidationError):
            logger.warning("Malformed user response from auth server")
            return None

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        try:
            resp = await self.http.post(
                self._url("/auth/v1/token"),
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers=self._anon_headers(),
            )
        except httpx.HTTPError as e:
            logger.warning("Sign-in request failed: %s", e)
            raise SupabaseAuthError("Authentication service unavailable") from e

        if resp.status_code >= 400:
            raise SupabaseAuthError(_error_message(resp), status_code=resp.status_code)

        try:
            session = AuthSession.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise SupabaseAuthError("Malformed response from authentication service") from e

        self._save_session(session)
        return session

    async def sign_out(self) -> None:
        session = await self.get_session()
        if session is not None:
            try:
                resp = await self.http.post(
                    self._url("/auth/v1/logout"),
                    headers=self.user_headers(session.access_token),
                )
                if resp.status_code >= 400:
                    logger.info("Sign-out rejected (%d): %s", resp.status_code, _error_message(resp))
            except httpx.HTTPError as e:
                logger.warning("Sign-out request failed: %s", e)
        # Local cookies are cleared even when the server call fails.
        self._remove_session()


def create_server_client(
    request: Request,
    settings: Settings,
    http: httpx.AsyncClient,
) -> tuple[SupabaseServerClient, RequestCookieStore]:
    store = RequestCookieStore(request.cookies)
    client = SupabaseServerClient(settings, http, store.get_all, store.set_all)
    return client, store
