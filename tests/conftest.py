from __future__ import annotations

import base64
import json
import time
import uuid
from typing import AsyncGenerator, Optional
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ekatan.config import Settings
from ekatan.db.session_cookies import encode_session_value, storage_key
from ekatan.main import create_app
from ekatan.models.auth import AuthSession


SUPABASE_URL = "https://abcdefghijkl.supabase.co"
ANON_KEY = "anon-test-key"
COOKIE_KEY = storage_key(SUPABASE_URL)


def make_jwt(sub: str, exp: int) -> str:
    def enc(obj: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")

    return f"{enc({'alg': 'HS256', 'typ': 'JWT'})}.{enc({'sub': sub, 'exp': exp, 'role': 'authenticated', 'jti': uuid.uuid4().hex})}.signature"


def make_session(user_id: str, *, expires_in: int = 3600, refresh_token: Optional[str] = None) -> AuthSession:
    exp = int(time.time()) + expires_in
    return AuthSession(
        access_token=make_jwt(user_id, exp),
        refresh_token=refresh_token or f"refresh-{user_id}",
        expires_in=expires_in,
        expires_at=exp,
        user={"id": user_id},
    )


def session_cookie_header(session: AuthSession) -> dict[str, str]:
    return {"Cookie": f"{COOKIE_KEY}={encode_session_value(session)}"}


def set_cookie_headers(resp: httpx.Response) -> dict[str, str]:
    """Map cookie name -> raw Set-Cookie header."""
    result = {}
    for raw in resp.headers.get_list("set-cookie"):
        name = raw.split("=", 1)[0]
        result[name] = raw
    return result


class FakeSupabase:
    """In-memory stand-in for GoTrue and PostgREST."""

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.passwords: dict[str, tuple[str, str]] = {}
        self.roles: dict[str, Optional[str]] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None
        self._issued = 0

    def add_user(self, user_id: str, email: str, *, password: str = "secret", role: Optional[str] = None) -> None:
        self.users[user_id] = {"id": user_id, "email": email, "aud": "authenticated", "role": "authenticated"}
        self.passwords[email] = (password, user_id)
        if role is not None or user_id not in self.roles:
            self.roles[user_id] = role

    def issue(self, user_id: str, *, expires_in: int = 3600) -> AuthSession:
        self._issued += 1
        session = make_session(user_id, expires_in=expires_in, refresh_token=f"refresh-{user_id}-{self._issued}")
        self.access_tokens[session.access_token] = user_id
        self.refresh_tokens[session.refresh_token] = user_id
        return session

    def _session_body(self, user_id: str) -> dict:
        session = self.issue(user_id)
        body = session.model_dump(exclude_none=True)
        body["user"] = self.users[user_id]
        return body

    def _bearer_user(self, request: httpx.Request) -> Optional[str]:
        auth = request.headers.get("authorization", "")
        if not auth.lower().startswith("bearer "):
            return None
        return self.access_tokens.get(auth[7:])

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.fail_with is not None:
            raise self.fail_with
        if request.headers.get("apikey") != ANON_KEY:
            return httpx.Response(401, json={"message": "Invalid API key"})

        if path == "/auth/v1/health":
            return httpx.Response(200, json={"name": "GoTrue"})

        if path == "/auth/v1/token" and request.method == "POST":
            grant = request.url.params.get("grant_type")
            body = json.loads(request.content)
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user_id is None:
                    return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid Refresh Token"})
                return httpx.Response(200, json=self._session_body(user_id))
            if grant == "password":
                password, user_id = self.passwords.get(body.get("email"), (None, None))
                if password is None or password != body.get("password"):
                    return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
                return httpx.Response(200, json=self._session_body(user_id))

        if path == "/auth/v1/user" and request.method == "GET":
            user_id = self._bearer_user(request)
            if user_id is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=self.users[user_id])

        if path == "/auth/v1/logout" and request.method == "POST":
            auth = request.headers.get("authorization", "")
            self.access_tokens.pop(auth[7:], None)
            return httpx.Response(204)

        if path == "/rest/v1/profiles" and request.method == "GET":
            if self._bearer_user(request) is None:
                return httpx.Response(401, json={"message": "JWT expired"})
            params = parse_qs(request.url.query.decode())
            user_id = params["id"][0].removeprefix("eq.")
            if user_id not in self.roles:
                return httpx.Response(406, json={"message": "JSON object requested, multiple (or no) rows returned"})
            role = self.roles[user_id]
            return httpx.Response(200, json={"roles": {"name": role} if role else None})

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture(scope="session")
def log_dir(tmp_path_factory: pytest.TempPathFactory) -> str:
    return str(tmp_path_factory.mktemp("logs"))


@pytest.fixture
def settings(log_dir: str) -> Settings:
    return Settings(
        SUPABASE_URL=SUPABASE_URL,
        SUPABASE_ANON_KEY=ANON_KEY,
        LOG_DIR=log_dir,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    fake = FakeSupabase()
    fake.add_user("user-designer", "designer@example.com", role="designer")
    fake.add_user("user-admin", "admin@example.com", role="admin")
    fake.add_user("user-client", "client@example.com", role="client")
    fake.add_user("user-norole", "norole@example.com", role=None)
    fake.add_user("user-noprofile", "noprofile@example.com")
    del fake.roles["user-noprofile"]
    return fake


@pytest_asyncio.fixture
async def supabase_http(fake_supabase: FakeSupabase) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_supabase.handler)) as client:
        yield client


@pytest_asyncio.fixture
async def app_client(settings: Settings, supabase_http: httpx.AsyncClient) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings, http=supabase_http)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
