"""Session middleware.

Every matched request refreshes the Supabase session and resolves the
user.  Requests under a protected prefix without a user are redirected to
the login page; all others pass through.  Re-issued session cookies are
copied onto whatever response goes back.

Static assets, the favicon and image files skip the middleware entirely.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ekatan.db.supabase_server import RequestCookieStore, SupabaseServerClient, create_server_client
from ekatan.models.auth import AuthUser

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = (
    "/admin",
    "/designer",
    "/supervisor",
    "/analytics",
    "/cart",
    "/quote",
)

_SKIP_PATTERN = re.compile(r"^/(?:static/|favicon\.ico$|.*\.(?:svg|png|jpg|jpeg|gif|webp)$)")


def is_protected_path(pathname: str) -> bool:
    return any(pathname.startswith(prefix) for prefix in PROTECTED_PREFIXES)


def is_matched_path(pathname: str) -> bool:
    return _SKIP_PATTERN.match(pathname) is None


async def update_session(request: Request) -> tuple[SupabaseServerClient, RequestCookieStore, Optional[AuthUser]]:
    settings = request.app.state.settings
    client, store = create_server_client(request, settings, request.app.state.http)

    # Keep get_claims() first: it is the call that rotates expiring sessions.
    await client.get_claims()
    user = await client.get_user()

    store.relay_to_request(request)
    request.state.supabase = client
    request.state.cookie_store = store
    request.state.user = user
    return client, store, user


class SessionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not is_matched_path(path):
            return await call_next(request)

        _, store, user = await update_session(request)

        if is_protected_path(path) and user is None:
            login_path = request.app.state.settings.LOGIN_PATH
            logger.info("Redirecting unauthenticated request for %s to %s", path, login_path)
            redirect = RedirectResponse(url=login_path, status_code=307)
            store.apply(redirect)
            return redirect

        response = await call_next(request)
        store.apply(response)
        return response
