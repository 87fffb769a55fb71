"""Role guard for workspace pages.

``protect_route`` runs a fixed sequence: fetch the user, fetch the user's
role through the profile → role join, compare it against the allow-list.
Any miss sends the visitor to the login page.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable

from fastapi import Depends, Request

from ekatan.db.profiles import fetch_role_name
from ekatan.db.supabase_server import SupabaseServerClient
from ekatan.dependencies import get_supabase

logger = logging.getLogger(__name__)

# Allow-list per protected prefix.
ROUTE_ROLES: dict[str, tuple[str, ...]] = {
    "/admin": ("admin",),
    "/designer": ("designer", "admin"),
    "/supervisor": ("supervisor", "admin"),
    "/analytics": ("admin", "supervisor"),
    "/cart": ("client", "designer", "admin"),
    "/quote": ("client", "designer", "admin"),
}


class LoginRequired(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


async def check_role(client: SupabaseServerClient, allowed_roles: Iterable[str]) -> str:
    """Return the user's role name or raise ``LoginRequired``."""
    user = await client.get_user()
    if user is None:
        raise LoginRequired("no authenticated user")

    role_name = await fetch_role_name(client, user.id)
    if role_name is None:
        raise LoginRequired(f"user {user.id} has no profile role")

    if role_name not in allowed_roles:
        raise LoginRequired(f"role {role_name!r} not allowed")

    return role_name


def protect_route(allowed_roles: Iterable[str]) -> Callable[..., Awaitable[str]]:
    """Build a dependency that resolves to the current user's role name."""
    allowed = tuple(allowed_roles)

    async def dependency(request: Request, client: SupabaseServerClient = Depends(get_supabase)) -> str:
        role_name = await check_role(client, allowed)
        logger.debug("Role %s allowed on %s", role_name, request.url.path)
        return role_name

    return dependency
