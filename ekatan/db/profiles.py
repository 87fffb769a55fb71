"""PostgREST queries against the ``profiles`` table.

Requests carry the user's access token so Row Level Security applies.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ekatan.db.supabase_server import SupabaseServerClient

logger = logging.getLogger(__name__)

# Asks PostgREST for exactly one row; zero or many rows is a 406.
SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _role_name(profile: Any) -> Optional[str]:
    if not isinstance(profile, dict):
        return None
    roles = profile.get("roles")
    # A to-one embed is an object; tolerate a one-element list as well.
    if isinstance(roles, list):
        roles = roles[0] if len(roles) == 1 else None
    if not isinstance(roles, dict):
        return None
    name = roles.get("name")
    return name if isinstance(name, str) and name else None


async def fetch_role_name(client: SupabaseServerClient, user_id: str) -> Optional[str]:
    """Return the name of the role joined to the user's profile, or None."""
    session = await client.get_session()
    if session is None:
        return None

    headers = client.user_headers(session.access_token)
    headers["Accept"] = SINGLE_OBJECT
    try:
        resp = await client.http.get(
            f"{client.settings.supabase_base_url}/rest/v1/profiles",
            params={"select": "roles(name)", "id": f"eq.{user_id}"},
            headers=headers,
        )
    except httpx.HTTPError as e:
        logger.warning("Profile lookup failed for user %s: %s", user_id, e)
        return None

    if resp.status_code >= 400:
        logger.debug("No profile for user %s (%d)", user_id, resp.status_code)
        return None

    try:
        return _role_name(resp.json())
    except ValueError:
        logger.warning("Malformed profile response for user %s", user_id)
        return None
