from __future__ import annotations

import httpx
from fastapi import Request

from ekatan.config import Settings
from ekatan.db.supabase_server import SupabaseServerClient, create_server_client


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_supabase(request: Request) -> SupabaseServerClient:
    _ensure_client(request)
    return request.state.supabase


def _ensure_client(request: Request) -> None:
    # The session middleware normally creates these; routes it skips get a fresh pair.
    if getattr(request.state, "supabase", None) is None:
        client, store = create_server_client(request, get_settings(request), get_http_client(request))
        request.state.supabase = client
        request.state.cookie_store = store
