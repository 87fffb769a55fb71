from __future__ import annotations

import httpx
from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    settings = request.app.state.settings
    try:
        resp = await request.app.state.http.get(
            f"{settings.supabase_base_url}/auth/v1/health",
            headers={"apikey": settings.SUPABASE_ANON_KEY},
        )
        auth_status = "connected" if resp.status_code == 200 else "error"
    except httpx.HTTPError:
        auth_status = "disconnected"

    status = "ok" if auth_status == "connected" else "degraded"
    return {"status": status, "auth": auth_status}
