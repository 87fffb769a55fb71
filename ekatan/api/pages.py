from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from ekatan.config import APP_DESCRIPTION, APP_NAME, TEMPLATES_DIR
from ekatan.core.auth import ROUTE_ROLES, protect_route
from ekatan.db.supabase_server import SupabaseAuthError, SupabaseServerClient
from ekatan.dependencies import get_settings, get_supabase
from ekatan.common.system_logger import get_logger

router = APIRouter(tags=["pages"])
logger = get_logger()

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update(app_name=APP_NAME, app_description=APP_DESCRIPTION)

WORKSPACE_TITLES = {
    "/admin": "Administration",
    "/designer": "Design Studio",
    "/supervisor": "Site Supervision",
    "/analytics": "Analytics",
    "/cart": "Cart",
    "/quote": "Quotes",
}


@router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return templates.TemplateResponse(request, "index.html")


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {"error": None, "email": ""})


@router.post("/login", response_class=HTMLResponse)
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    client: SupabaseServerClient = Depends(get_supabase),
):
    try:
        await client.sign_in_with_password(email, password)
    except SupabaseAuthError as e:
        logger.debug("Sign-in failed for %s: %s", email, e.message)
        return templates.TemplateResponse(
            request,
            "login.html",
            {"error": e.message, "email": email},
            status_code=400,
        )
    logger.debug("Signed in %s", email)
    return RedirectResponse(url="/", status_code=303)


@router.post("/logout")
async def logout(request: Request, client: SupabaseServerClient = Depends(get_supabase)):
    await client.sign_out()
    return RedirectResponse(url=get_settings(request).LOGIN_PATH, status_code=303)


def _add_workspace_route(prefix: str, allowed_roles: tuple[str, ...]) -> None:
    title = WORKSPACE_TITLES[prefix]

    async def workspace(request: Request, role: str = Depends(protect_route(allowed_roles))):
        return templates.TemplateResponse(
            request,
            "workspace.html",
            {"title": title, "role": role, "user": request.state.user},
        )

    workspace.__name__ = f"{prefix.strip('/')}_workspace"
    router.add_api_route(prefix, workspace, methods=["GET"], response_class=HTMLResponse)


for _prefix, _roles in ROUTE_ROLES.items():
    _add_workspace_route(_prefix, _roles)
