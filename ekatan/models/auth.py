from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AuthUser(BaseModel):
    """The subset of a GoTrue user object the app reads."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    aud: Optional[str] = None
    app_metadata: dict[str, Any] = {}
    user_metadata: dict[str, Any] = {}


class AuthSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: Optional[dict[str, Any]] = None


class CookieOptions(BaseModel):
    path: str = "/"
    max_age: Optional[int] = None
    same_site: str = "lax"
    http_only: bool = False
    secure: bool = False


class CookieToSet(BaseModel):
    name: str
    value: str
    options: CookieOptions = CookieOptions()

    @property
    def is_deletion(self) -> bool:
        return self.options.max_age == 0
