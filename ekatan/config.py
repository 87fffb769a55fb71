from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

_env_file = BASE_DIR / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

APP_NAME = "EKATAN"
APP_DESCRIPTION = "Premium residential interior design and execution ERP"

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"
LOCAL_LOG_DIR = BASE_DIR / "system" / "logs"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: str
    SUPABASE_TIMEOUT_SECONDS: float = 10.0

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 3000
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Auth
    LOGIN_PATH: str = "/login"
    SECURE_COOKIES: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = str(LOCAL_LOG_DIR)
    MAX_LOG_FILE_SIZE: int = 10 * 1024 * 1024
    BACKUP_COUNT: int = 5

    @property
    def allowed_origin_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def supabase_base_url(self) -> str:
        return self.SUPABASE_URL.rstrip("/")


def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
