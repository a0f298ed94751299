"""Environment-aware settings loader for the clinic manager."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "Clinic Manager")
    backend_url: Optional[str] = os.getenv("BACKEND_URL")
    frontend_url: Optional[str] = os.getenv("FRONTEND_URL")
    database_path: Path = Path(os.getenv("CLINIC_DB_PATH", str(BASE_DIR / "clinic_manager.db")))
    secret_key: str = os.getenv("APP_SECRET_KEY", "change-me")
    session_max_age: int = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 7)))
    password_reset_max_age: int = int(os.getenv("PASSWORD_RESET_MAX_AGE", str(60 * 60)))
    password_min_length: int = 6

    # Reporting
    clinic_timezone: str = os.getenv("CLINIC_TIMEZONE", "America/Sao_Paulo")
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "R$")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache
def get_settings() -> Settings:
    return Settings()
