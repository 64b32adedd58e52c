from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# Load .env into the process environment first so every consumer sees the same values
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str
    DB_ECHO: bool = False

    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 30
    JWT_REFRESH_DAYS: int = 14

    # Voucher tokens share the signing secret but are a separate, short-lived class
    VOUCHER_TOKEN_MINUTES: int = 15
    VOUCHER_TOKEN_AUDIENCE: str = "voucher-redemption"

    BASIC_MAX_ACTIVE_PROMOTIONS: int = 5
    BASIC_MAX_PRODUCTS_PER_PROMOTION: int = 10

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = None

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


settings = Settings()
