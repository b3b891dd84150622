import json
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


def _coerce_json(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./foundry.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    BACKEND_CORS_ORIGINS: Annotated[list[str], NoDecode] = ["http://localhost:5173"]
    PUBLIC_SITE_URL: str | None = None

    # Static Web Apps style principal header; roles live in userRoles.
    PRINCIPAL_HEADER: str = "x-ms-client-principal"
    ADMIN_ROLE: str = "administrator"

    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_TIMEOUT_SECONDS: float = 120.0
    OPENAI_MAX_TOKENS: int = 128000
    OPENAI_MAX_RETRIES: int = 2
    AI_DEFAULT_CHAT_MODEL: str = "gpt-4o-mini"
    AI_DEFAULT_IMAGE_MODEL: str = "gpt-image-1.5"
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_PRICING_URLS: Annotated[list[str], NoDecode] = [
        "https://openai.com/api/pricing/",
        "https://platform.openai.com/docs/pricing",
    ]

    MAILERLITE_API_KEY: str | None = None
    MAILERLITE_BASE_URL: str = "https://connect.mailerlite.com/api"
    MAILERLITE_TIMEOUT_SECONDS: float = 20.0
    MAILERLITE_MAX_WORKERS: int = 8

    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 30.0
    SMTP_SENDER_EMAIL: str | None = None

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_ENDPOINT: str | None = None
    MEDIA_STORAGE_REGION: str | None = None
    MEDIA_STORAGE_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_SECRET_KEY: str | None = None
    MEDIA_STORAGE_PREFIX: str | None = "media"
    MEDIA_STORAGE_PUBLIC_BASE_URL: str | None = None
    MEDIA_STORAGE_FORCE_PATH_STYLE: bool = True
    MEDIA_STORAGE_USE_SSL: bool = True
    MEDIA_STORAGE_UPLOAD_TTL_SECONDS: int = 600

    @field_validator("BACKEND_CORS_ORIGINS", "OPENAI_PRICING_URLS", mode="before")
    @classmethod
    def split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = _coerce_json(value)
            if isinstance(parsed, list):
                return parsed
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
