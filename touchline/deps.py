"""Dependency providers and settings management."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from touchline.database import get_db
from touchline.models import Account, ApiKey
from touchline.services.api_key_service import authenticate
from touchline.telemetry import set_account_context


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Redis Configuration (arq queue)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Tracking cookies
    SECURE_COOKIES: bool = False
    SESSION_TIMEOUT_MINUTES: int = 30
    VISITOR_COOKIE_MAX_AGE_DAYS: int = 365

    # Attribution
    TIME_DECAY_HALF_LIFE_DAYS: float = 7

    SENTRY_DSN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


@dataclass
class AuthContext:
    """Authenticated caller of the tracking API."""
    account: Account
    api_key: ApiKey

    @property
    def is_test(self) -> bool:
        return self.api_key.is_test


def get_api_key_context(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None),
) -> AuthContext:
    """Resolve the calling account from `Authorization: Bearer sk_{env}_{key}`.

    Raises 401 with `{error: ...}` (see the HTTPException handler in
    touchline/main.py) when the header is missing, malformed, unknown or revoked.
    """
    result = authenticate(db, authorization)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)

    set_account_context(str(result.account.id), result.api_key.environment.value)
    return AuthContext(account=result.account, api_key=result.api_key)
