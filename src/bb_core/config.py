from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from .errors import CredentialsError

DEFAULT_BASE_URL = "https://api.bybit.com"


def load_env_file() -> None:
    # process env wins over .env so deploy-time secrets are never shadowed
    load_dotenv(override=False)


class Settings(BaseModel):
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    account_type: str = "UNIFIED"
    account_coin: str = "USDT"
    log_level: str = "INFO"
    discord_webhook: Optional[str] = None

    @field_validator("api_key", "api_secret", "discord_webhook", mode="before")
    def _blank_to_none(cls, v):
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("base_url", mode="before")
    def _norm_base_url(cls, v):
        if not v:
            return DEFAULT_BASE_URL
        return str(v).strip().rstrip("/")

    @field_validator("account_type", "account_coin", "log_level", mode="before")
    def _upper(cls, v):
        return str(v).strip().upper() if v else v


def load_settings() -> Settings:
    load_env_file()
    raw: dict[str, Any] = {
        "api_key": os.getenv("BYBIT_API_KEY"),
        "api_secret": os.getenv("BYBIT_API_SECRET"),
        "base_url": os.getenv("BYBIT_API_BASE_URL", DEFAULT_BASE_URL),
        "account_type": os.getenv("BYBIT_ACCOUNT_TYPE", "UNIFIED"),
        "account_coin": os.getenv("BYBIT_ACCOUNT_COIN", "USDT"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "discord_webhook": os.getenv("DISCORD_WEBHOOK_URL"),
    }
    return Settings.model_validate(raw)


def require_credentials(settings: Settings) -> None:
    if not settings.api_key or not settings.api_secret:
        raise CredentialsError(
            "Bybit API credentials are not configured. "
            "Set BYBIT_API_KEY and BYBIT_API_SECRET in the environment or .env"
        )


def mask_secret(value: Optional[str], show: int = 4) -> str:
    if not value:
        return "missing"
    if len(value) <= show:
        return "*" * len(value)
    return "*" * (len(value) - show) + value[-show:]
