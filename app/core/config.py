from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, ValidationError


class Settings(BaseModel):
    bot_token: str
    supabase_url: HttpUrl
    supabase_service_key: str
    supabase_anon_key: str | None = None
    environment: Literal["local", "staging", "production"] = "local"
    page_size: int = Field(default=8, ge=1, le=20)
    digest_hour: int = Field(default=9, ge=0, le=23)
    expiry_window_days: int = Field(default=7, ge=1)
    admin_telegram_ids: frozenset[int] = frozenset()

    @property
    def is_debug(self) -> bool:
        return self.environment == "local"

    def may_link(self, telegram_user_id: int) -> bool:
        """An empty allowlist lets any Telegram account link itself."""
        return not self.admin_telegram_ids or telegram_user_id in self.admin_telegram_ids


def _parse_ids(raw: str | None) -> frozenset[int]:
    if not raw:
        return frozenset()
    try:
        return frozenset(int(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise RuntimeError(f"ADMIN_TELEGRAM_IDS must be comma-separated integers: {raw!r}") from exc


def _build_settings() -> Settings:
    # Load .env file once on first settings build (for local development)
    load_dotenv()

    try:
        return Settings(
            bot_token=os.environ["BOT_TOKEN"],
            supabase_url=os.environ["SUPABASE_URL"],
            supabase_service_key=os.environ["SUPABASE_SERVICE_KEY"],
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY"),
            environment=os.getenv("ENVIRONMENT", "local"),
            page_size=os.getenv("PAGE_SIZE", "8"),
            digest_hour=os.getenv("DIGEST_HOUR", "9"),
            expiry_window_days=os.getenv("EXPIRY_WINDOW_DAYS", "7"),
            admin_telegram_ids=_parse_ids(os.getenv("ADMIN_TELEGRAM_IDS")),
        )
    except KeyError as exc:
        required_keys = ("BOT_TOKEN", "SUPABASE_URL", "SUPABASE_SERVICE_KEY")
        missing = [key for key in required_keys if key not in os.environ]
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}"
        ) from exc
    except ValidationError as exc:
        raise RuntimeError(f"Invalid settings: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Reads environment variables once and validates them with Pydantic.
    """

    return _build_settings()
