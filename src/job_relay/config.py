from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_STATE_DB_PATH = PROJECT_ROOT / "data" / "posted_jobs.sqlite"
DEFAULT_LEDGER_DB_PATH = PROJECT_ROOT / "data" / "ledger.sqlite"
DEFAULT_AI_MODEL = "@cf/qwen/qwen3-30b-a3b-fp8"
DEFAULT_RELIEFWEB_FEED_URL = "https://reliefweb.int/jobs/rss.xml?advanced-search=%28C255%29"

RUN_REQUIRED_ENVS = (
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "CF_ACCOUNT_ID",
    "CF_API_TOKEN",
)


class Settings(BaseModel):
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    admin_chat_id: str | None = None
    cf_account_id: str = ""
    cf_api_token: str = ""
    ai_model: str = DEFAULT_AI_MODEL
    yemenhr_feed_url: str = ""
    reliefweb_feed_url: str = DEFAULT_RELIEFWEB_FEED_URL
    ykbank_feed_url: str = ""
    enabled_sources_csv: str | None = None
    max_postings_per_run: int = Field(default=15, ge=1)
    delivery_delay_seconds: float = Field(default=1.0, ge=0.0)
    request_timeout_seconds: float = Field(default=20.0, gt=0.0)
    detail_timeout_seconds: float = Field(default=5.0, gt=0.0)
    ai_timeout_seconds: float = Field(default=60.0, gt=0.0)
    ai_backoff_seconds: float = Field(default=2.0, ge=0.0)
    user_agent: str = "job-relay-bot/1.0 (+https://t.me/yemen_jobs)"
    environment: str = "production"
    channel_footer_url: str | None = None
    state_db_path: Path = Field(default=DEFAULT_STATE_DB_PATH)
    ledger_db_path: Path = Field(default=DEFAULT_LEDGER_DB_PATH)

    @field_validator("yemenhr_feed_url", "reliefweb_feed_url", "ykbank_feed_url")
    @classmethod
    def _validate_feed_url(cls, value: str) -> str:
        if value and not value.startswith("https://"):
            raise ValueError("feed URLs must use https://")
        return value

    @property
    def enabled_source_names(self) -> list[str]:
        if not self.enabled_sources_csv:
            return []
        return [item.strip().lower() for item in self.enabled_sources_csv.split(",") if item.strip()]

    @property
    def archive_postings(self) -> bool:
        return self.environment != "preview"


def _env_value(environ: Mapping[str, str], key: str) -> str:
    return environ.get(key, "").strip()


def missing_envs(required: Sequence[str], environ: Mapping[str, str] | None = None) -> list[str]:
    source = os.environ if environ is None else environ
    return [key for key in required if not _env_value(source, key)]


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ
    payload = {
        "telegram_bot_token": _env_value(source, "TELEGRAM_BOT_TOKEN"),
        "telegram_chat_id": _env_value(source, "TELEGRAM_CHAT_ID"),
        "admin_chat_id": _env_value(source, "ADMIN_CHAT_ID") or None,
        "cf_account_id": _env_value(source, "CF_ACCOUNT_ID"),
        "cf_api_token": _env_value(source, "CF_API_TOKEN"),
        "ai_model": _env_value(source, "AI_MODEL") or DEFAULT_AI_MODEL,
        "yemenhr_feed_url": _env_value(source, "YEMENHR_FEED_URL"),
        "reliefweb_feed_url": _env_value(source, "RELIEFWEB_FEED_URL") or DEFAULT_RELIEFWEB_FEED_URL,
        "ykbank_feed_url": _env_value(source, "YKBANK_FEED_URL"),
        "enabled_sources_csv": _env_value(source, "ENABLED_SOURCES") or None,
        "max_postings_per_run": int(_env_value(source, "MAX_POSTINGS_PER_RUN") or "15"),
        "delivery_delay_seconds": float(_env_value(source, "DELIVERY_DELAY_SECONDS") or "1"),
        "request_timeout_seconds": float(_env_value(source, "REQUEST_TIMEOUT_SECONDS") or "20"),
        "detail_timeout_seconds": float(_env_value(source, "DETAIL_TIMEOUT_SECONDS") or "5"),
        "ai_timeout_seconds": float(_env_value(source, "AI_TIMEOUT_SECONDS") or "60"),
        "ai_backoff_seconds": float(_env_value(source, "AI_BACKOFF_SECONDS") or "2"),
        "user_agent": _env_value(source, "USER_AGENT") or "job-relay-bot/1.0 (+https://t.me/yemen_jobs)",
        "environment": _env_value(source, "ENVIRONMENT") or "production",
        "channel_footer_url": _env_value(source, "CHANNEL_FOOTER_URL") or None,
        "state_db_path": Path(_env_value(source, "STATE_DB_PATH") or DEFAULT_STATE_DB_PATH),
        "ledger_db_path": Path(_env_value(source, "LEDGER_DB_PATH") or DEFAULT_LEDGER_DB_PATH),
    }
    try:
        return Settings(**payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def assert_required_envs(required: Sequence[str], environ: Mapping[str, str] | None = None) -> None:
    missing = missing_envs(required, environ)
    if missing:
        keys = ", ".join(missing)
        raise ValueError(f"Missing required environment variables: {keys}")


def mask_secret(value: str, visible_prefix: int = 3, visible_suffix: int = 2) -> str:
    if not value:
        return ""
    if len(value) <= visible_prefix + visible_suffix:
        return "*" * len(value)
    hidden = "*" * (len(value) - visible_prefix - visible_suffix)
    return f"{value[:visible_prefix]}{hidden}{value[-visible_suffix:]}"
