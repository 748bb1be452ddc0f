"""rahl configuration via environment / .env file."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_SERVER = "s.whatsapp.net"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Session ---
    SESSION_ID: str = "lord-rahl-bot"
    BOT_NAME: str = "RAHL XMD"

    # --- Credential storage ---
    CREDENTIAL_BACKEND: Literal["local", "redis"] = "local"
    SESSIONS_DIR: str = "sessions"
    REQUIRED_KEY_FILES: list[str] = [f"pre-key-{i}.json" for i in range(1, 6)]

    # --- Redis ---
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_NAMESPACE: str = "session"

    # --- Pairing ---
    PAIRING_CODE_TTL_SECONDS: int = 600
    PAIRING_SWEEP_INTERVAL_SECONDS: float = 60.0
    PAIRING_PHRASE: str = "Lord Rahl"

    # --- Commands ---
    COMMAND_PREFIX: str = "."
    ADMIN_IDENTITY: str = ""

    # --- Connection ---
    TRANSPORT_FACTORY: str = ""
    RECONNECT_DELAY_SECONDS: float = 3.0
    SEND_TIMEOUT_SECONDS: float = 15.0
    NOTIFY_ADMIN_ON_CONNECT: bool = True

    # --- HTTP ---
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    @field_validator("ADMIN_IDENTITY", mode="before")
    @classmethod
    def _normalize_admin(cls, v: str) -> str:
        v = (v or "").strip()
        if not v or "@" in v:
            return v
        digits = re.sub(r"\D", "", v)
        return f"{digits}@{DEFAULT_USER_SERVER}" if digits else ""

    @field_validator("COMMAND_PREFIX")
    @classmethod
    def _prefix_not_empty(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("COMMAND_PREFIX cannot be empty")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return (v or "INFO").upper()


settings = Settings()
