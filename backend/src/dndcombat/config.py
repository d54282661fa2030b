from __future__ import annotations

import threading
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Runtime configuration, read from ``DNDCOMBAT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DNDCOMBAT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite:///./dndcombat.sqlite3"
    database_echo: bool = False
    repository_backend: Literal["memory", "sql"] = "memory"
    log_level: str = "INFO"

    # value of session.metadata["sessionType"] that switches on dungeon mode
    dungeon_session_type: str = "dungeon"

    # None -> unseeded random roller
    dice_seed: Optional[int] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in _VALID_LEVELS:
            raise ValueError(f"Log level must be one of {_VALID_LEVELS}, got '{v}'")
        return v_upper


_settings: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests change the environment between cases)."""
    global _settings
    with _settings_lock:
        _settings = None
