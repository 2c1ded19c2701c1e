"""ackstack settings loaded from ACKSTACK_* env vars (and a .env file)."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ackstack.backends.sql import DEFAULT_TABLE
from ackstack.core.claims import DEFAULT_RECYCLE_DELAY
from ackstack.core.polling import DEFAULT_POLL_INTERVAL

BackendName = Literal["memory", "file", "sql", "redis", "amqp"]

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_URL_BACKENDS = ("sql", "redis", "amqp")


class QueueSettings(BaseSettings):
    """Which backend to build and how to reach it."""

    model_config = SettingsConfigDict(
        env_prefix="ACKSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: BackendName = "memory"
    url: str | None = None
    directory: Path = Path("./queues")
    table: str = DEFAULT_TABLE
    stream_prefix: str = "ackstack"
    consumer_group: str = "ackstack"
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL, gt=0)
    recycle_delay: float = Field(DEFAULT_RECYCLE_DELAY, ge=0)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def _require_url(self) -> "QueueSettings":
        if self.backend in _URL_BACKENDS and not self.url:
            raise ValueError(f"ACKSTACK_URL is required for the {self.backend!r} backend")
        return self
