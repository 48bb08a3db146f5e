"""Central configuration using Pydantic BaseSettings."""

import secrets
from pathlib import Path
from typing import Literal, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "toolmesh"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]  # Override with CORS_ORIGINS env var

    # Notifications
    notifications_enabled: bool = True  # False = static deployment, no list_changed
    debounce_window_ms: int = 150
    notification_queue_size: int = 16  # per-session outbound buffer
    notification_send_timeout_ms: int = 1000

    # Pagination
    max_page_size: int = 100
    default_page_size: int = 20
    snapshot_history: int = 64  # past revisions kept for cursor relocation
    stale_cursor_policy: Literal["resume", "reject"] = "resume"
    cursor_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32))  # random per process unless CURSOR_SECRET is set
    cursor_algorithm: str = "HS256"

    # Execution
    invocation_default_timeout_s: float | None = None
    cancel_grace_ms: int = 250
    progress_queue_size: int = 32

    # Remote backends: name -> base URL (HTTP_BACKENDS='{"search": "http://search:9000"}')
    http_backends: dict[str, str] = {}
    http_backend_timeout_s: float = 30.0
    http_backends_retry_safe: bool = False

    # Built-in tools
    builtin_tools_enabled: bool = True

    # Paths
    base_dir: Path = Path(__file__).resolve().parent.parent

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[str, list[str]]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("debounce_window_ms")
    @classmethod
    def default_debounce(cls, v: int) -> int:
        return v if v > 0 else 150

    @field_validator("max_page_size", "progress_queue_size", "notification_queue_size", "snapshot_history")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @model_validator(mode="after")
    def clamp_default_page_size(self) -> "Settings":
        if self.default_page_size > self.max_page_size:
            self.default_page_size = self.max_page_size
        if self.default_page_size < 1:
            self.default_page_size = 1
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
