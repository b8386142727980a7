from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    app_name: str = "Athlete Messaging Server"
    environment: str = "development"
    api_v1_prefix: str = "/v1"
    database_url: str = "sqlite:///./app.db"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"]
    )

    message_max_length: int = 2000
    message_preview_length: int = 30
    message_clock_skew_seconds: int = 300
    auth_rate_limit_window_seconds: int = 60
    auth_rate_limit_max_requests: int = 12

    ws_heartbeat_sec: int = 25
    ws_idle_timeout_sec: int = 300
    ws_rate_limit_window_sec: int = 10
    ws_rate_limit_max_commands: int = 60
    ws_max_command_bytes: int = 16384
    ws_max_subscriptions_per_connection: int = 200
    ws_outgoing_queue_size: int = 200

    # Diagnostic escape hatch for the websocket handshake. Never honoured in production.
    allow_auth_bypass: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return []

    @property
    def auth_bypass_enabled(self) -> bool:
        return self.allow_auth_bypass and self.environment.lower() != "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
