"""Application settings loaded from the environment and ``.env``."""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Widget Chat API"
    VERSION: str = "0.1.0"

    # Real-time transport
    APP_KEY: str = "widget-chat-key"
    APP_SECRET: str = "change-me"
    REALTIME_SCHEME: str = "ws"
    REALTIME_HOST: str = "127.0.0.1"
    REALTIME_PORT: int = 8000
    REALTIME_PATH: str = "/ws"

    # Cache tier; in-memory when unset
    CACHE_URL: Optional[str] = None

    # Generation collaborator
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GENERATION_HISTORY: int = 10
    GENERATION_TIMEOUT: float = 30.0

    # Token lifetimes and caching, in seconds
    AUTH_TOKEN_TTL: int = 60 * 60
    GUEST_TOKEN_TTL: int = 15 * 60
    STATUS_CACHE_TTL: int = 2 * 60

    # Rate limits, requests per window per caller
    AUTH_TOKEN_RATE_LIMIT: int = 30
    GUEST_TOKEN_RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW: int = 60

    # Request handling
    CORS_ORIGINS: List[str] = ["*"]
    MAX_CONCURRENT_REQUESTS: int = 10
    REQUEST_TIMEOUT: float = 60.0
    MAX_MESSAGE_LENGTH: int = 10000

    # Embed client knobs
    WS_RECONNECT_INTERVAL: float = 2.0
    WS_MAX_RECONNECT_ATTEMPTS: int = 5
    WS_HEARTBEAT_INTERVAL: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def realtime_url(self) -> str:
        """Transport URL advertised to clients."""
        path = self.REALTIME_PATH if self.REALTIME_PATH.startswith("/") else f"/{self.REALTIME_PATH}"
        return f"{self.REALTIME_SCHEME}://{self.REALTIME_HOST}:{self.REALTIME_PORT}{path}"


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
