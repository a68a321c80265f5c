"""
Application settings.
Loaded from environment variables and an optional .env file.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Database. DATABASE_URL wins over the individual parts.
    DATABASE_URL: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASS: Optional[str] = None
    DB_POOL_TIMEOUT: int = 10  # seconds to wait for a pooled connection
    DB_STATEMENT_TIMEOUT_MS: int = 10_000  # PostgreSQL only

    # Redis (refresh tokens, presence, rate limits)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Tokens
    JWT_SECRET: str = "change-me"
    JWT_REFRESH_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL: int = 15 * 60
    REFRESH_TOKEN_TTL: int = 7 * 24 * 60 * 60
    MAX_REFRESH_TOKENS: int = 5

    # Access control
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None  # empty disables the override
    OPEN_CHAT_LISTING: bool = True

    # Chats and messages
    DEFAULT_MAX_PARTICIPANTS: int = 500
    BULK_CREATE_MAX: int = 50
    MESSAGE_MAX_LENGTH: int = 2000

    # Rate limits (requests per window, per user)
    RATE_LIMIT_WINDOW: int = 15 * 60
    AUTH_RATE_LIMIT: int = 50
    CHAT_RATE_LIMIT: int = 100
    MESSAGE_RATE_LIMIT: int = 200

    ACTIVITY_TOUCH_INTERVAL: int = 60  # seconds between lastActive writes

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Festival Chat Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.DB_HOST:
            return (
                f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASS}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        return "sqlite:///./festchat.db"

    @property
    def refresh_secret(self) -> str:
        return self.JWT_REFRESH_SECRET or self.JWT_SECRET

    @property
    def bootstrap_admin_email(self) -> Optional[str]:
        if not self.BOOTSTRAP_ADMIN_EMAIL:
            return None
        return self.BOOTSTRAP_ADMIN_EMAIL.strip().lower() or None

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
