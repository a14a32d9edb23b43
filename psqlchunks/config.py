"""
Application settings.

Values come from the environment (or a local .env file). Command line flags
take precedence over anything configured here.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Connection (None lets asyncpg fall back to libpq environment defaults)
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DATABASE: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_CLIENT_ENCODING: Optional[str] = None

    # Connection establishment
    POSTGRES_CONNECT_TIMEOUT: float = 30.0
    POSTGRES_CONNECT_RETRIES: int = 3
    POSTGRES_RETRY_DELAY: float = 1.0

    # Logging
    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None


settings = Settings()
