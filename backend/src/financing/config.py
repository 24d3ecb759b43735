"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation.
    
    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )
    
    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./financing.db",
        description="SQLAlchemy async connection string (asyncpg or aiosqlite driver)"
    )
    
    # Financing runs
    financing_run_on_startup: bool = Field(
        default=False,
        description="Run one financing cycle when the application starts"
    )
    
    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with SQL echo and API docs"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level"
    )
    
    @property
    def database_backend(self) -> str:
        """Return the dialect name of the configured database, e.g. 'postgresql'."""
        return self.database_url.split(":", 1)[0].split("+", 1)[0]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.
    
    Settings are loaded once at startup and cached for subsequent calls.
    This ensures consistent configuration across the application lifecycle.
    """
    return Settings()
