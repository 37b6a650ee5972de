"""
Data Services — Application Configuration
===========================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the entry point and by the data access layer.
When:  Loaded once at module import time.

Discovery settings:
    SERVICE_LOCATIONS, MIDDLEWARE_LOCATIONS and INJECTABLE_LOCATIONS hold glob
    patterns; SERVICES, MIDDLEWARES and INJECTABLES hold importable module
    names. All six are JSON lists in the environment, e.g.
        SERVICE_LOCATIONS='["plugins/**/*_service.py"]'
    Empty location lists fall back to the package's own conventions
    (see data_services.loader).
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults that reproduce the stock deployment:
    a local SQLite file, port 8080 and seeding from jsonplaceholder.
    """

    # ── Identity ──────────────────────────────────────────────────────────
    app_name: str = Field(default="data-services")
    app_description: str = Field(
        default="Convention-driven API harness serving sample comment data."
    )

    # ── Database ──────────────────────────────────────────────────────────
    # Format: sqlite+aiosqlite:///<path>
    database_url: str = Field(
        default="sqlite+aiosqlite:///./jsondb.db",
        description="Async SQLAlchemy connection URL for the sample data store",
    )

    # ── Seeding ───────────────────────────────────────────────────────────
    seed_url: str = Field(
        default="https://jsonplaceholder.typicode.com/comments",
        description="Remote JSON collection used to (re)seed the sampleData table",
    )
    # Seeds once the listening socket is up
    seed_on_startup: bool = Field(default=True)

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8080, ge=0, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_enabled: bool = Field(default=True)
    # Format: Comma-separated origins, "*" for any
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── API Documentation ─────────────────────────────────────────────────
    # Literal path segment expected in /swagger/{challenge}/api-docs.
    # This is a shared string, not an authentication mechanism.
    docs_challenge: str = Field(default="12345")

    # ── Component Discovery ───────────────────────────────────────────────
    service_locations: List[str] = Field(default_factory=list)
    middleware_locations: List[str] = Field(default_factory=list)
    injectable_locations: List[str] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    middlewares: List[str] = Field(default_factory=list)
    injectables: List[str] = Field(default_factory=list)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance — imported throughout the application
settings = Settings()
