"""
Ticketflow - Configuration
==========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Ticketflow"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./ticketflow.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    # ==========================================================================
    # Git
    # ==========================================================================
    GIT_BINARY: str = "git"
    GIT_COMMAND_TIMEOUT_SECONDS: int = 60

    # ==========================================================================
    # Workflow
    # ==========================================================================
    COMMENT_AUTHOR: str = "ticketflow"      # start-work audit comments
    AGENT_COMMENT_AUTHOR: str = "agent"     # work summaries posted on completion
    NEXT_STEPS: list[str] = [
        "Run review agents (code-reviewer, silent-failure-hunter, code-simplifier)",
        "Submit findings for each issue the reviewers raise",
        "Fix critical/major findings and mark them fixed",
        "Verify that the review is complete",
        "Generate a demo script for the change",
        "STOP - ticket requires human approval of the demo",
    ]

    # ==========================================================================
    # Agent Sessions
    # ==========================================================================
    SESSION_STATE_FILE: str = ".claude/agent-session.json"  # relative to project root
    SESSION_STRICT_TRANSITIONS: bool = True
    SESSIONS_DEFAULT_LIMIT: int = 10
    EVENTS_DEFAULT_LIMIT: int = 50

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
