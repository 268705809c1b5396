"""
CBT Exam Engine - Core Configuration
Pydantic Settings for application configuration with environment variable support
"""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "CBT Exam Engine"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Security
    SECRET_KEY: str = "your-super-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 240  # Long enough to cover an exam sitting

    # Database (file-based SQLite by default)
    DATABASE_URL: str = "sqlite+aiosqlite:///./cbt.db"
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 15.0

    # Exam sessions
    DEFAULT_EXAM_DURATION_MINUTES: int = 60
    SHUFFLE_QUESTIONS: bool = False
    SESSION_WRITE_RETRIES: int = 3

    # School defaults, used until an admin saves the system settings
    SCHOOL_NAME: str = "CBT School"
    ACADEMIC_SESSION: str = "2024/2025"
    CURRENT_TERM: str = "First Term"

    # Results
    OBJ_SCORE_MAX: int = 30  # Objective component of the 100-mark term score
    ARCHIVE_DIR: str = "archives"

    # CORS - stored as comma-separated string
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173"

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
