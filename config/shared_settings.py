"""Shared configuration definitions for DocVerify services."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore[import-not-found]


class SharedSettings(BaseSettings):
    """Global defaults and environment-driven overrides for all services."""

    # Environment
    APP_ENV: str = "development"

    # API service defaults
    DOCVERIFY_SERVICE_NAME: str = "DocVerify API"
    DOCVERIFY_SERVICE_VERSION: str = "1.0.0"
    DOCVERIFY_SERVICE_HOST: str = "0.0.0.0"
    DOCVERIFY_SERVICE_PORT: int = 5000
    DOCVERIFY_DEBUG: bool = True
    DOCVERIFY_UPLOAD_DIR: str = str(Path("docverify") / "uploads")
    DOCVERIFY_LOG_FILE: str = str(Path("logs") / "docverify.log")
    DOCVERIFY_CORS_ORIGINS: str = "*"

    # MongoDB defaults
    MONGODB_URI: str = "mongodb://localhost:27017/"
    DATABASE_NAME: str = "docverify"

    # Auth defaults
    SESSION_TIMEOUT_MINUTES: int = 30
    BCRYPT_ROUNDS: int = 10

    # Blockchain defaults
    BLOCKCHAIN_RPC_URL: str = "http://127.0.0.1:8545"
    BLOCKCHAIN_CONTRACT_FILE: str = str(Path("contracts") / "DocVerify.json")

    # Optional shared credentials (override via environment variables)
    BLOCKCHAIN_PRIVATE_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )


shared_settings = SharedSettings()
