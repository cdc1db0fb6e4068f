from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.shared_settings import shared_settings

SERVICE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Configuration for the DocVerify API service."""

    # Service metadata
    SERVICE_NAME: str = shared_settings.DOCVERIFY_SERVICE_NAME
    SERVICE_VERSION: str = shared_settings.DOCVERIFY_SERVICE_VERSION
    APP_HOST: str = Field(
        default=shared_settings.DOCVERIFY_SERVICE_HOST,
        validation_alias=AliasChoices("HOST", "APP_HOST"),
    )
    APP_PORT: int = Field(
        default=shared_settings.DOCVERIFY_SERVICE_PORT,
        validation_alias=AliasChoices("PORT", "APP_PORT"),
    )
    APP_ENV: str = shared_settings.APP_ENV
    DEBUG: bool = Field(
        default=shared_settings.DOCVERIFY_DEBUG,
        validation_alias=AliasChoices("DEBUG", "APP_DEBUG"),
    )

    # MongoDB
    MONGODB_URI: str = Field(
        default=shared_settings.MONGODB_URI,
        validation_alias=AliasChoices("MONGODB_URI", "MONGO_URL"),
    )
    DATABASE_NAME: str = Field(
        default=shared_settings.DATABASE_NAME,
        validation_alias=AliasChoices("DATABASE_NAME", "MONGODB_DATABASE"),
    )
    CERTIFICATES_COLLECTION: str = "certificates"
    USERS_COLLECTION: str = "users"
    SESSIONS_COLLECTION: str = "sessions"
    BATCHES_COLLECTION: str = "batches"

    # Uploads
    UPLOAD_DIR: Path = Field(
        default=Path(shared_settings.DOCVERIFY_UPLOAD_DIR),
        validation_alias=AliasChoices("UPLOAD_DIR", "STORAGE_ROOT"),
    )
    ALLOWED_MIME_TYPES: List[str] = Field(
        default=[
            "application/pdf",
            "image/jpeg",
            "image/png",
            "image/webp",
        ]
    )
    MAX_FILE_SIZE_MB: int = Field(default=10, validation_alias="MAX_FILE_SIZE_MB")

    # Auth
    SESSION_TIMEOUT_MINUTES: int = shared_settings.SESSION_TIMEOUT_MINUTES
    BCRYPT_ROUNDS: int = shared_settings.BCRYPT_ROUNDS
    MIN_PASSWORD_LENGTH: int = 8

    # Cache / rate limiting
    VERIFICATION_CACHE_TTL: int = 300
    AI_CACHE_TTL: int = 3600
    ANALYTICS_CACHE_TTL: int = 300
    VERIFY_RATE_LIMIT: int = 100
    VERIFY_RATE_WINDOW_SECONDS: int = 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = shared_settings.DOCVERIFY_LOG_FILE

    # CORS
    CORS_ORIGINS: str = shared_settings.DOCVERIFY_CORS_ORIGINS
    CORS_ALLOW_CREDENTIALS: bool = True

    # AI
    GEMINI_API_KEY: Optional[str] = shared_settings.GEMINI_API_KEY
    GEMINI_MODEL: str = shared_settings.GEMINI_MODEL
    AI_MAX_TEXT_CHARS: int = 3000

    # Blockchain
    BLOCKCHAIN_RPC_URL: str = shared_settings.BLOCKCHAIN_RPC_URL
    BLOCKCHAIN_PRIVATE_KEY: Optional[str] = shared_settings.BLOCKCHAIN_PRIVATE_KEY
    BLOCKCHAIN_CONTRACT_FILE: Path = Field(
        default=Path(shared_settings.BLOCKCHAIN_CONTRACT_FILE),
        validation_alias=AliasChoices("BLOCKCHAIN_CONTRACT_FILE", "CONTRACT_FILE"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def upload_path(self) -> Path:
        upload_dir = Path(self.UPLOAD_DIR)
        if upload_dir.is_absolute():
            return upload_dir

        parts = upload_dir.parts
        if parts and parts[0].lower() == "docverify":
            upload_dir = Path(*parts[1:]) if len(parts) > 1 else Path()

        return (SERVICE_DIR / upload_dir).resolve()

    @property
    def contract_file_path(self) -> Path:
        contract_file = Path(self.BLOCKCHAIN_CONTRACT_FILE)
        if contract_file.is_absolute():
            return contract_file
        return (SERVICE_DIR / contract_file).resolve()


settings = Settings()
