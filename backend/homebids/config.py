"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "HomeBids_Messaging"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str = "sqlite:///./homebids.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Realtime transport for new-message events: "memory" (single process) or "redis".
    REALTIME_BACKEND: str = "memory"
    REALTIME_CHANNEL_PREFIX: str = "homebids:messages"
    SSE_HEARTBEAT_SECONDS: int = 15

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    ALIAS_SWEEP_INTERVAL_SECONDS: float = 300.0

    # JWT
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Password policy
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 256

    # Blob storage
    UPLOAD_DIR: str = "./uploads"
    PUBLIC_BASE_URL: str = "/api/v1/attachments/serve"

    # Message attachments
    MAX_ATTACHMENTS: int = 5
    MAX_ATTACHMENT_SIZE: int = 5 * 1024 * 1024  # 5MB
    ALLOWED_ATTACHMENT_TYPES: str = (
        "image/jpeg,image/png,image/gif,image/webp,"
        "application/pdf,application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "application/vnd.ms-excel,"
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet,"
        "text/plain"
    )
    ATTACHMENT_UPLOAD_RETRIES: int = 1

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def allowed_attachment_types_list(self) -> list[str]:
        """Get allowed attachment MIME types as list."""
        return [mime.strip() for mime in self.ALLOWED_ATTACHMENT_TYPES.split(",") if mime.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
