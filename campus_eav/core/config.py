"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version
    VERSION: str = "1.0.0"

    # Database
    DATABASE_URL: str

    # Connection pool (ignored for SQLite)
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Logging
    LOG_LEVEL: str = "INFO"

    # EAV storage
    EAV_STRING_MAX_LENGTH: int = 500  # width of attribute_values.value_string
    EAV_AUDIT_ENABLED: bool = True
    EAV_VALIDATE_ENTITY_REFERENCES: bool = True

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
