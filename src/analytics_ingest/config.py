"""Environment-driven settings for the ingestion API.

Every field maps to an upper-cased environment variable (``TENANT_POOL_SIZE``,
``ADMIN_TOKEN`` ...) and may also come from a ``.env`` file.
"""

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SIGNING_HEADERS: tuple[str, ...] = (
    "X-Project-ID",
    "X-API-Key",
    "X-Device-ID",
    "X-User-ID",
    "X-Timestamp",
    "X-Signature",
)


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Process configuration.

    The system database holds tenant (project) rows; a tenant without its
    own routing host keeps its device tables there too. Tokens and
    passwords are ``SecretStr`` so they stay out of reprs and logs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT", "DELETE"]
    cors_allowed_headers: list[str] = ["Content-Type", *SIGNING_HEADERS]

    # System store
    postgres_user: str = "analytics"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    system_pool_size: int = Field(default=5, gt=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """psycopg v3 URL of the system store, usable by alembic and asyncio."""
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Per-tenant pools; acquisition waits at most tenant_pool_timeout seconds.
    tenant_pool_size: int = Field(default=20, gt=0)
    tenant_pool_timeout: float = Field(default=2.0, gt=0)
    tenant_pool_recycle: int = 1800

    default_project_id: str = "default"

    admin_token: SecretStr | None = None
    # Fernet key; when unset secrets are stored as plaintext.
    secret_encryption_key: SecretStr | None = None

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("default_project_id")
    @classmethod
    def _non_empty_project(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_project_id must not be empty")
        return value

    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, also usable as a FastAPI dependency."""
    return Settings()
