"""Application configuration."""

from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Find .env file - check multiple possible locations
def find_env_file() -> Optional[Path]:
    """Find .env file in multiple possible locations."""
    import os
    current_dir = os.path.dirname(os.path.abspath(__file__))

    possible_paths = [
        os.path.join(current_dir, ".env"),
        os.path.join(os.path.dirname(current_dir), ".env"),
        os.path.join(os.path.dirname(os.path.dirname(current_dir)), ".env"),
    ]

    for path_str in possible_paths:
        if os.path.exists(path_str):
            path = Path(path_str)
            LOGGER.info(f"Found .env file at: {path}")
            return path

    LOGGER.warning("No .env file found in expected locations")
    return None


ENV_FILE = find_env_file()

_NESTED_CONFIG = SettingsConfigDict(
    env_file=str(ENV_FILE) if ENV_FILE else None,
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_prefix="",  # No prefix for nested settings
)


class DatabaseSettings(BaseSettings):
    """Database connection and pool settings."""
    url: str = Field(default="", validation_alias="YDMS_DATABASE_URL")

    host: str = Field(default="localhost", validation_alias="YDMS_DB_HOST")
    port: int = Field(default=5432, validation_alias="YDMS_DB_PORT")
    user: str = Field(default="ydms", validation_alias="YDMS_DB_USER")
    password: str = Field(default="ydms", validation_alias="YDMS_DB_PASSWORD")
    name: str = Field(default="ydms", validation_alias="YDMS_DB_NAME")

    pool_size: int = Field(default=10, validation_alias="YDMS_DB_POOL_SIZE")
    max_overflow: int = Field(default=20, validation_alias="YDMS_DB_MAX_OVERFLOW")
    echo: bool = Field(default=False, validation_alias="YDMS_DB_ECHO")

    @property
    def connection_url(self) -> str:
        """Get the connection URL with the correct asyncpg prefix."""
        raw_url = self.url
        if not raw_url:
            return (
                f"postgresql+asyncpg://{quote_plus(self.user)}:{quote_plus(self.password)}"
                f"@{self.host}:{self.port}/{self.name}"
            )

        if raw_url.startswith("postgres://") or raw_url.startswith("postgresql://"):
            _, rest = raw_url.split("://", 1)
            return f"postgresql+asyncpg://{rest}"

        return raw_url

    model_config = _NESTED_CONFIG


class NDRSettings(BaseSettings):
    """Node/document store (NDR) connection settings."""

    base_url: str = Field(default="http://localhost:9001", validation_alias="YDMS_NDR_BASE_URL")
    api_key: str = Field(default="", validation_alias="YDMS_NDR_API_KEY")
    default_user_id: str = Field(default="system", validation_alias="YDMS_DEFAULT_USER_ID")
    admin_key: str = Field(default="", validation_alias="YDMS_ADMIN_KEY")
    timeout: float = Field(default=30.0, validation_alias="YDMS_NDR_TIMEOUT")
    debug_traffic: bool = Field(default=False, validation_alias="YDMS_DEBUG_TRAFFIC")

    model_config = _NESTED_CONFIG


class PrefectSettings(BaseSettings):
    """Prefect scheduler settings.

    An empty base URL disables the scheduler; runs are then only recorded
    locally and stay pending.
    """

    base_url: str = Field(default="", validation_alias="YDMS_PREFECT_BASE_URL")
    webhook_secret: str = Field(default="", validation_alias="YDMS_PREFECT_WEBHOOK_SECRET")
    timeout: float = Field(default=300.0, validation_alias="YDMS_PREFECT_TIMEOUT")
    public_base_url: str = Field(default="http://localhost:9180", validation_alias="YDMS_PUBLIC_BASE_URL")

    @property
    def enabled(self) -> bool:
        return bool(self.base_url.strip())

    model_config = _NESTED_CONFIG


class AuthSettings(BaseSettings):
    """JWT signing settings."""

    jwt_secret: str = Field(default="change-me", validation_alias="YDMS_JWT_SECRET")
    jwt_expiry_hours: int = Field(default=24, validation_alias="YDMS_JWT_EXPIRY")
    jwt_algorithm: str = Field(default="HS256", validation_alias="YDMS_JWT_ALGORITHM")
    internal_api_key: str = Field(default="", validation_alias="YDMS_INTERNAL_API_KEY")

    model_config = _NESTED_CONFIG


class WorkflowSettings(BaseSettings):
    """Workflow orchestration tuning."""

    strict_callbacks: bool = Field(default=False, validation_alias="YDMS_WORKFLOW_STRICT_CALLBACKS")
    batch_shutdown_timeout: float = Field(default=30.0, validation_alias="YDMS_BATCH_SHUTDOWN_TIMEOUT")

    model_config = _NESTED_CONFIG


class DocumentSettings(BaseSettings):
    """Document type registry override; empty keeps the built-in types."""

    types: dict[str, str] = Field(default_factory=dict, validation_alias="YDMS_DOCUMENT_TYPES")

    model_config = _NESTED_CONFIG


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    # Application Settings
    app_name: str = Field(default="YDMS", validation_alias="YDMS_APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="YDMS_ENVIRONMENT")
    debug: bool = Field(default=False, validation_alias="YDMS_DEBUG")
    log_level: str = Field(default="INFO", validation_alias="YDMS_LOG_LEVEL")
    cors_origins: list[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        validation_alias="YDMS_CORS_ORIGINS"
    )

    # API Settings
    api_v1_prefix: str = "/api/v1"
    internal_api_prefix: str = "/api/internal"
    host: str = Field(default="0.0.0.0", validation_alias="YDMS_HTTP_HOST")
    port: int = Field(default=9180, validation_alias="YDMS_HTTP_PORT")

    db_init_timeout: int = Field(default=30, validation_alias="YDMS_DB_INIT_TIMEOUT")

    # Nested Settings - Initialize with env file explicitly
    db: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
    ndr: NDRSettings = Field(default_factory=lambda: NDRSettings())
    prefect: PrefectSettings = Field(default_factory=lambda: PrefectSettings())
    auth: AuthSettings = Field(default_factory=lambda: AuthSettings())
    workflow: WorkflowSettings = Field(default_factory=lambda: WorkflowSettings())
    documents: DocumentSettings = Field(default_factory=lambda: DocumentSettings())

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backward compatibility properties
    @property
    def database_url(self) -> str:
        return self.db.connection_url

    @property
    def database_pool_size(self) -> int:
        return self.db.pool_size

    @property
    def database_max_overflow(self) -> int:
        return self.db.max_overflow

    @property
    def database_echo(self) -> bool:
        return self.db.echo

    @property
    def prefect_enabled(self) -> bool:
        return self.prefect.enabled

    @property
    def public_base_url(self) -> str:
        return self.prefect.public_base_url.rstrip("/")


# Initialize settings
settings = Settings()

LOGGER.info(f"Settings initialized with environment: {settings.environment}")
LOGGER.info(f"Database settings: pool={settings.db.pool_size}, overflow={settings.db.max_overflow}")
LOGGER.info(f"NDR base URL: {settings.ndr.base_url}")
if settings.prefect_enabled:
    LOGGER.info(f"Prefect scheduler enabled at {settings.prefect.base_url}")
else:
    LOGGER.info("Prefect scheduler not configured, workflow runs will stay local")
