"""Application settings loaded from environment variables.

Environment Configuration:
    GLASS_ENV: Deployment environment (local | test | prod)
    LOCAL_DATABASE_URL: SQLAlchemy URL of the embedded local store
    DEFAULT_LOCAL_USER_ID: User id used while nobody is signed in

Remote Document Store:
    REMOTE_STORE_URL: Base URL of the document API (unset = offline only)
    REMOTE_STORE_API_KEY: API key sent with every document API call
    REMOTE_STORE_DATABASE: Logical database name
    REMOTE_STORE_DATA_SOURCE: Data source / cluster name
    REMOTE_TIMEOUT_S: Upper bound for any single remote call

Encryption:
    GLASS_KEY_ENCRYPTION_KEY: Base64-encoded 32-byte master key. Per-user
    field keys are derived from it.

Local runtimes:
    OLLAMA_HOST: Base URL of the local Ollama daemon

Bridge:
    BRIDGE_HOST / BRIDGE_PORT: Address the local bridge API binds to
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - REMOTE_STORE_URL and REMOTE_STORE_API_KEY must be set together
    - REMOTE_TIMEOUT_S must be positive
    """

    glass_env: Environment = Field(default=Environment.LOCAL, alias="GLASS_ENV")
    local_database_url: str = Field(default="sqlite:///glass.db", alias="LOCAL_DATABASE_URL")
    default_local_user_id: str = Field(default="default_user", alias="DEFAULT_LOCAL_USER_ID")

    # Remote document store
    remote_store_url: str | None = Field(default=None, alias="REMOTE_STORE_URL")
    remote_store_api_key: str | None = Field(default=None, alias="REMOTE_STORE_API_KEY")
    remote_store_database: str = Field(default="glass", alias="REMOTE_STORE_DATABASE")
    remote_store_data_source: str = Field(default="glass-cluster", alias="REMOTE_STORE_DATA_SOURCE")
    remote_timeout_s: float = Field(default=10.0, alias="REMOTE_TIMEOUT_S")

    # Base64-encoded 32-byte key for per-user field encryption
    glass_key_encryption_key: str | None = Field(default=None, alias="GLASS_KEY_ENCRYPTION_KEY")

    ollama_host: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    key_validation_timeout_s: float = Field(default=15.0, alias="KEY_VALIDATION_TIMEOUT_S")

    bridge_host: str = Field(default="127.0.0.1", alias="BRIDGE_HOST")
    bridge_port: int = Field(default=8765, alias="BRIDGE_PORT")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_remote_settings(self) -> "Settings":
        """Ensure the remote store is either fully configured or not at all."""
        if bool(self.remote_store_url) != bool(self.remote_store_api_key):
            raise ValueError(
                "REMOTE_STORE_URL and REMOTE_STORE_API_KEY must be set together "
                "(leave both unset to run offline)."
            )

        if self.remote_timeout_s <= 0:
            raise ValueError("REMOTE_TIMEOUT_S must be greater than zero")

        return self

    @property
    def remote_enabled(self) -> bool:
        """Whether a real remote document store is configured."""
        return bool(self.remote_store_url and self.remote_store_api_key)

    @property
    def normalized_remote_url(self) -> str | None:
        """Return the remote store URL with trailing slash stripped."""
        if self.remote_store_url:
            return self.remote_store_url.rstrip("/")
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are inconsistent.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
