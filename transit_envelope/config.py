"""
Configuration management using Pydantic Settings.

Two layers:
- Settings: application settings loaded from environment variables and .env file
- TransitCryptoConfiguration: immutable, validated connection/retry/timeout
  settings consumed by TransitKeyClient and the materials providers
"""
import re
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KEY_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

MIN_TIMEOUT = timedelta(milliseconds=1)
MAX_CONNECTION_TIMEOUT = timedelta(minutes=5)
MAX_REQUEST_TIMEOUT = timedelta(minutes=10)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Transit service connection
    TRANSIT_ENDPOINT: Optional[str] = None  # e.g. https://vault.example.com:8200
    TRANSIT_TOKEN: Optional[str] = None  # Required to build a client
    TRANSIT_MOUNT_PATH: str = "transit"
    TRANSIT_KEY_PREFIX: str = "pii"

    # Timeouts and retry policy
    TRANSIT_CONNECTION_TIMEOUT_SECONDS: float = 10.0
    TRANSIT_REQUEST_TIMEOUT_SECONDS: float = 30.0
    TRANSIT_MAX_RETRIES: int = 3
    TRANSIT_RETRY_BACKOFF_MS: int = 100

    # Connection pool
    TRANSIT_POOL_MAX_CONNECTIONS: int = 20
    TRANSIT_POOL_MAX_KEEPALIVE: int = 10

    # Application Configuration (GDPR admin API)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    RELOAD: bool = False

    # Logging Configuration (Optional - per-module log levels)
    APP_LOG_LEVEL: Optional[str] = None
    UVICORN_LOG_LEVEL: Optional[str] = None
    HTTPX_LOG_LEVEL: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def transit_configured(self) -> bool:
        """Whether enough settings are present to build a transit client."""
        return bool(self.TRANSIT_ENDPOINT and self.TRANSIT_TOKEN)


class TransitCryptoConfiguration(BaseModel):
    """
    Immutable connection and retry settings for the transit service.

    Validation runs eagerly at construction; an invalid instance can never be
    observed. Construction failures raise pydantic.ValidationError (a
    ValueError) naming the offending field.

    Example:
        >>> config = TransitCryptoConfiguration(
        ...     endpoint="https://vault.example.com:8200",
        ...     credential="hvs.CAESIJ...",
        ... )
        >>> config.base_url
        'https://vault.example.com:8200/v1/transit'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: str = Field(description="Transit service URL, http:// or https://")
    credential: SecretStr = Field(description="Token sent with every request")
    mount_path: str = Field(default="transit", description="Transit engine mount path")
    key_prefix: str = Field(default="pii", description="Prefix for every managed key name")
    connection_timeout: timedelta = Field(default=timedelta(seconds=10))
    request_timeout: timedelta = Field(default=timedelta(seconds=30))
    max_retries: int = Field(default=3, description="Retries after the first attempt")
    retry_base_backoff: timedelta = Field(default=timedelta(milliseconds=100))

    @field_validator("endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("endpoint cannot be empty")
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint must start with http:// or https://")
        return value

    @field_validator("credential")
    @classmethod
    def _validate_credential(cls, value: SecretStr) -> SecretStr:
        raw = value.get_secret_value()
        if not raw.strip():
            raise ValueError("credential cannot be empty")
        if raw != raw.strip():
            raise ValueError("credential cannot contain leading or trailing whitespace")
        return value

    @field_validator("mount_path")
    @classmethod
    def _validate_mount_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("mount_path cannot be empty")
        return value

    @field_validator("key_prefix")
    @classmethod
    def _validate_key_prefix(cls, value: str) -> str:
        if not KEY_PREFIX_PATTERN.match(value):
            raise ValueError(
                "key_prefix can only contain alphanumeric characters, underscores, and hyphens"
            )
        return value

    @field_validator("connection_timeout")
    @classmethod
    def _validate_connection_timeout(cls, value: timedelta) -> timedelta:
        if value < MIN_TIMEOUT:
            raise ValueError("connection_timeout must be at least 1ms")
        if value > MAX_CONNECTION_TIMEOUT:
            raise ValueError("connection_timeout cannot exceed 5 minutes")
        return value

    @field_validator("request_timeout")
    @classmethod
    def _validate_request_timeout(cls, value: timedelta) -> timedelta:
        if value < MIN_TIMEOUT:
            raise ValueError("request_timeout must be at least 1ms")
        if value > MAX_REQUEST_TIMEOUT:
            raise ValueError("request_timeout cannot exceed 10 minutes")
        return value

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries cannot be negative")
        return value

    @field_validator("retry_base_backoff")
    @classmethod
    def _validate_retry_base_backoff(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("retry_base_backoff must be non-negative")
        return value

    @property
    def base_url(self) -> str:
        """Transit engine base URL: {endpoint}/v1/{mount_path}."""
        return f"{self.endpoint.rstrip('/')}/v1/{self.mount_path}"

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransitCryptoConfiguration":
        """
        Build a validated configuration from environment settings.

        Raises:
            ValueError: If endpoint or token is missing, or any value is invalid
        """
        if not settings.TRANSIT_ENDPOINT:
            raise ValueError("TRANSIT_ENDPOINT is required")
        if not settings.TRANSIT_TOKEN:
            raise ValueError("TRANSIT_TOKEN is required")

        return cls(
            endpoint=settings.TRANSIT_ENDPOINT,
            credential=settings.TRANSIT_TOKEN,
            mount_path=settings.TRANSIT_MOUNT_PATH,
            key_prefix=settings.TRANSIT_KEY_PREFIX,
            connection_timeout=timedelta(seconds=settings.TRANSIT_CONNECTION_TIMEOUT_SECONDS),
            request_timeout=timedelta(seconds=settings.TRANSIT_REQUEST_TIMEOUT_SECONDS),
            max_retries=settings.TRANSIT_MAX_RETRIES,
            retry_base_backoff=timedelta(milliseconds=settings.TRANSIT_RETRY_BACKOFF_MS),
        )


# Global settings instance
settings = Settings()
