from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings
    redis_enabled: bool = True  # False selects the single-process backend
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 1.0

    # Bucket settings
    bucket_ttl_margin_seconds: int = 1  # Slack added to the bucket self-expiry TTL
    full_tolerance: float = 1e-6  # Relative epsilon for the "bucket is full" check

    # HTTP integration: deny requests when the store is unavailable
    fail_closed: bool = True

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("redis_socket_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("redis_socket_timeout must be positive")
        return v

    @field_validator("bucket_ttl_margin_seconds")
    @classmethod
    def validate_ttl_margin(cls, v: int) -> int:
        if v < 0:
            raise ValueError("bucket_ttl_margin_seconds must not be negative")
        return v

    @field_validator("full_tolerance")
    @classmethod
    def validate_full_tolerance(cls, v: float) -> float:
        """Validate the tolerance is a small non-negative fraction."""
        if not 0 <= v < 1:
            raise ValueError("full_tolerance must be in the range [0, 1)")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
