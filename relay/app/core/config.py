from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    app_name: str = "lexicon-relay"

    # Rate limiting: global switch
    rate_limit_enabled: bool = True

    # Per-category windows (milliseconds) and request limits
    rate_limit_window_ms: int = 60000  # general
    rate_limit_max_requests: int = 100
    rate_limit_api_window_ms: int = 60000
    rate_limit_api_max_requests: int = 50
    rate_limit_webhook_window_ms: int = 60000
    rate_limit_webhook_max_requests: int = 200
    rate_limit_mcp_window_ms: int = 60000
    rate_limit_mcp_max_requests: int = 30
    rate_limit_tool_window_ms: int = 60000
    rate_limit_tool_max_requests: int = 20

    # Storage: shared Redis store instead of the in-process one
    rate_limit_use_redis: bool = False
    rate_limit_redis_url: str = "redis://localhost:6379/0"
    rate_limit_redis_timeout_ms: int = 100

    # Response shaping
    rate_limit_skip_successful: bool = False
    rate_limit_skip_failed: bool = False
    rate_limit_include_headers: bool = True
    rate_limit_trust_proxy: bool = False
    rate_limit_message: str = "Too many requests, please try again later."

    # If True, deny requests when the counter store is unavailable
    rate_limit_fail_closed: bool = False

    # Number of recent calls kept per tool for diagnostics
    rate_limit_tool_history_size: int = 100

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_window_ms",
        "rate_limit_api_window_ms",
        "rate_limit_webhook_window_ms",
        "rate_limit_mcp_window_ms",
        "rate_limit_tool_window_ms",
    )
    @classmethod
    def validate_window_positive(cls, v: int) -> int:
        """Validate rate limit windows are positive."""
        if v < 1:
            raise ValueError("Rate limit windows must be at least 1 ms")
        return v

    @field_validator(
        "rate_limit_max_requests",
        "rate_limit_api_max_requests",
        "rate_limit_webhook_max_requests",
        "rate_limit_mcp_max_requests",
        "rate_limit_tool_max_requests",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_redis_timeout_ms", "rate_limit_tool_history_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
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
