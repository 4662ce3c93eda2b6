"""
Playground Configuration Module

Handles all configuration settings for the token proxy including
rate limiting, outbound fetch limits, input limits and HTTP surface settings.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class PlaygroundConfig(BaseSettings):
    """Configuration for the OAuth playground proxy."""

    # Server settings
    host: str = Field(default="127.0.0.1", description="Proxy host")
    port: int = Field(default=8001, description="Proxy port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Render logs as JSON")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_max_requests: int = Field(default=30, description="Requests allowed per window")
    rate_limit_window_seconds: int = Field(default=60, description="Window length in seconds")
    rate_limit_sweep_interval_seconds: int = Field(default=60, description="Interval between expired-entry sweeps")
    rate_limit_max_entries: int = Field(default=10000, description="Upper bound on tracked clients")

    # Outbound requests
    fetch_timeout_seconds: float = Field(default=10.0, description="Timeout for token and discovery requests")
    jwks_fetch_timeout_seconds: float = Field(default=5.0, description="Timeout for remote JWKS requests")
    max_response_bytes: int = Field(default=1024 * 1024, description="Largest accepted upstream body")
    jwks_cache_ttl_seconds: int = Field(default=300, description="Remote JWKS cache TTL")
    allowed_ports: List[int] = Field(
        default=[80, 443, 3000, 8080, 8443], description="Ports outbound URLs may target"
    )

    # Input limits
    max_url_length: int = Field(default=2048, description="Max URL length")
    max_code_length: int = Field(default=4096, description="Max authorization code length")
    max_secret_length: int = Field(default=512, description="Max client/signing secret length")
    max_client_id_length: int = Field(default=512, description="Max client ID length")
    max_code_verifier_length: int = Field(default=128, description="Max PKCE verifier length")
    max_token_length: int = Field(default=16384, description="Max bearer token length")
    max_error_message_length: int = Field(default=500, description="Max provider error text surfaced")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"], description="Allowed CORS origins"
    )

    # Security
    security_headers_enabled: bool = Field(default=True, description="Add security headers to responses")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_playground_config() -> PlaygroundConfig:
    """Get cached playground configuration."""
    return PlaygroundConfig()
