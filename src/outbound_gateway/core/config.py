"""Configuration management module for the outbound gateway.

This module handles loading and validating configuration from multiple sources:
- Configuration files (YAML)
- Environment variables

Hooks (auth, validation, transformations, monitoring) are code, not data, and
are supplied separately as a ``GatewayHooks`` instance.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")
    tls_enabled: bool = Field(default=False, description="Enable TLS/HTTPS")
    tls_cert_path: str | None = Field(default=None, description="Path to TLS certificate")
    tls_key_path: str | None = Field(default=None, description="Path to TLS private key")
    keepalive_timeout: int = Field(default=75, ge=1, description="Keep-alive timeout in seconds")
    client_max_size: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Maximum inbound body size in bytes"
    )
    shutdown_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for in-flight calls on shutdown"
    )

    @field_validator("tls_cert_path", "tls_key_path")
    @classmethod
    def validate_tls_paths(cls, v: str | None) -> str | None:
        """Validate TLS certificate and key paths exist if provided."""
        if v is not None and not Path(v).exists():
            raise ValueError(f"TLS file not found: {v}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or text)")
    output: str = Field(default="stdout", description="Log output (stdout, stderr or file path)")
    correlation_id_header: str = Field(
        default="X-Request-ID", description="Header name for correlation ID"
    )
    redact_headers: list[str] = Field(
        default_factory=lambda: ["Authorization", "Cookie", "Set-Cookie"],
        description="Field names to redact from logs",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is valid."""
        if v.lower() not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'text'")
        return v.lower()


class UpstreamConfig(BaseModel):
    """Outbound transport configuration."""

    connection_timeout: float = Field(default=5, gt=0, description="Connect timeout in seconds")
    request_timeout: float = Field(default=30, gt=0, description="Total timeout in seconds")
    pool_size: int = Field(default=100, ge=1, description="Connection pool size")


class MetricsConfig(BaseModel):
    """Metrics and observability configuration."""

    enabled: bool = Field(default=True, description="Enable metrics collection")
    endpoint: str = Field(default="/metrics", description="Metrics endpoint path")
    health_endpoint: str = Field(default="/health", description="Health check endpoint path")
    liveness_endpoint: str = Field(default="/health/live", description="Liveness endpoint path")
    readiness_endpoint: str = Field(default="/health/ready", description="Readiness endpoint path")


class InMemoryRateConfig(BaseModel):
    """Fixed-window in-memory rate limit."""

    window_ms: int = Field(ge=1, description="Window length in milliseconds")
    max: int = Field(ge=1, description="Maximum requests per key per window")
    max_keys: int | None = Field(
        default=None, ge=1, description="Cap on tracked keys (None = unbounded)"
    )


class ExternalRateLimitConfig(BaseModel):
    """Redis-backed fixed-window limiter used as the external rate predicate."""

    store_url: str = Field(default="redis://localhost:6379/1", description="Redis URL")
    limit: int = Field(ge=1, description="Maximum requests per key per window")
    window_ms: int = Field(ge=1, description="Window length in milliseconds")
    key_prefix: str = Field(default="outbound:ratelimit:", description="Redis key prefix")
    fail_mode: str = Field(default="open", description="Behaviour when Redis is unavailable")

    @field_validator("fail_mode")
    @classmethod
    def validate_fail_mode(cls, v: str) -> str:
        """Validate fail mode is valid."""
        valid_modes = ["open", "closed"]
        if v not in valid_modes:
            raise ValueError(f"Invalid fail_mode: {v}. Must be one of {valid_modes}")
        return v


class ProxyConfig(BaseModel):
    """Outbound proxy route configuration."""

    path_prefix: str = Field(default="/api/proxy", description="URL prefix served by the pipeline")
    base_url: str | None = Field(default=None, description="Base URL for relative endpoints")
    allow_origins: str | list[str] | None = Field(
        default=None, description="Allowed origins: None (all), '*', a string or a list"
    )
    allow_methods: list[str] = Field(
        default_factory=lambda: ["POST", "OPTIONS"], description="Preflight allowed methods"
    )
    allow_headers: list[str] = Field(
        default_factory=lambda: ["Content-Type", "Authorization"],
        description="Preflight allowed headers",
    )
    in_memory_rate: InMemoryRateConfig | None = Field(
        default=None, description="In-memory rate limit"
    )
    external_rate_limit: ExternalRateLimitConfig | None = Field(
        default=None, description="External (Redis) rate limit"
    )
    require_authorization: bool = Field(
        default=False, description="Reject calls without an Authorization header"
    )
    auth_signing_secret: str | None = Field(
        default=None, description="HMAC secret; when set, bearer tokens must be signed with it"
    )

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        """Normalize the prefix to a leading slash and no trailing slash."""
        v = "/" + v.strip("/")
        return v

    @model_validator(mode="after")
    def validate_base_url(self) -> "ProxyConfig":
        """Require an absolute base URL when one is configured."""
        if self.base_url is not None and "://" not in self.base_url:
            raise ValueError(f"base_url must be absolute: {self.base_url}")
        return self


class GatewayConfig(BaseModel):
    """Main gateway configuration."""

    environment: str = Field(default="development", description="Environment name")
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)


class ConfigLoader:
    """Loads and validates configuration from multiple sources."""

    def __init__(self, config_path: str | None = None):
        """Initialize the configuration loader.

        Args:
            config_path: Path to configuration file. If None, uses environment variable
                        OUTBOUND_GATEWAY_CONFIG_PATH or defaults to config/gateway.yaml
        """
        self.config_path = self._resolve_config_path(config_path)

    def _resolve_config_path(self, config_path: str | None) -> Path:
        """Resolve configuration file path."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("OUTBOUND_GATEWAY_CONFIG_PATH")
        if env_path:
            return Path(env_path)

        env = os.getenv("OUTBOUND_GATEWAY_ENV", "development")
        env_specific = Path(f"config/gateway.{env}.yaml")
        if env_specific.exists():
            return env_specific

        return Path("config/gateway.yaml")

    def load(self) -> GatewayConfig:
        """Load and validate configuration.

        Returns:
            Validated GatewayConfig instance

        Raises:
            ValueError: If configuration is invalid
        """
        config_dict = self._load_from_file()
        config_dict = self._override_from_env(config_dict)

        try:
            config = GatewayConfig(**config_dict)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        return config

    def _load_from_file(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            # Defaults apply when no file is present
            return {}

        with open(self.config_path) as f:
            config_dict = yaml.safe_load(f) or {}

        return config_dict

    def _override_from_env(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Override configuration with environment variables.

        Environment variables follow the pattern: OUTBOUND_GATEWAY_<SECTION>_<KEY>
        For example: OUTBOUND_GATEWAY_SERVER_PORT=8080
        """
        if host := os.getenv("OUTBOUND_GATEWAY_SERVER_HOST"):
            config_dict.setdefault("server", {})["host"] = host
        if port := os.getenv("OUTBOUND_GATEWAY_SERVER_PORT"):
            config_dict.setdefault("server", {})["port"] = int(port)
        if tls := os.getenv("OUTBOUND_GATEWAY_SERVER_TLS_ENABLED"):
            config_dict.setdefault("server", {})["tls_enabled"] = tls.lower() == "true"

        if log_level := os.getenv("OUTBOUND_GATEWAY_LOG_LEVEL"):
            config_dict.setdefault("logging", {})["level"] = log_level
        if log_format := os.getenv("OUTBOUND_GATEWAY_LOG_FORMAT"):
            config_dict.setdefault("logging", {})["format"] = log_format

        if timeout := os.getenv("OUTBOUND_GATEWAY_UPSTREAM_TIMEOUT"):
            config_dict.setdefault("upstream", {})["request_timeout"] = float(timeout)

        if base_url := os.getenv("OUTBOUND_GATEWAY_PROXY_BASE_URL"):
            config_dict.setdefault("proxy", {})["base_url"] = base_url
        if origins := os.getenv("OUTBOUND_GATEWAY_PROXY_ALLOW_ORIGINS"):
            # Comma-separated list, or "*"
            parsed = [o.strip() for o in origins.split(",") if o.strip()]
            config_dict.setdefault("proxy", {})["allow_origins"] = (
                parsed[0] if parsed == ["*"] else parsed
            )
        if prefix := os.getenv("OUTBOUND_GATEWAY_PROXY_PATH_PREFIX"):
            config_dict.setdefault("proxy", {})["path_prefix"] = prefix
        if secret := os.getenv("OUTBOUND_GATEWAY_PROXY_AUTH_SIGNING_SECRET"):
            config_dict.setdefault("proxy", {})["auth_signing_secret"] = secret

        if env := os.getenv("OUTBOUND_GATEWAY_ENV"):
            config_dict["environment"] = env

        return config_dict


def load_config(config_path: str | None = None) -> GatewayConfig:
    """Load configuration (convenience function).

    Args:
        config_path: Optional path to configuration file

    Returns:
        Validated GatewayConfig instance
    """
    loader = ConfigLoader(config_path)
    return loader.load()
