"""Unit tests for configuration module."""

from pathlib import Path

import pytest
import yaml

from outbound_gateway.core.config import (
    ConfigLoader,
    ExternalRateLimitConfig,
    GatewayConfig,
    InMemoryRateConfig,
    LoggingConfig,
    ProxyConfig,
    ServerConfig,
    load_config,
)


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary configuration file."""
    config_data = {
        "environment": "test",
        "server": {"host": "localhost", "port": 9999},
        "logging": {"level": "DEBUG"},
        "proxy": {
            "path_prefix": "api/outbound/",
            "base_url": "https://api.example.com",
            "allow_origins": ["https://app.example.com"],
            "in_memory_rate": {"window_ms": 1000, "max": 5},
        },
    }
    config_file = tmp_path / "test_config.yaml"
    with open(config_file, "w") as f:
        yaml.dump(config_data, f)
    return config_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep gateway environment variables from leaking into tests."""
    for name in (
        "OUTBOUND_GATEWAY_CONFIG_PATH",
        "OUTBOUND_GATEWAY_ENV",
        "OUTBOUND_GATEWAY_SERVER_PORT",
        "OUTBOUND_GATEWAY_LOG_LEVEL",
        "OUTBOUND_GATEWAY_PROXY_BASE_URL",
        "OUTBOUND_GATEWAY_PROXY_ALLOW_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_server_config_defaults() -> None:
    """Test ServerConfig with default values."""
    config = ServerConfig()
    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert config.tls_enabled is False


def test_server_config_port_validation() -> None:
    with pytest.raises(ValueError):
        ServerConfig(port=0)

    with pytest.raises(ValueError):
        ServerConfig(port=70000)


def test_logging_config_level_validation() -> None:
    """Test LoggingConfig log level validation."""
    assert LoggingConfig(level="debug").level == "DEBUG"

    with pytest.raises(ValueError, match="Invalid log level"):
        LoggingConfig(level="INVALID")


def test_logging_config_format_validation() -> None:
    assert LoggingConfig(format="TEXT").format == "text"

    with pytest.raises(ValueError, match="Invalid log format"):
        LoggingConfig(format="xml")


def test_proxy_config_defaults() -> None:
    """Test ProxyConfig defaults."""
    config = ProxyConfig()
    assert config.path_prefix == "/api/proxy"
    assert config.base_url is None
    assert config.allow_origins is None
    assert config.allow_methods == ["POST", "OPTIONS"]
    assert config.allow_headers == ["Content-Type", "Authorization"]
    assert config.in_memory_rate is None
    assert config.require_authorization is False


def test_proxy_config_normalizes_path_prefix() -> None:
    assert ProxyConfig(path_prefix="api/outbound/").path_prefix == "/api/outbound"


def test_proxy_config_rejects_relative_base_url() -> None:
    with pytest.raises(ValueError, match="base_url must be absolute"):
        ProxyConfig(base_url="api.example.com")


def test_in_memory_rate_config_requires_positive_values() -> None:
    with pytest.raises(ValueError):
        InMemoryRateConfig(window_ms=0, max=1)

    with pytest.raises(ValueError):
        InMemoryRateConfig(window_ms=1000, max=0)


def test_external_rate_limit_fail_mode_validation() -> None:
    assert ExternalRateLimitConfig(limit=1, window_ms=1000).fail_mode == "open"

    with pytest.raises(ValueError, match="Invalid fail_mode"):
        ExternalRateLimitConfig(limit=1, window_ms=1000, fail_mode="sometimes")


def test_config_loader_from_file(temp_config_file: Path) -> None:
    """Test loading configuration from file."""
    config = ConfigLoader(str(temp_config_file)).load()

    assert config.environment == "test"
    assert config.server.host == "localhost"
    assert config.server.port == 9999
    assert config.logging.level == "DEBUG"
    assert config.proxy.path_prefix == "/api/outbound"
    assert config.proxy.allow_origins == ["https://app.example.com"]
    assert config.proxy.in_memory_rate.max == 5


def test_config_loader_missing_file_uses_defaults(tmp_path: Path) -> None:
    config = ConfigLoader(str(tmp_path / "missing.yaml")).load()
    assert config == GatewayConfig()


def test_config_loader_env_overrides(
    temp_config_file: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test environment variable overrides."""
    monkeypatch.setenv("OUTBOUND_GATEWAY_SERVER_PORT", "7000")
    monkeypatch.setenv("OUTBOUND_GATEWAY_LOG_LEVEL", "warning")
    monkeypatch.setenv("OUTBOUND_GATEWAY_PROXY_BASE_URL", "https://other.example.com")
    monkeypatch.setenv("OUTBOUND_GATEWAY_PROXY_ALLOW_ORIGINS", "https://a.com, https://b.com")

    config = ConfigLoader(str(temp_config_file)).load()

    assert config.server.port == 7000
    assert config.logging.level == "WARNING"
    assert config.proxy.base_url == "https://other.example.com"
    assert config.proxy.allow_origins == ["https://a.com", "https://b.com"]


def test_config_loader_wildcard_origins_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("OUTBOUND_GATEWAY_PROXY_ALLOW_ORIGINS", "*")
    config = ConfigLoader(str(tmp_path / "missing.yaml")).load()
    assert config.proxy.allow_origins == "*"


def test_config_loader_invalid_config(tmp_path: Path) -> None:
    """Test that invalid configuration raises ValueError."""
    config_file = tmp_path / "bad.yaml"
    config_file.write_text(yaml.dump({"server": {"port": -1}}))

    with pytest.raises(ValueError, match="Configuration validation failed"):
        ConfigLoader(str(config_file)).load()


def test_load_config_from_env_path(
    temp_config_file: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("OUTBOUND_GATEWAY_CONFIG_PATH", str(temp_config_file))
    config = load_config()
    assert config.environment == "test"
