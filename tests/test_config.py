"""Tests for environment-backed settings and ClientConfig."""

import pytest

from restweave import __version__
from restweave.auth import AuthRefresh, AuthRefreshMode
from restweave.coding import JSONCoding
from restweave.config import MIN_TIMEOUT, ClientConfig, ClientSettings, get_settings
from restweave.debug_logging import DebugLogging
from restweave.retry import RetryPolicy


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    """Isolate settings from the developer's environment and .env files."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "RESTWEAVE_REQUEST_TIMEOUT",
        "RESTWEAVE_USER_AGENT",
        "RESTWEAVE_MAX_ATTEMPTS",
        "RESTWEAVE_ACCESS_TOKEN",
        "RESTWEAVE_DEBUG_LOGGING",
        "RESTWEAVE_LOG_HEADERS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_defaults():
    settings = ClientSettings()
    assert settings.request_timeout == 30.0
    assert settings.user_agent == f"restweave/{__version__}"
    assert settings.max_attempts == 3
    assert settings.access_token is None
    assert settings.debug_logging is False


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("RESTWEAVE_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("RESTWEAVE_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("restweave_access_token", "env-token")

    settings = ClientSettings()

    assert settings.request_timeout == 5.0
    assert settings.max_attempts == 4
    assert settings.access_token == "env-token"


def test_settings_read_env_file(tmp_path):
    (tmp_path / ".env").write_text("RESTWEAVE_USER_AGENT=my-app/2.0\n")
    assert ClientSettings().user_agent == "my-app/2.0"


def test_get_settings_is_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("RESTWEAVE_MAX_ATTEMPTS", "9")
    assert get_settings() is first

    get_settings.cache_clear()
    assert get_settings().max_attempts == 9


def test_default_config():
    config = ClientConfig()
    assert config.base_headers == {}
    assert config.timeout == 30.0
    assert config.retry_policy.max_attempts == 1
    assert config.json_coding == JSONCoding.default()
    assert config.auth_refresh.mode is AuthRefreshMode.DISABLED
    assert config.debug_logging.enabled is False


def test_standard_config():
    config = ClientConfig.standard()
    assert config.base_headers == {"Accept": "application/json"}
    assert config.retry_policy == RetryPolicy.standard()


def test_timeout_is_clamped():
    assert ClientConfig(timeout=0).timeout == MIN_TIMEOUT
    assert ClientConfig().with_timeout(-5).timeout == MIN_TIMEOUT
    assert ClientConfig().with_timeout(2.5).timeout == 2.5


def test_from_settings():
    settings = ClientSettings(
        request_timeout=12,
        user_agent="svc/1",
        max_attempts=5,
        base_delay=1,
        access_token="tok",
        debug_logging=True,
        log_headers=True,
    )

    config = ClientConfig.from_settings(settings)

    assert config.base_headers == {"Accept": "application/json", "User-Agent": "svc/1"}
    assert config.timeout == 12.0
    assert config.retry_policy.max_attempts == 5
    assert config.retry_policy.base_delay == 1.0
    assert config.access_token == "tok"
    assert config.debug_logging.enabled
    assert config.debug_logging.include_headers


def test_from_settings_uses_cached_settings(monkeypatch):
    monkeypatch.setenv("RESTWEAVE_DEBUG_LOGGING", "true")
    config = ClientConfig.from_settings()
    assert config.debug_logging.enabled
    assert not config.debug_logging.include_headers


def test_with_methods_return_copies():
    async def provider():
        return "p"

    refresh = AuthRefresh.custom(provider)
    base = ClientConfig()
    config = (
        base.with_base_headers({"Accept": "text/plain"})
        .with_base_header("X-Client", "tests")
        .with_retry_policy(RetryPolicy.standard())
        .with_json_coding(JSONCoding.web_api())
        .with_access_token("tok")
        .with_access_token_provider(provider)
        .with_auth_refresh(refresh)
        .with_debug_logging(DebugLogging.basic())
    )

    assert base == ClientConfig()
    assert config.base_headers == {"Accept": "text/plain", "X-Client": "tests"}
    assert config.retry_policy.max_attempts == 3
    assert config.json_coding == JSONCoding.web_api()
    assert config.access_token == "tok"
    assert config.access_token_provider is provider
    assert config.auth_refresh is refresh
    assert config.debug_logging.enabled
