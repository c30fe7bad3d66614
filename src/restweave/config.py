# restweave/config.py
from functools import lru_cache
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import __version__
from .auth import AuthRefresh
from .coding import JSONCoding
from .debug_logging import DebugLogging
from .retry import RetryPolicy
from .types import AccessTokenProvider

MIN_TIMEOUT = 0.1
"""Smallest accepted per-round-trip timeout in seconds."""


class ClientSettings(BaseSettings):
    """
    User-configurable client defaults, loaded from ``RESTWEAVE_*`` environment
    variables or a .env file.

    These settings only describe plain values; callables such as token
    providers are configured on ``ClientConfig``.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "secrets.env"),  # Look in both .env and secrets.env
        env_file_encoding="utf-8",
        env_prefix="RESTWEAVE_",
        extra="ignore",
        case_sensitive=False,
    )

    # --- Client Behavior Settings ---
    request_timeout: float = Field(
        default=30.0, description="Timeout per transport round trip in seconds"
    )
    user_agent: str = Field(
        default=f"restweave/{__version__}",
        description="User-Agent header for requests",
    )

    # --- Retry Settings ---
    max_attempts: int = Field(
        default=3, description="Total attempts per request, including the first"
    )
    base_delay: float = Field(
        default=0.5, description="Delay before the first retry (seconds)"
    )
    backoff_multiplier: float = Field(
        default=2.0, description="Exponential backoff factor between retries"
    )
    max_delay: float = Field(
        default=30.0, description="Upper bound for computed retry delays (seconds)"
    )

    # --- Auth Settings ---
    access_token: str | None = Field(
        default=None, description="Static bearer token sent with every request"
    )

    # --- Debug Logging Settings ---
    debug_logging: bool = Field(
        default=False, description="Emit request/response trace lines"
    )
    log_headers: bool = Field(
        default=False, description="Include redacted headers in trace lines"
    )


@lru_cache
def get_settings() -> ClientSettings:
    """
    Provides access to the client settings.

    Settings are loaded from environment variables or .env/secrets.env files.
    The instance is cached for performance.

    Returns:
        ClientSettings: The settings instance.
    """
    return ClientSettings()


class ClientConfig(BaseModel):
    """Immutable configuration of a ``RestClient``.

    Attributes:
        base_headers: Headers sent with every request; per-request headers win.
        timeout: Timeout per transport round trip, at least ``MIN_TIMEOUT``.
        retry_policy: Default retry policy.
        json_coding: Default JSON coding.
        access_token: Initial static bearer token.
        access_token_provider: Initial async token provider.
        auth_refresh: Initial auth refresh configuration.
        debug_logging: Request/response trace configuration.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base_headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = 30.0
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    json_coding: JSONCoding = Field(default_factory=JSONCoding.default)
    access_token: str | None = None
    access_token_provider: AccessTokenProvider | None = None
    auth_refresh: AuthRefresh = Field(default_factory=AuthRefresh.disabled)
    debug_logging: DebugLogging = Field(default_factory=DebugLogging.disabled)

    @field_validator("timeout")
    @classmethod
    def _clamp_timeout(cls, value: float) -> float:
        return max(MIN_TIMEOUT, value)

    @classmethod
    def standard(cls) -> Self:
        """JSON accept header, 30 second timeout and the standard retry policy."""
        return cls(
            base_headers={"Accept": "application/json"},
            timeout=30.0,
            retry_policy=RetryPolicy.standard(),
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings | None = None) -> Self:
        """Builds a config from environment-backed settings.

        Args:
            settings: Settings to use. Defaults to ``get_settings()``.
        """
        settings = settings or get_settings()
        if settings.debug_logging:
            debug = DebugLogging.headers() if settings.log_headers else DebugLogging.basic()
        else:
            debug = DebugLogging.disabled()
        return cls(
            base_headers={
                "Accept": "application/json",
                "User-Agent": settings.user_agent,
            },
            timeout=settings.request_timeout,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.base_delay,
                backoff_multiplier=settings.backoff_multiplier,
                max_delay=settings.max_delay,
            ),
            access_token=settings.access_token,
            debug_logging=debug,
        )

    def with_base_headers(self, headers: dict[str, str]) -> Self:
        return self.model_copy(update={"base_headers": dict(headers)})

    def with_base_header(self, name: str, value: str) -> Self:
        return self.model_copy(update={"base_headers": {**self.base_headers, name: value}})

    def with_timeout(self, timeout: float) -> Self:
        return self.model_copy(update={"timeout": max(MIN_TIMEOUT, timeout)})

    def with_retry_policy(self, policy: RetryPolicy) -> Self:
        return self.model_copy(update={"retry_policy": policy})

    def with_json_coding(self, coding: JSONCoding) -> Self:
        return self.model_copy(update={"json_coding": coding})

    def with_access_token(self, token: str | None) -> Self:
        return self.model_copy(update={"access_token": token})

    def with_access_token_provider(self, provider: AccessTokenProvider | None) -> Self:
        return self.model_copy(update={"access_token_provider": provider})

    def with_auth_refresh(self, auth_refresh: AuthRefresh) -> Self:
        return self.model_copy(update={"auth_refresh": auth_refresh})

    def with_debug_logging(self, debug_logging: DebugLogging) -> Self:
        return self.model_copy(update={"debug_logging": debug_logging})
