"""Credential state, token resolution and auth refresh configuration.

The client's mutable credentials (static token, token provider, refresh
configuration and the in-flight refresh episode) live in a single
``CredentialStore``. Every read and write goes through its methods, which
serialize on an ``asyncio.Lock``; transport round trips and provider calls run
outside the lock.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import AuthError, AuthRefreshError
from .log_config import logger
from .types import (
    AccessTokenProvider,
    HTTPMethod,
    RefreshTokenProvider,
    TokensRefreshedHandler,
)

if TYPE_CHECKING:
    from .request import RequestDescriptor

DEFAULT_TRIGGER_STATUS_CODES: frozenset[int] = frozenset([401])

CustomRefreshHandler = Callable[[Any], Awaitable[str | None]]
"""Async function receiving a ``RefreshContext`` and returning the new token."""


def normalize_token(token: str | None) -> str | None:
    """Returns the stripped token, or None for missing or blank tokens."""
    if token is None:
        return None
    token = token.strip()
    return token or None


def _normalize_trigger_codes(codes: Iterable[int]) -> frozenset[int]:
    valid = frozenset(code for code in codes if 100 <= code <= 599)
    return valid or DEFAULT_TRIGGER_STATUS_CODES


class AuthRefreshMode(str, Enum):
    DISABLED = "disabled"
    ENDPOINT = "endpoint"
    CUSTOM = "custom"


class AuthRefreshEndpoint(BaseModel):
    """Settings for refreshing through a token endpoint of the same API.

    Attributes:
        endpoint: Refresh path relative to the client's base URL.
        method: HTTP method of the refresh call.
        refresh_token_provider: Returns the current refresh token.
        refresh_token_field: Request JSON field carrying the refresh token.
        token_field: Response JSON field holding the new access token.
        refresh_token_response_field: Optional response JSON field holding a
            rotated refresh token.
        on_tokens_refreshed: Called with the new access token and rotated
            refresh token so the caller can persist them.
        headers: Extra headers sent with the refresh call.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    endpoint: str
    method: HTTPMethod = HTTPMethod.POST
    refresh_token_provider: RefreshTokenProvider
    refresh_token_field: str = "refreshToken"
    token_field: str = "accessToken"
    refresh_token_response_field: str | None = None
    on_tokens_refreshed: TokensRefreshedHandler | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class AuthRefresh(BaseModel):
    """Automatic auth refresh configuration (trigger status -> refresh -> retry once).

    Attributes:
        mode: Disabled, endpoint-based or custom handler.
        endpoint: Endpoint settings when ``mode`` is ``ENDPOINT``.
        custom_handler: Handler when ``mode`` is ``CUSTOM``.
        applies_to_per_request_token: Whether requests carrying an explicit
            per-request token may trigger a refresh. Off by default so one-off
            tokens stay isolated.
        trigger_status_codes: Statuses that start a refresh. Codes outside
            100-599 are dropped; an empty set falls back to ``{401}``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    mode: AuthRefreshMode = AuthRefreshMode.DISABLED
    endpoint: AuthRefreshEndpoint | None = None
    custom_handler: CustomRefreshHandler | None = None
    applies_to_per_request_token: bool = False
    trigger_status_codes: frozenset[int] = DEFAULT_TRIGGER_STATUS_CODES

    @field_validator("trigger_status_codes", mode="after")
    @classmethod
    def _valid_trigger_codes(cls, value: frozenset[int]) -> frozenset[int]:
        return _normalize_trigger_codes(value)

    @classmethod
    def disabled(cls) -> Self:
        return cls()

    @classmethod
    def for_endpoint(
        cls,
        endpoint: str,
        *,
        refresh_token_provider: RefreshTokenProvider,
        method: HTTPMethod | str = HTTPMethod.POST,
        refresh_token_field: str = "refreshToken",
        token_field: str = "accessToken",
        refresh_token_response_field: str | None = None,
        on_tokens_refreshed: TokensRefreshedHandler | None = None,
        headers: Mapping[str, str] | None = None,
        trigger_status_codes: Iterable[int] = DEFAULT_TRIGGER_STATUS_CODES,
    ) -> Self:
        """Endpoint mode: POST the refresh token as JSON and read the new one."""
        return cls(
            mode=AuthRefreshMode.ENDPOINT,
            endpoint=AuthRefreshEndpoint(
                endpoint=endpoint,
                method=HTTPMethod(method),
                refresh_token_provider=refresh_token_provider,
                refresh_token_field=refresh_token_field,
                token_field=token_field,
                refresh_token_response_field=refresh_token_response_field,
                on_tokens_refreshed=on_tokens_refreshed,
                headers=dict(headers or {}),
            ),
            trigger_status_codes=frozenset(trigger_status_codes),
        )

    @classmethod
    def custom(
        cls,
        handler: CustomRefreshHandler,
        *,
        trigger_status_codes: Iterable[int] = DEFAULT_TRIGGER_STATUS_CODES,
    ) -> Self:
        """Custom mode: ``handler`` receives a ``RefreshContext``."""
        return cls(
            mode=AuthRefreshMode.CUSTOM,
            custom_handler=handler,
            trigger_status_codes=frozenset(trigger_status_codes),
        )

    def with_applies_to_per_request_token(self, applies: bool) -> Self:
        return self.model_copy(update={"applies_to_per_request_token": applies})

    def with_trigger_status_codes(self, codes: Iterable[int]) -> Self:
        return self.model_copy(
            update={"trigger_status_codes": _normalize_trigger_codes(codes)}
        )

    @property
    def is_enabled(self) -> bool:
        if self.mode is AuthRefreshMode.ENDPOINT:
            return self.endpoint is not None
        if self.mode is AuthRefreshMode.CUSTOM:
            return self.custom_handler is not None
        return False


class CredentialSnapshot(BaseModel):
    """A consistent read of the credential state at dispatch time."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    access_token: str | None = None
    access_token_provider: AccessTokenProvider | None = None
    auth_refresh: AuthRefresh = Field(default_factory=AuthRefresh.disabled)

    @property
    def has_credential_source(self) -> bool:
        return self.access_token is not None or self.access_token_provider is not None


async def resolve_effective_token(
    descriptor: "RequestDescriptor", credentials: CredentialSnapshot
) -> str | None:
    """Resolve the bearer token for a request.

    Precedence: ``no_auth`` (no token) > per-request token > token provider >
    static token > none. Blank values count as absent at every step.

    Raises:
        AuthError: If the token provider raises.
    """
    if descriptor.no_auth:
        return None

    token = normalize_token(descriptor.auth_token)
    if token is not None:
        return token

    provider = credentials.access_token_provider
    if provider is not None:
        try:
            provided = await provider()
        except Exception as e:
            logger.error(f"Access token provider failed: {type(e).__name__}")
            raise AuthError(f"Access token provider failed: {e}", cause=e) from e
        token = normalize_token(provided)
        if token is not None:
            return token

    return credentials.access_token


class CredentialStore:
    """Owner of the client's credential state.

    Holds the static access token, the optional token provider, the auth
    refresh configuration and at most one in-flight refresh episode. Reads
    and writes are serialized by ``_lock``.

    Attributes:
        _access_token: The static bearer token, normalized.
        _access_token_provider: Async function producing tokens on demand.
        _auth_refresh: Current auth refresh configuration.
        _refresh_task: The running refresh episode, if any.
        _lock: Serializes access to the fields above.
    """

    def __init__(
        self,
        access_token: str | None = None,
        access_token_provider: AccessTokenProvider | None = None,
        auth_refresh: AuthRefresh | None = None,
    ):
        self._access_token: str | None = normalize_token(access_token)
        self._access_token_provider = access_token_provider
        self._auth_refresh: AuthRefresh = auth_refresh or AuthRefresh.disabled()
        self._refresh_task: asyncio.Task[str] | None = None
        self._lock = asyncio.Lock()

    async def snapshot(self) -> CredentialSnapshot:
        async with self._lock:
            return CredentialSnapshot(
                access_token=self._access_token,
                access_token_provider=self._access_token_provider,
                auth_refresh=self._auth_refresh,
            )

    async def access_token(self) -> str | None:
        async with self._lock:
            return self._access_token

    async def set_access_token(self, token: str | None) -> None:
        async with self._lock:
            self._access_token = normalize_token(token)
        logger.debug("Static access token updated.")

    async def set_access_token_provider(
        self, provider: AccessTokenProvider | None
    ) -> None:
        async with self._lock:
            self._access_token_provider = provider
        logger.debug(f"Access token provider {'set' if provider else 'cleared'}.")

    async def set_auth_refresh(self, auth_refresh: AuthRefresh | None) -> None:
        async with self._lock:
            self._auth_refresh = auth_refresh or AuthRefresh.disabled()
        logger.debug(f"Auth refresh mode set to {self._auth_refresh.mode.value}.")

    @property
    def refresh_in_flight(self) -> bool:
        """Whether a refresh episode is currently running."""
        return self._refresh_task is not None

    async def refresh(self, operation: Callable[[], Awaitable[str | None]]) -> str:
        """Run ``operation`` as a single-flight refresh episode.

        The first caller starts the episode; callers arriving while it runs
        await the same result instead of invoking ``operation`` again. The
        episode is discarded once it finishes, so the next call starts a new
        one. On success the new token replaces the static access token.

        Cancelling one waiter does not cancel the episode for the others.

        Args:
            operation: Performs the refresh and returns the new access token.

        Returns:
            str: The refreshed access token.

        Raises:
            AuthRefreshError: If the operation fails, returns no token or the
                episode is cancelled.
        """
        async with self._lock:
            task = self._refresh_task
            if task is None:
                logger.info("Starting auth refresh episode.")
                task = asyncio.create_task(self._run_refresh(operation))
                task.add_done_callback(self._discard_refresh_task)
                self._refresh_task = task
            else:
                logger.debug("Awaiting in-flight auth refresh episode.")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError as e:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise AuthRefreshError("Auth refresh was cancelled", cause=e) from e
            raise

    def _discard_refresh_task(self, task: "asyncio.Task[str]") -> None:
        # Also covers episodes cancelled before they started running
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self, operation: Callable[[], Awaitable[str | None]]) -> str:
        try:
            try:
                token = normalize_token(await operation())
            except AuthRefreshError:
                raise
            except Exception as e:
                logger.error(f"Auth refresh failed: {type(e).__name__}: {e}")
                raise AuthRefreshError(f"Auth refresh failed: {e}", cause=e) from e
            if token is None:
                logger.error("Auth refresh returned no access token.")
                raise AuthRefreshError("Auth refresh returned no access token")
            async with self._lock:
                self._access_token = token
            logger.info("Auth refresh episode succeeded.")
            return token
        finally:
            # No await here: this must run even when the task is cancelled
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None
