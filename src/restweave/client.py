"""Asynchronous REST client and its request execution engine.

This module provides the RestClient class, which turns a ``RequestDescriptor``
into a ``RawResponse``: it builds the URL, resolves the bearer token, sends the
request through a ``Transport``, retries transient failures with tenacity and
recovers from unauthorized responses with a single-flight auth refresh.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Self, TypeVar

import httpx
import tenacity
from tenacity import AsyncRetrying, stop_after_attempt

from .auth import AuthRefresh, CredentialSnapshot, CredentialStore, normalize_token
from .auth import resolve_effective_token
from .coding import JSONCoding
from .config import ClientConfig
from .exceptions import (
    EmptyResponseBodyError,
    HTTPError,
    InvalidBaseURLError,
    InvalidURLError,
    NetworkError,
    RestClientError,
    RetryLimitReachedError,
    TimeoutError,
    TransportError,
    TransportTimeoutError,
)
from .log_config import logger
from .refresh import AuthRefreshCoordinator
from .request import RequestDescriptor
from .retry import RetryPolicy
from .transport import HttpxTransport, Transport, TransportRequest, mime_type_of
from .types import (
    AccessTokenProvider,
    HTTPMethod,
    NoContent,
    RawResponse,
    Response,
    RestResult,
    ResultAPIError,
    ResultFailure,
    ResultSuccess,
    _type_name,
)

T = TypeVar("T")
E = TypeVar("E")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class _CallState:
    """Mutable state of one logical call, shared by all of its attempts."""

    refreshed: bool = False
    auth_override: str | None = None


class RestClient:
    """Asynchronous REST client with retries, bearer auth and auth refresh.

    Every public entry point funnels into ``execute_raw``, so retry, auth and
    error semantics are the same for descriptors and for the verb helpers.

    Key features:
    - Retries with exponential backoff and ``Retry-After`` support (tenacity)
    - Token precedence: per-request token > token provider > static token
    - Single-flight auth refresh on 401 (or configured statuses), one
      refresh-retry per call that does not consume the retry budget
    - Pluggable JSON coding and a never-raising result-style API

    Attributes:
        _base_url: The validated base URL without trailing slash.
        _config: Immutable client configuration.
        _credentials: Owner of the mutable credential state.
        _refresh: Runs auth refresh episodes.
        _transport: Performs single round trips.
        _should_close_transport: Whether this client created the transport.
        _sleep: Awaitable used for retry delays.
    """

    def __init__(
        self,
        base_url: str,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize the RestClient.

        Args:
            base_url: Absolute http(s) URL every request path is appended to.
            config: Client configuration. Defaults to ``ClientConfig.standard()``.
            transport: Transport performing the round trips. Defaults to an
                ``HttpxTransport`` owned by this client.
            sleep: Awaitable used between retries.

        Raises:
            InvalidBaseURLError: If ``base_url`` is not an absolute http(s) URL.
        """
        self._base_url: str = self._validate_base_url(base_url)
        self._config: ClientConfig = config or ClientConfig.standard()
        self._credentials = CredentialStore(
            access_token=self._config.access_token,
            access_token_provider=self._config.access_token_provider,
            auth_refresh=self._config.auth_refresh,
        )
        self._should_close_transport = transport is None
        self._transport: Transport = transport or HttpxTransport()
        self._sleep = sleep
        self._refresh = AuthRefreshCoordinator(
            self._credentials, self._execute_bypass, self._config.json_coding
        )
        logger.debug(f"RestClient initialized for {self._base_url}.")

    @staticmethod
    def _validate_base_url(base_url: str) -> str:
        try:
            url = httpx.URL(base_url)
        except httpx.InvalidURL as e:
            raise InvalidBaseURLError(base_url) from e
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidBaseURLError(base_url)
        return base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def config(self) -> ClientConfig:
        return self._config

    # --- Credential state ---

    async def access_token(self) -> str | None:
        """The current static access token, including refreshed ones."""
        return await self._credentials.access_token()

    async def set_access_token(self, token: str | None) -> None:
        await self._credentials.set_access_token(token)

    async def set_access_token_provider(
        self, provider: AccessTokenProvider | None
    ) -> None:
        await self._credentials.set_access_token_provider(provider)

    async def set_auth_refresh(self, auth_refresh: AuthRefresh | None) -> None:
        await self._credentials.set_auth_refresh(auth_refresh)

    # --- Request building ---

    def _build_url(self, descriptor: RequestDescriptor) -> httpx.URL:
        path = descriptor.path.lstrip("/")
        target = f"{self._base_url}/{path}" if path else self._base_url
        try:
            url = httpx.URL(target)
            if descriptor.params:
                url = url.copy_merge_params(descriptor.params)
        except httpx.InvalidURL as e:
            raise InvalidURLError(f"Cannot build request URL: {e}", url=target) from e
        return url

    def _merge_headers(
        self, descriptor: RequestDescriptor, token: str | None
    ) -> httpx.Headers:
        headers = httpx.Headers(self._config.base_headers)
        for name, value in descriptor.headers.items():
            headers[name] = value
        if descriptor.no_auth:
            headers.pop("Authorization", None)
        elif token is not None:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # --- Single round trip ---

    async def _dispatch(
        self, descriptor: RequestDescriptor, url: httpx.URL, token: str | None
    ) -> RawResponse:
        """Send one request through the transport and wrap the answer.

        Raises:
            TimeoutError: If the round trip timed out.
            NetworkError: For any other transport failure.
        """
        method = descriptor.method.value
        request = TransportRequest(
            method=method,
            url=str(url),
            headers=self._merge_headers(descriptor, token),
            body=descriptor.body,
            timeout=self._config.timeout,
        )
        debug = self._config.debug_logging
        debug.log_request(method, request.url, request.headers)
        logger.debug(f"Sending request: {method} {request.url}")

        start = time.perf_counter()
        try:
            response = await self._transport.send(request)
        except TransportTimeoutError as e:
            debug.log_failure(method, request.url, e)
            logger.error(f"Request timed out: {method} {request.url}")
            raise TimeoutError("Request timed out", cause=e, url=request.url) from e
        except (TransportError, OSError) as e:
            debug.log_failure(method, request.url, e)
            logger.error(f"Network error occurred for {request.url}: {e}")
            raise NetworkError(f"Network error: {e}", cause=e, url=request.url) from e
        elapsed = time.perf_counter() - start

        raw = RawResponse(
            status_code=response.status_code,
            body=response.body,
            headers=response.headers,
            elapsed=elapsed,
            final_url=response.final_url or request.url,
            mime_type=response.mime_type or mime_type_of(response.headers),
        )
        debug.log_response(
            method, request.url, raw.status_code, elapsed, raw.headers
        )
        logger.debug(f"Received response: {raw.status_code} for {method} {request.url}")
        return raw

    # --- Auth refresh ---

    @staticmethod
    def _refresh_applies(
        raw: RawResponse,
        descriptor: RequestDescriptor,
        credentials: CredentialSnapshot,
        state: _CallState,
    ) -> bool:
        auth_refresh = credentials.auth_refresh
        if raw.status_code not in auth_refresh.trigger_status_codes:
            return False
        if not auth_refresh.is_enabled or state.refreshed:
            return False
        if not descriptor.auto_refresh or descriptor.no_auth:
            return False
        has_request_token = normalize_token(descriptor.auth_token) is not None
        if has_request_token and not auth_refresh.applies_to_per_request_token:
            logger.debug("Not refreshing: request carries its own token.")
            return False
        return credentials.has_credential_source or has_request_token

    async def _attempt(
        self,
        descriptor: RequestDescriptor,
        url: httpx.URL,
        state: _CallState,
        policy: RetryPolicy,
        allow_http_error: bool,
        bypass: bool,
    ) -> RawResponse:
        """One retry attempt, including at most one refresh-retry."""
        if bypass:
            raw = await self._dispatch(descriptor, url, None)
        else:
            credentials = await self._credentials.snapshot()
            token = state.auth_override or await resolve_effective_token(
                descriptor, credentials
            )
            raw = await self._dispatch(descriptor, url, token)

            if self._refresh_applies(raw, descriptor, credentials, state):
                state.refreshed = True
                logger.info(
                    f"Received {raw.status_code} for {descriptor.method.value} "
                    f"{url}; refreshing access token."
                )
                new_token = await self._refresh.refresh(
                    credentials.auth_refresh, descriptor
                )
                if new_token != token:
                    state.auth_override = new_token
                    raw = await self._dispatch(descriptor, url, new_token)
                else:
                    logger.warning("Refresh returned the rejected token; not retrying.")

        if not raw.is_success and (
            not allow_http_error or raw.status_code in policy.retryable_status_codes
        ):
            raise HTTPError(raw)
        return raw

    # --- Retry plumbing ---

    @staticmethod
    def _retry_predicate(
        policy: RetryPolicy,
    ) -> Callable[[tenacity.RetryCallState], bool]:
        def should_retry(retry_state: tenacity.RetryCallState) -> bool:
            outcome = retry_state.outcome
            if outcome is None or not outcome.failed:
                return False
            exc = outcome.exception()
            if exc is None or not policy.should_retry(exc, retry_state.attempt_number):
                return False
            logger.warning(
                f"Retrying after attempt {retry_state.attempt_number} due to "
                f"{type(exc).__name__}"
            )
            return True

        return should_retry

    @staticmethod
    def _wait_strategy(
        policy: RetryPolicy,
    ) -> Callable[[tenacity.RetryCallState], float]:
        def wait(retry_state: tenacity.RetryCallState) -> float:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            headers = exc.headers if isinstance(exc, HTTPError) else None
            return policy.delay_for(retry_state.attempt_number, headers)

        return wait

    async def _before_retry_sleep(self, retry_state: tenacity.RetryCallState) -> None:
        """Log details before tenacity sleeps between retries."""
        if not retry_state.outcome:
            return
        exc = retry_state.outcome.exception()
        sleep_time = (
            getattr(retry_state.next_action, "sleep", 0)
            if retry_state.next_action
            else 0
        )
        logger.info(
            f"Retrying request in {sleep_time:.2f} seconds after "
            f"{retry_state.attempt_number} attempt(s) due to: {type(exc).__name__} - {exc}"
        )

    async def _run(
        self,
        descriptor: RequestDescriptor,
        *,
        allow_http_error: bool,
        bypass: bool,
    ) -> RawResponse:
        policy = descriptor.retry_policy or self._config.retry_policy
        url = self._build_url(descriptor)
        state = _CallState()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=self._wait_strategy(policy),
            retry=self._retry_predicate(policy),
            sleep=self._sleep,
            before_sleep=self._before_retry_sleep,
            reraise=False,
        )
        try:
            return await retrying(
                self._attempt, descriptor, url, state, policy, allow_http_error, bypass
            )
        except HTTPError as e:
            if allow_http_error and e.response is not None:
                return e.response
            raise
        except tenacity.RetryError as e:
            last = e.last_attempt
            error = last.exception() if last.failed else None
            if isinstance(error, HTTPError) and allow_http_error and error.response:
                return error.response
            if isinstance(error, Exception):
                raise error from None
            raise RetryLimitReachedError(
                f"Gave up after {policy.max_attempts} attempt(s)", url=str(url)
            ) from e

    async def _execute_bypass(self, descriptor: RequestDescriptor) -> RawResponse:
        """Send without auth injection or refresh triggering; HTTP errors are data."""
        return await self._run(descriptor, allow_http_error=True, bypass=True)

    # --- Public execution API ---

    async def execute_raw(
        self, descriptor: RequestDescriptor, *, allow_http_error: bool = False
    ) -> RawResponse:
        """Execute a request and return the undecoded response.

        Args:
            descriptor: The request to send.
            allow_http_error: Return non-2xx responses instead of raising.

        Returns:
            RawResponse: The final response.

        Raises:
            InvalidURLError: If the URL cannot be built. Never retried.
            NetworkError: If the transport failed on the last attempt.
            HTTPError: For a non-2xx response unless ``allow_http_error``.
            AuthError: If the access token provider failed.
            AuthRefreshError: If a triggered auth refresh failed.
            RetryLimitReachedError: If attempts ran out without a recorded error.
        """
        return await self._run(descriptor, allow_http_error=allow_http_error, bypass=False)

    def _coding_for(self, descriptor: RequestDescriptor) -> JSONCoding:
        return descriptor.json_coding or self._config.json_coding

    def _decode(
        self, raw: RawResponse, response_model: type[T], coding: JSONCoding
    ) -> T | None:
        if not raw.body:
            return None
        if response_model is NoContent:
            return NoContent()  # type: ignore[return-value]
        return raw.decode(response_model, coding)

    async def execute(
        self, descriptor: RequestDescriptor, response_model: type[T]
    ) -> Response[T]:
        """Execute a request and decode a 2xx body into ``response_model``.

        An empty body yields ``Response.data is None``.

        Raises:
            DecodingError: If the body does not decode. Never retried.
            RestClientError: Any error ``execute_raw`` raises.
        """
        raw = await self.execute_raw(descriptor)
        data = self._decode(raw, response_model, self._coding_for(descriptor))
        return Response(raw=raw, data=data)

    async def execute_value(
        self, descriptor: RequestDescriptor, response_model: type[T]
    ) -> T:
        """Like ``execute`` but returns the decoded value itself.

        Raises:
            EmptyResponseBodyError: If the body is empty and ``response_model``
                is not ``NoContent``.
        """
        response = await self.execute(descriptor, response_model)
        if response.data is not None:
            return response.data
        if response_model is NoContent:
            return NoContent()  # type: ignore[return-value]
        raise EmptyResponseBodyError(_type_name(response_model), response=response.raw)

    async def execute_result(
        self,
        descriptor: RequestDescriptor,
        response_model: type[T],
        error_model: type[E] | None = None,
    ) -> RestResult[T, E]:
        """Execute a request and report the outcome as a value.

        Returns ``ResultSuccess`` for 2xx responses, ``ResultAPIError`` for
        other statuses (with the body decoded into ``error_model`` when
        possible) and ``ResultFailure`` for URL, transport, auth and decoding
        failures. Only cancellation propagates.
        """
        coding = self._coding_for(descriptor)
        try:
            raw = await self.execute_raw(descriptor, allow_http_error=True)
        except RestClientError as e:
            return ResultFailure(error=e)
        except Exception as e:
            logger.exception(f"Unexpected error during request execution: {e}")
            return ResultFailure(
                error=RestClientError(f"An unexpected error occurred: {e}")
            )

        if raw.is_success:
            try:
                data = self._decode(raw, response_model, coding)
            except RestClientError as e:
                return ResultFailure(error=e)
            return ResultSuccess(response=Response(raw=raw, data=data))

        decoded: E | None = None
        if error_model is not None and raw.body:
            try:
                decoded = raw.decode(error_model, coding)
            except RestClientError as e:
                logger.debug(f"Error body did not decode as {_type_name(error_model)}: {e}")
        return ResultAPIError(decoded=decoded, response=raw)

    # --- Verb helpers ---

    async def request(
        self,
        method: HTTPMethod | str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
        auth_token: str | None = None,
        no_auth: bool = False,
        response_model: type[T] | None = None,
    ) -> RawResponse | T:
        """Build a descriptor from keyword arguments and execute it.

        Args:
            method: HTTP method.
            path: Request path relative to the base URL.
            params: Query parameters.
            json: Value encoded as JSON body with the client's JSON coding.
            headers: Per-request headers.
            auth_token: Explicit bearer token for this request.
            no_auth: Send no Authorization header.
            response_model: Decode the body into this type.

        Returns:
            RawResponse | T: The decoded value when ``response_model`` is given,
                otherwise the raw response.
        """
        descriptor = RequestDescriptor(path=path, method=HTTPMethod(method))
        if headers:
            descriptor = descriptor.with_headers(headers)
        if params:
            descriptor = descriptor.with_params(params)
        if json is not None:
            descriptor = descriptor.with_json_body(json, coding=self._config.json_coding)
        if auth_token is not None:
            descriptor = descriptor.with_auth_token(auth_token)
        if no_auth:
            descriptor = descriptor.without_auth()

        if response_model is None:
            return await self.execute_raw(descriptor)
        return await self.execute_value(descriptor, response_model)

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request(HTTPMethod.GET, path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request(HTTPMethod.POST, path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request(HTTPMethod.PUT, path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request(HTTPMethod.PATCH, path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request(HTTPMethod.DELETE, path, **kwargs)

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._should_close_transport:
            await self._transport.aclose()
            logger.debug("RestClient closed its transport.")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.aclose()
