# restweave/refresh.py
"""Auth refresh operations and the restricted context handed to custom handlers.

``AuthRefreshCoordinator`` turns an ``AuthRefresh`` configuration into the
refresh operation and runs it as a single-flight episode through the client's
``CredentialStore``. All HTTP calls made while refreshing go through the
client's bypass path: no Authorization header is injected and a 401 never
starts another refresh.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from .auth import (
    AuthRefresh,
    AuthRefreshEndpoint,
    AuthRefreshMode,
    CredentialStore,
    normalize_token,
)
from .coding import JSONCoding, KeyEncodingStrategy
from .exceptions import AuthRefreshError, DecodingError, EmptyResponseBodyError, HTTPError
from .log_config import logger
from .request import RequestDescriptor
from .types import HTTPMethod, NoContent, RawResponse, Response, _type_name

T = TypeVar("T")

BypassExecutor = Callable[[RequestDescriptor], Awaitable[RawResponse]]
"""Sends a request without auth injection or refresh triggering."""


class RefreshContext:
    """Request capabilities available to a custom refresh handler.

    Requests issued here bypass auth injection and refresh triggering, so a
    handler can call the API's token endpoint without recursing into another
    refresh. The context exposes nothing else of the client.
    """

    def __init__(self, json_coding: JSONCoding, perform_raw: BypassExecutor):
        self._json_coding = json_coding
        self._perform_raw = perform_raw

    @property
    def json_coding(self) -> JSONCoding:
        return self._json_coding

    async def execute_raw(
        self, descriptor: RequestDescriptor, *, allow_http_error: bool = False
    ) -> RawResponse:
        """Sends ``descriptor`` through the bypass path.

        Raises:
            HTTPError: For a non-2xx response unless ``allow_http_error`` is set.
            NetworkError: If the transport fails.
        """
        raw = await self._perform_raw(descriptor)
        if not allow_http_error and not raw.is_success:
            raise HTTPError(raw)
        return raw

    async def post_raw(
        self,
        path: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
        allow_http_error: bool = False,
    ) -> RawResponse:
        """POSTs ``body`` as JSON and returns the undecoded response."""
        descriptor = (
            RequestDescriptor(path=path, method=HTTPMethod.POST)
            .with_headers(headers or {})
            .with_json_body(body, coding=self._json_coding)
        )
        return await self.execute_raw(descriptor, allow_http_error=allow_http_error)

    async def post_response(
        self,
        path: str,
        body: Any,
        response_model: type[T],
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Response[T]:
        """POSTs ``body`` as JSON and decodes a non-empty response body.

        Raises:
            HTTPError: For a non-2xx response.
            DecodingError: If the body does not decode into ``response_model``.
        """
        raw = await self.post_raw(path, body, headers=headers)
        if not raw.body:
            return Response(raw=raw, data=None)
        return Response(raw=raw, data=raw.decode(response_model, self._json_coding))

    async def post(
        self,
        path: str,
        body: Any,
        response_model: type[T],
        *,
        headers: Mapping[str, str] | None = None,
    ) -> T:
        """Like ``post_response`` but returns the decoded value.

        Raises:
            EmptyResponseBodyError: If the body is empty and ``response_model``
                is not ``NoContent``.
        """
        response = await self.post_response(
            path, body, response_model, headers=headers
        )
        if response.data is not None:
            return response.data
        if response_model is NoContent:
            return NoContent()  # type: ignore[return-value]
        raise EmptyResponseBodyError(_type_name(response_model), response=response.raw)


class AuthRefreshCoordinator:
    """Runs refresh operations as single-flight episodes.

    Attributes:
        _store: The credential store owning the in-flight episode.
        _perform_raw: The client's bypass executor.
        _json_coding: Coding used for refresh request and response bodies.
    """

    def __init__(
        self,
        store: CredentialStore,
        perform_raw: BypassExecutor,
        json_coding: JSONCoding,
    ):
        self._store = store
        self._perform_raw = perform_raw
        self._json_coding = json_coding

    async def refresh(
        self, auth_refresh: AuthRefresh, descriptor: RequestDescriptor
    ) -> str:
        """Obtains a new access token, joining an episode already in flight.

        Args:
            auth_refresh: The refresh configuration read at trigger time.
            descriptor: The request that triggered the refresh; its refresh
                token provider override is honoured by the episode it starts.

        Returns:
            str: The new access token.

        Raises:
            AuthRefreshError: If the refresh fails or is not configured.
        """

        async def operation() -> str | None:
            return await self._perform(auth_refresh, descriptor)

        return await self._store.refresh(operation)

    async def _perform(
        self, auth_refresh: AuthRefresh, descriptor: RequestDescriptor
    ) -> str | None:
        context = RefreshContext(self._json_coding, self._perform_raw)
        if auth_refresh.mode is AuthRefreshMode.CUSTOM and auth_refresh.custom_handler:
            logger.debug("Running custom auth refresh handler.")
            return await auth_refresh.custom_handler(context)
        if auth_refresh.mode is AuthRefreshMode.ENDPOINT and auth_refresh.endpoint:
            return await self._refresh_via_endpoint(
                auth_refresh.endpoint, descriptor, context
            )
        raise AuthRefreshError("Auth refresh is not configured")

    async def _refresh_via_endpoint(
        self,
        endpoint: AuthRefreshEndpoint,
        descriptor: RequestDescriptor,
        context: RefreshContext,
    ) -> str:
        provider = descriptor.refresh_token_provider or endpoint.refresh_token_provider
        refresh_token = normalize_token(await provider())
        if refresh_token is None:
            raise AuthRefreshError("No refresh token available")

        # Field names are configured exactly as the server expects them
        coding = self._json_coding.with_key_encoding(
            KeyEncodingStrategy.USE_DEFAULT_KEYS
        )
        request = (
            RequestDescriptor(path=endpoint.endpoint, method=endpoint.method)
            .with_headers(endpoint.headers)
            .with_json_body({endpoint.refresh_token_field: refresh_token}, coding=coding)
        )
        logger.debug(f"Requesting new access token from {endpoint.endpoint}")
        raw = await context.execute_raw(request)

        payload = raw.json_object()
        if not isinstance(payload, dict):
            raise DecodingError(
                "Refresh response is not a JSON object", response=raw
            )
        access_token = payload.get(endpoint.token_field)
        if not isinstance(access_token, str) or normalize_token(access_token) is None:
            raise AuthRefreshError(
                f"Refresh response has no '{endpoint.token_field}' value"
            )

        rotated: str | None = None
        if endpoint.refresh_token_response_field:
            value = payload.get(endpoint.refresh_token_response_field)
            rotated = normalize_token(value) if isinstance(value, str) else None

        if endpoint.on_tokens_refreshed is not None:
            await endpoint.on_tokens_refreshed(access_token.strip(), rotated)
        return access_token
