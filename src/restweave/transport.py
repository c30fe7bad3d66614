# restweave/transport.py
"""Transports perform exactly one HTTP round trip for the execution engine.

The engine owns retries, auth and decoding; a transport only sends the request
it is given and reports the answer, raising ``TransportError`` (or
``TransportTimeoutError``) when no answer arrived.
"""

import ssl
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

import certifi
import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import TransportError, TransportTimeoutError
from .log_config import logger


def as_headers(value: Any) -> Any:
    """Coerces a plain mapping or list of pairs into ``httpx.Headers``."""
    if isinstance(value, Mapping | list) and not isinstance(value, httpx.Headers):
        return httpx.Headers(value)
    return value


class TransportRequest(BaseModel):
    """One wire request as handed to a transport."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    method: str
    url: str
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    body: bytes | None = None
    timeout: float = 30.0


class TransportResponse(BaseModel):
    """The answer to one round trip.

    Attributes:
        status_code: The HTTP status code.
        headers: Response headers. Plain mappings are converted.
        body: The response body.
        final_url: The URL after redirects, if the transport knows it.
        mime_type: Media type without parameters, if known.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status_code: int
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    body: bytes = b""
    final_url: str | None = None
    mime_type: str | None = None

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        return as_headers(value)


def mime_type_of(headers: httpx.Headers) -> str | None:
    """The ``Content-Type`` media type without parameters, lowercased."""
    content_type = headers.get("Content-Type")
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


@runtime_checkable
class Transport(Protocol):
    """Capability that performs a single HTTP round trip."""

    async def send(self, request: TransportRequest) -> TransportResponse:
        """Sends ``request`` once.

        Raises:
            TransportTimeoutError: If the round trip exceeded ``request.timeout``.
            TransportError: For any other failure to obtain a response.
        """
        ...

    async def aclose(self) -> None:
        """Releases resources held by the transport."""
        ...


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``.

    Attributes:
        _http_client: The underlying httpx client.
        _should_close_client: Whether this transport created the client.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        user_agent: str | None = None,
    ):
        self._should_close_client = http_client is None
        self._http_client = http_client or self._create_default_http_client(user_agent)

    @staticmethod
    def _create_default_http_client(user_agent: str | None) -> httpx.AsyncClient:
        """Create an httpx.AsyncClient verifying TLS against certifi's bundle.

        Returns:
            httpx.AsyncClient: HTTP client following redirects.
        """
        try:
            verify_ssl: ssl.SSLContext | bool = ssl.create_default_context(
                cafile=certifi.where()
            )
            logger.debug("Using certifi SSL context.")
        except (OSError, ssl.SSLError):
            verify_ssl = True
            logger.warning(
                "certifi bundle failed to load. Using default SSL verification."
            )

        headers = {"User-Agent": user_agent} if user_agent else None
        return httpx.AsyncClient(
            verify=verify_ssl, follow_redirects=True, headers=headers
        )

    async def send(self, request: TransportRequest) -> TransportResponse:
        try:
            response = await self._http_client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=request.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            headers=response.headers,
            body=response.content,
            final_url=str(response.url),
            mime_type=mime_type_of(response.headers),
        )

    async def aclose(self) -> None:
        if self._should_close_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug("HttpxTransport closed its HTTP client.")


TransportHandler = Callable[[TransportRequest], Awaitable[TransportResponse]]


class CallbackTransport:
    """Transport answering every request with an async handler.

    Handy for tests and previews: the handler may return canned responses,
    raise ``TransportError`` or record what it received. Every request is also
    kept in ``requests``.
    """

    def __init__(self, handler: TransportHandler):
        self._handler = handler
        self.requests: list[TransportRequest] = []

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        return await self._handler(request)

    async def aclose(self) -> None:
        return None
