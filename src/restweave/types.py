# restweave/types.py
"""Core type definitions and data structures for restweave.

This module defines the response containers returned by the execution engine,
the three-way result type of the result-style API, and the type aliases for
the asynchronous callables a client can be configured with.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import DecodingError, EmptyResponseBodyError, RestClientError
from .transport import as_headers

if TYPE_CHECKING:
    from .coding import JSONCoding

T = TypeVar("T")
E = TypeVar("E")


class HTTPMethod(str, Enum):
    """HTTP methods supported by the client."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def _missing_(cls, value: object) -> "HTTPMethod | None":
        # Accept lowercase names such as "get"
        if isinstance(value, str):
            return cls.__members__.get(value.upper())
        return None


class NoContent(BaseModel):
    """Marker type for requests that expect no response payload."""


class RawResponse(BaseModel):
    """An undecoded HTTP response as seen by the execution engine.

    Attributes:
        status_code: The HTTP status code.
        body: The raw response body.
        headers: Case-insensitive response headers.
        elapsed: Seconds spent in the transport round trip.
        final_url: The URL the transport ended up at, after redirects.
        mime_type: The media type from ``Content-Type`` without parameters.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status_code: int
    body: bytes = b""
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    elapsed: float | None = None
    final_url: str | None = None
    mime_type: str | None = None

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        return as_headers(value)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299

    @property
    def text(self) -> str:
        """The body decoded as UTF-8, with undecodable bytes replaced."""
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> str | None:
        """Returns the first value for a header name, case-insensitively."""
        return self.headers.get(name)

    def json_object(self) -> Any:
        """Parses the body as untyped JSON.

        Raises:
            EmptyResponseBodyError: If the body is empty.
            DecodingError: If the body is not valid JSON.
        """
        if not self.body:
            raise EmptyResponseBodyError("JSON", response=self)
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise DecodingError(
                f"Response body is not valid JSON: {e}", cause=e, response=self
            ) from e

    def decode(self, type_: type[T], coding: "JSONCoding | None" = None) -> T:
        """Decodes the body into ``type_`` using the given JSON coding.

        Raises:
            EmptyResponseBodyError: If the body is empty.
            DecodingError: If the body does not match ``type_``.
        """
        from .coding import JSONCoding

        if not self.body:
            raise EmptyResponseBodyError(_type_name(type_), response=self)
        return (coding or JSONCoding()).make_decoder().decode(self.body, type_)

    def pretty_printed_json(self) -> str:
        """Returns the body re-serialized as indented JSON with sorted keys."""
        return json.dumps(
            self.json_object(), indent=2, sort_keys=True, ensure_ascii=False
        )


@dataclass(frozen=True)
class Response(Generic[T]):
    """A response whose body was decoded into ``T``.

    ``data`` is None when the body was empty.
    """

    raw: RawResponse
    data: T | None = None

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers


@dataclass(frozen=True)
class ResultSuccess(Generic[T]):
    """2xx response with an optionally decoded payload."""

    response: Response[T]


@dataclass(frozen=True)
class ResultAPIError(Generic[E]):
    """Non-2xx response with the decoded API error payload, if it decoded."""

    decoded: E | None
    response: RawResponse


@dataclass(frozen=True)
class ResultFailure:
    """Transport, URL or decoding failure."""

    error: RestClientError


RestResult = ResultSuccess[T] | ResultAPIError[E] | ResultFailure
"""Three-way outcome of ``RestClient.execute_result``."""

AccessTokenProvider = Callable[[], Awaitable[str | None]]
"""Zero-argument async function returning the current access token, if any."""

RefreshTokenProvider = Callable[[], Awaitable[str | None]]
"""Zero-argument async function returning the current refresh token, if any."""

TokensRefreshedHandler = Callable[[str, str | None], Awaitable[None]]
"""Async callback receiving the new access token and rotated refresh token."""

LogHandler = Callable[[str], None]
"""Callback receiving one human-readable debug logging line."""


def _type_name(type_: Any) -> str:
    return getattr(type_, "__name__", None) or repr(type_)
