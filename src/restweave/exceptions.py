"""Custom exception classes for the restweave library."""

from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from .types import RawResponse


class RestClientError(Exception):
    """Base exception class for all restweave errors."""

    def __init__(
        self,
        message: str,
        *,
        response: "RawResponse | None" = None,
        url: str | None = None,
    ):
        """Initializes the base exception.

        Args:
            message: The error message.
            response: Optional RawResponse associated with the error.
            url: Optional URL of the request that failed.
        """
        super().__init__(message)
        self.message = message
        self.response = response
        self.url = url

    def __str__(self) -> str:
        if self.response is not None:
            url_info = self.response.final_url or self.url or "N/A"
            return (
                f"{self.message} (Status: {self.response.status_code}, URL: {url_info})"
            )
        if self.url:
            return f"{self.message} (URL: {self.url})"
        return self.message


class ConfigurationError(RestClientError):
    """Represents an error in the client or request configuration.

    Configuration errors are surfaced immediately and never retried.
    """

    def __init__(self, message: str, *, url: str | None = None):
        super().__init__(message, response=None, url=url)


class InvalidBaseURLError(ConfigurationError):
    """Raised when the base URL does not parse as an absolute http(s) URL."""

    def __init__(self, base_url: str):
        super().__init__(f"Invalid base URL: {base_url!r}")
        self.base_url = base_url


class InvalidURLError(ConfigurationError):
    """Raised when the final request URL cannot be built from its components."""


class InvalidQueryParametersError(ConfigurationError):
    """Raised when a query model cannot be flattened into string parameters."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid query parameters: {reason}")
        self.reason = reason


class NetworkError(RestClientError):
    """Represents a transport-level failure (connection refused, DNS, reset...).

    The original transport exception is available as ``cause``.
    """

    def __init__(
        self, message: str, *, cause: BaseException | None = None, url: str | None = None
    ):
        super().__init__(message, response=None, url=url)
        self.cause = cause


class TimeoutError(NetworkError):
    """Represents a single transport round trip exceeding the client timeout."""


class DecodingError(RestClientError):
    """Raised when a response body cannot be decoded into the requested type.

    Decoding errors are never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        response: "RawResponse | None" = None,
    ):
        super().__init__(message, response=response)
        self.cause = cause


class HTTPError(RestClientError):
    """Raised for a non-2xx response when HTTP errors are not allowed.

    Carries the full status, headers and body so callers can inspect the
    server's answer.
    """

    SNIPPET_LENGTH = 512

    def __init__(self, response: "RawResponse"):
        super().__init__(
            f"Request failed with status {response.status_code}", response=response
        )
        self.status_code: int = response.status_code
        self.headers: httpx.Headers = response.headers
        self.body: bytes = response.body

    @property
    def body_snippet(self) -> str:
        """The start of the response body, decoded leniently as UTF-8."""
        return self.body.decode("utf-8", errors="replace")[: self.SNIPPET_LENGTH]


class EmptyResponseBodyError(RestClientError):
    """Raised when a value was expected but the response body was empty."""

    def __init__(self, expected_type: str, *, response: "RawResponse | None" = None):
        super().__init__(
            f"Empty response body, expected {expected_type}", response=response
        )
        self.expected_type = expected_type


class RetryLimitReachedError(RestClientError):
    """Raised when all attempts were used without recording a concrete error."""


class AuthError(RestClientError):
    """Raised when an access token cannot be obtained, e.g. a provider fails."""

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class AuthRefreshError(AuthError):
    """Raised when an auth refresh episode fails.

    Every caller awaiting the same refresh episode receives this error. It is
    distinct from an ``HTTPError`` with status 401, which means the refresh
    worked but the new token was rejected too.
    """


class TransportError(Exception):
    """Raised by Transport implementations for a failed round trip."""


class TransportTimeoutError(TransportError):
    """Raised by Transport implementations when a round trip timed out."""
