"""Retry policy for transient request failures.

A ``RetryPolicy`` is a plain value: it decides whether a failed attempt is
worth repeating and how long to wait before the next one. The execution engine
adapts these decisions to tenacity; nothing in this module sleeps or performs
I/O.
"""

from collections.abc import Mapping
from datetime import UTC, datetime as dt
from email.utils import parsedate_to_datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import HTTPError, NetworkError
from .log_config import logger

DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    [408, 429, 500, 502, 503, 504]
)
"""Default set of HTTP status codes considered retryable."""


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header value into seconds.

    Accepts a non-negative number of seconds or an HTTP-date. Dates in the
    past yield 0.

    Args:
        value: The raw header value, if any.

    Returns:
        float | None: The delay in seconds, or None if absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if seconds >= 0:
            return seconds
        logger.warning(f"Ignoring negative Retry-After value: {value}")
        return None

    try:
        retry_dt_obj = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"Could not parse Retry-After header '{value}'")
        return None
    if retry_dt_obj.tzinfo is None or retry_dt_obj.tzinfo.utcoffset(retry_dt_obj) is None:
        retry_dt_obj = retry_dt_obj.replace(tzinfo=UTC)
    delta = retry_dt_obj - dt.now(UTC)
    return max(0.0, delta.total_seconds())


class RetryPolicy(BaseModel):
    """Retry behaviour for transient failures.

    Attempt indices are 1-based and ``max_attempts`` includes the first try,
    so ``max_attempts=1`` never retries. No jitter is applied.

    Attributes:
        max_attempts: Total attempts including the first request (>= 1).
        base_delay: Delay in seconds before the first retry (>= 0).
        backoff_multiplier: Exponential factor per retry (>= 1).
        max_delay: Cap in seconds for computed delays (>= 0).
        retryable_status_codes: HTTP status codes worth retrying.
        retry_on_network_errors: Whether transport failures are retried.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 1
    base_delay: float = 0.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_status_codes: frozenset[int] = Field(
        default=DEFAULT_RETRYABLE_STATUS_CODES
    )
    retry_on_network_errors: bool = True

    @field_validator("max_attempts")
    @classmethod
    def _clamp_attempts(cls, value: int) -> int:
        return max(1, value)

    @field_validator("base_delay", "max_delay")
    @classmethod
    def _clamp_delay(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("backoff_multiplier")
    @classmethod
    def _clamp_multiplier(cls, value: float) -> float:
        return max(1.0, value)

    @classmethod
    def none(cls) -> Self:
        """A policy that never retries."""
        return cls(max_attempts=1, base_delay=0.0)

    @classmethod
    def standard(cls) -> Self:
        """Recommended default: three attempts starting at half a second."""
        return cls(max_attempts=3, base_delay=0.5)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Decide whether the attempt that raised ``error`` should be repeated.

        Args:
            error: The error raised by attempt number ``attempt``.
            attempt: 1-based index of the attempt that failed.

        Returns:
            bool: True if another attempt is allowed and worthwhile.
        """
        if attempt >= self.max_attempts:
            return False
        if isinstance(error, NetworkError):
            return self.retry_on_network_errors
        if isinstance(error, HTTPError):
            return error.status_code in self.retryable_status_codes
        return False

    def delay_for(
        self, attempt: int, last_headers: Mapping[str, str] | None = None
    ) -> float:
        """Seconds to wait after attempt number ``attempt`` failed.

        A ``Retry-After`` header on the last response wins verbatim; otherwise
        ``min(base_delay * backoff_multiplier ** (attempt - 1), max_delay)``.
        """
        if last_headers is not None:
            retry_after = parse_retry_after(last_headers.get("Retry-After"))
            if retry_after is not None:
                return retry_after
        exponent = max(0, attempt - 1)
        return min(self.base_delay * self.backoff_multiplier**exponent, self.max_delay)
