# restweave/debug_logging.py
"""Caller-facing request/response trace.

``DebugLogging`` describes an optional side channel that receives one
human-readable line per outgoing request, incoming response and transport
failure. It does not influence request execution. Sensitive header values are
replaced with ``REDACTED`` (``"<redacted>"``) before they reach the handler.
"""

from collections.abc import Iterable, Mapping
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from .log_config import logger
from .types import LogHandler

REDACTED = "<redacted>"

DEFAULT_REDACTED_HEADER_NAMES: frozenset[str] = frozenset(
    [
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "api-key",
        "x-auth-token",
        "x-access-token",
    ]
)

_SENSITIVE_FRAGMENTS = ("authorization", "token", "secret")


def _log_to_loguru(line: str) -> None:
    logger.info(line)


def is_sensitive_header(name: str, denylist: Iterable[str]) -> bool:
    """Whether a header value must be hidden from debug output."""
    lowered = name.lower()
    if lowered in {item.lower() for item in denylist}:
        return True
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def redact_headers(
    headers: Mapping[str, str],
    denylist: Iterable[str] = DEFAULT_REDACTED_HEADER_NAMES,
) -> list[tuple[str, str]]:
    """Returns the headers sorted by name with sensitive values redacted."""
    denylist = frozenset(denylist)
    return [
        (name, REDACTED if is_sensitive_header(name, denylist) else value)
        for name, value in sorted(headers.items(), key=lambda item: item[0].lower())
    ]


class DebugLogging(BaseModel):
    """Configuration of the debug logging side channel.

    Attributes:
        enabled: Whether lines are emitted at all.
        include_headers: Whether header lines follow each summary line.
        redacted_header_names: Header names whose values are always hidden.
        handler: Receives each line. Defaults to loguru at INFO level.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    enabled: bool = False
    include_headers: bool = False
    redacted_header_names: frozenset[str] = DEFAULT_REDACTED_HEADER_NAMES
    handler: LogHandler = Field(default=_log_to_loguru)

    @classmethod
    def disabled(cls) -> Self:
        return cls()

    @classmethod
    def basic(cls, handler: LogHandler | None = None) -> Self:
        """Summary lines only."""
        return cls(enabled=True, handler=handler or _log_to_loguru)

    @classmethod
    def headers(cls, handler: LogHandler | None = None) -> Self:
        """Summary lines followed by redacted headers."""
        return cls(enabled=True, include_headers=True, handler=handler or _log_to_loguru)

    def with_handler(self, handler: LogHandler) -> Self:
        return self.model_copy(update={"handler": handler})

    def with_redacted_header_names(self, names: Iterable[str]) -> Self:
        return self.model_copy(
            update={"redacted_header_names": frozenset(n.lower() for n in names)}
        )

    def log_request(self, method: str, url: str, headers: Mapping[str, str]) -> None:
        if not self.enabled:
            return
        self._emit(f"--> {method} {url}", headers)

    def log_response(
        self,
        method: str,
        url: str,
        status_code: int,
        elapsed: float,
        headers: Mapping[str, str],
    ) -> None:
        if not self.enabled:
            return
        millis = int(round(elapsed * 1000))
        self._emit(f"<-- {status_code} {method} {url} ({millis} ms)", headers)

    def log_failure(self, method: str, url: str, error: BaseException) -> None:
        if not self.enabled:
            return
        self._emit(f"<-- FAILED {method} {url}: {error}", None)

    def _emit(self, summary: str, headers: Mapping[str, str] | None) -> None:
        self.handler(summary)
        if not self.include_headers or not headers:
            return
        for name, value in redact_headers(headers, self.redacted_header_names):
            self.handler(f"    {name}: {value}")
