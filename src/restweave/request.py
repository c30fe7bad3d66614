# restweave/request.py
"""Immutable description of one logical request.

A ``RequestDescriptor`` holds everything the execution engine needs to send a
request: path, method, headers, query parameters, body and the per-request
overrides for auth, retries and JSON coding. Every ``with_*`` method returns a
modified copy, so a descriptor can be shared between concurrent calls.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Self
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .coding import JSONCoding, JSONEncoder
from .query import encode_query
from .retry import RetryPolicy
from .transport import as_headers
from .types import HTTPMethod, RefreshTokenProvider

PathSegment = str | int | float | bool | UUID | Decimal
"""Values accepted as a single path segment."""


def _segment_text(segment: PathSegment) -> str:
    if isinstance(segment, bool):
        return "true" if segment else "false"
    return str(segment)


def build_path(*segments: PathSegment) -> str:
    """Join path segments with single slashes.

    Leading and trailing slashes of each segment are stripped and empty
    segments are dropped, so ``build_path("v1/", "/sessions/", "abc123")``
    is ``"v1/sessions/abc123"``.
    """
    parts = (_segment_text(segment).strip("/") for segment in segments)
    return "/".join(part for part in parts if part)


class RequestDescriptor(BaseModel):
    """Value description of one request before execution.

    Attributes:
        path: Path relative to the client's base URL.
        method: The HTTP method.
        headers: Per-request headers; they override the client's base headers.
        params: Query parameters.
        body: Raw request body.
        auth_token: Explicit bearer token; wins over every other token source.
        retry_policy: Overrides the client's default retry policy.
        json_coding: Overrides the client's default JSON coding.
        no_auth: Send no Authorization header at all.
        auto_refresh: Whether a trigger status may start an auth refresh.
        refresh_token_provider: Overrides the endpoint refresh token provider.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: str = ""
    method: HTTPMethod = HTTPMethod.GET
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    params: dict[str, str] = Field(default_factory=dict)
    body: bytes | None = None
    auth_token: str | None = None
    retry_policy: RetryPolicy | None = None
    json_coding: JSONCoding | None = None
    no_auth: bool = False
    auto_refresh: bool = True
    refresh_token_provider: RefreshTokenProvider | None = None

    @field_validator("headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> Any:
        return as_headers(value)

    @classmethod
    def for_path(
        cls, *segments: PathSegment, method: HTTPMethod | str = HTTPMethod.GET
    ) -> Self:
        """Creates a descriptor from path segments joined by ``build_path``."""
        return cls(path=build_path(*segments), method=HTTPMethod(method))

    def with_method(self, method: HTTPMethod | str) -> Self:
        return self.model_copy(update={"method": HTTPMethod(method)})

    def with_header(self, name: str, value: str) -> Self:
        headers = httpx.Headers(self.headers)
        headers[name] = value
        return self.model_copy(update={"headers": headers})

    def with_headers(self, values: Mapping[str, str]) -> Self:
        headers = httpx.Headers(self.headers)
        for name, value in values.items():
            headers[name] = value
        return self.model_copy(update={"headers": headers})

    def with_param(self, key: str, value: str) -> Self:
        return self.model_copy(update={"params": {**self.params, key: value}})

    def with_params(self, values: Mapping[str, str]) -> Self:
        return self.model_copy(update={"params": {**self.params, **values}})

    def with_query(self, query: Any, encoder: JSONEncoder | None = None) -> Self:
        """Adds the flattened fields of a query model as parameters.

        Raises:
            InvalidQueryParametersError: If the model cannot be flattened.
        """
        if encoder is None:
            encoder = (self.json_coding or JSONCoding.default()).make_encoder()
        return self.with_params(encode_query(query, encoder))

    def with_body(self, body: bytes, content_type: str | None = None) -> Self:
        copy = self.model_copy(update={"body": body})
        if content_type and "Content-Type" not in self.headers:
            copy = copy.with_header("Content-Type", content_type)
        return copy

    def with_json_body(self, value: Any, coding: JSONCoding | None = None) -> Self:
        """Encodes ``value`` as the JSON body.

        ``Content-Type: application/json`` is added unless already set.

        Raises:
            TypeError: If ``value`` has no JSON representation.
        """
        coding = coding or self.json_coding or JSONCoding.default()
        return self.with_body(
            coding.make_encoder().encode(value), content_type="application/json"
        )

    def with_auth_token(self, token: str | None) -> Self:
        return self.model_copy(update={"auth_token": token})

    def without_auth(self) -> Self:
        return self.model_copy(update={"no_auth": True})

    def with_retry_policy(self, policy: RetryPolicy | None) -> Self:
        return self.model_copy(update={"retry_policy": policy})

    def with_json_coding(self, coding: JSONCoding | None) -> Self:
        return self.model_copy(update={"json_coding": coding})

    def with_auto_refresh(self, enabled: bool) -> Self:
        return self.model_copy(update={"auto_refresh": enabled})

    def with_refresh_token_provider(
        self, provider: RefreshTokenProvider | None
    ) -> Self:
        return self.model_copy(update={"refresh_token_provider": provider})
