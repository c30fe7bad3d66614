"""restweave: asynchronous, typed REST client.

This package provides a request execution engine built on httpx: immutable
request descriptors, retries with backoff, bearer-token resolution, single-flight
auth refresh on unauthorized responses and configurable JSON coding.
"""

__version__ = "0.1.0"

from . import (  # noqa: E402
    auth,
    client,
    coding,
    config,
    debug_logging,
    exceptions,
    log_config,
    query,
    refresh,
    request,
    retry,
    transport,
    types,
)
from .auth import AuthRefresh, AuthRefreshEndpoint, AuthRefreshMode  # noqa: E402
from .client import RestClient  # noqa: E402
from .coding import DateStrategy, FormattedDates, JSONCoding, JSONKeys  # noqa: E402
from .config import ClientConfig, ClientSettings, get_settings  # noqa: E402
from .debug_logging import DebugLogging  # noqa: E402
from .refresh import RefreshContext  # noqa: E402
from .request import RequestDescriptor, build_path  # noqa: E402
from .retry import RetryPolicy  # noqa: E402
from .transport import (  # noqa: E402
    CallbackTransport,
    HttpxTransport,
    Transport,
    TransportRequest,
    TransportResponse,
)
from .types import (  # noqa: E402
    HTTPMethod,
    NoContent,
    RawResponse,
    Response,
    RestResult,
    ResultAPIError,
    ResultFailure,
    ResultSuccess,
)

__all__ = [
    "__version__",
    "AuthRefresh",
    "AuthRefreshEndpoint",
    "AuthRefreshMode",
    "CallbackTransport",
    "ClientConfig",
    "ClientSettings",
    "DateStrategy",
    "DebugLogging",
    "FormattedDates",
    "HTTPMethod",
    "HttpxTransport",
    "JSONCoding",
    "JSONKeys",
    "NoContent",
    "RawResponse",
    "RefreshContext",
    "RequestDescriptor",
    "Response",
    "RestClient",
    "RestResult",
    "ResultAPIError",
    "ResultFailure",
    "ResultSuccess",
    "RetryPolicy",
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "auth",
    "build_path",
    "client",
    "coding",
    "config",
    "debug_logging",
    "exceptions",
    "get_settings",
    "log_config",
    "query",
    "refresh",
    "request",
    "retry",
    "transport",
    "types",
]
