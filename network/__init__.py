"""
Hive Chain RPC - Network Layer

Multi-node JSON-RPC client with health-aware failover.
"""

from .errors import (
    HTTPStatusError,
    NodesExhaustedError,
    ResponseIdMismatchError,
    RPCConnectionError,
    RPCError,
    RPCTimeoutError,
    TransportError,
    TransportErrorKind,
    classify_error,
)
from .health import HealthTrackerConfig, NodeHealthTracker
from .rpc import Client, ClientConfig, OperationType, __version__, default_backoff
from .transport import FetchResult, RequestOptions, RetryContext, RetryingTransport

__all__ = [
    "Client",
    "ClientConfig",
    "OperationType",
    "default_backoff",
    "HealthTrackerConfig",
    "NodeHealthTracker",
    "RetryingTransport",
    "RequestOptions",
    "RetryContext",
    "FetchResult",
    "RPCError",
    "TransportError",
    "TransportErrorKind",
    "RPCConnectionError",
    "RPCTimeoutError",
    "HTTPStatusError",
    "NodesExhaustedError",
    "ResponseIdMismatchError",
    "classify_error",
    "__version__",
]
