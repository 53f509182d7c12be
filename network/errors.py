"""
Hive Chain RPC - Errors and Transport Error Classification

This module defines the exception hierarchy raised by the RPC client and the
tables that decide which transport failures may be retried on another node.
"""

import errno
import socket
import ssl
from enum import Enum
from typing import Any, Iterator, List, Optional

import requests
import urllib3


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: Optional[int], message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)


class TransportErrorKind(Enum):
    """Closed set of transport failure classes."""
    PRE_CONNECTION = "pre_connection"
    TIMEOUT = "timeout"
    CONNECTION_RESET = "connection_reset"
    TLS = "tls"
    PROTOCOL = "protocol"
    HTTP_STATUS = "http_status"
    UNRECOGNIZED = "unrecognized"

    @property
    def safe_for_broadcast(self) -> bool:
        """Request provably never reached a server."""
        return self is TransportErrorKind.PRE_CONNECTION

    @property
    def failover_eligible(self) -> bool:
        """Another node may be tried for an idempotent call."""
        return self is not TransportErrorKind.UNRECOGNIZED


class TransportError(RPCError):
    """A single network attempt against one node failed."""

    def __init__(
        self,
        message: str,
        kind: TransportErrorKind,
        code: Optional[str] = None,
        node: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(status if status is not None else -1, message)
        self.kind = kind
        self.error_code = code
        self.node = node
        self.status = status


class RPCConnectionError(TransportError):
    """Exception for RPC connection failures."""
    pass


class RPCTimeoutError(TransportError):
    """Exception for RPC timeout errors."""
    pass


class HTTPStatusError(TransportError):
    """Node answered with a non-2xx HTTP status."""
    pass


class NodesExhaustedError(RPCError):
    """Every candidate node failed for the allowed number of rounds."""

    def __init__(
        self,
        nodes: List[str],
        rounds: int,
        last_error: Optional[BaseException],
        timed_out: bool = False,
    ):
        self.nodes = list(nodes)
        self.rounds = rounds
        self.last_error = last_error
        self.timed_out = timed_out

        code = getattr(last_error, "error_code", None) or type(last_error).__name__
        reason = "timed out" if timed_out else f"tried {rounds} rounds"
        message = f"[{code}] {reason} with {','.join(self.nodes)}: {last_error}"
        super().__init__(-1, message)


class ResponseIdMismatchError(RPCError):
    """Response id differs from the request id."""

    def __init__(self, expected: Any, received: Any):
        self.expected = expected
        self.received = received
        super().__init__(-32603, f"got invalid response id: expected {expected!r}, got {received!r}")


# Codes that prove the request never left the client. Safe to retry on
# another node even for broadcasts.
PRE_CONNECTION_ERROR_CODES = frozenset({
    "ECONNREFUSED",
    "ENOTFOUND",
    "EHOSTUNREACH",
    "ENETUNREACH",
    "EAI_AGAIN",
})

# Codes that allow failover for read calls. Superset of the above.
FAILOVER_ERROR_CODES = PRE_CONNECTION_ERROR_CODES | frozenset({
    "ETIMEDOUT",
    "ESOCKETTIMEDOUT",
    "ECONNRESET",
    "ECONNABORTED",
    "EPIPE",
    "EPROTO",
    "CERT_HAS_EXPIRED",
    "ERR_TLS",
    "ERR_BAD_RESPONSE",
})

ERROR_CODE_KINDS = {
    "ECONNREFUSED": TransportErrorKind.PRE_CONNECTION,
    "ENOTFOUND": TransportErrorKind.PRE_CONNECTION,
    "EHOSTUNREACH": TransportErrorKind.PRE_CONNECTION,
    "ENETUNREACH": TransportErrorKind.PRE_CONNECTION,
    "EAI_AGAIN": TransportErrorKind.PRE_CONNECTION,
    "ETIMEDOUT": TransportErrorKind.TIMEOUT,
    "ESOCKETTIMEDOUT": TransportErrorKind.TIMEOUT,
    "ECONNRESET": TransportErrorKind.CONNECTION_RESET,
    "ECONNABORTED": TransportErrorKind.CONNECTION_RESET,
    "EPIPE": TransportErrorKind.CONNECTION_RESET,
    "EPROTO": TransportErrorKind.PROTOCOL,
    "ERR_BAD_RESPONSE": TransportErrorKind.PROTOCOL,
    "CERT_HAS_EXPIRED": TransportErrorKind.TLS,
    "ERR_TLS": TransportErrorKind.TLS,
}

_GAI_CODES = {
    socket.EAI_NONAME: "ENOTFOUND",
    socket.EAI_AGAIN: "EAI_AGAIN",
}
if hasattr(socket, "EAI_NODATA"):
    _GAI_CODES[socket.EAI_NODATA] = "ENOTFOUND"


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk an exception and everything it wraps, breadth first."""
    queue = [exc]
    seen = set()
    while queue:
        current = queue.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        linked = [current.__cause__, current.__context__, getattr(current, "reason", None)]
        linked.extend(arg for arg in getattr(current, "args", ()) if isinstance(arg, BaseException))
        queue.extend(e for e in linked if isinstance(e, BaseException))


def extract_error_code(exc: BaseException) -> Optional[str]:
    """
    Find a machine-readable error code for a failed HTTP attempt.

    Args:
        exc: Exception raised by ``requests`` (or wrapped by it)

    Returns:
        Error code such as ``ECONNREFUSED``, or None when the failure
        carries no code (e.g. a non-2xx status)
    """
    if isinstance(exc, TransportError):
        return exc.error_code

    for cause in _iter_causes(exc):
        if isinstance(cause, ssl.SSLCertVerificationError):
            if "expired" in str(cause).lower():
                return "CERT_HAS_EXPIRED"
            return "ERR_TLS"
        if isinstance(cause, ssl.SSLError):
            return "ERR_TLS"
        if isinstance(cause, socket.gaierror):
            return _GAI_CODES.get(cause.errno, "ENOTFOUND")
        if isinstance(cause, socket.timeout):
            return "ESOCKETTIMEDOUT"
        if isinstance(cause, OSError) and cause.errno in errno.errorcode:
            return errno.errorcode[cause.errno]

    # No OS-level cause; fall back to the library's own exception types.
    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return "ETIMEDOUT"
    if isinstance(exc, requests.exceptions.Timeout):
        return "ESOCKETTIMEDOUT"
    if isinstance(exc, requests.exceptions.SSLError):
        return "CERT_HAS_EXPIRED" if "expired" in str(exc).lower() else "ERR_TLS"
    for cause in _iter_causes(exc):
        if isinstance(cause, urllib3.exceptions.NameResolutionError):
            return "ENOTFOUND"
        if isinstance(cause, urllib3.exceptions.NewConnectionError):
            return "ECONNREFUSED"
        if isinstance(cause, urllib3.exceptions.ProtocolError):
            return "ECONNRESET"
    if isinstance(exc, requests.exceptions.ChunkedEncodingError):
        return "EPROTO"
    if isinstance(exc, requests.exceptions.InvalidJSONError):
        return "ERR_BAD_RESPONSE"
    if isinstance(exc, requests.exceptions.ConnectionError):
        return "ECONNRESET"

    code = getattr(exc, "code", None)
    return code if isinstance(code, str) else None


def classify_error(exc: BaseException) -> TransportErrorKind:
    """
    Map a failed attempt onto a TransportErrorKind.

    Errors without a code (HTTP status failures, undecodable bodies) are
    failover-eligible for reads. Errors with a code outside the known
    tables are UNRECOGNIZED and never retried.
    """
    if isinstance(exc, TransportError):
        return exc.kind

    code = extract_error_code(exc)
    if code is None:
        return TransportErrorKind.HTTP_STATUS
    return ERROR_CODE_KINDS.get(code, TransportErrorKind.UNRECOGNIZED)


def wrap_transport_error(exc: BaseException, node: str) -> TransportError:
    """Convert a raw exception from an attempt into a TransportError."""
    if isinstance(exc, TransportError):
        if exc.node is None:
            exc.node = node
        return exc

    code = extract_error_code(exc)
    kind = classify_error(exc)

    if kind is TransportErrorKind.TIMEOUT:
        return RPCTimeoutError(f"Request to {node} timed out: {exc}", kind, code, node)
    return RPCConnectionError(f"Request to {node} failed: {exc}", kind, code, node)
