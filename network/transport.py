"""
Hive Chain RPC - Retrying Multi-Node Transport

This module sends one JSON-RPC request body to a pool of nodes with health
aware ordering, bounded failover rounds and broadcast safety: a broadcast is
only re-sent when the failure proves the request never reached a server.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from .errors import (
    HTTPStatusError,
    NodesExhaustedError,
    RPCConnectionError,
    TransportError,
    TransportErrorKind,
    wrap_transport_error,
)
from .health import NodeHealthTracker


def _now_ms() -> float:
    return time.time() * 1000


class FailoverState(Enum):
    """States of a single transport call."""
    ATTEMPTING = "attempting"
    ROUND_COMPLETE = "round_complete"
    EXHAUSTED = "exhausted"
    SUCCESS = "success"
    FATAL_ERROR = "fatal_error"


@dataclass
class RequestOptions:
    """HTTP request options shared by every attempt of one call."""
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None  # seconds, used when no per-attempt timeout is given
    verify: bool = True


@dataclass
class RetryContext:
    """What the transport needs to know about the call it is retrying."""
    health_tracker: Optional[NodeHealthTracker] = None
    api: Optional[str] = None
    is_broadcast: bool = False
    console_on_failover: bool = False


@dataclass
class FetchResult:
    """Decoded response and the node that produced it."""
    response: Any
    current_address: str
    attempts: int = 1
    rounds: int = 0


@dataclass
class FailoverSession:
    """Ephemeral bookkeeping for one transport call."""
    ordered_nodes: List[str]
    start_time: float
    node_index: int = 0
    nodes_tried_in_round: int = 0
    round: int = 0
    attempts: int = 0
    state: FailoverState = FailoverState.ATTEMPTING
    last_error: Optional[TransportError] = None
    timed_out: bool = False

    @property
    def current_node(self) -> str:
        return self.ordered_nodes[self.node_index]

    @property
    def single_node(self) -> bool:
        return len(self.ordered_nodes) == 1


def is_jsonrpc_envelope(data: Any) -> bool:
    """True for a decoded JSON-RPC 2.0 response object."""
    return (
        isinstance(data, dict)
        and data.get("jsonrpc") == "2.0"
        and "id" in data
        and ("result" in data or "error" in data)
    )


def _is_error_envelope(data: Any) -> bool:
    return isinstance(data, dict) and bool(data.get("error"))


class RetryingTransport:
    """
    Executes requests against a list of nodes with failover.

    Within a round every node is tried once, in health order, without delay.
    Between rounds the backoff delay is applied. With a single node there is
    nothing to fail over to and the same node is retried until the timeout.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = _now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize transport.

        Args:
            session: requests session to send with (a new one if None)
            clock: Returns the current time in milliseconds
            sleep: Blocks for the given number of seconds
        """
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    def fetch(
        self,
        current_address: str,
        all_addresses: Union[str, List[str]],
        opts: RequestOptions,
        timeout: int,
        failover_threshold: int,
        console_on_failover: bool,
        backoff: Callable[[int], float],
        fetch_timeout: Optional[Callable[[int], float]] = None,
        retry_context: Optional[RetryContext] = None,
    ) -> FetchResult:
        """
        Send `opts.body` until a node answers or the retry budget is spent.

        Args:
            current_address: Node used by the previous call
            all_addresses: One node URL or the full list of node URLs
            opts: Request body and HTTP options
            timeout: Total wall-clock budget in ms, 0 for no limit
            failover_threshold: Maximum number of rounds, 0 for no limit
            console_on_failover: Print a notice when switching nodes
            backoff: Delay in ms before round (or retry) N
            fetch_timeout: Per-attempt timeout in ms for attempt N
            retry_context: Health tracker, API name and broadcast flag

        Returns:
            FetchResult with the decoded JSON response

        Raises:
            TransportError: Failure that must not be retried
            NodesExhaustedError: Round limit or timeout reached
        """
        ctx = retry_context or RetryContext()
        console = console_on_failover or ctx.console_on_failover
        nodes = [all_addresses] if isinstance(all_addresses, str) else list(all_addresses)
        if not nodes:
            raise ValueError("At least one node address is required")

        if len(nodes) > 1 and ctx.health_tracker is not None:
            ordered = ctx.health_tracker.get_ordered_nodes(nodes, ctx.api)
        else:
            ordered = nodes

        session = FailoverSession(ordered_nodes=ordered, start_time=self._clock())
        if session.current_node != current_address:
            self.logger.debug(f"Starting at {session.current_node} instead of {current_address}")

        while True:
            node = session.current_node
            attempt_timeout = opts.timeout
            if fetch_timeout is not None:
                attempt_timeout = fetch_timeout(session.attempts) / 1000

            session.attempts += 1
            self.logger.debug(f"Attempt {session.attempts} (round {session.round}) on {node}")

            try:
                response = self._attempt(node, opts, attempt_timeout)
            except TransportError as error:
                session.last_error = error
                if ctx.health_tracker is not None:
                    ctx.health_tracker.record_failure(node, ctx.api or "")
                self.logger.warning(f"RPC attempt on {node} failed ({error.kind.value}): {error}")
                self._after_failure(session, error, ctx)
            else:
                # error envelopes are health-neutral here; Client.call records API failures
                if ctx.health_tracker is not None and not _is_error_envelope(response):
                    ctx.health_tracker.record_success(node, ctx.api or "")
                session.state = FailoverState.SUCCESS
                return FetchResult(response, node, session.attempts, session.round)

            if session.state is FailoverState.FATAL_ERROR:
                raise session.last_error

            if session.state is FailoverState.ROUND_COMPLETE:
                self._complete_round(session, timeout, failover_threshold, backoff, ctx)
                if session.state is FailoverState.EXHAUSTED:
                    raise NodesExhaustedError(
                        session.ordered_nodes,
                        session.round,
                        session.last_error,
                        timed_out=session.timed_out,
                    ) from session.last_error
                if session.state is FailoverState.FATAL_ERROR:
                    raise session.last_error

            if session.current_node != node:
                self._notify_switch(session.current_node, node, console)

    def _after_failure(self, session: FailoverSession, error: TransportError, ctx: RetryContext):
        """Move the session to its next state after a failed attempt."""
        kind = error.kind

        if ctx.is_broadcast and not kind.safe_for_broadcast:
            self.logger.error(
                f"Broadcast to {error.node} failed with {kind.value} error; not retrying, "
                f"the transaction may or may not have been delivered"
            )
            session.state = FailoverState.FATAL_ERROR
            return

        if not kind.failover_eligible:
            self.logger.error(f"Not failing over for unrecognized error [{error.error_code}]: {error}")
            session.state = FailoverState.FATAL_ERROR
            return

        session.nodes_tried_in_round += 1
        if session.nodes_tried_in_round < len(session.ordered_nodes):
            session.node_index += 1
            session.state = FailoverState.ATTEMPTING
        else:
            session.round += 1
            session.state = FailoverState.ROUND_COMPLETE

    def _complete_round(
        self,
        session: FailoverSession,
        timeout: int,
        failover_threshold: int,
        backoff: Callable[[int], float],
        ctx: RetryContext,
    ):
        """Decide whether another round may start, and wait before it."""
        if ctx.is_broadcast and not session.single_node:
            # Every node refused the connection once; nothing was delivered.
            session.state = FailoverState.FATAL_ERROR
            return

        if not session.single_node and failover_threshold and session.round >= failover_threshold:
            session.state = FailoverState.EXHAUSTED
            return

        if self._timed_out(session, timeout):
            session.timed_out = True
            session.state = FailoverState.EXHAUSTED
            return

        delay = backoff(session.round - 1 if session.single_node else session.round)
        if delay > 0:
            self._sleep(delay / 1000)

        session.node_index = 0
        session.nodes_tried_in_round = 0
        session.state = FailoverState.ATTEMPTING

    def _timed_out(self, session: FailoverSession, timeout: int) -> bool:
        return timeout != 0 and self._clock() - session.start_time > timeout

    def _attempt(self, node: str, opts: RequestOptions, attempt_timeout: Optional[float]) -> Any:
        """Perform one HTTP POST and decode the response."""
        try:
            response = self.session.post(
                node,
                data=opts.body,
                headers=opts.headers,
                timeout=attempt_timeout,
                verify=opts.verify,
            )
        except (requests.exceptions.RequestException, OSError) as e:
            raise wrap_transport_error(e, node) from e

        if 200 <= response.status_code < 300:
            try:
                return response.json()
            except ValueError as e:
                raise RPCConnectionError(
                    f"Invalid JSON response from {node}: {e}",
                    TransportErrorKind.PROTOCOL,
                    "ERR_BAD_RESPONSE",
                    node,
                ) from e

        if response.status_code == 500:
            # Some nodes return JSON-RPC errors with status 500.
            try:
                data = response.json()
            except ValueError:
                data = None
            if is_jsonrpc_envelope(data):
                return data

        raise HTTPStatusError(
            f"HTTP {response.status_code}: {response.reason}",
            TransportErrorKind.HTTP_STATUS,
            None,
            node,
            response.status_code,
        )

    def _notify_switch(self, target: str, previous: str, console: bool):
        self.logger.info(f"Switched RPC node: {target} (previous: {previous})")
        if console:
            print(f"Switched Hive RPC: {target} (previous: {previous})")

    def close(self):
        """Close the underlying session."""
        if self.session:
            self.session.close()
