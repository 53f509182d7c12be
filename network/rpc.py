"""
Hive Chain RPC - JSON-RPC Client

This module provides the JSON-RPC client: it builds `api.method` requests,
sends them through the retrying multi-node transport and turns node error
responses into readable RPCError exceptions.
"""

import copy
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .apis import (
    AccountByKeyAPI,
    Blockchain,
    BroadcastAPI,
    DatabaseAPI,
    HivemindAPI,
    RCAPI,
    TransactionStatusAPI,
)
from .errors import RPCError, ResponseIdMismatchError
from .health import HealthTrackerConfig, NodeHealthTracker
from .transport import RequestOptions, RetryContext, RetryingTransport

__version__ = "0.4.0"

DEFAULT_CHAIN_ID = "beeab0de00000000000000000000000000000000000000000000000000000000"
DEFAULT_ADDRESS_PREFIX = "STM"

TESTNET_ADDRESS = "https://testnet.openhive.network"
TESTNET_CHAIN_ID = "18dcf0a285365fc58b71f18b3d3fec954aa0c141c44e4e5cb4cf777b9eab274e"
TESTNET_ADDRESS_PREFIX = "TST"

BROADCAST_API = "network_broadcast_api"

# JSON-RPC errors meaning the node does not serve this API at all.
API_UNAVAILABLE_CODES = {-32601}
API_UNAVAILABLE_PATTERN = re.compile(
    r"could not find (api|method)|method not found|plugin not enabled|unknown api",
    re.IGNORECASE,
)

_PLACEHOLDER = re.compile(r"\$\{([a-z_]+)\}", re.IGNORECASE)


def default_backoff(tries: int) -> float:
    """min((tries*10)^2, 10 seconds), in milliseconds."""
    return min((tries * 10) ** 2, 10 * 1000)


def default_fetch_timeout(tries: int) -> float:
    """Per-attempt timeout for read calls, in milliseconds."""
    return (tries + 1) * 500


class OperationType(Enum):
    """Category of an RPC call."""
    READ = "read"
    BROADCAST = "broadcast"

    @classmethod
    def for_call(cls, api: str, method: str) -> "OperationType":
        if api == BROADCAST_API or method.startswith("broadcast_transaction"):
            return cls.BROADCAST
        return cls.READ


@dataclass
class RPCRequest:
    """A JSON-RPC 2.0 request for `api.method`."""
    api: str
    method: str
    params: Any = field(default_factory=list)
    id: int = 0

    @property
    def operation_type(self) -> OperationType:
        return OperationType.for_call(self.api, self.method)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "jsonrpc": "2.0",
            "method": f"{self.api}.{self.method}",
            "params": self.params,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), cls=BufferEncoder)


class BufferEncoder(json.JSONEncoder):
    """Encodes binary values as lowercase hex strings."""

    def default(self, o):
        if isinstance(o, (bytes, bytearray, memoryview)):
            return bytes(o).hex()
        return super().default(o)


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)) or value is None:
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_error_message(error: Dict[str, Any]) -> str:
    """
    Render a node error into a single readable message.

    Nodes attach a stack of `{format, data}` frames to errors. The first
    frame's `${key}` placeholders are filled from its data; leftover data
    entries are appended as `key=value` pairs.
    """
    message = error.get("message", "")
    data = error.get("data")

    if not isinstance(data, dict) or not data.get("stack"):
        return message

    top = data["stack"][0]
    top_data = copy.deepcopy(top.get("data") or {})

    def substitute(match: "re.Match") -> str:
        key = match.group(1)
        if top_data.get(key) is None:
            return match.group(0)
        return _format_value(top_data.pop(key))

    message = _PLACEHOLDER.sub(substitute, top.get("format", message))

    unformatted = [f"{key}={_format_value(value)}" for key, value in top_data.items()]
    if unformatted:
        message += " " + " ".join(unformatted)
    return message


def is_api_unavailable(error: Dict[str, Any]) -> bool:
    """True when a node error says the API or method is not served by it."""
    if error.get("code") in API_UNAVAILABLE_CODES:
        return True
    return bool(API_UNAVAILABLE_PATTERN.search(str(error.get("message", ""))))


@dataclass
class ClientConfig:
    """Configuration for the RPC client. Durations in milliseconds."""
    addresses: Union[str, List[str]]
    timeout_ms: int = 60 * 1000
    failover_threshold: int = 3
    console_on_failover: bool = False
    backoff: Callable[[int], float] = default_backoff
    chain_id: str = DEFAULT_CHAIN_ID
    address_prefix: str = DEFAULT_ADDRESS_PREFIX
    health: HealthTrackerConfig = field(default_factory=HealthTrackerConfig)
    user_agent: str = f"hivechain-rpc/{__version__}"
    ssl_verify: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.addresses, str):
            if not self.addresses:
                raise ValueError("Node address cannot be empty")
        elif not self.addresses or not all(self.addresses):
            raise ValueError("At least one node address must be provided")

        if self.timeout_ms < 0:
            raise ValueError("timeout_ms must not be negative")
        if self.failover_threshold < 0:
            raise ValueError("failover_threshold must not be negative")

        try:
            chain_id = bytes.fromhex(self.chain_id)
        except ValueError:
            raise ValueError(f"Invalid chain id: {self.chain_id}")
        if len(chain_id) != 32:
            raise ValueError("invalid chain id")

    @property
    def node_list(self) -> List[str]:
        return [self.addresses] if isinstance(self.addresses, str) else list(self.addresses)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create client config from environment variables."""
        nodes = [n.strip() for n in os.getenv("HIVE_RPC_NODES", "https://api.hive.blog").split(",") if n.strip()]
        return cls(
            addresses=nodes,
            timeout_ms=int(os.getenv("HIVE_RPC_TIMEOUT_MS", "60000")),
            failover_threshold=int(os.getenv("HIVE_RPC_FAILOVER_THRESHOLD", "3")),
            console_on_failover=os.getenv("HIVE_RPC_CONSOLE_ON_FAILOVER", "false").lower() == "true",
            chain_id=os.getenv("HIVE_CHAIN_ID", DEFAULT_CHAIN_ID),
            address_prefix=os.getenv("HIVE_ADDRESS_PREFIX", DEFAULT_ADDRESS_PREFIX),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ClientConfig":
        """Create client config from a JSON file."""
        with open(path, "r") as f:
            data = json.load(f)

        health = HealthTrackerConfig(**data.pop("health", {}))
        return cls(health=health, **data)


class Client:
    """
    JSON-RPC client for a pool of Hive nodes.

    One client owns one health tracker; every call made through it shares
    the tracker, so failures seen by one call reorder nodes for the next.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[RetryingTransport] = None,
        health_tracker: Optional[NodeHealthTracker] = None,
    ):
        """
        Initialize RPC client.

        Args:
            config: Client configuration (uses environment if None)
            transport: Transport to send through (a new one if None)
            health_tracker: Shared tracker (a new one if None)
        """
        self.config = config or ClientConfig.from_env()
        self.transport = transport or RetryingTransport()
        self.health_tracker = health_tracker or NodeHealthTracker(self.config.health)
        self.logger = logging.getLogger(__name__)

        self.address = self.config.addresses
        self.current_address = self.config.node_list[0]
        self.chain_id = bytes.fromhex(self.config.chain_id)
        self.address_prefix = self.config.address_prefix
        self._address_lock = threading.Lock()

        self.database = DatabaseAPI(self)
        self.broadcast = BroadcastAPI(self)
        self.blockchain = Blockchain(self)
        self.hivemind = HivemindAPI(self)
        self.rc = RCAPI(self)
        self.keys = AccountByKeyAPI(self)
        self.transaction = TransactionStatusAPI(self)

    @classmethod
    def testnet(cls, **overrides) -> "Client":
        """Create a client configured for the public testnet."""
        config = ClientConfig(
            addresses=TESTNET_ADDRESS,
            chain_id=TESTNET_CHAIN_ID,
            address_prefix=TESTNET_ADDRESS_PREFIX,
            **overrides,
        )
        return cls(config)

    def _request_options(self, request: RPCRequest) -> RequestOptions:
        return RequestOptions(
            body=request.to_json(),
            headers={
                "Accept": "application/json, text/plain, */*",
                "Content-Type": "application/json",
                "User-Agent": self.config.user_agent,
            },
            verify=self.config.ssl_verify,
        )

    def call(self, api: str, method: str, params: Any = None) -> Any:
        """
        Make an RPC call.

        Args:
            api: API to call, e.g. `database_api`
            method: API method, e.g. `get_dynamic_global_properties`
            params: Method parameters (list or object)

        Returns:
            The `result` member of the response

        Raises:
            RPCError: Node returned an error, or every node failed
            ResponseIdMismatchError: Response id differs from request id
        """
        request = RPCRequest(api, method, [] if params is None else params)
        is_broadcast = request.operation_type is OperationType.BROADCAST

        context = RetryContext(
            health_tracker=self.health_tracker,
            api=api,
            is_broadcast=is_broadcast,
            console_on_failover=self.config.console_on_failover,
        )

        try:
            result = self.transport.fetch(
                self.current_address,
                self.address,
                self._request_options(request),
                self.config.timeout_ms,
                self.config.failover_threshold,
                self.config.console_on_failover,
                self.config.backoff,
                None if is_broadcast else default_fetch_timeout,
                context,
            )
        except RPCError as e:
            self.logger.error(f"RPC call {api}.{method} failed: {e}")
            raise

        with self._address_lock:
            if result.current_address != self.current_address:
                self.current_address = result.current_address

        response = result.response
        if not isinstance(response, dict):
            raise RPCError(-32700, f"Malformed response from {result.current_address}: {response!r}")

        error = response.get("error")
        if error:
            if is_api_unavailable(error):
                self.health_tracker.record_api_failure(result.current_address, api)
            raise RPCError(error.get("code"), format_error_message(error), error.get("data"))

        if response.get("id") != request.id:
            raise ResponseIdMismatchError(request.id, response.get("id"))

        output = response.get("result")
        if method == "get_dynamic_global_properties" and isinstance(output, dict):
            self.health_tracker.update_head_block(
                result.current_address, output.get("head_block_number", 0)
            )
        return output

    def get_health_snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Health state of every node this client has talked to."""
        return self.health_tracker.get_health_snapshot()

    def close(self):
        """Close the RPC client."""
        self.transport.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
