"""
Hive Chain RPC - Node Health Tracking

This module tracks per-node and per-API health so the transport can try
healthy nodes first. A node failing for one API (a disabled plugin, say)
is deprioritized only for that API. Nodes lagging behind the best known
head block are deprioritized for everything.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class HealthTrackerConfig:
    """Tunables for NodeHealthTracker. All durations in milliseconds."""
    node_cooldown_ms: int = 30_000
    api_cooldown_ms: int = 60_000
    max_failures_before_cooldown: int = 3
    max_api_failures_before_cooldown: int = 2
    stale_block_threshold: int = 30
    head_block_ttl_ms: int = 120_000

    def __post_init__(self):
        for name in ("node_cooldown_ms", "api_cooldown_ms", "head_block_ttl_ms", "stale_block_threshold"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.max_failures_before_cooldown < 1 or self.max_api_failures_before_cooldown < 1:
            raise ValueError("Failure thresholds must be at least 1")


@dataclass
class ApiFailure:
    """Failure counter for one API on one node."""
    count: int = 0
    last_failure_time: float = 0.0


@dataclass
class NodeHealthState:
    """Health record for a single node address."""
    api_failures: Dict[str, ApiFailure] = field(default_factory=dict)
    consecutive_failures: int = 0
    last_failure_time: float = 0.0
    head_block: int = 0
    head_block_updated_at: float = 0.0


class NodeHealthTracker:
    """
    In-memory health tracker shared by every call of one client.

    All state is guarded by a single re-entrant lock so concurrent calls
    from several threads never lose counter updates.
    """

    def __init__(
        self,
        config: Optional[HealthTrackerConfig] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        """
        Initialize health tracker.

        Args:
            config: Cooldown and staleness tunables (defaults if None)
            clock: Returns the current time in milliseconds
        """
        self.config = config or HealthTrackerConfig()
        self._clock = clock
        self.logger = logging.getLogger(__name__)

        self._health: Dict[str, NodeHealthState] = {}
        self._best_head_block = 0
        self._best_head_block_time = 0.0
        self._lock = threading.RLock()

    @property
    def best_known_head_block(self) -> int:
        with self._lock:
            return self._best_head_block

    def _get_or_create(self, node: str) -> NodeHealthState:
        state = self._health.get(node)
        if state is None:
            state = NodeHealthState()
            self._health[node] = state
        return state

    def _increment_api_failure(self, state: NodeHealthState, api: str, now: float):
        api_state = state.api_failures.setdefault(api, ApiFailure())
        api_state.count += 1
        api_state.last_failure_time = now

    def record_success(self, node: str, api: str):
        """Clear the node's consecutive failures and its failures for `api`."""
        with self._lock:
            state = self._get_or_create(node)
            state.consecutive_failures = 0
            state.api_failures.pop(api, None)

    def record_failure(self, node: str, api: str):
        """
        Record a network-level failure (timeout, refused connection, HTTP error).

        Counts against the node as a whole and against `api`.
        """
        with self._lock:
            now = self._clock()
            state = self._get_or_create(node)
            state.consecutive_failures += 1
            state.last_failure_time = now
            self._increment_api_failure(state, api, now)

            if state.consecutive_failures == self.config.max_failures_before_cooldown:
                self.logger.warning(
                    f"Node {node} entering cooldown after {state.consecutive_failures} consecutive failures"
                )

    def record_api_failure(self, node: str, api: str):
        """
        Record an application-level failure (method or plugin unavailable).

        Only the per-API counter moves, so other APIs on the node stay usable.
        """
        with self._lock:
            state = self._get_or_create(node)
            self._increment_api_failure(state, api, self._clock())

    def update_head_block(self, node: str, head_block: int):
        """Remember the head block a node reported. Non-positive values are ignored."""
        if not head_block or head_block <= 0:
            return

        with self._lock:
            now = self._clock()
            state = self._get_or_create(node)
            state.head_block = head_block
            state.head_block_updated_at = now
            if head_block > self._best_head_block:
                self._best_head_block = head_block
                self._best_head_block_time = now

    def is_node_healthy(self, node: str, api: Optional[str] = None) -> bool:
        """
        Check whether a node should be tried first for `api`.

        Unknown nodes are healthy. A node is unhealthy when any of these hold:
        it is cooling down after consecutive failures; `api` is cooling down
        after API failures; its fresh head block trails the fresh best known
        head block by more than the stale threshold.
        """
        with self._lock:
            state = self._health.get(node)
            if state is None:
                return True

            now = self._clock()
            cfg = self.config

            if state.consecutive_failures >= cfg.max_failures_before_cooldown:
                if now - state.last_failure_time < cfg.node_cooldown_ms:
                    return False

            if api:
                api_state = state.api_failures.get(api)
                if api_state and api_state.count >= cfg.max_api_failures_before_cooldown:
                    if now - api_state.last_failure_time < cfg.api_cooldown_ms:
                        return False

            if (
                state.head_block > 0
                and self._best_head_block > 0
                and now - state.head_block_updated_at < cfg.head_block_ttl_ms
                and now - self._best_head_block_time < cfg.head_block_ttl_ms
            ):
                if self._best_head_block - state.head_block > cfg.stale_block_threshold:
                    return False

            return True

    def get_ordered_nodes(self, all_nodes: List[str], api: Optional[str] = None) -> List[str]:
        """Return `all_nodes` with healthy nodes first, keeping input order in each group."""
        healthy = []
        unhealthy = []

        with self._lock:
            for node in all_nodes:
                if self.is_node_healthy(node, api):
                    healthy.append(node)
                else:
                    unhealthy.append(node)

        return healthy + unhealthy

    def reset(self):
        """Forget everything."""
        with self._lock:
            self._health.clear()
            self._best_head_block = 0
            self._best_head_block_time = 0.0

    def get_health_snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Diagnostic copy of the current state, keyed by node."""
        snapshot = {}

        with self._lock:
            for node, state in self._health.items():
                snapshot[node] = {
                    "consecutive_failures": state.consecutive_failures,
                    "head_block": state.head_block,
                    "api_failures": {
                        api: {"count": failure.count}
                        for api, failure in state.api_failures.items()
                    },
                    "healthy": self.is_node_healthy(node),
                }

        return snapshot
