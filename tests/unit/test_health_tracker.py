"""
Tests for node health tracking: cooldowns, per-API isolation, head block
staleness and healthy-first ordering.
"""

import threading

import pytest

from network.health import HealthTrackerConfig, NodeHealthTracker


class TestHealthTrackerConfig:
    """Test tunable validation."""

    def test_defaults(self):
        config = HealthTrackerConfig()

        assert config.node_cooldown_ms == 30_000
        assert config.api_cooldown_ms == 60_000
        assert config.max_failures_before_cooldown == 3
        assert config.max_api_failures_before_cooldown == 2
        assert config.stale_block_threshold == 30
        assert config.head_block_ttl_ms == 120_000

    def test_rejects_negative_cooldown(self):
        with pytest.raises(ValueError):
            HealthTrackerConfig(node_cooldown_ms=-1)

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            HealthTrackerConfig(max_failures_before_cooldown=0)


class TestNodeCooldown:
    """Test node-wide consecutive failure handling."""

    def test_unknown_node_is_healthy(self, tracker):
        assert tracker.is_node_healthy("https://never-seen.example")
        assert tracker.is_node_healthy("https://never-seen.example", "database_api")

    def test_below_threshold_stays_healthy(self, tracker):
        tracker.record_failure("node-a", "database_api")
        tracker.record_failure("node-a", "block_api")

        assert tracker.is_node_healthy("node-a")

    def test_threshold_marks_unhealthy(self, tracker):
        for api in ("database_api", "block_api", "bridge"):
            tracker.record_failure("node-a", api)

        assert not tracker.is_node_healthy("node-a")
        assert not tracker.is_node_healthy("node-a", "condenser_api")

    def test_cooldown_expires(self, tracker, clock):
        for api in ("database_api", "block_api", "bridge"):
            tracker.record_failure("node-a", api)

        clock.advance(29_999)
        assert not tracker.is_node_healthy("node-a")

        clock.advance(1)
        assert tracker.is_node_healthy("node-a")

    def test_success_resets_consecutive_failures(self, tracker):
        for _ in range(3):
            tracker.record_failure("node-a", "database_api")

        tracker.record_success("node-a", "database_api")

        assert tracker.is_node_healthy("node-a")
        assert tracker.get_health_snapshot()["node-a"]["consecutive_failures"] == 0

    def test_record_success_is_idempotent(self, tracker):
        tracker.record_success("node-a", "database_api")
        tracker.record_success("node-a", "database_api")

        snapshot = tracker.get_health_snapshot()["node-a"]
        assert snapshot["consecutive_failures"] == 0
        assert snapshot["api_failures"] == {}


class TestApiIsolation:
    """Test that API-level failures stay scoped to their API."""

    def test_api_failure_does_not_affect_other_api(self, tracker):
        for _ in range(5):
            tracker.record_api_failure("node-a", "bridge")

        assert not tracker.is_node_healthy("node-a", "bridge")
        assert tracker.is_node_healthy("node-a", "database_api")
        assert tracker.is_node_healthy("node-a")

    def test_api_failure_does_not_count_towards_node_cooldown(self, tracker):
        for _ in range(10):
            tracker.record_api_failure("node-a", "bridge")

        assert tracker.get_health_snapshot()["node-a"]["consecutive_failures"] == 0

    def test_network_failure_counts_per_api_too(self, tracker):
        tracker.record_failure("node-a", "bridge")
        tracker.record_failure("node-a", "bridge")

        assert not tracker.is_node_healthy("node-a", "bridge")
        # only two consecutive failures, below the node threshold
        assert tracker.is_node_healthy("node-a", "database_api")

    def test_api_cooldown_expires(self, tracker, clock):
        tracker.record_api_failure("node-a", "bridge")
        tracker.record_api_failure("node-a", "bridge")

        clock.advance(59_999)
        assert not tracker.is_node_healthy("node-a", "bridge")

        clock.advance(1)
        assert tracker.is_node_healthy("node-a", "bridge")

    def test_success_clears_only_that_api(self, tracker):
        for api in ("bridge", "bridge", "block_api", "block_api"):
            tracker.record_api_failure("node-a", api)

        tracker.record_success("node-a", "bridge")

        assert tracker.is_node_healthy("node-a", "bridge")
        assert not tracker.is_node_healthy("node-a", "block_api")
        assert tracker.get_health_snapshot()["node-a"]["api_failures"] == {"block_api": {"count": 2}}


class TestHeadBlockStaleness:
    """Test lagging-node detection."""

    def test_lagging_node_is_unhealthy_without_failures(self, tracker):
        tracker.update_head_block("node-a", 1000)
        tracker.update_head_block("node-b", 969)

        assert tracker.is_node_healthy("node-a")
        assert not tracker.is_node_healthy("node-b")
        assert not tracker.is_node_healthy("node-b", "database_api")

    def test_within_threshold_is_healthy(self, tracker):
        tracker.update_head_block("node-a", 1000)
        tracker.update_head_block("node-b", 970)

        assert tracker.is_node_healthy("node-b")

    def test_stale_readings_are_ignored(self, tracker, clock):
        tracker.update_head_block("node-a", 1000)
        tracker.update_head_block("node-b", 900)

        clock.advance(120_000)

        assert tracker.is_node_healthy("node-b")

    def test_best_head_block_never_decreases(self, tracker):
        tracker.update_head_block("node-a", 1000)
        tracker.update_head_block("node-a", 500)

        assert tracker.best_known_head_block == 1000
        assert tracker.get_health_snapshot()["node-a"]["head_block"] == 500

    def test_non_positive_head_block_ignored(self, tracker):
        tracker.update_head_block("node-a", 0)
        tracker.update_head_block("node-a", -5)

        assert tracker.best_known_head_block == 0
        assert tracker.get_health_snapshot() == {}


class TestOrdering:
    """Test healthy-first stable partitioning."""

    def test_unhealthy_node_moves_to_back(self, tracker):
        tracker.record_api_failure("n2", "database_api")
        tracker.record_api_failure("n2", "database_api")

        ordered = tracker.get_ordered_nodes(["n1", "n2", "n3"], "database_api")

        assert ordered == ["n1", "n3", "n2"]

    def test_order_preserved_within_partitions(self, tracker):
        for node in ("n1", "n3"):
            for _ in range(3):
                tracker.record_failure(node, "database_api")

        ordered = tracker.get_ordered_nodes(["n1", "n2", "n3", "n4"])

        assert ordered == ["n2", "n4", "n1", "n3"]

    def test_every_node_kept_exactly_once(self, tracker):
        nodes = ["n1", "n2", "n3", "n4", "n5"]
        for node in ("n2", "n5"):
            tracker.record_api_failure(node, "bridge")
            tracker.record_api_failure(node, "bridge")

        ordered = tracker.get_ordered_nodes(nodes, "bridge")

        assert sorted(ordered) == sorted(nodes)
        assert len(ordered) == len(nodes)

    def test_api_specific_ordering(self, tracker):
        tracker.record_api_failure("n1", "bridge")
        tracker.record_api_failure("n1", "bridge")

        assert tracker.get_ordered_nodes(["n1", "n2"], "bridge") == ["n2", "n1"]
        assert tracker.get_ordered_nodes(["n1", "n2"], "database_api") == ["n1", "n2"]


class TestResetAndSnapshot:

    def test_reset_clears_everything(self, tracker):
        tracker.update_head_block("node-a", 1000)
        for _ in range(3):
            tracker.record_failure("node-b", "database_api")

        tracker.reset()

        assert tracker.get_health_snapshot() == {}
        assert tracker.best_known_head_block == 0
        assert tracker.is_node_healthy("node-b")

    def test_snapshot_has_no_side_effects(self, tracker):
        tracker.record_api_failure("node-a", "bridge")

        first = tracker.get_health_snapshot()
        second = tracker.get_health_snapshot()

        assert first == second
        assert first["node-a"] == {
            "consecutive_failures": 0,
            "head_block": 0,
            "api_failures": {"bridge": {"count": 1}},
            "healthy": True,
        }


def test_concurrent_failures_are_all_counted(clock):
    tracker = NodeHealthTracker(HealthTrackerConfig(), clock=clock)

    def worker():
        for _ in range(500):
            tracker.record_failure("node-a", "database_api")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = tracker.get_health_snapshot()["node-a"]
    assert snapshot["consecutive_failures"] == 4000
    assert snapshot["api_failures"]["database_api"]["count"] == 4000
